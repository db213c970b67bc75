from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Iterator


@dataclass(slots=True)
class ReplayStats:
    sent: int = 0
    skipped: int = 0


def iter_capture(path: str, stats: ReplayStats | None = None) -> Iterator[tuple[int, bytes]]:
    """(ts_ns, datagrama) por línea; líneas rotas se saltean."""
    with open(path, "r", encoding="utf-8-sig") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                rec = json.loads(line)
                ts_ns = int(rec["ts_ns"])
                data = rec["data"]
            except (ValueError, KeyError, TypeError):
                if stats is not None:
                    stats.skipped += 1
                continue
            if not isinstance(data, str):
                data = json.dumps(data)
            yield ts_ns, data.encode("utf-8")


class PacketReplayer:
    def __init__(self, path: str, speed: float = 1.0, no_sleep: bool = False) -> None:
        self._path = path
        self._speed = max(0.01, float(speed))
        self._no_sleep = bool(no_sleep)
        self._log = logging.getLogger("ingenierostint.replay")
        self._stop = asyncio.Event()
        self.stats = ReplayStats()

    def stop(self) -> None:
        self._stop.set()

    async def run(self, out_queue: "asyncio.Queue[bytes]") -> None:
        self._log.info("Replaying %s (speed=%.2f no_sleep=%s)", self._path, self._speed, self._no_sleep)

        last_ts: int | None = None
        try:
            for ts_ns, payload in iter_capture(self._path, self.stats):
                if self._stop.is_set():
                    break

                if not self._no_sleep and last_ts is not None:
                    dt_ns = ts_ns - last_ts
                    if dt_ns > 0:
                        await asyncio.sleep((dt_ns / 1e9) / self._speed)
                last_ts = ts_ns

                await out_queue.put(payload)
                self.stats.sent += 1
        finally:
            self._log.info("Replay finished: sent=%s skipped=%s", self.stats.sent, self.stats.skipped)
