from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Optional

log = logging.getLogger("ingenierostint.recorder")

CAPTURE_SUFFIX = "_stint.jsonl"


@dataclass(slots=True)
class RecorderStats:
    enqueued: int = 0
    dropped: int = 0
    written: int = 0
    last_path: str = ""


def encode_line(ts_ns: int, payload: bytes) -> str:
    """Una línea de captura: {"ts_ns": int, "data": str}."""
    return json.dumps({"ts_ns": int(ts_ns), "data": payload.decode("utf-8", errors="replace")}) + "\n"


class PacketRecorder:
    """Captura cada datagrama entrante (telemetría, session info, pares) para replay.

    El timestamp se toma al encolar, no al escribir: el replay respeta el ritmo real.
    """

    def __init__(
        self,
        out_dir: str = "recordings",
        enabled: bool = False,
        queue_maxsize: int = 2048,
        flush_every: int = 64,
    ) -> None:
        self._out_dir = Path(out_dir)
        self._enabled = bool(enabled)
        self._pending: asyncio.Queue[tuple[int, bytes]] = asyncio.Queue(maxsize=int(queue_maxsize))
        self._flush_every = max(1, int(flush_every))
        self._stop = asyncio.Event()
        self.stats = RecorderStats()

    @property
    def enabled(self) -> bool:
        return self._enabled

    def stop(self) -> None:
        self._stop.set()

    def try_enqueue(self, payload: bytes) -> bool:
        if not self._enabled:
            return False
        try:
            self._pending.put_nowait((time.time_ns(), payload))
        except asyncio.QueueFull:
            self.stats.dropped += 1
            return False
        self.stats.enqueued += 1
        return True

    def _open_capture(self) -> tuple[str, IO[str]]:
        self._out_dir.mkdir(parents=True, exist_ok=True)
        path = self._out_dir / f"{time.strftime('%Y%m%d_%H%M%S')}{CAPTURE_SUFFIX}"
        return str(path), open(path, "w", encoding="utf-8")

    def _write(self, f: IO[str], lines: list[str]) -> None:
        if not lines:
            return
        f.writelines(lines)
        f.flush()
        self.stats.written += len(lines)
        lines.clear()

    def _stopping(self, stop_evt: Optional[asyncio.Event]) -> bool:
        return self._stop.is_set() or (stop_evt is not None and stop_evt.is_set())

    async def run(self, stop_evt: Optional[asyncio.Event] = None) -> None:
        if not self._enabled:
            return

        path, f = self._open_capture()
        self.stats.last_path = path
        log.info("Recording to %s", path)

        lines: list[str] = []
        try:
            while not self._stopping(stop_evt):
                try:
                    ts_ns, payload = await asyncio.wait_for(self._pending.get(), timeout=0.5)
                except asyncio.TimeoutError:
                    self._write(f, lines)
                    continue
                lines.append(encode_line(ts_ns, payload))
                if len(lines) >= self._flush_every:
                    self._write(f, lines)
        finally:
            # cancelación incluida: lo bufferizado no se pierde
            self._write(f, lines)
            try:
                os.fsync(f.fileno())
            except OSError:
                pass
            f.close()
            log.info("Recording closed: written=%s dropped=%s", self.stats.written, self.stats.dropped)
