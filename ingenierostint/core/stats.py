from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional


@dataclass(slots=True)
class RuntimeStats:
    # UDP layer
    udp_received: int = 0
    udp_dropped_queue: int = 0

    # Replay layer
    replay_sent: int = 0

    # Dispatcher layer
    dispatched_in: int = 0
    dropped_bad_message: int = 0
    decode_errors: int = 0
    by_kind: dict[str, int] = field(default_factory=dict)

    # Engine
    samples_in: int = 0
    laps_processed: int = 0
    events_out: int = 0

    # Replication
    published: int = 0
    publish_failed: int = 0
    publish_suppressed: int = 0
    remote_applied: int = 0
    saves: int = 0
    save_failed: int = 0

    # Last seen (debug)
    last_kind: str | None = None
    last_origin: str | None = None


class StatsReporter:
    def __init__(
        self,
        stats: RuntimeStats,
        interval_s: float = 5.0,
        raw_queue: Optional["asyncio.Queue[bytes]"] = None,
        recorder: object | None = None,
    ) -> None:
        self._stats = stats
        self._interval_s = max(0.5, float(interval_s))
        self._raw_queue = raw_queue
        self._recorder = recorder

        self._stop = asyncio.Event()
        self._log = logging.getLogger("ingenierostint.stats")

        self._last_ts = time.monotonic()
        self._last_samples = 0

    def stop(self) -> None:
        self._stop.set()

    def format_line(self, now: float) -> str:
        dt = max(1e-6, now - self._last_ts)
        sps = (self._stats.samples_in - self._last_samples) / dt

        extra = []
        if self._raw_queue is not None:
            extra.append(f"raw_q={self._raw_queue.qsize()}/{self._raw_queue.maxsize}")
        rec = getattr(self._recorder, "stats", None)
        if rec is not None:
            extra.append(f"rec_written={rec.written} rec_drop={rec.dropped}")

        s = self._stats
        return (
            f"udp_rx={s.udp_received} udp_dropQ={s.udp_dropped_queue} replay={s.replay_sent} | "
            f"in={s.dispatched_in} bad={s.dropped_bad_message} dec_err={s.decode_errors} | "
            f"samples={s.samples_in} ({sps:.1f}/s) laps={s.laps_processed} events={s.events_out} | "
            f"pub={s.published} pub_fail={s.publish_failed} pub_supp={s.publish_suppressed} "
            f"remote={s.remote_applied} saves={s.saves} save_fail={s.save_failed} | "
            f"kinds={dict(sorted(s.by_kind.items()))} {' '.join(extra)}"
        ).rstrip()

    async def run(self) -> None:
        while not self._stop.is_set():
            await asyncio.sleep(self._interval_s)
            now = time.monotonic()
            self._log.info(self.format_line(now))
            self._last_ts = now
            self._last_samples = self._stats.samples_in
