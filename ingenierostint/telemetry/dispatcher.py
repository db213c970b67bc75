from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from ingenierostint.comms.logger_sink import LoggerComms
from ingenierostint.engine.engine import TelemetryEngine
from ingenierostint.sync.replicator import StateReplicator
from ingenierostint.telemetry.protocol import InboundMessage, MessageKind

log = logging.getLogger("ingenierostint.dispatcher")


def _inc(stats: Any, *names: str, delta: int = 1) -> None:
    """Incrementa el primer campo existente en stats."""
    if stats is None:
        return
    for n in names:
        if hasattr(stats, n):
            setattr(stats, n, int(getattr(stats, n)) + int(delta))
            return


class MessageDispatcher:
    """Línea de tiempo única: samples y envelopes se procesan en orden de llegada."""

    def __init__(
        self,
        engine: TelemetryEngine,
        replicator: StateReplicator | None = None,
        comms: LoggerComms | None = None,
        stats: Any = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._stop = asyncio.Event()
        self._engine = engine
        self._replicator = replicator
        self._comms = comms
        self._stats = stats
        self._clock = clock

    def stop(self) -> None:
        self._stop.set()

    async def run(self, in_queue: "asyncio.Queue[bytes]") -> None:
        log.info("Dispatcher running")
        while not self._stop.is_set():
            try:
                data = await asyncio.wait_for(in_queue.get(), timeout=0.5)
            except asyncio.TimeoutError:
                continue
            self.handle(data)

    def handle(self, data: bytes | str) -> MessageKind | None:
        _inc(self._stats, "dispatched_in")

        msg = InboundMessage.try_parse(data)
        if msg is None:
            _inc(self._stats, "dropped_bad_message")
            return None

        if self._stats is not None:
            self._stats.by_kind[msg.kind.value] = self._stats.by_kind.get(msg.kind.value, 0) + 1
            self._stats.last_kind = msg.kind.value

        try:
            self._route(msg)
        except Exception:
            _inc(self._stats, "decode_errors")
            if log.isEnabledFor(logging.DEBUG):
                log.exception("handling %s failed", msg.kind.value)
        return msg.kind

    def _route(self, msg: InboundMessage) -> None:
        rep = self._replicator
        now = self._clock() if self._clock is not None else None

        if msg.kind == MessageKind.TELEMETRY:
            events = self._engine.ingest(msg.data, now)
            _inc(self._stats, "samples_in")
            if any(e.key == "lap_completed" for e in events):
                _inc(self._stats, "laps_processed")
            self._emit(events)
            if rep is not None:
                rep.notify(events)
            return

        if msg.kind == MessageKind.SESSION_INFO:
            events = self._engine.ingest_session_info(msg.data)
            self._emit(events)
            if rep is not None:
                rep.notify(events)
            return

        if msg.kind == MessageKind.PEER:
            env = msg.envelope
            if env is None:
                return
            if self._stats is not None:
                self._stats.last_origin = env.origin
            if rep is not None and rep.handle(env) and self._comms is not None:
                self._comms.publish_record(self._engine.derived_record())
            return

        if msg.kind == MessageKind.COMMAND and rep is not None:
            cmd = msg.data["command"]
            if cmd == "reset":
                log.info("Operator reset")
                rep.reset_all()
            elif cmd == "persistence":
                rep.set_persistence(bool(msg.data["enabled"]))
            if self._comms is not None:
                self._comms.publish_record(self._engine.derived_record())

    def _emit(self, events) -> None:
        if self._comms is None:
            return
        for ev in events:
            self._comms.emit(ev)
            _inc(self._stats, "events_out")
        self._comms.publish_record(self._engine.derived_record())
