from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class _DatagramSink(asyncio.DatagramProtocol):
    queue: "asyncio.Queue[bytes]"
    drop_when_full: bool
    stats: Any = None
    senders: set[str] = field(default_factory=set)
    dropped: int = 0

    def datagram_received(self, data: bytes, addr) -> None:  # type: ignore[override]
        if self.stats is not None:
            self.stats.udp_received += 1
        # un par nuevo (bridge del simulador u otra instancia) se anota una vez
        sender = f"{addr[0]}:{addr[1]}" if isinstance(addr, tuple) else str(addr)
        if sender not in self.senders:
            self.senders.add(sender)
            logging.getLogger("ingenierostint.udp").info("First datagram from %s", sender)

        if self.drop_when_full and self.queue.full():
            self._count_drop()
            return
        try:
            self.queue.put_nowait(data)
        except asyncio.QueueFull:
            self._count_drop()

    def error_received(self, exc: Exception) -> None:
        logging.getLogger("ingenierostint.udp").debug("UDP error: %s", exc)

    def _count_drop(self) -> None:
        self.dropped += 1
        if self.stats is not None:
            self.stats.udp_dropped_queue += 1


class UdpListener:
    """Un único puerto para todo lo entrante: telemetría, session info, pares y comandos."""

    def __init__(
        self,
        host: str,
        port: int,
        out_queue: "asyncio.Queue[bytes]",
        drop_when_full: bool = True,
        stats: Any = None,
    ) -> None:
        self._addr = (host, int(port))
        self._sink = _DatagramSink(out_queue, drop_when_full, stats)
        self._log = logging.getLogger("ingenierostint.udp")
        self._stop = asyncio.Event()
        self._transport: asyncio.DatagramTransport | None = None

    @property
    def senders(self) -> set[str]:
        return set(self._sink.senders)

    def stop(self) -> None:
        self._stop.set()
        if self._transport is not None:
            self._transport.close()
            self._transport = None

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        transport, _ = await loop.create_datagram_endpoint(lambda: self._sink, local_addr=self._addr)
        self._transport = transport  # type: ignore[assignment]
        self._log.info("Listening UDP on %s:%s", *self._addr)
        try:
            await self._stop.wait()
        finally:
            self.stop()
            self._log.info("UDP listener closed (dropped=%s)", self._sink.dropped)
