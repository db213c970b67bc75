from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Protocol

from ingenierostint.core.config import parse_hostport
from ingenierostint.sync.envelope import RemoteStateEnvelope

log = logging.getLogger("ingenierostint.channel")


class Channel(Protocol):
    def publish(self, env: RemoteStateEnvelope) -> None:
        """Fire-and-forget. Puede lanzar; el replicador registra y reintenta en el próximo tick."""
        ...


class LocalEndpoint:
    def __init__(self, bus: "LocalBus", name: str) -> None:
        self.name = name
        self.inbox: deque[RemoteStateEnvelope] = deque()
        self._bus = bus

    def publish(self, env: RemoteStateEnvelope) -> None:
        self._bus.fanout(env)

    def poll(self) -> list[RemoteStateEnvelope]:
        out = list(self.inbox)
        self.inbox.clear()
        return out


class LocalBus:
    """Pub/sub en proceso: cada publish se encola en todos los endpoints (incluido el emisor).

    La entrega es diferida (`poll`), así el orden de llegada se respeta y no hay reentradas.
    """

    def __init__(self) -> None:
        self._endpoints: list[LocalEndpoint] = []
        self.sent = 0

    def attach(self, name: str) -> LocalEndpoint:
        ep = LocalEndpoint(self, name)
        self._endpoints.append(ep)
        return ep

    def fanout(self, env: RemoteStateEnvelope) -> None:
        self.sent += 1
        for ep in self._endpoints:
            ep.inbox.append(env)


class _SendOnlyProtocol(asyncio.DatagramProtocol):
    def error_received(self, exc: Exception) -> None:
        log.debug("Peer send error: %s", exc)


class UdpPeerChannel:
    """Envía envelopes como datagramas JSON a cada par `host:port`.

    Los pares reciben por su propio UdpListener (mismo puerto que la telemetría).
    """

    def __init__(self, peers: tuple[str, ...] | list[str]) -> None:
        self._peers = [parse_hostport(p) for p in peers]
        self._transport: asyncio.DatagramTransport | None = None

    @property
    def peers(self) -> list[tuple[str, int]]:
        return list(self._peers)

    async def open(self) -> None:
        if self._transport is not None or not self._peers:
            return
        loop = asyncio.get_running_loop()
        transport, _ = await loop.create_datagram_endpoint(_SendOnlyProtocol, local_addr=("0.0.0.0", 0))
        self._transport = transport  # type: ignore[assignment]
        log.info("Peer channel ready -> %s", ", ".join(f"{h}:{p}" for h, p in self._peers))

    def close(self) -> None:
        if self._transport is not None:
            self._transport.close()
            self._transport = None

    def publish(self, env: RemoteStateEnvelope) -> None:
        if not self._peers:
            return
        if self._transport is None:
            raise ConnectionError("peer channel not open")
        data = env.encode()
        for addr in self._peers:
            self._transport.sendto(data, addr)
