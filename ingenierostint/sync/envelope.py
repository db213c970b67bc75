from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional


class MessageType(str, Enum):
    STATE = "state"
    RESET = "reset"
    PERSISTENCE = "persistence"
    REQUEST_INITIAL_STATE = "request_initial_state"
    INITIAL_STATE = "initial_state"


# campos que nunca viajan (crudos / relojes locales)
_NEVER_SENT = ("gated", "bufferedData", "buffered_data", "last_lap_at")


@dataclass(frozen=True, slots=True)
class RemoteStateEnvelope:
    """Mensaje del canal de pares. `payload` es un SessionState parcial (solo STATE / INITIAL_STATE)."""

    type: MessageType
    origin: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    enabled: Optional[bool] = None  # solo PERSISTENCE
    sent_at: float = 0.0
    target: Optional[str] = None  # INITIAL_STATE: solo lo aplica la instancia que lo pidió

    @classmethod
    def state(
        cls,
        origin: str,
        payload: Mapping[str, Any],
        sent_at: float = 0.0,
        *,
        initial: bool = False,
        target: Optional[str] = None,
    ) -> "RemoteStateEnvelope":
        clean = {k: v for k, v in payload.items() if k not in _NEVER_SENT}
        return cls(
            type=MessageType.INITIAL_STATE if initial else MessageType.STATE,
            origin=origin,
            payload=clean,
            sent_at=sent_at,
            target=target if initial else None,
        )

    @classmethod
    def control(cls, kind: MessageType, origin: str, sent_at: float = 0.0, *, enabled: Optional[bool] = None) -> "RemoteStateEnvelope":
        return cls(type=kind, origin=origin, enabled=enabled, sent_at=sent_at)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"type": self.type.value, "origin": self.origin, "sent_at": self.sent_at}
        if self.type in (MessageType.STATE, MessageType.INITIAL_STATE):
            d["payload"] = dict(self.payload)
        if self.type == MessageType.PERSISTENCE:
            d["enabled"] = bool(self.enabled)
        if self.target is not None:
            d["target"] = self.target
        return d

    def encode(self) -> bytes:
        return json.dumps(self.to_dict(), separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_dict(cls, raw: Any) -> Optional["RemoteStateEnvelope"]:
        """None si el mensaje no es un envelope válido."""
        if not isinstance(raw, Mapping):
            return None
        try:
            kind = MessageType(raw.get("type"))
        except ValueError:
            return None
        origin = raw.get("origin")
        if not isinstance(origin, str) or not origin:
            return None

        payload = raw.get("payload") or {}
        if not isinstance(payload, Mapping):
            return None
        enabled = raw.get("enabled")
        if kind == MessageType.PERSISTENCE and not isinstance(enabled, bool):
            return None
        target = raw.get("target")
        if target is not None and not isinstance(target, str):
            return None
        try:
            sent_at = float(raw.get("sent_at") or 0.0)
        except (TypeError, ValueError):
            sent_at = 0.0

        return cls(
            type=kind,
            origin=origin,
            payload={k: v for k, v in payload.items() if k not in _NEVER_SENT},
            enabled=enabled if kind == MessageType.PERSISTENCE else None,
            sent_at=sent_at,
            target=target if kind == MessageType.INITIAL_STATE else None,
        )

    @classmethod
    def decode(cls, data: bytes | str) -> Optional["RemoteStateEnvelope"]:
        try:
            raw = json.loads(data)
        except (ValueError, UnicodeDecodeError):
            return None
        return cls.from_dict(raw)
