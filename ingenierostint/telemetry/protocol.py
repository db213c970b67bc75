from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from ingenierostint.sync.envelope import MessageType, RemoteStateEnvelope


class MessageKind(str, Enum):
    TELEMETRY = "telemetry"
    SESSION_INFO = "session_info"
    PEER = "peer"
    COMMAND = "command"


_TELEMETRY_TYPES = ("telemetry",)
_SESSION_TYPES = ("sessionInfo", "session_info")
_PEER_TYPES = tuple(m.value for m in MessageType)


@dataclass(frozen=True, slots=True)
class InboundMessage:
    kind: MessageKind
    data: Any = None
    envelope: Optional[RemoteStateEnvelope] = None

    @staticmethod
    def try_parse(data: bytes | str) -> "InboundMessage | None":
        """Datagrama JSON -> mensaje tipado. None si no se reconoce."""
        try:
            raw = json.loads(data)
        except (ValueError, UnicodeDecodeError):
            return None
        if not isinstance(raw, dict):
            return None

        kind = raw.get("type")
        if kind in _TELEMETRY_TYPES:
            return InboundMessage(MessageKind.TELEMETRY, raw.get("data"))
        if kind in _SESSION_TYPES:
            return InboundMessage(MessageKind.SESSION_INFO, raw.get("data"))
        if kind in _PEER_TYPES:
            env = RemoteStateEnvelope.from_dict(raw)
            return None if env is None else InboundMessage(MessageKind.PEER, envelope=env)
        if kind == "command":
            cmd = raw.get("command")
            if cmd not in ("reset", "persistence"):
                return None
            return InboundMessage(MessageKind.COMMAND, {"command": cmd, "enabled": bool(raw.get("enabled", True))})

        # forma cruda del SDK (sin envoltorio)
        if isinstance(raw.get("values"), dict):
            return InboundMessage(MessageKind.TELEMETRY, raw)
        if isinstance(raw.get("WeekendInfo"), dict) or isinstance(raw.get("DriverInfo"), dict):
            return InboundMessage(MessageKind.SESSION_INFO, raw)
        return None


def encode_message(kind: str, data: Any) -> bytes:
    return json.dumps({"type": kind, "data": data}, separators=(",", ":")).encode("utf-8")
