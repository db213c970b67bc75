from __future__ import annotations

import os
import uuid
from dataclasses import dataclass, fields, replace
from typing import Any


ENV_PREFIX = "INGSTINT_"


def _env_bool(s: str) -> bool:
    return (s or "").strip().lower() in ("1", "true", "yes", "on")


def _env_peers(s: str) -> tuple[str, ...]:
    return tuple(p.strip() for p in (s or "").split(",") if p.strip())


@dataclass(frozen=True, slots=True)
class AppConfig:
    # entrada (telemetría + mensajes de pares)
    listen_host: str = "0.0.0.0"
    listen_port: int = 20778
    peers: tuple[str, ...] = ()
    instance_id: str = ""
    queue_maxsize: int = 2048

    # logging / salud
    log_level: str = "INFO"
    log_dir: str = "logs"
    stats_interval_s: float = 5.0
    state_interval_s: float = 1.0

    # motor
    tuning_path: str | None = None

    # replicación
    publish_interval_s: float = 5.0
    save_interval_s: float = 5.0
    apply_guard_s: float = 0.5
    persistence_enabled: bool = True
    store_dir: str = "state"
    retention_s: float = 8 * 60 * 60.0

    # grabación / replay
    record_enabled: bool = False
    record_dir: str = "recordings"
    replay_path: str | None = None
    replay_speed: float = 1.0
    replay_no_sleep: bool = False

    def __post_init__(self) -> None:
        if not self.instance_id:
            object.__setattr__(self, "instance_id", uuid.uuid4().hex[:12])

    @property
    def listen(self) -> str:
        return f"{self.listen_host}:{self.listen_port}"

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "AppConfig":
        env = os.environ if environ is None else environ
        kw: dict[str, Any] = {}
        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            kw[f.name] = _coerce(f.name, raw, f.default)
        return cls(**kw)

    @classmethod
    def from_obj(cls, obj: Any) -> "AppConfig":
        """Construye config desde cualquier objeto con atributos (args, SimpleNamespace...)."""
        kw: dict[str, Any] = {}
        for f in fields(cls):
            v = getattr(obj, f.name, None)
            if v is not None:
                kw[f.name] = v
        return cls(**kw)

    def override(self, **kw: Any) -> "AppConfig":
        # None = flag no provisto en CLI
        clean = {k: v for k, v in kw.items() if v is not None}
        if "peers" in clean and isinstance(clean["peers"], str):
            clean["peers"] = _env_peers(clean["peers"])
        elif "peers" in clean:
            clean["peers"] = tuple(clean["peers"])
        return replace(self, **clean)


def _coerce(name: str, raw: str, default: Any) -> Any:
    if name == "peers":
        return _env_peers(raw)
    if isinstance(default, bool):
        return _env_bool(raw)
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return raw


def parse_hostport(s: str, default_port: int = 20778) -> tuple[str, int]:
    host, sep, port = s.rpartition(":")
    if not sep:
        return s, int(default_port)
    return host or "127.0.0.1", int(port)
