from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping

# legado -> nuevo
_ALIASES = {
    "tank_capacity": "tank_capacity_l",
    "max_fuel": "tank_capacity_l",
    "min_laps_for_valid_data": "settle_laps",
    "pit_min": "pit_min_s",
    "pit_max": "pit_max_s",
}


@dataclass(frozen=True, slots=True)
class EngineTuning:
    """Constantes del motor.

    Nota: todo valor viene materializado; un JSON de tuning solo pisa lo que trae.
    """

    version: str = "v1"
    tank_capacity_l: float = 104.0
    settle_laps: int = 2
    pit_min_s: float = 10.0
    pit_max_s: float = 300.0
    min_estimated_fuel_l: float = 0.5
    raw: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "EngineTuning":
        if not isinstance(raw, Mapping):
            raise ValueError("tuning must be a JSON object")

        flat: dict[str, Any] = dict(raw.get("engine") or {}) if isinstance(raw.get("engine"), Mapping) else {}
        flat.update({k: v for k, v in raw.items() if k != "engine"})
        for old, new in _ALIASES.items():
            if old in flat and new not in flat:
                flat[new] = flat[old]

        kw: dict[str, Any] = {}
        for f in fields(cls):
            if f.name == "raw" or f.name not in flat:
                continue
            v = flat[f.name]
            try:
                kw[f.name] = str(v) if f.name == "version" else type(f.default)(v)
            except (TypeError, ValueError) as e:
                raise ValueError(f"tuning: invalid value for {f.name!r}: {v!r}") from e

        out = cls(raw=dict(raw), **kw)
        if out.pit_min_s >= out.pit_max_s:
            raise ValueError("tuning: pit_min_s must be < pit_max_s")
        if out.settle_laps < 0:
            raise ValueError("tuning: settle_laps must be >= 0")
        return out

    def override(self, **kw: Any) -> "EngineTuning":
        merged = dict(self.raw)
        merged.update({k: v for k, v in kw.items() if v is not None})
        for f in fields(self):
            if f.name != "raw" and f.name not in merged:
                merged[f.name] = getattr(self, f.name)
        return EngineTuning.from_mapping(merged)


def load_tuning(path: str | Path | None) -> EngineTuning:
    if not path:
        return EngineTuning()
    # utf-8-sig: tolera BOM de editores en Windows
    text = Path(path).read_text(encoding="utf-8-sig")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"tuning: invalid JSON in {path}: {e}") from e
    return EngineTuning.from_mapping(data)
