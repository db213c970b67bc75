from __future__ import annotations

import copy
import math
from collections import deque
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

from ingenierostint.telemetry.sample import Sample, TireWear

LAP_HISTORY_SIZE = 5
STINT_HISTORY_SIZE = 10


class GateState(str, Enum):
    NO_DRIVER = "no_driver"
    SETTLING = "settling"
    LIVE = "live"


class BoundedHistory:
    """FIFO acotado (más viejo -> más nuevo)."""

    __slots__ = ("_items",)

    def __init__(self, maxlen: int, items: Iterable[float] = ()) -> None:
        self._items: deque[float] = deque(maxlen=int(maxlen))
        for x in items:
            self.push(x)

    @property
    def maxlen(self) -> int:
        return int(self._items.maxlen or 0)

    def push(self, value: float) -> None:
        self._items.append(float(value))

    def mean_last(self, n: int) -> Optional[float]:
        if n <= 0 or len(self._items) < n:
            return None
        tail = list(self._items)[-n:]
        if min(tail) == max(tail):
            # evita 2.8*3/3 != 2.8
            return tail[0]
        return math.fsum(tail) / n

    def mean(self) -> Optional[float]:
        if not self._items:
            return None
        return math.fsum(self._items) / len(self._items)

    def last(self) -> Optional[float]:
        return self._items[-1] if self._items else None

    def clear(self) -> None:
        self._items.clear()

    def to_list(self) -> list[float]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(self._items)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, BoundedHistory):
            return self.to_list() == other.to_list()
        if isinstance(other, list):
            return self.to_list() == other
        return NotImplemented

    def __repr__(self) -> str:
        return f"BoundedHistory({self.maxlen}, {self.to_list()!r})"


@dataclass(slots=True)
class Derived:
    fuel_avg3: Optional[float] = None
    fuel_avg5: Optional[float] = None
    lap_avg3: Optional[float] = None
    lap_avg5: Optional[float] = None
    projected_laps: Optional[float] = None
    projected_time: Optional[float] = None

    def as_dict(self) -> dict[str, Optional[float]]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "Derived":
        return cls(**{f.name: _opt_float(raw.get(f.name)) for f in fields(cls)})


@dataclass(slots=True)
class StintSummary:
    source: str
    lap_count: Optional[int] = None
    fuel_used: Optional[float] = None
    avg_fuel_per_lap: Optional[float] = None
    duration_s: Optional[float] = None
    avg_lap_time: Optional[float] = None
    incidents: Optional[int] = None
    tire_wear: Optional[TireWear] = None

    def as_dict(self) -> dict[str, Any]:
        d = {f.name: getattr(self, f.name) for f in fields(self)}
        d["tire_wear"] = copy.deepcopy(self.tire_wear)
        return d

    @classmethod
    def from_mapping(cls, raw: Any) -> Optional["StintSummary"]:
        if not isinstance(raw, Mapping) or not raw.get("source"):
            return None
        return cls(
            source=str(raw["source"]),
            lap_count=_opt_int(raw.get("lap_count")),
            fuel_used=_opt_float(raw.get("fuel_used")),
            avg_fuel_per_lap=_opt_float(raw.get("avg_fuel_per_lap")),
            duration_s=_opt_float(raw.get("duration_s")),
            avg_lap_time=_opt_float(raw.get("avg_lap_time")),
            incidents=_opt_int(raw.get("incidents")),
            tire_wear=_tire_wear_or_none(raw.get("tire_wear")),
        )


@dataclass(slots=True)
class StintState:
    start_session_time: Optional[float] = None
    start_lap: Optional[int] = None
    start_fuel: Optional[float] = None
    was_on_pit_road: bool = False
    duration_history: BoundedHistory = field(default_factory=lambda: BoundedHistory(STINT_HISTORY_SIZE))
    lap_count_history: BoundedHistory = field(default_factory=lambda: BoundedHistory(STINT_HISTORY_SIZE))
    pit_duration_history: BoundedHistory = field(default_factory=lambda: BoundedHistory(STINT_HISTORY_SIZE))
    last_tire_wear_snapshot: Optional[TireWear] = None
    stint_number: int = 1
    last_summary: Optional[StintSummary] = None

    # solo locales: relojes monotónicos de esta instancia, no viajan a los pares
    wall_start: Optional[float] = None
    pit_entry_at: Optional[float] = None
    pending: Optional[StintSummary] = None

    @property
    def avg_pit_duration(self) -> Optional[float]:
        return self.pit_duration_history.mean()

    @property
    def avg_stint_duration(self) -> Optional[float]:
        return self.duration_history.mean()

    @property
    def avg_stint_laps(self) -> Optional[float]:
        return self.lap_count_history.mean()


@dataclass(slots=True)
class SessionState:
    # Buffer Gate
    gate: GateState = GateState.NO_DRIVER
    buffer_frozen: bool = True
    lap_entry_point: Optional[int] = None
    last_observed_lap: Optional[int] = None

    # Lap Pipeline
    fuel_at_lap_start: Optional[float] = None
    fuel_usage_history: BoundedHistory = field(default_factory=lambda: BoundedHistory(LAP_HISTORY_SIZE))
    lap_time_history: BoundedHistory = field(default_factory=lambda: BoundedHistory(LAP_HISTORY_SIZE))
    last_lap_completed: int = -1
    last_fuel_used: Optional[float] = None
    derived: Derived = field(default_factory=Derived)

    # Stint Tracker
    stint: StintState = field(default_factory=StintState)
    incident_count_at_stint_start: int = 0

    # Contexto
    fuel_level: float = 0.0
    tank_capacity_l: Optional[float] = None
    session_id: Optional[int] = None

    # Display: derived congelado en el último snapshot Live
    displayed: Derived = field(default_factory=Derived)

    # solo locales (nunca en el payload)
    gated: Optional[Sample] = None
    last_lap_at: Optional[float] = None

    def to_payload(self) -> dict[str, Any]:
        """Estado externamente relevante, sin el sample crudo ni relojes locales."""
        st = self.stint
        return {
            "gate": self.gate.value,
            "buffer_frozen": self.buffer_frozen,
            "lap_entry_point": self.lap_entry_point,
            "last_observed_lap": self.last_observed_lap,
            "fuel_at_lap_start": self.fuel_at_lap_start,
            "fuel_usage_history": self.fuel_usage_history.to_list(),
            "lap_time_history": self.lap_time_history.to_list(),
            "last_lap_completed": self.last_lap_completed,
            "last_fuel_used": self.last_fuel_used,
            "derived": self.derived.as_dict(),
            "displayed": self.displayed.as_dict(),
            "stint": {
                "start_session_time": st.start_session_time,
                "start_lap": st.start_lap,
                "start_fuel": st.start_fuel,
                "was_on_pit_road": st.was_on_pit_road,
                "duration_history": st.duration_history.to_list(),
                "lap_count_history": st.lap_count_history.to_list(),
                "pit_duration_history": st.pit_duration_history.to_list(),
                "last_tire_wear_snapshot": copy.deepcopy(st.last_tire_wear_snapshot),
                "stint_number": st.stint_number,
                "last_summary": st.last_summary.as_dict() if st.last_summary else None,
            },
            "incident_count_at_stint_start": self.incident_count_at_stint_start,
            "fuel_level": self.fuel_level,
            "tank_capacity_l": self.tank_capacity_l,
            "session_id": self.session_id,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], base: Optional["SessionState"] = None) -> "SessionState":
        """Decodifica un payload (parcial) sobre una copia de `base`.

        Lanza ValueError/TypeError si un campo presente es inválido; `base` no se toca.
        """
        if not isinstance(payload, Mapping):
            raise TypeError("payload must be a mapping")

        out = base.copy() if base is not None else cls()
        p = payload

        if "gate" in p:
            out.gate = GateState(p["gate"])
        if "buffer_frozen" in p:
            out.buffer_frozen = bool(p["buffer_frozen"])
        if "lap_entry_point" in p:
            out.lap_entry_point = _opt_int(p["lap_entry_point"])
        if "last_observed_lap" in p:
            out.last_observed_lap = _opt_int(p["last_observed_lap"])
        if "fuel_at_lap_start" in p:
            out.fuel_at_lap_start = _opt_float(p["fuel_at_lap_start"])
        if "fuel_usage_history" in p:
            out.fuel_usage_history = _history(p["fuel_usage_history"], LAP_HISTORY_SIZE)
        if "lap_time_history" in p:
            out.lap_time_history = _history(p["lap_time_history"], LAP_HISTORY_SIZE)
        if "last_lap_completed" in p:
            v = _opt_int(p["last_lap_completed"])
            out.last_lap_completed = -1 if v is None else v
        if "last_fuel_used" in p:
            out.last_fuel_used = _opt_float(p["last_fuel_used"])
        if "derived" in p:
            out.derived = Derived.from_mapping(_mapping(p["derived"]))
        if "displayed" in p:
            out.displayed = Derived.from_mapping(_mapping(p["displayed"]))
        if "incident_count_at_stint_start" in p:
            out.incident_count_at_stint_start = _opt_int(p["incident_count_at_stint_start"] or 0)
        if "fuel_level" in p:
            out.fuel_level = _opt_float(p["fuel_level"] or 0.0) or 0.0
        if "tank_capacity_l" in p:
            out.tank_capacity_l = _opt_float(p["tank_capacity_l"])
        if "session_id" in p:
            out.session_id = _opt_int(p["session_id"])

        if "stint" in p:
            s = _mapping(p["stint"])
            st = out.stint
            if "start_session_time" in s:
                st.start_session_time = _opt_float(s["start_session_time"])
            if "start_lap" in s:
                st.start_lap = _opt_int(s["start_lap"])
            if "start_fuel" in s:
                st.start_fuel = _opt_float(s["start_fuel"])
            if "was_on_pit_road" in s:
                st.was_on_pit_road = bool(s["was_on_pit_road"])
            if "duration_history" in s:
                st.duration_history = _history(s["duration_history"], STINT_HISTORY_SIZE)
            if "lap_count_history" in s:
                st.lap_count_history = _history(s["lap_count_history"], STINT_HISTORY_SIZE)
            if "pit_duration_history" in s:
                st.pit_duration_history = _history(s["pit_duration_history"], STINT_HISTORY_SIZE)
            if "last_tire_wear_snapshot" in s:
                st.last_tire_wear_snapshot = _tire_wear_or_none(s["last_tire_wear_snapshot"])
            if "stint_number" in s:
                st.stint_number = max(1, _opt_int(s["stint_number"] or 1))
            if "last_summary" in s:
                st.last_summary = StintSummary.from_mapping(s["last_summary"])

        return out

    def copy(self) -> "SessionState":
        # el sample gated es inmutable: se comparte
        memo = {} if self.gated is None else {id(self.gated): self.gated}
        return copy.deepcopy(self, memo)

    def replace_with(self, other: "SessionState") -> None:
        """Swap campo a campo (la identidad del objeto se mantiene para quien lo referencia)."""
        for f in fields(self):
            setattr(self, f.name, getattr(other, f.name))


def _mapping(v: Any) -> Mapping[str, Any]:
    if not isinstance(v, Mapping):
        raise TypeError(f"expected mapping, got {type(v).__name__}")
    return v


def _history(v: Any, maxlen: int) -> BoundedHistory:
    if not isinstance(v, (list, tuple)):
        raise TypeError("history must be a list")
    items = [float(x) for x in v]
    if any(not math.isfinite(x) for x in items):
        raise ValueError("history contains non-finite values")
    return BoundedHistory(maxlen, items)


def _opt_float(v: Any) -> Optional[float]:
    if v is None:
        return None
    x = float(v)
    return x if math.isfinite(x) else None


def _opt_int(v: Any) -> Optional[int]:
    if v is None:
        return None
    if isinstance(v, float) and not math.isfinite(v):
        raise ValueError(f"non-finite integer field: {v}")
    return int(v)


def _tire_wear_or_none(v: Any) -> Optional[TireWear]:
    if not isinstance(v, Mapping):
        return None
    return {str(c): {str(b): float(x) for b, x in _mapping(bands).items()} for c, bands in v.items()}
