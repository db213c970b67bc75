from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

INVALID_LAP = -1

# Orden de ruedas y bandas de la banda de rodadura (iRacing: LFwearL, LFwearM, ...)
CORNERS = ("LF", "RF", "LR", "RR")
BANDS = ("L", "M", "R")

TireWear = dict[str, dict[str, float]]


def _finite(x: float) -> bool:
    return not (math.isnan(x) or math.isinf(x))


def _clamp(x: float, lo: float, hi: float) -> float:
    if x < lo:
        return lo
    if x > hi:
        return hi
    return x


def _as_float(v: Any) -> Optional[float]:
    if v is None or isinstance(v, bool):
        return None
    try:
        x = float(v)
    except (TypeError, ValueError):
        return None
    return x if _finite(x) else None


def _as_int(v: Any) -> Optional[int]:
    x = _as_float(v)
    return None if x is None else int(x)


def _as_bool(v: Any) -> Optional[bool]:
    if v is None:
        return None
    if isinstance(v, bool):
        return v
    if isinstance(v, (int, float)):
        return v != 0
    if isinstance(v, str):
        s = v.strip().lower()
        if s in ("1", "true", "yes"):
            return True
        if s in ("0", "false", "no", ""):
            return False
    return None


def _indexed(values: Mapping[str, Any], key: str, idx: Optional[int]) -> Any:
    arr = values.get(key)
    if idx is None or not isinstance(arr, (list, tuple)):
        return None
    if 0 <= idx < len(arr):
        return arr[idx]
    return None


@dataclass(frozen=True, slots=True)
class Sample:
    on_track: bool = False
    on_pit_road: bool = False
    lap_completed: int = INVALID_LAP
    lap_dist_pct: float = 0.0
    fuel_level: float = 0.0
    session_time_remain: float = 0.0
    last_lap_time: Optional[float] = None
    incident_count: int = 0
    tire_wear: Optional[TireWear] = None

    @property
    def lap_valid(self) -> bool:
        return self.lap_completed != INVALID_LAP and self.lap_completed >= 0


@dataclass(frozen=True, slots=True)
class SessionMeta:
    session_id: Optional[int] = None
    track_length_km: Optional[float] = None
    tank_capacity_l: Optional[float] = None
    session_duration_s: Optional[float] = None
    drivers: tuple[str, ...] = field(default_factory=tuple)

    @property
    def broadcaster(self) -> Optional[str]:
        return self.drivers[0] if self.drivers else None


def _unwrap(raw: Any) -> Mapping[str, Any]:
    if not isinstance(raw, Mapping):
        return {}
    inner = raw.get("values")
    if isinstance(inner, Mapping):
        return inner
    return raw


def _tire_wear(values: Mapping[str, Any]) -> Optional[TireWear]:
    out: TireWear = {}
    seen = False
    for c in CORNERS:
        bands: dict[str, float] = {}
        for b in BANDS:
            x = _as_float(values.get(f"{c}wear{b}"))
            if x is not None:
                seen = True
            bands[b] = _clamp(x if x is not None else 0.0, 0.0, 1.0)
        out[c] = bands
    return out if seen else None


def normalize_sample(raw: Any, player_idx: Optional[int] = None) -> Sample:
    """Convierte un mapa crudo de telemetría en Sample. Nunca lanza.

    Campos faltantes o basura quedan en su valor neutro (0, False, -1 para vuelta).
    """
    values = _unwrap(raw)
    if player_idx is None:
        player_idx = _as_int(values.get("PlayerCarIdx"))

    on_pit = _as_bool(_indexed(values, "CarIdxOnPitRoad", player_idx))
    if on_pit is None:
        on_pit = _as_bool(values.get("OnPitRoad"))

    lap = _as_int(_indexed(values, "CarIdxLapCompleted", player_idx))
    if lap is None:
        lap = _as_int(values.get("LapCompleted"))
    if lap is None or lap < 0:
        lap = INVALID_LAP

    pct = _as_float(values.get("LapDistPct"))
    pct = 0.0 if pct is None or pct < 0 else min(pct, math.nextafter(1.0, 0.0))

    fuel = _as_float(values.get("FuelLevel"))
    remain = _as_float(values.get("SessionTimeRemain"))

    last_lap = _as_float(values.get("LapLastLapTime"))
    if last_lap is not None and last_lap <= 0:
        last_lap = None

    incidents = _as_int(values.get("PlayerCarDriverIncidentCount"))

    return Sample(
        on_track=bool(_as_bool(values.get("IsOnTrack"))),
        on_pit_road=bool(on_pit),
        lap_completed=lap,
        lap_dist_pct=pct,
        fuel_level=max(0.0, fuel or 0.0),
        session_time_remain=max(0.0, remain or 0.0),
        last_lap_time=last_lap,
        incident_count=max(0, incidents or 0),
        tire_wear=_tire_wear(values),
    )


_KM_RE = re.compile(r"([-+]?\d+(?:\.\d+)?)\s*(km|mi)?", re.IGNORECASE)


def _track_length_km(v: Any) -> Optional[float]:
    x = _as_float(v)
    if x is not None:
        return x
    if not isinstance(v, str):
        return None
    m = _KM_RE.search(v)
    if not m:
        return None
    km = float(m.group(1))
    if (m.group(2) or "").lower() == "mi":
        km *= 1.609344
    return km


def _session_duration_s(v: Any) -> Optional[float]:
    # "6.0000 sec" / "unlimited"
    if isinstance(v, str):
        m = _KM_RE.search(v)
        return float(m.group(1)) if m else None
    return _as_float(v)


def normalize_session_info(raw: Any) -> SessionMeta:
    if not isinstance(raw, Mapping):
        return SessionMeta()
    weekend = raw.get("WeekendInfo") or {}
    driver_info = raw.get("DriverInfo") or {}
    if not isinstance(weekend, Mapping):
        weekend = {}
    if not isinstance(driver_info, Mapping):
        driver_info = {}

    drivers: list[str] = []
    roster = driver_info.get("Drivers")
    for d in roster if isinstance(roster, list) else []:
        if isinstance(d, Mapping) and d.get("UserName"):
            drivers.append(str(d["UserName"]))

    tank = _as_float(driver_info.get("DriverCarFuelMaxLtr"))
    if tank is not None and tank <= 0:
        tank = None

    duration = None
    sessions = (raw.get("SessionInfo") or {}).get("Sessions") if isinstance(raw.get("SessionInfo"), Mapping) else None
    if isinstance(sessions, list) and sessions and isinstance(sessions[-1], Mapping):
        duration = _session_duration_s(sessions[-1].get("SessionTime"))

    return SessionMeta(
        session_id=_as_int(weekend.get("SessionID")),
        track_length_km=_track_length_km(weekend.get("TrackLength")),
        tank_capacity_l=tank,
        session_duration_s=duration,
        drivers=tuple(drivers),
    )
