from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

from ingenierostint.engine.tuning import EngineTuning
from ingenierostint.state.model import BoundedHistory, SessionState
from ingenierostint.telemetry.sample import Sample

log = logging.getLogger("ingenierostint.laps")

PREFILL_COPIES = 3


@dataclass(slots=True)
class LapResult:
    lap: int
    fuel: float
    fuel_used: Optional[float]
    lap_time: Optional[float]
    fuel_rejected: bool = False
    estimated: bool = False


def push_prefilled(hist: BoundedHistory, value: float) -> None:
    # primera observación: se repite para que el promedio de 3 exista ya
    n = PREFILL_COPIES if len(hist) == 0 else 1
    for _ in range(n):
        hist.push(value)


@dataclass(slots=True)
class LapPipeline:
    tuning: EngineTuning

    def on_sample(self, st: SessionState, s: Sample, now: float) -> Optional[LapResult]:
        if not s.lap_valid:
            return None

        lap = s.lap_completed
        if lap == st.last_lap_completed:
            return None
        if lap < st.last_lap_completed:
            log.debug("Stale lap value %s (last=%s); ignored", lap, st.last_lap_completed)
            return None

        if lap == 0:
            # ninguna vuelta completa todavía: solo arranca el reloj de vuelta
            if st.last_lap_at is None:
                st.last_lap_at = now
            return None

        return self.complete_lap(st, lap, s.fuel_level, s.last_lap_time, now)

    def complete_lap(
        self,
        st: SessionState,
        lap: int,
        fuel: float,
        lap_time: Optional[float],
        now: float,
    ) -> LapResult:
        # 1) tiempo de vuelta: dato del simulador o delta de reloj
        t: Optional[float] = None
        if lap_time is not None and lap_time > 0 and math.isfinite(lap_time):
            t = float(lap_time)
        elif st.last_lap_at is not None:
            dt = now - st.last_lap_at
            if dt > 0 and math.isfinite(dt):
                t = dt
        st.last_lap_at = now

        if t is not None:
            push_prefilled(st.lap_time_history, t)

        # 2) combustible usado
        estimated = False
        if st.fuel_at_lap_start is not None:
            used = st.fuel_at_lap_start - fuel
        else:
            tank = st.tank_capacity_l or self.tuning.tank_capacity_l
            used = max(self.tuning.min_estimated_fuel_l, tank - fuel)
            estimated = True

        accepted = math.isfinite(used) and used >= 0
        if accepted:
            push_prefilled(st.fuel_usage_history, used)
            st.last_fuel_used = used
        else:
            log.debug("Fuel usage %.3f rejected at lap %s (refuel or glitch)", used, lap)

        if math.isfinite(fuel):
            self.recompute(st, fuel)
            st.fuel_at_lap_start = fuel
        st.last_lap_completed = lap

        log.debug(
            "Lap %s: fuel_used=%s lap_time=%s avg3=%s",
            lap,
            f"{used:.3f}" if accepted else "rejected",
            f"{t:.3f}" if t is not None else "--",
            st.derived.fuel_avg3,
        )
        return LapResult(
            lap=lap,
            fuel=fuel,
            fuel_used=used if accepted else None,
            lap_time=t,
            fuel_rejected=not accepted,
            estimated=estimated,
        )

    @staticmethod
    def recompute(st: SessionState, fuel: float) -> None:
        d = st.derived
        d.fuel_avg3 = st.fuel_usage_history.mean_last(3)
        d.fuel_avg5 = st.fuel_usage_history.mean_last(5)
        d.lap_avg3 = st.lap_time_history.mean_last(3)
        d.lap_avg5 = st.lap_time_history.mean_last(5)

        if d.fuel_avg3 is not None and d.fuel_avg3 > 0:
            d.projected_laps = fuel / d.fuel_avg3
        else:
            d.projected_laps = None

        if d.projected_laps is not None and d.lap_avg3 is not None:
            d.projected_time = d.projected_laps * d.lap_avg3
        else:
            d.projected_time = None
