from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Optional

from ingenierostint.engine.events import BoundarySource, StintBoundaryEvent
from ingenierostint.engine.tuning import EngineTuning
from ingenierostint.state.model import SessionState, StintSummary
from ingenierostint.telemetry.sample import Sample

log = logging.getLogger("ingenierostint.stint")


def _positive(x: Optional[float]) -> Optional[float]:
    return x if x is not None and x > 0 else None


@dataclass(slots=True)
class PitObservation:
    kind: str  # "pit_entry" | "pit_exit" | "pit_glitch"
    boundary: Optional[StintBoundaryEvent] = None
    pit_duration_s: Optional[float] = None


@dataclass(slots=True)
class PitRoadDetector:
    """Fin de stint al entrar a boxes, inicio al salir.

    El resumen se arma al entrar (desgaste antes de la parada) y solo se confirma
    al salir si la visita supera el piso de la ventana: un parpadeo del flag no
    cierra el stint.
    """

    tuning: EngineTuning

    def observe(self, st: SessionState, s: Sample, now: float) -> Optional[PitObservation]:
        stint = st.stint
        was = stint.was_on_pit_road
        stint.was_on_pit_road = s.on_pit_road

        # primer stint de la sesión (o del motor): arranca donde lo vemos
        if stint.start_session_time is None and s.on_track and not s.on_pit_road:
            self._start(st, s)

        if s.on_pit_road and not was:
            stint.pit_entry_at = now
            # sin stint abierto (arranque en boxes) no hay nada que cerrar
            stint.pending = self._summary(st, s) if stint.start_session_time is not None else None
            log.info("Pit entry at lap %s (stint %s)", s.lap_completed, stint.stint_number)
            return PitObservation("pit_entry")

        if was and not s.on_pit_road:
            entered = stint.pit_entry_at
            pending = stint.pending
            stint.pit_entry_at = None
            stint.pending = None

            if entered is None or pending is None:
                # arranque en boxes: solo abre el primer stint
                self._start(st, s)
                return PitObservation("pit_exit")

            d = now - entered
            if d <= self.tuning.pit_min_s:
                log.info("Pit-road flag flicker (%.1fs); ignored", d)
                return PitObservation("pit_glitch", pit_duration_s=d)

            self._start(st, s)
            stint.stint_number += 1
            st.incident_count_at_stint_start = s.incident_count
            log.info("Pit exit after %.1fs; stint %s starts at lap %s", d, stint.stint_number, s.lap_completed)
            boundary = StintBoundaryEvent(
                source=BoundarySource.PIT_ROAD,
                summary=pending,
                pit_duration_s=d,
            )
            return PitObservation("pit_exit", boundary=boundary, pit_duration_s=d)

        return None

    @staticmethod
    def _start(st: SessionState, s: Sample) -> None:
        stint = st.stint
        stint.start_session_time = s.session_time_remain
        stint.start_lap = s.lap_completed if s.lap_valid else None
        stint.start_fuel = s.fuel_level

    @staticmethod
    def _summary(st: SessionState, s: Sample) -> StintSummary:
        stint = st.stint

        duration = None
        if stint.start_session_time is not None:
            duration = _positive(stint.start_session_time - s.session_time_remain)

        laps = None
        if stint.start_lap is not None and s.lap_valid:
            n = s.lap_completed - stint.start_lap
            laps = n if n > 0 else None

        fuel_used = None
        if stint.start_fuel is not None:
            fuel_used = _positive(stint.start_fuel - s.fuel_level)

        if fuel_used is not None and laps:
            avg_fuel = fuel_used / laps
        else:
            avg_fuel = st.fuel_usage_history.mean()

        if duration is not None and laps:
            avg_lap = duration / laps
        else:
            avg_lap = st.lap_time_history.mean()

        return StintSummary(
            source=BoundarySource.PIT_ROAD.value,
            lap_count=laps,
            fuel_used=fuel_used,
            avg_fuel_per_lap=avg_fuel,
            duration_s=duration,
            avg_lap_time=avg_lap,
            incidents=max(0, s.incident_count - st.incident_count_at_stint_start),
            tire_wear=copy.deepcopy(s.tire_wear),
        )


@dataclass(slots=True)
class TrackOccupancyDetector:
    """Fin de stint cuando el piloto sale del auto (transición del Buffer Gate a NoDriver)."""

    def on_entry(self, st: SessionState, s: Sample, now: float) -> None:
        st.stint.wall_start = now
        st.incident_count_at_stint_start = s.incident_count

    def on_exit(
        self,
        st: SessionState,
        s: Sample,
        now: float,
        entry_point: Optional[int],
        gated: Optional[Sample],
    ) -> StintBoundaryEvent:
        ref = gated if gated is not None else s

        lap = s.lap_completed if s.lap_valid else (ref.lap_completed if ref.lap_valid else None)
        laps = None
        if entry_point is not None and lap is not None:
            n = lap - entry_point
            laps = n if n > 0 else None

        duration = None
        if st.stint.wall_start is not None:
            duration = _positive(now - st.stint.wall_start)
        st.stint.wall_start = None

        summary = StintSummary(
            source=BoundarySource.TRACK_OCCUPANCY.value,
            lap_count=laps,
            fuel_used=None,
            avg_fuel_per_lap=st.fuel_usage_history.mean(),
            duration_s=duration,
            avg_lap_time=st.lap_time_history.mean(),
            incidents=max(0, s.incident_count - st.incident_count_at_stint_start),
            tire_wear=copy.deepcopy(ref.tire_wear if ref.tire_wear is not None else s.tire_wear),
        )
        return StintBoundaryEvent(source=BoundarySource.TRACK_OCCUPANCY, summary=summary)


@dataclass(slots=True)
class StintTracker:
    tuning: EngineTuning
    pit: PitRoadDetector = field(init=False)
    occupancy: TrackOccupancyDetector = field(default_factory=TrackOccupancyDetector)

    def __post_init__(self) -> None:
        self.pit = PitRoadDetector(self.tuning)

    def record(self, st: SessionState, ev: StintBoundaryEvent) -> None:
        """Sink común de ambos detectores. Último en llegar define `last_summary`."""
        stint = st.stint
        sm = ev.summary

        if sm.duration_s is not None and sm.duration_s > 0:
            stint.duration_history.push(sm.duration_s)
        if sm.lap_count is not None and sm.lap_count > 0:
            stint.lap_count_history.push(sm.lap_count)

        d = ev.pit_duration_s
        if d is not None:
            if self.tuning.pit_min_s < d < self.tuning.pit_max_s:
                stint.pit_duration_history.push(d)
            else:
                log.info("Pit duration %.1fs outside (%.0f, %.0f); discarded", d, self.tuning.pit_min_s, self.tuning.pit_max_s)

        if sm.tire_wear is not None:
            stint.last_tire_wear_snapshot = copy.deepcopy(sm.tire_wear)
        stint.last_summary = sm

        log.info(
            "Stint summary (%s): laps=%s fuel_avg=%s duration=%s incidents=%s",
            ev.source.value,
            sm.lap_count,
            None if sm.avg_fuel_per_lap is None else round(sm.avg_fuel_per_lap, 3),
            None if sm.duration_s is None else round(sm.duration_s, 1),
            sm.incidents,
        )
