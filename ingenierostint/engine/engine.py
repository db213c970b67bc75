from __future__ import annotations

import copy
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ingenierostint.engine.events import Event, Priority
from ingenierostint.engine.gate import BufferGate, GateTransition
from ingenierostint.engine.laps import LapPipeline
from ingenierostint.engine.stint import StintTracker
from ingenierostint.engine.tuning import EngineTuning
from ingenierostint.state.model import GateState, SessionState
from ingenierostint.telemetry.sample import Sample, SessionMeta, normalize_sample, normalize_session_info

log = logging.getLogger("ingenierostint.engine")


def _fmt(x: Optional[float], nd: int = 2) -> str:
    return "--" if x is None else f"{x:.{nd}f}"


@dataclass(slots=True)
class TelemetryEngine:
    tuning: EngineTuning
    state: SessionState
    gate: BufferGate
    laps: LapPipeline
    stint: StintTracker
    clock: Callable[[], float] = time.monotonic
    roster: tuple[str, ...] = field(default_factory=tuple)
    last_incident_count: int = 0

    @classmethod
    def create(
        cls,
        tuning: EngineTuning | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> "TelemetryEngine":
        tuning = tuning or EngineTuning()
        return cls(
            tuning=tuning,
            state=SessionState(),
            gate=BufferGate(settle_laps=tuning.settle_laps),
            laps=LapPipeline(tuning),
            stint=StintTracker(tuning),
            clock=clock,
        )

    def ingest(self, raw: Any, now: float | None = None) -> list[Event]:
        """Procesa un sample (crudo o normalizado). Nunca lanza por datos malos."""
        s = raw if isinstance(raw, Sample) else normalize_sample(raw)
        t = self.clock() if now is None else float(now)
        st = self.state
        st.fuel_level = s.fuel_level
        self.last_incident_count = s.incident_count
        events: list[Event] = []

        # 1) Buffer Gate
        step = self.gate.step(st, s)
        if step.transition == GateTransition.ENTRY:
            self.stint.occupancy.on_entry(st, s, t)
            events.append(
                Event(
                    key="driver_entered",
                    priority=Priority.BOUNDARY,
                    text=f"Driver in car at lap {st.lap_entry_point}; waiting {self.gate.settle_laps} laps.",
                    publish=True,
                    data={"lap_entry_point": st.lap_entry_point},
                )
            )
        elif step.transition == GateTransition.EXIT:
            boundary = self.stint.occupancy.on_exit(st, s, t, step.entry_point, step.gated)
            self.stint.record(st, boundary)
            events.append(
                Event(
                    key="driver_exited",
                    priority=Priority.BOUNDARY,
                    text=f"Driver out: {boundary.summary.lap_count or '--'} laps, "
                    f"avg fuel {_fmt(boundary.summary.avg_fuel_per_lap)} L.",
                    publish=True,
                    data={"summary": boundary.summary.as_dict()},
                )
            )
        elif step.transition == GateTransition.LIVE:
            events.append(Event(key="buffer_live", priority=Priority.STATUS, text="Live telemetry."))

        # 2) Stint Tracker (flanco de pit road, sin esperar al buffer)
        obs = self.stint.pit.observe(st, s, t)
        if obs is not None:
            if obs.boundary is not None:
                self.stint.record(st, obs.boundary)
                events.append(
                    Event(
                        key="stint_boundary",
                        priority=Priority.BOUNDARY,
                        text=f"Stint {st.stint.stint_number - 1} closed: "
                        f"{obs.boundary.summary.lap_count or '--'} laps, "
                        f"pit {_fmt(obs.pit_duration_s, 1)}s.",
                        publish=True,
                        data={"summary": obs.boundary.summary.as_dict(), "pit_duration_s": obs.pit_duration_s},
                    )
                )
            events.append(
                Event(
                    key=obs.kind,
                    priority=Priority.PIT,
                    text=obs.kind.replace("_", " "),
                    data={"pit_duration_s": obs.pit_duration_s},
                )
            )

        # 3) Lap Pipeline
        res = self.laps.on_sample(st, s, t)
        if res is not None:
            d = st.derived
            events.append(
                Event(
                    key="lap_completed",
                    priority=Priority.LAP,
                    text=f"Lap {res.lap}: fuel {_fmt(res.fuel_used)} L, avg3 {_fmt(d.fuel_avg3)} L, "
                    f"range {_fmt(d.projected_laps)} laps.",
                    publish=True,
                    data={
                        "lap": res.lap,
                        "fuel_used": res.fuel_used,
                        "lap_time": res.lap_time,
                        "fuel_rejected": res.fuel_rejected,
                        "estimated": res.estimated,
                    },
                )
            )

        # 4) lo visible solo avanza en Live
        if st.gate == GateState.LIVE:
            st.displayed = copy.copy(st.derived)

        return events

    def ingest_session_info(self, raw: Any) -> list[Event]:
        meta = raw if isinstance(raw, SessionMeta) else normalize_session_info(raw)
        st = self.state
        events: list[Event] = []

        if meta.session_id is not None and st.session_id is not None and meta.session_id != st.session_id:
            log.info("Session changed %s -> %s; resetting local state", st.session_id, meta.session_id)
            self.reset_local()
            events.append(
                Event(
                    key="session_changed",
                    priority=Priority.BOUNDARY,
                    text=f"New session {meta.session_id}.",
                    publish=True,
                    data={"session_id": meta.session_id},
                )
            )
        if meta.session_id is not None:
            st.session_id = meta.session_id
        if meta.tank_capacity_l is not None and meta.tank_capacity_l != st.tank_capacity_l:
            log.info("Tank capacity %.1f L", meta.tank_capacity_l)
            st.tank_capacity_l = meta.tank_capacity_l
        if meta.drivers:
            self.roster = meta.drivers
        return events

    def reset_local(self) -> None:
        st = self.state
        st.replace_with(SessionState(tank_capacity_l=st.tank_capacity_l, session_id=st.session_id))

    def derived_record(self) -> dict[str, Any]:
        """Registro plano para UI: derived (congelado si el buffer lo está), stint y estado del gate."""
        st = self.state
        stint = st.stint
        shown = st.derived if st.gate == GateState.LIVE else st.displayed
        return {
            "derived": shown.as_dict(),
            "buffer": {
                "frozen": st.buffer_frozen,
                "gate": st.gate.value,
                "lap_entry_point": st.lap_entry_point,
            },
            "stint": {
                "number": stint.stint_number,
                "start_lap": stint.start_lap,
                "last_summary": stint.last_summary.as_dict() if stint.last_summary else None,
                "avg_pit_duration": stint.avg_pit_duration,
                "avg_stint_duration": stint.avg_stint_duration,
                "avg_stint_laps": stint.avg_stint_laps,
                "tire_wear": copy.deepcopy(stint.last_tire_wear_snapshot),
                "incidents": max(0, self.last_incident_count - st.incident_count_at_stint_start),
            },
            "fuel_level": st.fuel_level,
            "fuel_per_lap_last": st.last_fuel_used,
            "last_lap_completed": st.last_lap_completed,
            "histories": {
                "fuel": st.fuel_usage_history.to_list(),
                "lap_time": st.lap_time_history.to_list(),
            },
            "tank_capacity_l": st.tank_capacity_l or self.tuning.tank_capacity_l,
            "broadcaster": self.roster[0] if self.roster else None,
        }

    def format_one_line(self) -> str:
        st = self.state
        d = st.derived if st.gate == GateState.LIVE else st.displayed
        return (
            f"gate={st.gate.value} lap={st.last_lap_completed} fuel={st.fuel_level:.2f} "
            f"avg3={_fmt(d.fuel_avg3)} avg5={_fmt(d.fuel_avg5)} "
            f"lap3={_fmt(d.lap_avg3)} range={_fmt(d.projected_laps)}L/{_fmt(d.projected_time, 0)}s "
            f"stint={st.stint.stint_number}"
        )
