from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ingenierostint.state.model import GateState, SessionState
from ingenierostint.telemetry.sample import Sample

log = logging.getLogger("ingenierostint.gate")


class GateTransition(str, Enum):
    NONE = "none"
    ENTRY = "entry"   # NoDriver -> Settling
    LIVE = "live"     # Settling -> Live
    LAP = "lap"       # Live -> Live (vuelta nueva, snapshot actualizado)
    EXIT = "exit"     # Settling/Live -> NoDriver


@dataclass(slots=True)
class GateStep:
    transition: GateTransition
    # solo en EXIT: datos previos al cierre, para el detector de ocupación
    entry_point: Optional[int] = None
    gated: Optional[Sample] = None


@dataclass(slots=True)
class BufferGate:
    """Congela lo visible tras la entrada de un piloto hasta completar `settle_laps` vueltas."""

    settle_laps: int = 2

    def step(self, st: SessionState, s: Sample) -> GateStep:
        was_on_track = st.gate != GateState.NO_DRIVER

        if was_on_track and not s.on_track:
            step = GateStep(GateTransition.EXIT, entry_point=st.lap_entry_point, gated=st.gated)
            st.gate = GateState.NO_DRIVER
            st.buffer_frozen = True
            st.lap_entry_point = None
            st.last_observed_lap = None
            log.info("Driver exit (entry_lap=%s lap=%s)", step.entry_point, s.lap_completed)
            return step

        if not s.on_track:
            return GateStep(GateTransition.NONE)

        if not was_on_track:
            st.gate = GateState.SETTLING
            st.buffer_frozen = True
            st.lap_entry_point = s.lap_completed if s.lap_valid else None
            st.last_observed_lap = None
            st.gated = None
            log.info("Driver entry at lap %s; buffer frozen", st.lap_entry_point)
            return GateStep(GateTransition.ENTRY)

        if not s.lap_valid:
            return GateStep(GateTransition.NONE)

        if st.gate == GateState.SETTLING:
            # entrada con vuelta inválida: el primer valor válido fija el punto de entrada
            if st.lap_entry_point is None:
                st.lap_entry_point = s.lap_completed
            if s.lap_completed >= st.lap_entry_point + self.settle_laps:
                st.gate = GateState.LIVE
                st.buffer_frozen = False
                st.gated = s
                st.last_observed_lap = s.lap_completed
                log.info("Buffer live at lap %s (entry_lap=%s)", s.lap_completed, st.lap_entry_point)
                return GateStep(GateTransition.LIVE)
            return GateStep(GateTransition.NONE)

        if st.last_observed_lap is None or s.lap_completed > st.last_observed_lap:
            st.gated = s
            st.last_observed_lap = s.lap_completed
            return GateStep(GateTransition.LAP)

        return GateStep(GateTransition.NONE)
