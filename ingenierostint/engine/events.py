from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, Optional

from ingenierostint.state.model import StintSummary


class Priority(IntEnum):
    BOUNDARY = 80     # entrada/salida de piloto, fin de stint
    LAP = 60
    PIT = 40
    STATUS = 20


@dataclass(slots=True)
class Event:
    key: str
    priority: Priority
    text: str
    publish: bool = False  # dispara push de replicación
    data: Dict[str, Any] = field(default_factory=dict)


class BoundarySource(str, Enum):
    PIT_ROAD = "pit_road"
    TRACK_OCCUPANCY = "track_occupancy"


@dataclass(slots=True)
class StintBoundaryEvent:
    source: BoundarySource
    summary: StintSummary
    # duración de la parada (solo pit-road); None si no aplica
    pit_duration_s: Optional[float] = None
