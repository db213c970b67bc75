from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from ingenierostint.engine.events import Event


@dataclass(slots=True)
class LoggerComms:
    """Canal de salida de métricas derivadas: eventos a INFO, registro completo a DEBUG."""

    logger_name: str = "ingenierostint.derived"
    last_record: dict[str, Any] = field(default_factory=dict)
    emitted: int = 0

    def emit(self, ev: Event) -> None:
        log = logging.getLogger(self.logger_name)
        log.info("[%s] %s", ev.priority.name, ev.text)
        self.emitted += 1

    def publish_record(self, record: dict[str, Any]) -> None:
        self.last_record = record
        log = logging.getLogger(self.logger_name)
        if log.isEnabledFor(logging.DEBUG):
            log.debug("record %s", json.dumps(record, separators=(",", ":"), default=str))
