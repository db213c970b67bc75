from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

log = logging.getLogger("ingenierostint.replicator")


class GuardState(str, Enum):
    IDLE = "idle"
    APPLYING_REMOTE = "applying_remote"


@dataclass(slots=True)
class ApplyGuard:
    """Ventana anti-eco: Idle -> ApplyingRemote -> Idle, con timeout acotado.

    Mientras está activa, los cambios locales vienen de aplicar un envelope ajeno
    y no se re-publican.
    """

    hold_s: float = 0.5
    state: GuardState = GuardState.IDLE
    until: Optional[float] = None
    entered: int = 0

    def enter(self, now: float) -> None:
        self.state = GuardState.APPLYING_REMOTE
        self.until = now + max(0.0, float(self.hold_s))
        self.entered += 1

    def active(self, now: float) -> bool:
        if self.state == GuardState.IDLE:
            return False
        if self.until is not None and now >= self.until:
            self.release()
            return False
        return True

    def release(self) -> None:
        if self.state != GuardState.IDLE:
            log.debug("Apply guard released")
        self.state = GuardState.IDLE
        self.until = None
