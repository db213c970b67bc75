from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from ingenierostint.core.config import AppConfig
from ingenierostint.core.logging_setup import setup_logging


@dataclass(slots=True)
class RestartPolicy:
    """Backoff exponencial con techo.

    Una corrida que duró `healthy_after_s` o más vuelve la espera al mínimo.
    """

    initial_s: float = 0.5
    max_s: float = 10.0
    healthy_after_s: float = 60.0
    max_restarts: int | None = None  # None = sin límite
    restarts: int = 0
    next_wait_s: float = field(default=0.0, init=False)

    def __post_init__(self) -> None:
        self.next_wait_s = self.initial_s

    def after_crash(self, uptime_s: float) -> float | None:
        """Espera antes del próximo intento; None si ya no quedan reinicios."""
        if uptime_s >= self.healthy_after_s:
            self.next_wait_s = self.initial_s
        if self.max_restarts is not None and self.restarts >= self.max_restarts:
            return None
        self.restarts += 1
        wait = self.next_wait_s
        self.next_wait_s = min(wait * 2, self.max_s)
        return wait


def run_with_supervisor(
    cfg: AppConfig,
    runner: Callable[[AppConfig], Awaitable[None]],
    *,
    policy: RestartPolicy | None = None,
) -> int:
    setup_logging(cfg)
    log = logging.getLogger("ingenierostint.supervisor")
    policy = policy if policy is not None else RestartPolicy()

    while True:
        started = time.monotonic()
        log.info("Launching engine (supervised) instance=%s restarts=%s", cfg.instance_id, policy.restarts)
        try:
            asyncio.run(runner(cfg))
        except KeyboardInterrupt:
            log.info("Interrupted by user")
            return 0
        except Exception:
            uptime = time.monotonic() - started
            wait = policy.after_crash(uptime)
            if wait is None:
                log.exception("Crashed after %.1fs; giving up (restarts=%s)", uptime, policy.restarts)
                return 1
            log.exception("Crashed after %.1fs; restarting in %.1fs", uptime, wait)
            try:
                time.sleep(wait)
            except KeyboardInterrupt:
                log.info("Interrupted by user while waiting to restart")
                return 0
            continue

        log.info("Exited normally after %.1fs", time.monotonic() - started)
        return 0
