from __future__ import annotations

import logging
import time
from typing import Any, Callable, Iterable, Optional

from ingenierostint.engine.engine import TelemetryEngine
from ingenierostint.engine.events import Event
from ingenierostint.state.model import SessionState
from ingenierostint.sync.channel import Channel
from ingenierostint.sync.envelope import MessageType, RemoteStateEnvelope
from ingenierostint.sync.guard import ApplyGuard
from ingenierostint.sync.store import STATE_KEY, SnapshotStore, load_snapshot

log = logging.getLogger("ingenierostint.replicator")


def _inc(stats: Any, name: str) -> None:
    if stats is not None and hasattr(stats, name):
        setattr(stats, name, int(getattr(stats, name)) + 1)


class StateReplicator:
    """Convergencia eventual del SessionState entre instancias (último envelope aplicado gana).

    Publica periódicamente y tras eventos de borde; aplica envelopes ajenos bajo
    ApplyGuard para no re-publicar lo recibido.
    """

    def __init__(
        self,
        engine: TelemetryEngine,
        channel: Channel,
        store: SnapshotStore | None = None,
        *,
        instance_id: str,
        publish_interval_s: float = 5.0,
        save_interval_s: float = 5.0,
        apply_guard_s: float = 0.5,
        persistence_enabled: bool = True,
        retention_s: float = 8 * 60 * 60,
        stats: Any = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.engine = engine
        self.channel = channel
        self.store = store
        self.instance_id = instance_id
        self.publish_interval_s = max(0.1, float(publish_interval_s))
        self.save_interval_s = max(0.1, float(save_interval_s))
        self.persistence_enabled = bool(persistence_enabled)
        self.retention_s = float(retention_s)
        self.guard = ApplyGuard(hold_s=apply_guard_s)
        self.stats = stats
        self.clock = clock

        self.last_publish_at: float = -1e18
        self.last_save_at: float = -1e18

    def _now(self, now: Optional[float]) -> float:
        return self.clock() if now is None else float(now)

    # ------------------------------------------------------------------
    # salida
    # ------------------------------------------------------------------
    def publish(self, now: float | None = None, reason: str = "periodic") -> bool:
        t = self._now(now)
        if self.guard.active(t):
            _inc(self.stats, "publish_suppressed")
            log.debug("Publish (%s) suppressed: applying remote state", reason)
            return False

        self.last_publish_at = t
        env = RemoteStateEnvelope.state(self.instance_id, self.engine.state.to_payload(), sent_at=t)
        return self._send(env, reason)

    def notify(self, events: Iterable[Event], now: float | None = None) -> bool:
        """Push inmediato si algún evento lo pide (vuelta, entrada/salida de piloto)."""
        keys = [e.key for e in events if e.publish]
        if not keys:
            return False
        return self.publish(now, reason=",".join(keys))

    def save(self, now: float | None = None) -> bool:
        if self.store is None or not self.persistence_enabled:
            return False
        t = self._now(now)
        self.last_save_at = t
        try:
            self.store.set(STATE_KEY, self.engine.state.to_payload(), t)
        except Exception as e:
            _inc(self.stats, "save_failed")
            log.warning("Snapshot save failed (%s); retrying next tick", e)
            return False
        _inc(self.stats, "saves")
        return True

    def tick(self, now: float | None = None) -> None:
        t = self._now(now)
        if t - self.last_publish_at >= self.publish_interval_s:
            self.publish(t, reason="periodic")
        if self.persistence_enabled and t - self.last_save_at >= self.save_interval_s:
            self.save(t)

    def _send(self, env: RemoteStateEnvelope, reason: str) -> bool:
        try:
            self.channel.publish(env)
        except Exception as e:
            _inc(self.stats, "publish_failed")
            log.warning("Publish %s (%s) failed: %s; retrying next tick", env.type.value, reason, e)
            return False
        _inc(self.stats, "published")
        log.debug("Published %s (%s)", env.type.value, reason)
        return True

    # ------------------------------------------------------------------
    # entrada
    # ------------------------------------------------------------------
    def handle(self, env: RemoteStateEnvelope, now: float | None = None) -> bool:
        """Aplica un mensaje del canal de pares. True si cambió el estado local."""
        if env.origin == self.instance_id:
            return False
        t = self._now(now)

        if env.type == MessageType.STATE:
            return self.apply_remote(env, t)

        if env.type == MessageType.INITIAL_STATE:
            # el canal difunde a todos; la respuesta es solo para quien la pidió
            if env.target != self.instance_id:
                return False
            return self.apply_remote(env, t)

        if env.type == MessageType.RESET:
            log.info("Reset requested by %s", env.origin)
            self._reset_local()
            return True

        if env.type == MessageType.PERSISTENCE:
            self._set_persistence(bool(env.enabled))
            return False

        if env.type == MessageType.REQUEST_INITIAL_STATE:
            if self.persistence_enabled:
                payload = self.engine.state.to_payload()
            else:
                payload = SessionState().to_payload()
            reply = RemoteStateEnvelope.state(
                self.instance_id, payload, sent_at=t, initial=True, target=env.origin
            )
            self._send(reply, f"initial-state for {env.origin}")
            return False

        return False

    def apply_remote(self, env: RemoteStateEnvelope, now: float | None = None) -> bool:
        t = self._now(now)
        self.guard.enter(t)
        try:
            new_state = SessionState.from_payload(env.payload, base=self.engine.state)
        except (TypeError, ValueError, KeyError, OverflowError) as e:
            self.guard.release()
            log.warning("Dropping malformed %s from %s: %s", env.type.value, env.origin, e)
            return False

        self.engine.state.replace_with(new_state)
        _inc(self.stats, "remote_applied")
        log.debug("Applied %s from %s (lap=%s)", env.type.value, env.origin, new_state.last_lap_completed)
        return True

    # ------------------------------------------------------------------
    # control
    # ------------------------------------------------------------------
    def restore(self, now: float | None = None) -> bool:
        """Carga el snapshot persistido si existe, es válido y no venció."""
        if self.store is None or not self.persistence_enabled:
            return False
        t = self._now(now)
        data = load_snapshot(self.store, STATE_KEY, self.retention_s, t)
        if data is None:
            return False
        try:
            restored = SessionState.from_payload(data, base=self.engine.state)
        except (TypeError, ValueError, KeyError, OverflowError) as e:
            log.warning("Persisted snapshot unreadable (%s); starting empty", e)
            self._delete_snapshot()
            return False
        self.engine.state.replace_with(restored)
        log.info("Restored state from snapshot (lap=%s)", restored.last_lap_completed)
        return True

    def request_initial_state(self, now: float | None = None) -> bool:
        env = RemoteStateEnvelope.control(MessageType.REQUEST_INITIAL_STATE, self.instance_id, self._now(now))
        return self._send(env, "startup")

    def reset_all(self, now: float | None = None) -> None:
        """Reset del operador: siempre local; el broadcast es best-effort."""
        self._reset_local()
        env = RemoteStateEnvelope.control(MessageType.RESET, self.instance_id, self._now(now))
        self._send(env, "operator reset")

    def set_persistence(self, enabled: bool, now: float | None = None) -> None:
        self._set_persistence(enabled)
        env = RemoteStateEnvelope.control(
            MessageType.PERSISTENCE, self.instance_id, self._now(now), enabled=bool(enabled)
        )
        self._send(env, "persistence toggle")

    def shutdown(self, now: float | None = None) -> None:
        # best-effort: ni el publish ni el save están garantizados
        t = self._now(now)
        self.guard.release()
        self.publish(t, reason="shutdown")
        self.save(t)

    def _set_persistence(self, enabled: bool) -> None:
        if enabled == self.persistence_enabled:
            return
        self.persistence_enabled = enabled
        log.info("Persistence %s", "enabled" if enabled else "disabled")
        if not enabled:
            self._delete_snapshot()

    def _reset_local(self) -> None:
        self.engine.reset_local()
        self.guard.release()
        self._delete_snapshot()

    def _delete_snapshot(self) -> None:
        if self.store is None:
            return
        try:
            self.store.delete(STATE_KEY)
        except Exception as e:
            log.warning("Snapshot delete failed: %s", e)
