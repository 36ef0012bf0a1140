"""Threshold alerts with cooldown-based suppression."""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from perfwatch.core.clock import SystemClock
from perfwatch.core.logs import log_event, log_exception
from perfwatch.core.models import Alert, AlertType
from perfwatch.core.ports import ClockPort
from perfwatch.core.retention import TimeWindowBuffer

DEFAULT_COOLDOWN_MS = 300_000
DEFAULT_RETENTION_MS = 86_400_000
RECENT_ALERT_LIMIT = 20

AlertListener = Callable[[Alert], None]


@dataclass(frozen=True)
class AlertObservation:
    """A threshold breach reported by a collector.

    Attributes:
        type: Alert kind.
        message: Human readable summary.
        payload: Value, threshold and source of the breach.
        key: Optional discriminator; cooldowns are tracked per (type, key).
    """

    type: AlertType
    message: str
    payload: dict[str, Any] = field(default_factory=dict)
    key: str | None = None


class AlertEngine:
    """Turns observations into alerts, suppressing repeats within a cooldown.

    An observation becomes an alert when no alert of the same
    ``(type, key)`` was emitted before, or the last one is older than
    ``cooldown_ms``. Suppressed observations are dropped silently.
    Emitted alerts are kept for ``retention_ms``.

    Args:
        cooldown_ms: Minimum gap between alerts of the same type and key.
        retention_ms: How long emitted alerts are retained.
        clock: Source of time (default: system clock).
    """

    def __init__(
        self,
        cooldown_ms: float = DEFAULT_COOLDOWN_MS,
        retention_ms: float = DEFAULT_RETENTION_MS,
        clock: ClockPort | None = None,
    ) -> None:
        self.cooldown_ms = cooldown_ms
        self._clock = clock or SystemClock()
        self._last_emitted: dict[tuple[AlertType, str | None], float] = {}
        self._store: TimeWindowBuffer[Alert] = TimeWindowBuffer(
            retention_ms, self._clock, key=lambda alert: alert.timestamp
        )
        self._listeners: list[AlertListener] = []
        self._lock = threading.Lock()

    def evaluate(self, observation: AlertObservation) -> Alert | None:
        """Emit an alert for the observation unless it is cooling down.

        Returns:
            The emitted Alert, or None when suppressed.
        """
        now = self._clock.now()
        tracker_key = (observation.type, observation.key)
        with self._lock:
            last = self._last_emitted.get(tracker_key)
            if last is not None and now - last <= self.cooldown_ms:
                return None
            self._last_emitted[tracker_key] = now
        alert = Alert(
            type=observation.type,
            message=observation.message,
            timestamp=now,
            payload=dict(observation.payload),
        )
        self._store.push(alert)
        log_event(
            logging.WARNING,
            f"Performance alert: {alert.type.value}: {alert.message}",
            alert_type=alert.type.value,
            alert_key=observation.key,
        )
        self._notify(alert)
        return alert

    def _notify(self, alert: Alert) -> None:
        for listener in list(self._listeners):
            try:
                listener(alert)
            except Exception:
                log_exception("Alert listener failed", alert_type=alert.type.value)

    def add_listener(self, listener: AlertListener) -> Callable[[], None]:
        """Register a callback invoked with every emitted alert.

        Returns:
            A callable that removes the listener. Calling it twice is harmless.
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def alerts(self) -> tuple[Alert, ...]:
        """All retained alerts, oldest first."""
        return self._store.snapshot()

    def recent(self, limit: int = RECENT_ALERT_LIMIT) -> list[Alert]:
        """Retained alerts, newest first."""
        return list(reversed(self._store.snapshot()))[:limit]

    def sweep(self, now: float | None = None) -> int:
        """Drop expired alerts and cooldown entries."""
        reference = self._clock.now() if now is None else now
        removed = self._store.sweep(reference)
        # A cooldown can outlive the alert that started it
        cutoff = reference - max(self.cooldown_ms, self._store.retention_ms)
        with self._lock:
            for key in [k for k, ts in self._last_emitted.items() if ts <= cutoff]:
                del self._last_emitted[key]
        return removed

    def reset(self) -> None:
        with self._lock:
            self._last_emitted.clear()
        self._store.clear()
