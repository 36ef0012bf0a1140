"""Monitor configuration."""

import math
import os
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from typing import Any


class ConfigError(ValueError):
    """Raised for an invalid configuration value."""


# camelCase option names accepted by from_mapping
_ALIASES = {
    "slowQueryThresholdMs": "slow_query_threshold_ms",
    "slowRequestThresholdMs": "slow_request_threshold_ms",
    "memoryAlertRatio": "memory_alert_ratio",
    "alertCooldownMs": "alert_cooldown_ms",
    "metricsRetentionMs": "metrics_retention_ms",
    "slowRenderThresholdMs": "slow_render_threshold_ms",
    "slowRenderThreshold": "slow_render_threshold_ms",
    "slowInteractionThresholdMs": "slow_interaction_threshold_ms",
    "slowInteractionThreshold": "slow_interaction_threshold_ms",
    "largePayloadBytes": "large_payload_bytes",
    "largePayloadThreshold": "large_payload_bytes",
    "memorySampleIntervalMs": "memory_sample_interval_ms",
    "cleanupIntervalMs": "cleanup_interval_ms",
}


@dataclass(frozen=True)
class PerformanceConfig:
    """Thresholds and intervals used by the collectors and alert engine.

    Attributes:
        slow_query_threshold_ms: Queries slower than this are slow.
        slow_request_threshold_ms: Requests slower than this are slow.
        memory_alert_ratio: Heap usage ratio above which high_memory fires.
        alert_cooldown_ms: Minimum gap between alerts of the same type and key.
        metrics_retention_ms: Maximum age of retained samples and alerts.
        slow_render_threshold_ms: Renders slower than this are slow (one frame).
        slow_interaction_threshold_ms: Interaction delays above this are slow.
        large_payload_bytes: Network responses larger than this are large.
        memory_sample_interval_ms: Period of memory sampling.
        cleanup_interval_ms: Period of the retention sweep.
        request_capacity: Retained request samples.
        query_capacity: Retained query samples.
        client_capacity: Retained samples per client series.
        memory_capacity: Retained memory samples.
    """

    slow_query_threshold_ms: float = 1000
    slow_request_threshold_ms: float = 2000
    memory_alert_ratio: float = 0.9
    alert_cooldown_ms: float = 300_000
    metrics_retention_ms: float = 86_400_000
    slow_render_threshold_ms: float = 16
    slow_interaction_threshold_ms: float = 100
    large_payload_bytes: int = 1_048_576
    memory_sample_interval_ms: float = 30_000
    cleanup_interval_ms: float = 3_600_000
    request_capacity: int = 1000
    query_capacity: int = 500
    client_capacity: int = 100
    memory_capacity: int = 100

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigError(f"{f.name} must be a number, got {value!r}")
            if math.isnan(value) or math.isinf(value) or value < 0:
                raise ConfigError(f"{f.name} must be a finite non-negative number")
        if not 0 < self.memory_alert_ratio <= 1:
            raise ConfigError("memory_alert_ratio must be in (0, 1]")
        for name in ("memory_sample_interval_ms", "cleanup_interval_ms"):
            if getattr(self, name) == 0:
                raise ConfigError(f"{name} must be positive")
        for name in (
            "request_capacity",
            "query_capacity",
            "client_capacity",
            "memory_capacity",
        ):
            value = getattr(self, name)
            if value < 1 or int(value) != value:
                raise ConfigError(f"{name} must be a positive integer")

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> "PerformanceConfig":
        """Build a config from snake_case or camelCase option names.

        Raises:
            ConfigError: For unknown options or invalid values.
        """
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in options.items():
            name = _ALIASES.get(key, key)
            if name not in known:
                raise ConfigError(f"Unknown option: {key}")
            kwargs[name] = value
        return cls(**kwargs)

    @classmethod
    def from_env(
        cls,
        prefix: str = "PERFWATCH_",
        environ: Mapping[str, str] | None = None,
    ) -> "PerformanceConfig":
        """Build a config from environment variables.

        ``PERFWATCH_SLOW_QUERY_THRESHOLD_MS=500`` sets
        ``slow_query_threshold_ms``. Unset options keep their defaults.
        """
        env = os.environ if environ is None else environ
        kwargs: dict[str, Any] = {}
        for f in fields(cls):
            raw = env.get(prefix + f.name.upper())
            if raw is None:
                continue
            try:
                kwargs[f.name] = int(raw) if f.type in (int, "int") else float(raw)
            except ValueError as e:
                raise ConfigError(f"{prefix}{f.name.upper()}={raw!r} is not a number") from e
        return cls(**kwargs)

    def with_overrides(self, **overrides: Any) -> "PerformanceConfig":
        return replace(self, **overrides)
