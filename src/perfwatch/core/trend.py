"""Trend detection over memory usage samples.

Compares the mean of the most recent window with the mean of the window
right before it. Two adjacent fixed-size windows are the whole heuristic;
one-time allocations such as a cache warm-up can still look like growth.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from perfwatch.core.models import MemorySample


class TrendVerdict(str, Enum):
    DRIFT = "drift"
    STABLE = "stable"
    INSUFFICIENT_DATA = "insufficient_data"


@dataclass(frozen=True)
class TrendResult:
    """Outcome of a drift check.

    Attributes:
        verdict: Whether drift was detected.
        recent_mean: Mean of the newest window (None without enough data).
        older_mean: Mean of the preceding window (None without enough data).
    """

    verdict: TrendVerdict
    recent_mean: float | None = None
    older_mean: float | None = None

    @property
    def drifting(self) -> bool:
        return self.verdict is TrendVerdict.DRIFT


def _ratios(samples: Sequence[MemorySample] | Sequence[float]) -> list[float]:
    return [s.used_ratio if isinstance(s, MemorySample) else float(s) for s in samples]


def _window_means(values: list[float], window_size: int) -> tuple[float, float]:
    recent = values[-window_size:]
    older = values[-2 * window_size : -window_size]
    return sum(recent) / window_size, sum(older) / window_size


class TrendDetector:
    """Flags upward drift of a usage ratio.

    Drift is signalled when ``recent_mean - older_mean > delta_threshold``
    and ``recent_mean > absolute_threshold``. At least ``2 * window_size``
    samples are required for a verdict.

    Args:
        window_size: Samples per window.
        delta_threshold: Minimum growth between the windows.
        absolute_threshold: Minimum level of the recent window.
    """

    def __init__(
        self,
        window_size: int = 10,
        delta_threshold: float = 0.1,
        absolute_threshold: float = 0.8,
    ) -> None:
        if window_size < 1:
            raise ValueError("window_size must be at least 1")
        self.window_size = window_size
        self.delta_threshold = delta_threshold
        self.absolute_threshold = absolute_threshold

    def evaluate(self, samples: Sequence[MemorySample] | Sequence[float]) -> TrendResult:
        values = _ratios(samples)
        if len(values) < 2 * self.window_size:
            return TrendResult(TrendVerdict.INSUFFICIENT_DATA)
        recent_mean, older_mean = _window_means(values, self.window_size)
        if (
            recent_mean - older_mean > self.delta_threshold
            and recent_mean > self.absolute_threshold
        ):
            verdict = TrendVerdict.DRIFT
        else:
            verdict = TrendVerdict.STABLE
        return TrendResult(verdict, recent_mean, older_mean)


def detect_drift(
    samples: Sequence[MemorySample] | Sequence[float],
    window_size: int = 10,
    delta_threshold: float = 0.1,
    absolute_threshold: float = 0.8,
) -> TrendVerdict:
    """Functional form of :meth:`TrendDetector.evaluate`."""
    detector = TrendDetector(window_size, delta_threshold, absolute_threshold)
    return detector.evaluate(samples).verdict


def memory_direction(
    samples: Sequence[MemorySample] | Sequence[float],
    window_size: int = 5,
    tolerance: float = 0.05,
) -> str:
    """Describe the direction of recent memory usage.

    Returns:
        "increasing", "decreasing" or "stable". Fewer than
        ``2 * window_size`` samples is reported as "stable".
    """
    values = _ratios(samples)
    if len(values) < 2 * window_size:
        return "stable"
    recent_mean, older_mean = _window_means(values, window_size)
    diff = recent_mean - older_mean
    if diff > tolerance:
        return "increasing"
    if diff < -tolerance:
        return "decreasing"
    return "stable"
