"""Composite health score."""

import math

from perfwatch.core.models import ServerAggregates

RATE_CAP = 0.1
ERROR_RATE_WEIGHT = 500
SLOW_REQUEST_WEIGHT = 300
SLOW_QUERY_WEIGHT = 200
MEMORY_FLOOR = 0.8
MEMORY_WEIGHT = 100


def health_score(aggregates: ServerAggregates) -> int:
    """Reduce server aggregates to a score in [0, 100].

    Starting from 100, subtracts:

    - up to 50 points for the error rate (linear, capped at 10%)
    - up to 30 points for the slow request rate (linear, capped at 10%)
    - up to 20 points for the slow query rate (linear, capped at 10%)
    - up to 20 points for memory usage above 80% (linear to 100%)

    The result is rounded half up and clamped.
    """
    score = 100.0
    score -= min(aggregates.error_rate, RATE_CAP) * ERROR_RATE_WEIGHT
    score -= min(aggregates.slow_request_rate, RATE_CAP) * SLOW_REQUEST_WEIGHT
    score -= min(aggregates.slow_query_rate, RATE_CAP) * SLOW_QUERY_WEIGHT
    ratio = aggregates.memory_ratio
    if ratio is not None and ratio > MEMORY_FLOOR:
        score -= (min(ratio, 1.0) - MEMORY_FLOOR) * MEMORY_WEIGHT
    return max(0, min(100, math.floor(score + 0.5)))
