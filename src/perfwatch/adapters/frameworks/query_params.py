"""Shared query parameter parsing utilities for framework adapters.

This module provides utilities for parsing and validating the query
parameters accepted by the report endpoint (ASGI and FastAPI adapters).
"""

MAX_LIMIT = 100


def _parse_limit_param(
    params: dict[str, list[str]], name: str, maximum: int = MAX_LIMIT
) -> int | None:
    """Parse and validate an integer limit query parameter.

    Args:
        params: Parsed query string parameters (as returned by urllib.parse.parse_qs).
        name: Parameter name, e.g. "top" or "alerts".
        maximum: Largest accepted value; larger values are capped.

    Returns:
        The limit, or None if missing or invalid so the default applies.
        Rejects negative and non-integer values.
    """
    values = params.get(name)
    if not values:
        return None
    try:
        value = int(values[0])
    except ValueError:
        return None
    if value < 0:
        return None
    return min(value, maximum)
