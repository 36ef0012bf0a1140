"""Internal logging helpers.

Nothing in perfwatch is user-facing, so every fault is reported here
through the standard library ``logging`` module under the ``perfwatch``
logger hierarchy.
"""

import logging
import time
from collections.abc import Generator
from contextlib import contextmanager

logger = logging.getLogger("perfwatch")


def log_exception(
    message: str,
    /,
    level: int = logging.ERROR,
    **attributes: str | int | float | bool | None,
) -> None:
    """Log the exception currently being handled with structured fields.

    Must be called from inside an ``except`` block.

    Args:
        message: The log message.
        level: Logging level (default ERROR).
        **attributes: Extra fields attached to the LogRecord.
    """
    logger.log(level, message, exc_info=True, extra=_prefixed(attributes))


def log_event(
    level: int,
    message: str,
    /,
    **attributes: str | int | float | bool | None,
) -> None:
    """Log a message with structured fields attached to the LogRecord.

    Args:
        level: Logging level.
        message: The log message.
        **attributes: Extra fields attached to the LogRecord.
    """
    logger.log(level, message, extra=_prefixed(attributes))


def _prefixed(
    attributes: dict[str, str | int | float | bool | None],
) -> dict[str, str | int | float | bool | None]:
    # LogRecord rejects extras that collide with its own attributes
    return {f"perf_{key}": value for key, value in attributes.items()}


@contextmanager
def timed(
    message: str,
    /,
    level: int = logging.DEBUG,
    **attributes: str | int | float | bool | None,
) -> Generator[None]:
    """Context manager that logs the elapsed time of a block on exit.

    Args:
        message: The base log message.
        level: Logging level (default DEBUG).
        **attributes: Extra fields attached to the LogRecord.
    """
    start = time.perf_counter()
    yield
    elapsed_ms = (time.perf_counter() - start) * 1000.0
    log_event(level, f"{message} [{elapsed_ms:.1f}ms]", elapsed_ms=elapsed_ms, **attributes)
