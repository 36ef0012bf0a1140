"""Capability probing for host environments.

A missing capability disables the feature that needs it; the rest of the
monitor keeps working. Probes never raise.
"""

import logging

from perfwatch.core.logs import log_exception
from perfwatch.core.ports import EntrySourcePort, HostEnvironmentPort, MemoryProbePort

logger = logging.getLogger(__name__)


def probe_memory(host: HostEnvironmentPort | None) -> MemoryProbePort | None:
    """Return the host's memory probe, or None when unsupported."""
    if host is None:
        return None
    try:
        probe = host.memory_probe()
    except Exception:
        log_exception("Memory capability probe failed", level=logging.WARNING)
        return None
    if probe is None:
        logger.info("Memory API unavailable; memory monitoring disabled")
    return probe


def probe_entry_source(host: HostEnvironmentPort | None) -> EntrySourcePort | None:
    """Return the host's performance-entry source, or None when unsupported."""
    if host is None:
        return None
    try:
        source = host.entry_source()
    except Exception:
        log_exception("Performance entry capability probe failed", level=logging.WARNING)
        return None
    if source is None:
        logger.info("Performance entries unavailable; web vitals disabled")
    return source


def read_memory_ratio(probe: MemoryProbePort | None) -> float | None:
    """Read the current usage ratio clamped to [0, 1], or None."""
    if probe is None:
        return None
    try:
        info = probe.read()
    except Exception:
        log_exception("Memory probe read failed", level=logging.WARNING)
        return None
    if info is None or info.total_bytes <= 0:
        return None
    return min(1.0, max(0.0, info.ratio))
