"""Process memory probe backed by psutil."""

import logging

import psutil

from perfwatch.core.logs import log_exception
from perfwatch.core.models import HeapInfo

logger = logging.getLogger(__name__)


class ProcessMemoryProbe:
    """Reports the resident set size of a process against system memory.

    Args:
        pid: Process to observe (default: the current process).
    """

    def __init__(self, pid: int | None = None) -> None:
        self._process = psutil.Process(pid)

    def read(self) -> HeapInfo | None:
        try:
            used = self._process.memory_info().rss
            total = psutil.virtual_memory().total
        except psutil.Error:
            log_exception("Failed to read process memory", level=logging.WARNING)
            return None
        return HeapInfo(used_bytes=used, total_bytes=total)


def probe_process_memory(pid: int | None = None) -> ProcessMemoryProbe | None:
    """Return a memory probe for the process, or None when unsupported."""
    try:
        probe = ProcessMemoryProbe(pid)
        if probe.read() is None:
            return None
    except (psutil.Error, NotImplementedError, OSError):
        log_exception("Process memory API unavailable", level=logging.INFO)
        return None
    return probe
