"""Beacon host: a client host fed by entries the browser posts to the server.

A page sends its performance entries and heap figures as JSON beacons.
The host dispatches the entries to whoever observes them, so a
:class:`~perfwatch.core.client.ClientMetricsCollector` can run server-side
against a real page.

Beacon payload::

    {
        "entries": [
            {"entryType": "layout-shift", "startTime": 812.4,
             "value": 0.02, "hadRecentInput": false}
        ],
        "memory": {"usedJSHeapSize": 21000000, "totalJSHeapSize": 42000000}
    }
"""

import logging
import math
import threading
from collections import defaultdict
from collections.abc import Callable, Mapping
from typing import Any

from perfwatch.core.logs import log_exception
from perfwatch.core.models import HeapInfo, PerformanceEntry

logger = logging.getLogger(__name__)

EntryCallback = Callable[[list[PerformanceEntry]], None]

_FIELD_ALIASES = {
    "entry_type": ("entryType", "entry_type"),
    "start_time": ("startTime", "start_time"),
    "value": ("value",),
    "processing_start": ("processingStart", "processing_start"),
    "had_recent_input": ("hadRecentInput", "had_recent_input"),
}


class BeaconError(ValueError):
    """Raised for a beacon payload that is not a JSON object."""


class _Registration:
    def __init__(self, source: "BeaconEntrySource", entry_type: str, callback: EntryCallback) -> None:
        self._source = source
        self._entry_type = entry_type
        self._callback = callback
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._source._remove(self._entry_type, self._callback)


class BeaconEntrySource:
    """Dispatches performance entries to observers by entry type."""

    def __init__(self) -> None:
        self._observers: dict[str, list[EntryCallback]] = defaultdict(list)
        self._lock = threading.Lock()

    def observe(self, entry_type: str, callback: EntryCallback) -> _Registration:
        with self._lock:
            self._observers[entry_type].append(callback)
        return _Registration(self, entry_type, callback)

    def _remove(self, entry_type: str, callback: EntryCallback) -> None:
        with self._lock:
            callbacks = self._observers.get(entry_type, [])
            if callback in callbacks:
                callbacks.remove(callback)

    def observer_count(self, entry_type: str | None = None) -> int:
        with self._lock:
            if entry_type is not None:
                return len(self._observers.get(entry_type, []))
            return sum(len(c) for c in self._observers.values())

    def dispatch(self, entries: list[PerformanceEntry]) -> int:
        """Deliver entries grouped by type. Observer faults are logged.

        Returns:
            Number of observer invocations.
        """
        grouped: dict[str, list[PerformanceEntry]] = defaultdict(list)
        for entry in entries:
            grouped[entry.entry_type].append(entry)
        delivered = 0
        for entry_type, batch in grouped.items():
            with self._lock:
                callbacks = list(self._observers.get(entry_type, []))
            for callback in callbacks:
                try:
                    callback(batch)
                    delivered += 1
                except Exception:
                    log_exception("Performance entry observer failed", entry_type=entry_type)
        return delivered


class BeaconMemoryProbe:
    """Returns the most recent heap figures reported by the page."""

    def __init__(self) -> None:
        self.latest: HeapInfo | None = None

    def read(self) -> HeapInfo | None:
        return self.latest


def _field(raw: Mapping[str, Any], name: str) -> Any:
    for alias in _FIELD_ALIASES[name]:
        if alias in raw:
            return raw[alias]
    return None


def _number(value: Any, default: float = 0.0) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    if math.isnan(value) or math.isinf(value):
        return default
    return float(value)


def parse_entry(raw: Any) -> PerformanceEntry | None:
    """Convert one beacon entry to a PerformanceEntry, or None if malformed."""
    if not isinstance(raw, Mapping):
        return None
    entry_type = _field(raw, "entry_type")
    if not isinstance(entry_type, str) or not entry_type:
        return None
    return PerformanceEntry(
        entry_type=entry_type,
        start_time=_number(_field(raw, "start_time")),
        value=_number(_field(raw, "value")),
        processing_start=_number(_field(raw, "processing_start")),
        had_recent_input=_field(raw, "had_recent_input") is True,
    )


def parse_heap(raw: Any) -> HeapInfo | None:
    """Convert beacon memory figures to HeapInfo, or None if malformed."""
    if not isinstance(raw, Mapping):
        return None
    used = _number(raw.get("usedJSHeapSize", raw.get("used")), -1)
    total = _number(raw.get("totalJSHeapSize", raw.get("total")), -1)
    if used < 0 or total <= 0:
        return None
    return HeapInfo(used_bytes=int(used), total_bytes=int(total))


class BeaconHost:
    """Client host whose capabilities are whatever the page reports.

    Args:
        supports_memory: Whether the page exposes heap figures.
        supports_entries: Whether the page exposes performance entries.
    """

    def __init__(self, supports_memory: bool = True, supports_entries: bool = True) -> None:
        self._entries = BeaconEntrySource() if supports_entries else None
        self._memory = BeaconMemoryProbe() if supports_memory else None

    def memory_probe(self) -> BeaconMemoryProbe | None:
        return self._memory

    def entry_source(self) -> BeaconEntrySource | None:
        return self._entries

    def ingest(self, payload: Any) -> dict[str, int]:
        """Accept a beacon. Malformed entries are skipped.

        Raises:
            BeaconError: If the payload is not a JSON object.

        Returns:
            Counts of accepted entries and memory readings.
        """
        if not isinstance(payload, Mapping):
            raise BeaconError("beacon payload must be a JSON object")
        raw_entries = payload.get("entries") or []
        if not isinstance(raw_entries, list):
            raw_entries = []
        entries = [e for e in (parse_entry(raw) for raw in raw_entries) if e is not None]
        skipped = len(raw_entries) - len(entries)
        if skipped:
            logger.debug("Skipped %d malformed performance entries", skipped)
        if entries and self._entries is not None:
            self._entries.dispatch(entries)
        heap = parse_heap(payload.get("memory"))
        if heap is not None and self._memory is not None:
            self._memory.latest = heap
        return {"entries": len(entries), "memory": int(heap is not None)}
