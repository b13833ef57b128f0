"""
Abstract base classes for the traffic stores.

A backend pairs a DetailStore (per-event records, capped and time ordered)
with a CounterStore (per-second counters per tracked endpoint). Concrete
backends are chosen once at startup, see ``services.factory``.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Sequence

from traffic_monitor.models.data_models import CounterBucket, TrafficEvent, TrafficQuery

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base exception for storage backend errors."""

    pass


class StorageConnectionError(StorageError):
    """Raised when connection to storage backend fails."""

    pass


def select_page(
    matched: Sequence[TrafficEvent], limit: int, oldest_first: bool = False
) -> List[TrafficEvent]:
    """
    Pick at most ``limit`` events from ``matched`` (ascending by timestamp)
    and return them newest first.

    With ``oldest_first`` the page starts at the oldest match, and events that
    share the last selected millisecond are kept on the same page so a cursor
    built from the page never splits a millisecond.
    """
    if limit <= 0 or not matched:
        return []

    if oldest_first:
        page = list(matched[:limit])
        boundary = page[-1].timestamp_ms
        for event in matched[limit:]:
            if event.timestamp_ms != boundary:
                break
            page.append(event)
    else:
        page = list(matched[-limit:])

    page.reverse()
    return page


class DetailStore(ABC):
    """
    Capped, time-ordered store of TrafficEvent records.

    Subclasses provide ``append``, ``scan`` and ``count``; filtering,
    limiting and ordering are shared.
    """

    def __init__(self, max_logs: int = 1000, trim_slack: int = 0):
        self.max_logs = max_logs
        self.trim_slack = trim_slack

    @abstractmethod
    def append(self, event: TrafficEvent) -> str:
        """
        Store one event and return its id. Eviction failures are logged,
        never raised.

        Raises:
            StorageError: If the record could not be written.
        """
        pass

    @abstractmethod
    def scan(self, since_ms: Optional[int] = None) -> List[TrafficEvent]:
        """
        Return retained events with timestamp > since_ms, oldest first.
        Expired and malformed records are skipped.

        Raises:
            StorageError: If the store could not be read.
        """
        pass

    @abstractmethod
    def count(self) -> int:
        """Number of records currently indexed."""
        pass

    def query(self, query: TrafficQuery) -> List[TrafficEvent]:
        """Filtered events, at most ``query.limit``, newest first."""
        events = self.scan(query.since_ms)
        events.sort(key=lambda e: e.timestamp_ms)
        matched = [e for e in events if query.matches(e)]
        return select_page(matched, query.limit, query.oldest_first)

    def needs_trim(self, size: int) -> bool:
        return size > self.max_logs + self.trim_slack

    def close(self) -> None:
        pass


class CounterStore(ABC):
    """Per-second event counters keyed by (endpoint, second)."""

    def __init__(self, ttl_seconds: int = 15 * 60):
        self.ttl_seconds = ttl_seconds

    @abstractmethod
    def increment(self, endpoint: str, at_second: int) -> None:
        """Add one to the (endpoint, at_second) counter and refresh its TTL."""
        pass

    @abstractmethod
    def get_counts(
        self, endpoints: Iterable[str], start_second: int, end_second: int
    ) -> Dict[str, Dict[int, int]]:
        """
        Raw per-second counts in [start_second, end_second).
        Seconds without a live counter are omitted.
        """
        pass

    def aggregate(
        self,
        start_second: int,
        end_second: int,
        bucket_seconds: int,
        endpoints: Iterable[str],
    ) -> List[CounterBucket]:
        """
        Sum per-second counters into buckets of ``bucket_seconds`` covering
        [start_second, end_second). Missing seconds count as zero.
        """
        if bucket_seconds <= 0:
            raise ValueError("bucket_seconds must be > 0")
        endpoints = list(endpoints)
        if end_second <= start_second:
            return []

        raw = self.get_counts(endpoints, start_second, end_second)

        buckets: List[CounterBucket] = []
        for bucket_start in range(start_second, end_second, bucket_seconds):
            bucket_end = min(bucket_start + bucket_seconds, end_second)
            counts: Dict[str, int] = {}
            for endpoint in endpoints:
                per_second = raw.get(endpoint, {})
                counts[endpoint] = sum(
                    per_second.get(second, 0) for second in range(bucket_start, bucket_end)
                )
            buckets.append(CounterBucket(bucket_start=bucket_start, counts=counts))
        return buckets

    def close(self) -> None:
        pass


class TrafficBackend:
    """
    A detail store and a counter store written together per event.

    The default write is sequential, detail store first; backends that can
    batch both writes atomically override ``write``.
    """

    backend_type = "base"

    def __init__(self, detail: DetailStore, counters: CounterStore):
        self.detail = detail
        self.counters = counters

    def write(self, event: TrafficEvent, count: bool) -> str:
        record_id = self.detail.append(event)
        if count:
            self.counters.increment(event.endpoint, event.timestamp_ms // 1000)
        return record_id

    def health_check(self) -> dict:
        try:
            stored = self.detail.count()
            return {
                "healthy": True,
                "backend_type": self.backend_type,
                "message": "Backend is operational",
                "stored_events": stored,
            }
        except StorageError as e:
            logger.warning(f"Health check failed: {e}")
            return {
                "healthy": False,
                "backend_type": self.backend_type,
                "message": f"Health check failed: {e}",
                "stored_events": 0,
            }

    def close(self) -> None:
        self.detail.close()
        self.counters.close()

    def __enter__(self) -> "TrafficBackend":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
