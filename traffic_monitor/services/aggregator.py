"""
TrafficQueryService - read side of the traffic stores

Serves the full, combined, incremental and dashboard-aggregate queries.
Store failures are logged and turned into empty results; the dashboard
should show missing data, not an error page.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from traffic_monitor.config import CHECKOUT_ENDPOINT, LOGIN_ENDPOINT, Settings
from traffic_monitor.models.data_models import (
    CounterBucket,
    DashboardPoint,
    IncrementalPage,
    TrafficEvent,
    TrafficQuery,
)
from traffic_monitor.services.base import StorageError, TrafficBackend
from traffic_monitor.utils.helpers import align_down, ms_to_datetime, now_ms

logger = logging.getLogger(__name__)


class TrafficQueryService:
    """
    Queries the detail and counter stores.
    Responsibilities:
    - Filter detail records by endpoint, method, bot flag and time
    - Page incremental polls with a cursor
    - Bucket per-second counters for charts
    - Build the combined dashboard snapshot
    """

    def __init__(
        self,
        backend: TrafficBackend,
        tracked_endpoints=(LOGIN_ENDPOINT, CHECKOUT_ENDPOINT),
        max_limit: int = 1000,
        default_limit: int = 100,
        incremental_limit: int = 100,
        combined_recent: int = 10,
        counter_ttl_seconds: int = 15 * 60,
        clock: Callable[[], int] = now_ms,
    ):
        self.backend = backend
        self.tracked_endpoints = tuple(tracked_endpoints)
        self.max_limit = max_limit
        self.default_limit = default_limit
        self.incremental_limit = incremental_limit
        self.combined_recent = combined_recent
        # Older counters have expired, so windows are cut to retention
        self.max_window_minutes = max(1, -(-counter_ttl_seconds // 60))
        self.clock = clock

    @classmethod
    def from_settings(
        cls,
        backend: TrafficBackend,
        settings: Settings,
        clock: Callable[[], int] = now_ms,
    ) -> "TrafficQueryService":
        return cls(
            backend,
            tracked_endpoints=settings.tracked_endpoints,
            max_limit=settings.max_query_limit,
            default_limit=settings.default_query_limit,
            incremental_limit=settings.incremental_limit,
            combined_recent=settings.combined_recent,
            counter_ttl_seconds=settings.counter_ttl_seconds,
            clock=clock,
        )

    def clamp_limit(self, limit: Optional[int], ceiling: Optional[int] = None) -> int:
        """Apply the default and the service ceiling to a caller limit"""
        ceiling = ceiling or self.max_limit
        if limit is None:
            limit = min(self.default_limit, ceiling)
        return max(1, min(limit, ceiling))

    def window_start_ms(self, minutes: int) -> int:
        """Exclusive cursor for a look-back of `minutes` from now"""
        return self.clock() - minutes * 60 * 1000 - 1

    def query_logs(
        self,
        endpoint: Optional[str] = None,
        method: Optional[str] = None,
        is_bot: Optional[bool] = None,
        since_ms: Optional[int] = None,
        time_window_minutes: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[TrafficEvent]:
        """Detail records matching the filters, newest first"""
        if time_window_minutes is not None:
            window_since = self.window_start_ms(time_window_minutes)
            since_ms = window_since if since_ms is None else max(since_ms, window_since)

        query = TrafficQuery(
            since_ms=since_ms,
            endpoint=endpoint or None,
            method=method.upper() if method else None,
            is_bot=is_bot,
            limit=self.clamp_limit(limit),
        )
        try:
            return self.backend.detail.query(query)
        except StorageError as e:
            logger.error(f"Traffic log query failed: {e}")
            return []

    def incremental(self, since_ms: Optional[int] = None, limit: Optional[int] = None) -> IncrementalPage:
        """
        Events newer than the cursor. The first call (no cursor) gets the
        newest page; later calls page oldest first from the cursor so a burst
        larger than one page arrives over several polls. The returned
        latest_timestamp is the cursor for the next call.
        """
        query = TrafficQuery(
            since_ms=since_ms,
            limit=self.clamp_limit(limit, ceiling=self.incremental_limit),
            oldest_first=since_ms is not None,
        )
        try:
            logs = self.backend.detail.query(query)
        except StorageError as e:
            logger.error(f"Incremental traffic query failed: {e}")
            logs = []

        if logs:
            latest = logs[0].timestamp_ms
        elif since_ms is not None:
            latest = since_ms
        else:
            latest = self.clock()
        return IncrementalPage(logs=logs, latest_timestamp=latest)

    def aggregate(self, start_second: int, end_second: int, interval_seconds: int) -> List[CounterBucket]:
        try:
            return self.backend.counters.aggregate(
                start_second, end_second, interval_seconds, self.tracked_endpoints
            )
        except StorageError as e:
            logger.error(f"Counter aggregation failed: {e}")
            return []

    def dashboard(self, window_minutes: int, interval_seconds: int) -> List[DashboardPoint]:
        """
        Login/checkout counts per interval for the last `window_minutes`.
        The window start is aligned down to the interval; the current second
        is included.
        """
        window_minutes = min(window_minutes, self.max_window_minutes)
        now_s = self.clock() // 1000
        start = align_down(now_s - window_minutes * 60, interval_seconds)
        buckets = self.aggregate(start, now_s + 1, interval_seconds)
        return [
            DashboardPoint(
                timestamp=b.bucket_start,
                login_count=b.counts.get(LOGIN_ENDPOINT, 0),
                checkout_count=b.counts.get(CHECKOUT_ENDPOINT, 0),
            )
            for b in buckets
        ]

    def combined(self, time_window_minutes: int = 5, interval_seconds: int = 60) -> Dict[str, Any]:
        """Everything the dashboard needs for first paint in one call"""
        events = self.query_logs(time_window_minutes=time_window_minutes, limit=self.max_limit)
        return {
            "login": [e.to_dict() for e in events if e.endpoint == LOGIN_ENDPOINT],
            "checkout": [e.to_dict() for e in events if e.endpoint == CHECKOUT_ENDPOINT],
            "recent": [e.to_dict() for e in events[: self.combined_recent]],
            "chart": [p.to_dict() for p in self.dashboard(time_window_minutes, interval_seconds)],
            "timestamp": ms_to_datetime(self.clock()).isoformat(),
        }
