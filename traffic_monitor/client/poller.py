"""
Dashboard polling client.

Two independent streams poll the traffic API on their own intervals:

- ChartStream     -> /api/dashboard-data   (bucketed login/checkout counts)
- RecentEventsStream -> /api/traffic/incremental (new detail records)

Each stream keeps a capped, newest-first buffer. The events stream also
carries a cursor; the chart stream re-reads its whole window each tick
instead. A tick is skipped while the previous fetch of the same stream is
still in flight, and a failed fetch keeps the cursor so the next tick
retries from the same place.

Usage:
    async with DashboardPoller("http://localhost:8000") as poller:
        await asyncio.sleep(30)
        print(poller.events.buffer[:10])
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)


class StreamState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    MERGING = "merging"
    ERROR = "error"


class PollingStream:
    """Base polling stream; subclasses define the request and the merge."""

    path = ""

    def __init__(
        self,
        client: httpx.AsyncClient,
        interval_seconds: float = 5.0,
        max_items: int = 100,
    ):
        self.client = client
        self.interval_seconds = interval_seconds
        self.max_items = max_items
        self.state = StreamState.IDLE
        self.cursor: Optional[int] = None
        self.buffer: List[Dict[str, Any]] = []
        self.last_error: Optional[str] = None
        self._inflight: Optional[asyncio.Task] = None
        self._loop_task: Optional[asyncio.Task] = None

    @property
    def name(self) -> str:
        return type(self).__name__

    def params(self) -> Dict[str, Any]:
        return {}

    def merge(self, payload: Any) -> None:
        raise NotImplementedError

    async def tick(self) -> bool:
        """
        One fetch-and-merge cycle. Returns True when new data was merged.
        Errors are recorded on the stream, never raised.
        """
        self.state = StreamState.FETCHING
        try:
            response = await self.client.get(self.path, params=self.params())
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            self.state = StreamState.ERROR
            self.last_error = str(e) or type(e).__name__
            logger.warning(f"{self.name} fetch failed, keeping cursor {self.cursor}: {e}")
            return False

        self.state = StreamState.MERGING
        try:
            self.merge(payload)
        except (KeyError, TypeError, ValueError) as e:
            self.state = StreamState.ERROR
            self.last_error = f"Unexpected response: {e}"
            logger.warning(f"{self.name} could not merge response: {e}")
            return False

        self.last_error = None
        self.state = StreamState.IDLE
        return True

    def trigger(self) -> bool:
        """Start a tick unless one is already in flight"""
        if self._inflight is not None and not self._inflight.done():
            logger.debug(f"{self.name} still fetching, skipping tick")
            return False
        self._inflight = asyncio.ensure_future(self.tick())
        return True

    async def _run(self) -> None:
        while True:
            self.trigger()
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.ensure_future(self._run())

    async def stop(self) -> None:
        """Cancel the timer and any in-flight fetch"""
        tasks = [t for t in (self._loop_task, self._inflight) if t is not None]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._loop_task = None
        self._inflight = None
        if self.state in (StreamState.FETCHING, StreamState.MERGING):
            self.state = StreamState.IDLE


class ChartStream(PollingStream):
    """
    Polls the bucketed counters. Buckets are merged by timestamp, the newest
    response winning since the current bucket keeps filling.
    """

    path = "/api/dashboard-data"

    def __init__(
        self,
        client: httpx.AsyncClient,
        interval_seconds: float = 5.0,
        max_items: int = 60,
        window_minutes: int = 10,
        bucket_seconds: int = 60,
    ):
        super().__init__(client, interval_seconds=interval_seconds, max_items=max_items)
        self.window_minutes = window_minutes
        self.bucket_seconds = bucket_seconds

    def params(self) -> Dict[str, Any]:
        return {"windowMinutes": self.window_minutes, "intervalSeconds": self.bucket_seconds}

    def merge(self, payload: Any) -> None:
        by_ts = {point["timestamp"]: point for point in self.buffer}
        for point in payload:
            by_ts[int(point["timestamp"])] = point
        merged = sorted(by_ts.values(), key=lambda p: p["timestamp"], reverse=True)
        self.buffer = merged[: self.max_items]

    def series(self) -> List[Dict[str, Any]]:
        """Buffered points oldest first, for plotting"""
        return list(reversed(self.buffer))


class RecentEventsStream(PollingStream):
    """Polls the incremental endpoint, carrying latestTimestamp as the cursor."""

    path = "/api/traffic/incremental"

    def __init__(
        self,
        client: httpx.AsyncClient,
        interval_seconds: float = 5.0,
        max_items: int = 100,
        page_limit: Optional[int] = None,
    ):
        super().__init__(client, interval_seconds=interval_seconds, max_items=max_items)
        self.page_limit = page_limit

    def params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if self.cursor is not None:
            params["since"] = self.cursor
        if self.page_limit:
            params["limit"] = self.page_limit
        return params

    def merge(self, payload: Any) -> None:
        logs = payload["logs"]
        latest = int(payload["latestTimestamp"])
        if logs:
            self.buffer = (list(logs) + self.buffer)[: self.max_items]
        self.cursor = latest


class DashboardPoller:
    """Runs the chart and recent-events streams against one API base URL."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        chart_interval: float = 5.0,
        events_interval: float = 5.0,
        max_events: int = 100,
        window_minutes: int = 10,
        bucket_seconds: int = 60,
        timeout: float = 10.0,
    ):
        if client is None and base_url is None:
            raise ValueError("base_url or client is required")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self.chart = ChartStream(
            self.client,
            interval_seconds=chart_interval,
            window_minutes=window_minutes,
            bucket_seconds=bucket_seconds,
        )
        self.events = RecentEventsStream(
            self.client, interval_seconds=events_interval, max_items=max_events
        )

    @property
    def streams(self) -> List[PollingStream]:
        return [self.chart, self.events]

    def start(self) -> None:
        for stream in self.streams:
            stream.start()

    async def stop(self) -> None:
        for stream in self.streams:
            await stream.stop()
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "DashboardPoller":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()
