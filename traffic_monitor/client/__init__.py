"""Dashboard polling client."""

from .poller import ChartStream, DashboardPoller, PollingStream, RecentEventsStream, StreamState

__all__ = [
    "ChartStream",
    "DashboardPoller",
    "PollingStream",
    "RecentEventsStream",
    "StreamState",
]
