"""
Data Models (DTOs - Data Transfer Objects)

This module contains all dataclass definitions used throughout the application.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from traffic_monitor.utils.helpers import datetime_to_ms


def format_ts(dt: datetime) -> str:
    """ISO-8601 UTC with millisecond precision, e.g. 2024-05-01T12:00:00.123Z"""
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


@dataclass
class TrafficEvent:
    """One observed request/response pair"""
    timestamp: datetime
    endpoint: str
    method: str
    ip: str
    real_ip: str
    user_agent: str
    is_bot: bool
    status_code: Optional[int] = None
    headers: Dict[str, str] = field(default_factory=dict)
    id: Optional[str] = None

    @property
    def timestamp_ms(self) -> int:
        return datetime_to_ms(self.timestamp)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "timestamp": format_ts(self.timestamp),
            "endpoint": self.endpoint,
            "method": self.method,
            "ip": self.ip,
            "realIp": self.real_ip,
            "userAgent": self.user_agent,
            "isBot": self.is_bot,
            "statusCode": self.status_code,
            "headers": dict(self.headers),
        }
        if self.id is not None:
            data["id"] = self.id
        return data


@dataclass
class TrafficQuery:
    """Detail store filter. since_ms is exclusive."""
    since_ms: Optional[int] = None
    endpoint: Optional[str] = None
    method: Optional[str] = None
    is_bot: Optional[bool] = None
    limit: int = 100
    # Take the oldest `limit` matches instead of the newest (incremental paging)
    oldest_first: bool = False

    def matches(self, event: TrafficEvent) -> bool:
        if self.since_ms is not None and event.timestamp_ms <= self.since_ms:
            return False
        if self.endpoint and event.endpoint != self.endpoint:
            return False
        if self.method and event.method != self.method:
            return False
        if self.is_bot is not None and event.is_bot != self.is_bot:
            return False
        return True


@dataclass
class CounterBucket:
    """Summed per-second counters for one aggregation interval"""
    bucket_start: int
    counts: Dict[str, int]

    @property
    def total(self) -> int:
        return sum(self.counts.values())


@dataclass
class DashboardPoint:
    """Chart point for the dashboard aggregate endpoint"""
    timestamp: int
    login_count: int
    checkout_count: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "timestamp": self.timestamp,
            "loginCount": self.login_count,
            "checkoutCount": self.checkout_count,
        }


@dataclass
class IncrementalPage:
    """Incremental poll response; latest_timestamp is the next cursor"""
    logs: List[TrafficEvent]
    latest_timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "logs": [e.to_dict() for e in self.logs],
            "latestTimestamp": self.latest_timestamp,
        }


@dataclass
class HealthStatus:
    """Health check response"""
    status: str
    backend: str
    healthy: bool
    stored_events: int
    message: str = ""
