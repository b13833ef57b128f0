"""
TrafficRecorder - the single write path for traffic events

Called once per handled request, after the response status is known.
Recording is best effort: any failure is logged and swallowed so traffic
logging can never break the request being served.
"""

import logging
from typing import Callable, Iterable, Mapping, Optional

from traffic_monitor.config import Settings
from traffic_monitor.models.data_models import TrafficEvent
from traffic_monitor.services.base import TrafficBackend
from traffic_monitor.services.ip_resolver import IpResolutionPolicy, resolve_client_ip
from traffic_monitor.services.parser import TrafficEventParser
from traffic_monitor.utils.helpers import ms_to_datetime, now_ms

logger = logging.getLogger(__name__)


class TrafficRecorder:
    """
    Builds TrafficEvents from request data and writes them to the backend.
    Responsibilities:
    - Resolve client IP and bot classification
    - Snapshot (bounded) request headers
    - Write the detail record, and the counter for tracked endpoints
    """

    def __init__(
        self,
        backend: TrafficBackend,
        tracked_endpoints: Iterable[str],
        ip_policy: IpResolutionPolicy = IpResolutionPolicy(),
        bot_header: str = "x-kasada-classification",
        bot_value: str = "bad-bot",
        max_header_bytes: int = 4096,
        clock: Callable[[], int] = now_ms,
    ):
        self.backend = backend
        self.tracked_endpoints = frozenset(tracked_endpoints)
        self.ip_policy = ip_policy
        self.bot_header = bot_header.lower()
        self.bot_value = bot_value
        self.max_header_bytes = max_header_bytes
        self.clock = clock

    @classmethod
    def from_settings(
        cls,
        backend: TrafficBackend,
        settings: Settings,
        clock: Callable[[], int] = now_ms,
    ) -> "TrafficRecorder":
        return cls(
            backend,
            tracked_endpoints=settings.tracked_endpoints,
            ip_policy=IpResolutionPolicy(forwarded_for_index=settings.forwarded_for_index),
            bot_header=settings.bot_header,
            bot_value=settings.bot_value,
            max_header_bytes=settings.max_header_bytes,
            clock=clock,
        )

    def is_tracked(self, endpoint: str) -> bool:
        return endpoint in self.tracked_endpoints

    def build_event(
        self,
        method: str,
        headers: Mapping[str, str],
        endpoint: str,
        status_code: Optional[int],
    ) -> TrafficEvent:
        headers = {name.lower(): value for name, value in headers.items()}
        client_ip = resolve_client_ip(headers, self.ip_policy)
        # A missing classification header means "not a bot"
        is_bot = headers.get(self.bot_header) == self.bot_value
        return TrafficEvent(
            timestamp=ms_to_datetime(self.clock()),
            endpoint=endpoint,
            method=method.upper(),
            ip=client_ip,
            real_ip=client_ip,
            user_agent=headers.get("user-agent") or "unknown",
            is_bot=is_bot,
            status_code=status_code,
            headers=TrafficEventParser.snapshot_headers(headers, self.max_header_bytes),
        )

    def record(
        self,
        method: str,
        headers: Mapping[str, str],
        endpoint: str,
        status_code: Optional[int],
    ) -> Optional[str]:
        """Record one request; returns the event id, or None if logging failed"""
        try:
            event = self.build_event(method, headers, endpoint, status_code)
            return self.backend.write(event, count=self.is_tracked(endpoint))
        except Exception:
            logger.exception(f"Failed to record traffic for {endpoint} ({status_code})")
            return None

    def record_request(self, request, endpoint: str, status_code: Optional[int]) -> Optional[str]:
        """Record a Starlette/FastAPI request"""
        return self.record(request.method, request.headers, endpoint, status_code)
