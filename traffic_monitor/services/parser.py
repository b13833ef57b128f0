"""
TrafficEventParser - store boundary (de)serialisation

Stored records are JSON objects in the camelCase shape served by the API.
Anything that does not match the TrafficEvent schema is rejected (None)
so a single corrupt record never fails a whole query.
"""

import json
import logging
from typing import Any, Dict, Mapping, Optional

from traffic_monitor.models.data_models import TrafficEvent
from traffic_monitor.utils.helpers import parse_ts

logger = logging.getLogger(__name__)

TRUNCATED_SUFFIX = "...[truncated]"


class TrafficEventParser:
    """
    Converts between TrafficEvent and its stored JSON form.
    Responsibilities:
    - Parse JSON text
    - Validate and normalize raw dicts into TrafficEvent
    - Serialize events for storage
    - Build bounded header snapshots
    """

    @staticmethod
    def parse_json(text: Any) -> Optional[Any]:
        """Parse JSON text, return None if invalid"""
        if text is None:
            return None
        if isinstance(text, bytes):
            text = text.decode("utf-8", errors="replace")
        try:
            return json.loads(text)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def normalize(raw: Any) -> Optional[TrafficEvent]:
        """
        Validate a raw stored dict and build a TrafficEvent.
        Returns None when a required field is missing or has the wrong type.
        """
        if not isinstance(raw, dict):
            return None

        ts = parse_ts(raw.get("timestamp"))
        if ts is None:
            return None

        endpoint = raw.get("endpoint")
        method = raw.get("method")
        if not isinstance(endpoint, str) or not isinstance(method, str):
            return None

        is_bot = raw.get("isBot", False)
        if not isinstance(is_bot, bool):
            return None

        status = raw.get("statusCode")
        if status is not None and (isinstance(status, bool) or not isinstance(status, int)):
            return None

        ip = raw.get("ip", "unknown")
        real_ip = raw.get("realIp", ip)
        user_agent = raw.get("userAgent", "unknown")
        if not all(isinstance(v, str) for v in (ip, real_ip, user_agent)):
            return None

        headers = raw.get("headers") or {}
        if not isinstance(headers, dict):
            return None

        record_id = raw.get("id")
        return TrafficEvent(
            timestamp=ts,
            endpoint=endpoint,
            method=method,
            ip=ip,
            real_ip=real_ip,
            user_agent=user_agent,
            is_bot=is_bot,
            status_code=status,
            headers={str(k): str(v) for k, v in headers.items() if v is not None},
            id=record_id if isinstance(record_id, str) else None,
        )

    @classmethod
    def loads(cls, text: Any) -> Optional[TrafficEvent]:
        """Parse + normalize; logs and returns None for malformed records"""
        event = cls.normalize(cls.parse_json(text))
        if event is None and text is not None:
            logger.warning("Skipping malformed traffic record")
        return event

    @staticmethod
    def dumps(event: TrafficEvent) -> str:
        return json.dumps(event.to_dict(), ensure_ascii=False)

    @staticmethod
    def snapshot_headers(headers: Mapping[str, str], max_bytes: int) -> Dict[str, str]:
        """
        Copy request headers, keeping the total encoded size within max_bytes.
        Long values are truncated; headers that no longer fit are dropped.
        """
        snapshot: Dict[str, str] = {}
        used = 0
        for name, value in headers.items():
            name = name.lower()
            budget = max_bytes - used - len(name.encode("utf-8"))
            if budget <= 0:
                break
            encoded = value.encode("utf-8")
            if len(encoded) > budget:
                keep = budget - len(TRUNCATED_SUFFIX)
                if keep <= 0:
                    continue
                value = encoded[:keep].decode("utf-8", errors="ignore") + TRUNCATED_SUFFIX
                encoded = value.encode("utf-8")
            snapshot[name] = value
            used += len(name.encode("utf-8")) + len(encoded)
        return snapshot
