"""
Redis-backed traffic stores.

Key structure:
    traffic:logs                               -> ZSET of record ids, score = timestamp ms
    traffic:log:{ms}-{suffix}                  -> STRING, JSON TrafficEvent (TTL)
    dashboard:count:{endpoint}:{epoch second}  -> STRING counter (TTL)
"""

import logging
import uuid
from typing import Dict, Iterable, List, Optional

import redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError

from traffic_monitor.config import WRITE_MODE_ATOMIC
from traffic_monitor.models.data_models import TrafficEvent
from traffic_monitor.services.base import (
    CounterStore,
    DetailStore,
    StorageConnectionError,
    StorageError,
    TrafficBackend,
)
from traffic_monitor.services.parser import TrafficEventParser
from traffic_monitor.utils.helpers import safe_int

logger = logging.getLogger(__name__)

LOG_PREFIX = "traffic:log:"
LOGS_INDEX_KEY = "traffic:logs"
COUNTER_PREFIX = "dashboard:count:"

# Keys per MGET round trip
MGET_CHUNK = 500


def _storage_error(action: str, e: RedisError) -> StorageError:
    if isinstance(e, RedisConnectionError):
        return StorageConnectionError(f"Redis unavailable while {action}: {e}")
    return StorageError(f"Redis error while {action}: {e}")


def _mget(client: "redis.Redis", keys: List[str]) -> List[Optional[str]]:
    values: List[Optional[str]] = []
    for i in range(0, len(keys), MGET_CHUNK):
        values.extend(client.mget(keys[i:i + MGET_CHUNK]))
    return values


class RedisDetailStore(DetailStore):
    """Sorted-set index of record ids plus one TTL'd key per record."""

    def __init__(
        self,
        client: "redis.Redis",
        max_logs: int = 1000,
        ttl_seconds: int = 30 * 60,
        trim_slack: int = 0,
    ):
        super().__init__(max_logs=max_logs, trim_slack=trim_slack)
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.parser = TrafficEventParser()

    @staticmethod
    def new_id(event: TrafficEvent) -> str:
        # Random suffix keeps same-millisecond writers apart
        return f"{LOG_PREFIX}{event.timestamp_ms}-{uuid.uuid4().hex[:8]}"

    def queue_append(self, pipe, event: TrafficEvent) -> str:
        """Add the record write and index update to a pipeline"""
        event.id = self.new_id(event)
        pipe.set(event.id, self.parser.dumps(event), ex=self.ttl_seconds)
        pipe.zadd(LOGS_INDEX_KEY, {event.id: event.timestamp_ms})
        return event.id

    def append(self, event: TrafficEvent) -> str:
        try:
            pipe = self.client.pipeline(transaction=True)
            record_id = self.queue_append(pipe, event)
            pipe.execute()
        except RedisError as e:
            raise _storage_error("appending traffic record", e) from e
        self.evict()
        return record_id

    def evict(self) -> int:
        """
        Drop the oldest ids (and their records) once the index grows past
        max_logs + trim_slack. Returns the number removed; errors are logged.
        """
        try:
            size = self.client.zcard(LOGS_INDEX_KEY)
            if not self.needs_trim(size):
                return 0
            surplus = size - self.max_logs
            stale = self.client.zrange(LOGS_INDEX_KEY, 0, surplus - 1)
            if not stale:
                return 0
            pipe = self.client.pipeline(transaction=False)
            pipe.zrem(LOGS_INDEX_KEY, *stale)
            pipe.delete(*stale)
            pipe.execute()
            logger.debug(f"Evicted {len(stale)} traffic records")
            return len(stale)
        except RedisError as e:
            logger.warning(f"Traffic log eviction failed: {e}")
            return 0

    def scan(self, since_ms: Optional[int] = None) -> List[TrafficEvent]:
        min_score = since_ms + 1 if since_ms is not None else "-inf"
        try:
            ids = self.client.zrangebyscore(LOGS_INDEX_KEY, min_score, "+inf")
            if not ids:
                return []
            values = _mget(self.client, ids)
        except RedisError as e:
            raise _storage_error("reading traffic records", e) from e

        events: List[TrafficEvent] = []
        expired: List[str] = []
        for record_id, value in zip(ids, values):
            if value is None:
                expired.append(record_id)
                continue
            event = self.parser.loads(value)
            if event is None:
                continue
            event.id = record_id
            events.append(event)

        if expired:
            self._forget(expired)
        return events

    def count(self) -> int:
        try:
            return self.client.zcard(LOGS_INDEX_KEY)
        except RedisError as e:
            raise _storage_error("counting traffic records", e) from e

    def _forget(self, ids: List[str]) -> None:
        """Remove index entries whose record already expired"""
        try:
            self.client.zrem(LOGS_INDEX_KEY, *ids)
        except RedisError as e:
            logger.warning(f"Failed to prune {len(ids)} expired index entries: {e}")

    def close(self) -> None:
        self.client.close()


class RedisCounterStore(CounterStore):
    """One INCR'd key per (endpoint, second)"""

    def __init__(self, client: "redis.Redis", ttl_seconds: int = 15 * 60):
        super().__init__(ttl_seconds=ttl_seconds)
        self.client = client

    @staticmethod
    def key(endpoint: str, second: int) -> str:
        return f"{COUNTER_PREFIX}{endpoint}:{second}"

    def queue_increment(self, pipe, endpoint: str, at_second: int) -> None:
        key = self.key(endpoint, at_second)
        pipe.incr(key)
        pipe.expire(key, self.ttl_seconds)

    def increment(self, endpoint: str, at_second: int) -> None:
        try:
            pipe = self.client.pipeline(transaction=True)
            self.queue_increment(pipe, endpoint, at_second)
            pipe.execute()
        except RedisError as e:
            raise _storage_error("incrementing counter", e) from e

    def get_counts(
        self, endpoints: Iterable[str], start_second: int, end_second: int
    ) -> Dict[str, Dict[int, int]]:
        endpoints = list(endpoints)
        seconds = list(range(start_second, end_second))
        keys = [self.key(endpoint, s) for endpoint in endpoints for s in seconds]
        if not keys:
            return {}
        try:
            values = _mget(self.client, keys)
        except RedisError as e:
            raise _storage_error("reading counters", e) from e

        out: Dict[str, Dict[int, int]] = {endpoint: {} for endpoint in endpoints}
        i = 0
        for endpoint in endpoints:
            for s in seconds:
                count = safe_int(values[i])
                i += 1
                if count:
                    out[endpoint][s] = count
        return out


class RedisBackend(TrafficBackend):
    """
    Redis detail + counter stores sharing one client.

    In atomic write mode the record, its index entry and the counter update go
    out as one MULTI/EXEC transaction; sequential mode writes the detail store
    first, then the counter.
    """

    backend_type = "redis"

    def __init__(
        self,
        client: "redis.Redis",
        max_logs: int = 1000,
        log_ttl_seconds: int = 30 * 60,
        trim_slack: int = 0,
        counter_ttl_seconds: int = 15 * 60,
        write_mode: str = WRITE_MODE_ATOMIC,
    ):
        super().__init__(
            detail=RedisDetailStore(
                client, max_logs=max_logs, ttl_seconds=log_ttl_seconds, trim_slack=trim_slack
            ),
            counters=RedisCounterStore(client, ttl_seconds=counter_ttl_seconds),
        )
        self.client = client
        self.write_mode = write_mode

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisBackend":
        client = redis.Redis.from_url(url, decode_responses=True)
        return cls(client, **kwargs)

    def write(self, event: TrafficEvent, count: bool) -> str:
        if self.write_mode != WRITE_MODE_ATOMIC:
            return super().write(event, count)

        try:
            pipe = self.client.pipeline(transaction=True)
            record_id = self.detail.queue_append(pipe, event)
            if count:
                self.counters.queue_increment(pipe, event.endpoint, event.timestamp_ms // 1000)
            pipe.execute()
        except RedisError as e:
            raise _storage_error("writing traffic event", e) from e
        self.detail.evict()
        return record_id

    def health_check(self) -> dict:
        try:
            self.client.ping()
        except RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return {
                "healthy": False,
                "backend_type": self.backend_type,
                "message": f"Health check failed: {e}",
                "stored_events": 0,
            }
        return super().health_check()

    def close(self) -> None:
        # Both stores share the client
        self.client.close()
