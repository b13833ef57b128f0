"""
Storage backend factory.

Builds the traffic backend selected by settings. The Redis implementation
is imported lazily so the local file mode works without a Redis client.
"""

import logging
from typing import Callable, Optional

from traffic_monitor.config import BACKEND_FILE, BACKEND_REDIS, Settings, get_settings
from traffic_monitor.services.base import StorageError, TrafficBackend
from traffic_monitor.services.counters import MemoryCounterStore
from traffic_monitor.services.storage import FileBackend, FileDetailStore
from traffic_monitor.utils.helpers import now_ms

logger = logging.getLogger(__name__)


def get_backend(
    settings: Optional[Settings] = None,
    clock: Callable[[], int] = now_ms,
) -> TrafficBackend:
    """
    Create the traffic backend described by settings.

    Raises:
        StorageError: If the backend type is unknown or cannot be created.
    """
    if settings is None:
        settings = get_settings()

    backend_type = settings.resolved_backend

    if backend_type == BACKEND_REDIS:
        if not settings.redis_url:
            raise StorageError("Redis backend requires REDIS_URL")
        try:
            from traffic_monitor.services.redis_store import RedisBackend
        except ImportError as e:
            raise StorageError(f"Redis backend not available: {e}") from e

        backend = RedisBackend.from_url(
            settings.redis_url,
            max_logs=settings.max_logs,
            log_ttl_seconds=settings.log_ttl_seconds,
            trim_slack=settings.trim_slack,
            counter_ttl_seconds=settings.counter_ttl_seconds,
            write_mode=settings.write_mode,
        )
        logger.info("Created redis traffic backend")
        return backend

    if backend_type == BACKEND_FILE:
        backend = file_backend(settings, clock=clock)
        logger.warning(
            f"No durable store configured, logging traffic to {settings.log_file} "
            "(development only)"
        )
        return backend

    raise StorageError(f"Unknown storage backend: '{backend_type}'")


def file_backend(settings: Settings, clock: Callable[[], int] = now_ms) -> TrafficBackend:
    return FileBackend(
        detail=FileDetailStore(
            settings.log_file,
            max_logs=settings.max_logs,
            ttl_seconds=settings.log_ttl_seconds,
            trim_slack=settings.trim_slack,
            clock=clock,
        ),
        counters=MemoryCounterStore(ttl_seconds=settings.counter_ttl_seconds, clock=clock),
    )
