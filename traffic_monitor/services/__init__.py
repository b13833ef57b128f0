"""
Traffic ingestion, storage and query services.

Usage:
    from traffic_monitor.config import get_settings
    from traffic_monitor.services import get_backend, TrafficRecorder

    settings = get_settings()
    backend = get_backend(settings)
    recorder = TrafficRecorder.from_settings(backend, settings)
"""

from .aggregator import TrafficQueryService
from .base import (
    CounterStore,
    DetailStore,
    StorageConnectionError,
    StorageError,
    TrafficBackend,
)
from .factory import get_backend
from .recorder import TrafficRecorder

__all__ = [
    "CounterStore",
    "DetailStore",
    "StorageConnectionError",
    "StorageError",
    "TrafficBackend",
    "TrafficQueryService",
    "TrafficRecorder",
    "get_backend",
]
