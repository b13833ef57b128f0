"""
Shared fixtures for traffic monitor tests.

Provides:
- A controllable millisecond clock
- File (local mode) and fakeredis-backed traffic backends
- A TrafficEvent factory
"""

from typing import Optional

import fakeredis
import pytest

from traffic_monitor.config import Settings
from traffic_monitor.models.data_models import TrafficEvent
from traffic_monitor.services.factory import file_backend
from traffic_monitor.services.redis_store import RedisBackend
from traffic_monitor.utils.helpers import ms_to_datetime

# 2023-11-14T22:13:20Z
START_MS = 1_700_000_000_000


class FakeClock:
    """Callable returning a settable epoch-millisecond time."""

    def __init__(self, now: int = START_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


def make_event(
    ts_ms: int,
    endpoint: str = "/api/auth/login",
    method: str = "POST",
    is_bot: bool = False,
    status_code: Optional[int] = 200,
    ip: str = "203.0.113.7",
) -> TrafficEvent:
    return TrafficEvent(
        timestamp=ms_to_datetime(ts_ms),
        endpoint=endpoint,
        method=method,
        ip=ip,
        real_ip=ip,
        user_agent="pytest-agent",
        is_bot=is_bot,
        status_code=status_code,
        headers={"user-agent": "pytest-agent"},
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    return Settings(backend="file", log_file=str(tmp_path / "traffic.json"))


@pytest.fixture
def local_backend(settings, clock):
    """JSON file detail store + in-process counters"""
    backend = file_backend(settings, clock=clock)
    yield backend
    backend.close()


@pytest.fixture
def redis_client():
    server = fakeredis.FakeServer()
    client = fakeredis.FakeRedis(server=server, decode_responses=True)
    yield client
    client.close()


@pytest.fixture
def redis_backend(redis_client):
    backend = RedisBackend(redis_client, max_logs=1000)
    yield backend
    backend.close()


@pytest.fixture(params=["file", "redis"])
def any_backend(request, settings, clock, redis_client):
    """Runs a test once per backend implementation"""
    if request.param == "file":
        backend = file_backend(settings, clock=clock)
    else:
        backend = RedisBackend(redis_client)
    yield backend
    backend.close()
