"""In-process per-second counters.

Used with the local file backend. Each process keeps its own counters, so
counts are only complete for single-worker development servers.
"""

from __future__ import annotations

from threading import Lock
from typing import Callable, Dict, Iterable, Tuple

from traffic_monitor.services.base import CounterStore
from traffic_monitor.utils.helpers import now_ms


class MemoryCounterStore(CounterStore):
    def __init__(self, ttl_seconds: int = 15 * 60, clock: Callable[[], int] = now_ms):
        super().__init__(ttl_seconds=ttl_seconds)
        self.clock = clock
        self._lock = Lock()
        # (endpoint, second) -> [count, expires_at_ms]
        self._counters: Dict[Tuple[str, int], list] = {}

    def increment(self, endpoint: str, at_second: int) -> None:
        now = self.clock()
        with self._lock:
            self._purge(now)
            entry = self._counters.setdefault((endpoint, at_second), [0, 0])
            entry[0] += 1
            entry[1] = now + self.ttl_seconds * 1000

    def get_counts(
        self, endpoints: Iterable[str], start_second: int, end_second: int
    ) -> Dict[str, Dict[int, int]]:
        wanted = set(endpoints)
        now = self.clock()
        out: Dict[str, Dict[int, int]] = {endpoint: {} for endpoint in wanted}
        with self._lock:
            for (endpoint, second), (count, expires_at) in self._counters.items():
                if endpoint not in wanted or expires_at <= now:
                    continue
                if start_second <= second < end_second:
                    out[endpoint][second] = count
        return out

    def _purge(self, now: int) -> None:
        expired = [key for key, (_, expires_at) in self._counters.items() if expires_at <= now]
        for key in expired:
            del self._counters[key]
