"""
FileDetailStore - local JSON file fallback

Development-only detail store used when no durable store is configured.
The whole log is a single JSON array, capped to the newest ``max_logs``
records and truncated from the front. Not safe for multiple processes.
"""

import json
import logging
import os
import threading
import uuid
from typing import Any, Callable, List, Optional

from traffic_monitor.models.data_models import TrafficEvent
from traffic_monitor.services.base import DetailStore, StorageError, TrafficBackend
from traffic_monitor.services.parser import TrafficEventParser
from traffic_monitor.utils.helpers import now_ms

logger = logging.getLogger(__name__)


class FileDetailStore(DetailStore):
    """
    Manages the local traffic log file.
    Responsibilities:
    - Append records and truncate to the cap
    - Read records back, dropping expired and malformed entries
    - Count stored records for health checks
    """

    def __init__(
        self,
        file_path: str,
        max_logs: int = 1000,
        ttl_seconds: int = 30 * 60,
        trim_slack: int = 0,
        clock: Callable[[], int] = now_ms,
    ):
        super().__init__(max_logs=max_logs, trim_slack=trim_slack)
        self.file_path = file_path
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.parser = TrafficEventParser()
        self._lock = threading.Lock()

    def append(self, event: TrafficEvent) -> str:
        event.id = f"traffic:log:{event.timestamp_ms}-{uuid.uuid4().hex[:8]}"
        record = event.to_dict()

        with self._lock:
            records = self._read_records()
            records.append(record)
            if self.needs_trim(len(records)):
                records = records[-self.max_logs:]
            self._write_records(records)

        return event.id

    def scan(self, since_ms: Optional[int] = None) -> List[TrafficEvent]:
        with self._lock:
            records = self._read_records()

        cutoff = self.clock() - self.ttl_seconds * 1000
        events: List[TrafficEvent] = []
        for raw in records:
            event = self.parser.normalize(raw)
            if event is None:
                logger.warning(f"Skipping malformed record in {self.file_path}")
                continue
            ts = event.timestamp_ms
            if ts < cutoff:
                continue
            if since_ms is not None and ts <= since_ms:
                continue
            events.append(event)
        return events

    def count(self) -> int:
        """Live records; expired and malformed ones are not counted"""
        return len(self.scan())

    def _read_records(self) -> List[Any]:
        """Stored JSON array; a missing or corrupt file reads as empty"""
        try:
            with open(self.file_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return []
        except ValueError:
            logger.warning(f"Traffic log {self.file_path} is corrupt, starting fresh")
            return []
        except OSError as e:
            raise StorageError(f"Failed to read {self.file_path}: {e}") from e

        if not isinstance(data, list):
            logger.warning(f"Traffic log {self.file_path} is not a JSON array, ignoring")
            return []
        return data

    def _write_records(self, records: List[Any]) -> None:
        tmp_path = f"{self.file_path}.tmp"
        try:
            self._ensure_parent_dir()
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(records, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.file_path)
        except OSError as e:
            raise StorageError(f"Failed to write {self.file_path}: {e}") from e

    def _ensure_parent_dir(self) -> None:
        """Create parent directories if needed"""
        os.makedirs(os.path.dirname(os.path.abspath(self.file_path)), exist_ok=True)


class FileBackend(TrafficBackend):
    """Local JSON file detail store with in-process counters"""

    backend_type = "file"
