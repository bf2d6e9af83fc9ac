"""In-memory store of execution records, keyed by execution id."""

from __future__ import annotations

import logging
import threading

from errors import NotFoundError
from execution import ExecutionRecord

logger = logging.getLogger(__name__)


class ExecutionStore:
    """
    Holds every ExecutionRecord handed to the scheduler.

    ``status`` and ``cancel`` return snapshots, so callers never hold a
    reference the background task is still writing to. Records are never
    evicted here.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, ExecutionRecord] = {}

    def add(self, record: ExecutionRecord) -> ExecutionRecord:
        with self._lock:
            if record.id in self._records:
                raise ValueError(f"Execution {record.id} already registered")
            self._records[record.id] = record
        return record

    def get(self, execution_id: str) -> ExecutionRecord:
        with self._lock:
            record = self._records.get(execution_id)
        if record is None:
            raise NotFoundError(execution_id)
        return record

    def status(self, execution_id: str) -> ExecutionRecord:
        return self.get(execution_id).snapshot()

    def cancel(self, execution_id: str) -> ExecutionRecord:
        record = self.get(execution_id)
        if record.request_cancel():
            logger.info(f"[{execution_id}] Cancel requested")
        else:
            logger.info(f"[{execution_id}] Cancel ignored, execution already {record.status}")
        return record.snapshot()

    def list(self) -> list[ExecutionRecord]:
        with self._lock:
            records = list(self._records.values())
        return [r.snapshot() for r in records]

    def __contains__(self, execution_id: str) -> bool:
        with self._lock:
            return execution_id in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
