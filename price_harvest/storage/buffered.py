"""Write batching and duplicate caching in front of a storage backend."""

from __future__ import annotations

import time
from typing import Any, Callable, Iterable

from price_harvest.common.interfaces import StorageBackend
from price_harvest.common.models import ErrorEntry, PriceRecord
from price_harvest.storage.retrying import storage_retrying


class BufferedStorage:
    """Buffers record upserts and error entries, flushing at size thresholds.

    Nothing is durable until ``flush`` has returned. Backend calls are retried on
    ``StorageError``; a persistent failure propagates to the caller.
    """

    def __init__(
        self,
        backend: StorageBackend,
        *,
        result_batch_size: int = 100,
        error_batch_size: int = 50,
        retry_attempts: int = 3,
        retry_delay_ms: int = 500,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.backend = backend
        self.result_batch_size = result_batch_size
        self.error_batch_size = error_batch_size
        self._retry_attempts = retry_attempts
        self._retry_delay_ms = retry_delay_ms
        self._sleep = sleep
        self._pending_records: dict[tuple[str, str], PriceRecord] = {}
        self._pending_errors: list[tuple[str, ErrorEntry]] = []
        self._existing: dict[str, set[str]] = {}

    def _call(self, fn: Callable, *args: Any) -> Any:
        retrying = storage_retrying(self._retry_attempts, self._retry_delay_ms, sleep=self._sleep)
        return retrying(fn, *args)

    def pending_records(self) -> list[PriceRecord]:
        return list(self._pending_records.values())

    def pending_errors(self) -> list[ErrorEntry]:
        return [entry for _session_id, entry in self._pending_errors]

    def record_exists(self, period: str, location_id: str) -> bool:
        if (period, location_id) in self._pending_records:
            return True
        if location_id in self._existing.get(period, set()):
            return True
        return bool(self._call(self.backend.record_exists, period, location_id))

    def bulk_existing_ids(self, period: str) -> set[str]:
        existing = set(self._call(self.backend.bulk_existing_ids, period))
        existing.update(location_id for p, location_id in self._pending_records if p == period)
        self._existing[period] = existing
        return set(existing)

    def upsert_record(self, record: PriceRecord) -> None:
        if not record.has_prices:
            raise ValueError(f"Refusing to buffer record without prices: {record.location_id}")
        self._pending_records[record.key] = record
        if len(self._pending_records) >= self.result_batch_size:
            self.flush_records()

    def bulk_upsert(self, records: Iterable[PriceRecord]) -> int:
        count = 0
        for record in records:
            self.upsert_record(record)
            count += 1
        return count

    def records_for_period(self, period: str) -> list[PriceRecord]:
        self.flush_records()
        return list(self._call(self.backend.records_for_period, period))

    def start_session(self, period: str, total_targets: int, config_snapshot: dict[str, Any]) -> str:
        return self._call(self.backend.start_session, period, total_targets, config_snapshot)

    def update_session(self, session_id: str, progress: dict[str, Any]) -> None:
        self._call(self.backend.update_session, session_id, progress)

    def complete_session(self, session_id: str, summary: dict[str, Any]) -> None:
        self.flush()
        self._call(self.backend.complete_session, session_id, summary)

    def fail_session(self, session_id: str, error_info: dict[str, Any]) -> None:
        self._call(self.backend.fail_session, session_id, error_info)

    def log_error(self, session_id: str, entry: ErrorEntry) -> None:
        self._pending_errors.append((session_id, entry))
        if len(self._pending_errors) >= self.error_batch_size:
            self.flush_errors()

    def flush_records(self) -> int:
        if not self._pending_records:
            return 0
        records = list(self._pending_records.values())
        written = self._call(self.backend.bulk_upsert, records)
        for record in records:
            self._existing.setdefault(record.period, set()).add(record.location_id)
        self._pending_records.clear()
        return written

    def flush_errors(self) -> int:
        written = 0
        while self._pending_errors:
            session_id, entry = self._pending_errors[0]
            self._call(self.backend.log_error, session_id, entry)
            self._pending_errors.pop(0)
            written += 1
        return written

    def flush(self) -> None:
        self.flush_records()
        self.flush_errors()
        self.backend.flush()
