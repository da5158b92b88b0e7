from pathlib import Path

import pytest

from price_harvest.common.errors import StorageError
from price_harvest.common.models import ErrorEntry, PriceRecord, RecordSource
from price_harvest.storage.buffered import BufferedStorage
from price_harvest.storage.json_store import JsonFileStorage

PERIOD = "2026-03-01"


def _record(location_id: str, local: float = 0.40, green: float | None = 0.30) -> PriceRecord:
    return PriceRecord(
        location_id=location_id,
        period=PERIOD,
        display_name=f"Ort {location_id}",
        local_provider_price=local,
        green_energy_price=green,
        average_price=local if green is None else round((local + green) / 2, 4),
        extraction_method="table_standard",
    )


def test_upsert_is_idempotent_and_keeps_latest(tmp_path: Path):
    storage = JsonFileStorage(tmp_path)
    storage.upsert_record(_record("10115", local=0.40))
    storage.upsert_record(_record("10115", local=0.44))

    records = storage.records_for_period(PERIOD)
    assert len(records) == 1
    assert records[0].local_provider_price == 0.44

    reopened = JsonFileStorage(tmp_path)
    assert reopened.bulk_existing_ids(PERIOD) == {"10115"}
    assert reopened.record_exists(PERIOD, "10115")
    assert not reopened.record_exists("2026-04-01", "10115")


def test_records_round_trip_enums(tmp_path: Path):
    storage = JsonFileStorage(tmp_path)
    fallback = _record("10117").with_changes(source=RecordSource.FALLBACK, source_location_id="10115", distance_km=1.2)
    storage.bulk_upsert([_record("10115"), fallback])

    loaded = {record.location_id: record for record in JsonFileStorage(tmp_path).records_for_period(PERIOD)}
    assert loaded["10117"].source is RecordSource.FALLBACK
    assert loaded["10117"].distance_km == 1.2


def test_records_without_prices_are_refused(tmp_path: Path):
    storage = JsonFileStorage(tmp_path)
    empty = _record("10115").with_changes(local_provider_price=None, green_energy_price=None, average_price=None)
    with pytest.raises(ValueError):
        storage.upsert_record(empty)


def test_session_lifecycle_and_error_log(tmp_path: Path):
    storage = JsonFileStorage(tmp_path)
    session_id = storage.start_session(PERIOD, 12, {"batching": {"total_batches": 3}})
    storage.update_session(session_id, {"status": "paused", "batch_index": 1})
    storage.log_error(session_id, ErrorEntry("10115", PERIOD, "not_found", "gone", source=RecordSource.NOT_FOUND))
    storage.complete_session(session_id, {"results": 11})

    session = storage.session(session_id)
    assert session["status"] == "completed"
    assert session["progress"]["batch_index"] == 1
    assert session["summary"] == {"results": 11}
    errors = storage.errors_for_session(session_id)
    assert errors[0]["source"] == "NOT_FOUND"


def test_unknown_session_raises(tmp_path: Path):
    with pytest.raises(StorageError):
        JsonFileStorage(tmp_path).update_session("missing", {})


class FlakyStorage(JsonFileStorage):
    def __init__(self, root: Path, failures: int):
        super().__init__(root)
        self.failures = failures
        self.bulk_calls = 0

    def bulk_upsert(self, records):
        self.bulk_calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise StorageError("temporarily unavailable")
        return super().bulk_upsert(records)


def test_buffered_writes_flush_at_threshold(tmp_path: Path):
    backend = JsonFileStorage(tmp_path)
    buffered = BufferedStorage(backend, result_batch_size=3)

    buffered.upsert_record(_record("10115"))
    buffered.upsert_record(_record("10117"))
    assert backend.bulk_existing_ids(PERIOD) == set()
    assert [record.location_id for record in buffered.pending_records()] == ["10115", "10117"]
    assert buffered.record_exists(PERIOD, "10115")

    buffered.upsert_record(_record("10119"))
    assert backend.bulk_existing_ids(PERIOD) == {"10115", "10117", "10119"}
    assert buffered.pending_records() == []


def test_buffered_errors_flush_on_demand(tmp_path: Path):
    backend = JsonFileStorage(tmp_path)
    buffered = BufferedStorage(backend, error_batch_size=10)
    buffered.log_error("s-1", ErrorEntry("10115", PERIOD, "timeout", "slow"))

    assert backend.errors_for_session("s-1") == []
    assert [entry.location_id for entry in buffered.pending_errors()] == ["10115"]
    buffered.flush()
    assert len(backend.errors_for_session("s-1")) == 1


def test_bulk_existing_ids_includes_pending(tmp_path: Path):
    backend = JsonFileStorage(tmp_path)
    backend.upsert_record(_record("10115"))
    buffered = BufferedStorage(backend)
    buffered.upsert_record(_record("10117"))
    assert buffered.bulk_existing_ids(PERIOD) == {"10115", "10117"}


def test_transient_storage_errors_are_retried(tmp_path: Path):
    sleeps: list[float] = []
    backend = FlakyStorage(tmp_path, failures=2)
    buffered = BufferedStorage(backend, retry_attempts=3, retry_delay_ms=100, sleep=sleeps.append)
    buffered.upsert_record(_record("10115"))

    buffered.flush()

    assert backend.bulk_calls == 3
    assert sleeps == [0.1, 0.1]
    assert backend.bulk_existing_ids(PERIOD) == {"10115"}


def test_persistent_storage_errors_propagate(tmp_path: Path):
    backend = FlakyStorage(tmp_path, failures=99)
    buffered = BufferedStorage(backend, retry_attempts=2, retry_delay_ms=0, sleep=lambda _s: None)
    buffered.upsert_record(_record("10115"))

    with pytest.raises(StorageError):
        buffered.flush()
    assert [record.location_id for record in buffered.pending_records()] == ["10115"]
