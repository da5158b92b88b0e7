"""Capability contracts consumed by the session controller."""

from __future__ import annotations

from typing import Any, Iterable, Iterator, Protocol

from price_harvest.common.models import (
    Checkpoint,
    ErrorEntry,
    FetchedPage,
    PriceRecord,
    ReferenceEntry,
    Target,
)


class Fetcher(Protocol):
    def build_url(self, target: Target) -> str:
        ...

    def fetch(self, url: str) -> FetchedPage:
        """Return the page or raise ``FetchError`` classified by kind."""
        ...


class StorageBackend(Protocol):
    def record_exists(self, period: str, location_id: str) -> bool:
        ...

    def bulk_existing_ids(self, period: str) -> set[str]:
        ...

    def upsert_record(self, record: PriceRecord) -> None:
        ...

    def bulk_upsert(self, records: Iterable[PriceRecord]) -> int:
        ...

    def records_for_period(self, period: str) -> list[PriceRecord]:
        ...

    def start_session(self, period: str, total_targets: int, config_snapshot: dict[str, Any]) -> str:
        ...

    def update_session(self, session_id: str, progress: dict[str, Any]) -> None:
        ...

    def complete_session(self, session_id: str, summary: dict[str, Any]) -> None:
        ...

    def fail_session(self, session_id: str, error_info: dict[str, Any]) -> None:
        ...

    def log_error(self, session_id: str, entry: ErrorEntry) -> None:
        ...

    def flush(self) -> None:
        ...


class ReferenceData(Protocol):
    def lookup(self, location_id: str) -> ReferenceEntry | None:
        ...

    def __iter__(self) -> Iterator[ReferenceEntry]:
        ...


class CheckpointStore(Protocol):
    def load(self, period: str) -> Checkpoint | None:
        ...

    def save(self, checkpoint: Checkpoint) -> None:
        ...

    def archive(self, period: str, status: str) -> None:
        ...
