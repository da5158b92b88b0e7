"""Data models used across the pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Iterable


class RecordSource(str, Enum):
    ORIGINAL = "ORIGINAL"
    FALLBACK = "FALLBACK"
    NOT_FOUND = "NOT_FOUND"
    ERROR = "ERROR"


class Severity(str, Enum):
    NORMAL = "normal"
    HIGH = "high"
    VERY_HIGH = "very_high"
    EXTREME = "extreme"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def worst(self, other: "Severity") -> "Severity":
        return self if self.rank >= other.rank else other


_SEVERITY_RANK = {
    Severity.NORMAL: 0,
    Severity.HIGH: 1,
    Severity.VERY_HIGH: 2,
    Severity.EXTREME: 3,
}


class SizeClass(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class SessionPhase(str, Enum):
    UNINITIALIZED = "uninitialized"
    STARTING = "starting"
    BATCH_ACTIVE = "batch_active"
    BATCH_PAUSED = "batch_paused"
    FALLBACK_PENDING = "fallback_pending"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class Target:
    location_id: str
    display_name: str
    normalized_name: str
    latitude: float | None = None
    longitude: float | None = None


@dataclass(frozen=True)
class ReferenceEntry:
    location_id: str
    display_name: str
    latitude: float
    longitude: float


@dataclass(frozen=True)
class FetchedPage:
    url: str
    html: str
    status_code: int


@dataclass(frozen=True)
class ExtractionResult:
    local_provider_price: float | None
    green_energy_price: float | None
    average_price: float | None
    method: str
    format_detected: str
    city_class: SizeClass
    diagnostics: tuple[str, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.average_price is not None and self.method != "failed"


@dataclass(frozen=True)
class OutlierAssessment:
    has_outlier: bool
    severity: Severity
    warnings: tuple[str, ...] = ()
    outlier_types: tuple[str, ...] = ()


@dataclass(frozen=True)
class RecordValidation:
    valid: bool
    quality_score: float
    issues: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class PriceRecord:
    location_id: str
    period: str
    display_name: str
    local_provider_price: float | None
    green_energy_price: float | None
    average_price: float | None
    source: RecordSource = RecordSource.ORIGINAL
    source_location_id: str | None = None
    distance_km: float = 0.0
    is_outlier: bool = False
    outlier_severity: Severity = Severity.NORMAL
    quality_score: float = 1.0
    extraction_method: str = "failed"
    raw_source_url: str | None = None
    latitude: float | None = None
    longitude: float | None = None

    @property
    def key(self) -> tuple[str, str]:
        return self.period, self.location_id

    @property
    def has_prices(self) -> bool:
        return self.local_provider_price is not None or self.green_energy_price is not None

    def with_changes(self, **changes: Any) -> "PriceRecord":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["source"] = self.source.value
        payload["outlier_severity"] = self.outlier_severity.value
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "PriceRecord":
        return cls(
            location_id=str(payload["location_id"]),
            period=str(payload["period"]),
            display_name=payload.get("display_name") or "",
            local_provider_price=payload.get("local_provider_price"),
            green_energy_price=payload.get("green_energy_price"),
            average_price=payload.get("average_price"),
            source=RecordSource(payload.get("source", RecordSource.ORIGINAL.value)),
            source_location_id=payload.get("source_location_id"),
            distance_km=float(payload.get("distance_km") or 0.0),
            is_outlier=bool(payload.get("is_outlier", False)),
            outlier_severity=Severity(payload.get("outlier_severity", Severity.NORMAL.value)),
            quality_score=float(payload.get("quality_score", 1.0)),
            extraction_method=payload.get("extraction_method") or "failed",
            raw_source_url=payload.get("raw_source_url"),
            latitude=payload.get("latitude"),
            longitude=payload.get("longitude"),
        )


@dataclass(frozen=True)
class ErrorEntry:
    location_id: str
    period: str
    error_type: str
    error_message: str
    source: RecordSource = RecordSource.ERROR
    url: str | None = None
    attempts: int = 1
    status_code: int | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["source"] = self.source.value
        return payload


@dataclass(frozen=True)
class Checkpoint:
    session_id: str
    period: str
    batch_index: int
    total_batches: int
    total_targets: int
    processed_ids: tuple[str, ...]
    started_at: str
    updated_at: str
    result_count: int = 0
    error_count: int = 0
    status: str = "running"
    error_counts: dict[str, int] = field(default_factory=dict)
    outlier_counts: dict[str, int] = field(default_factory=dict)
    fallback_count: int = 0
    skipped_ids: tuple[str, ...] = ()

    def compatible_with(self, *, total_targets: int, total_batches: int) -> bool:
        return (
            self.status != "completed"
            and self.total_targets == total_targets
            and self.total_batches == total_batches
        )

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["processed_ids"] = sorted(self.processed_ids)
        payload["skipped_ids"] = sorted(self.skipped_ids)
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Checkpoint":
        return cls(
            session_id=str(payload["session_id"]),
            period=str(payload["period"]),
            batch_index=int(payload["batch_index"]),
            total_batches=int(payload["total_batches"]),
            total_targets=int(payload["total_targets"]),
            processed_ids=tuple(str(item) for item in payload.get("processed_ids", [])),
            started_at=str(payload.get("started_at", "")),
            updated_at=str(payload.get("updated_at", "")),
            result_count=int(payload.get("result_count", 0)),
            error_count=int(payload.get("error_count", 0)),
            status=str(payload.get("status", "running")),
            error_counts=_int_counts(payload.get("error_counts")),
            outlier_counts=_int_counts(payload.get("outlier_counts")),
            fallback_count=int(payload.get("fallback_count", 0)),
            skipped_ids=tuple(str(item) for item in payload.get("skipped_ids", [])),
        )


def _int_counts(raw: Any) -> dict[str, int]:
    return {str(key): int(value) for key, value in (raw or {}).items()}


def _decrement(counts: dict[str, int], key: str) -> None:
    remaining = counts.get(key, 0) - 1
    if remaining > 0:
        counts[key] = remaining
    else:
        counts.pop(key, None)


@dataclass
class SessionState:
    """Mutable run state, owned by the session controller."""

    session_id: str
    period: str
    total_batches: int
    total_targets: int
    started_at: str
    config_snapshot: dict[str, Any]
    batch_index: int = 0
    processed_ids: set[str] = field(default_factory=set)
    result_count: int = 0
    error_count: int = 0
    phase: SessionPhase = SessionPhase.UNINITIALIZED
    error_counts: dict[str, int] = field(default_factory=dict)
    outlier_counts: dict[str, int] = field(default_factory=dict)
    fallback_count: int = 0
    skipped_ids: set[str] = field(default_factory=set)
    since_checkpoint: int = 0
    fetch_count: int = 0
    resumed: bool = False

    @property
    def skipped_existing(self) -> int:
        return len(self.skipped_ids)

    def mark_processed(self, location_id: str) -> None:
        self.processed_ids.add(location_id)
        self.since_checkpoint += 1

    def count_error(self, error_type: str) -> None:
        self.error_count += 1
        self.error_counts[error_type] = self.error_counts.get(error_type, 0) + 1

    def count_outlier(self, severity: Severity) -> None:
        self.outlier_counts[severity.value] = self.outlier_counts.get(severity.value, 0) + 1

    def to_checkpoint(
        self,
        *,
        updated_at: str,
        status: str,
        unflushed_records: Iterable[PriceRecord] = (),
        unflushed_errors: Iterable[ErrorEntry] = (),
    ) -> Checkpoint:
        """Snapshot progress.

        Targets whose record or error entry is still unflushed are left out, along
        with their counts, so a resume redoes them exactly once.
        """
        processed = set(self.processed_ids)
        result_count = self.result_count
        error_count = self.error_count
        error_counts = dict(self.error_counts)
        outlier_counts = dict(self.outlier_counts)

        for record in unflushed_records:
            if record.source is not RecordSource.ORIGINAL or record.location_id not in processed:
                continue
            processed.discard(record.location_id)
            result_count -= 1
            if record.is_outlier:
                _decrement(outlier_counts, record.outlier_severity.value)
        for entry in unflushed_errors:
            if entry.location_id not in processed:
                continue
            processed.discard(entry.location_id)
            error_count -= 1
            _decrement(error_counts, entry.error_type)

        return Checkpoint(
            session_id=self.session_id,
            period=self.period,
            batch_index=self.batch_index,
            total_batches=self.total_batches,
            total_targets=self.total_targets,
            processed_ids=tuple(sorted(processed)),
            started_at=self.started_at,
            updated_at=updated_at,
            result_count=result_count,
            error_count=error_count,
            status=status,
            error_counts=error_counts,
            outlier_counts=outlier_counts,
            fallback_count=self.fallback_count,
            skipped_ids=tuple(sorted(self.skipped_ids)),
        )

    @classmethod
    def from_checkpoint(cls, checkpoint: Checkpoint, config_snapshot: dict[str, Any]) -> "SessionState":
        return cls(
            session_id=checkpoint.session_id,
            period=checkpoint.period,
            total_batches=checkpoint.total_batches,
            total_targets=checkpoint.total_targets,
            started_at=checkpoint.started_at,
            config_snapshot=config_snapshot,
            batch_index=checkpoint.batch_index,
            processed_ids=set(checkpoint.processed_ids),
            result_count=checkpoint.result_count,
            error_count=checkpoint.error_count,
            error_counts=dict(checkpoint.error_counts),
            outlier_counts=dict(checkpoint.outlier_counts),
            fallback_count=checkpoint.fallback_count,
            skipped_ids=set(checkpoint.skipped_ids),
            resumed=True,
        )
