"""Batched, checkpointed scraping session.

One session covers one period. Targets are split into ``total_batches`` equal
batches and processed strictly one at a time. Progress is checkpointed every
``checkpoint_interval`` targets and at each batch boundary, so an interrupted
run resumes without re-fetching anything it already attempted.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from functools import partial
from typing import Callable, Sequence

from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt, wait_fixed

from price_harvest.common.config_loader import ScraperSettings
from price_harvest.common.errors import ConfigError, FetchError, StageError
from price_harvest.common.interfaces import CheckpointStore, Fetcher, ReferenceData, StorageBackend
from price_harvest.common.logging import get_logger, log_event
from price_harvest.common.models import (
    ErrorEntry,
    FetchedPage,
    PriceRecord,
    RecordSource,
    SessionPhase,
    SessionState,
    Target,
)
from price_harvest.common.time_utils import elapsed_ms, parse_period, utc_timestamp_iso
from price_harvest.extraction.engine import extract
from price_harvest.pipeline.fallback import find_fallback
from price_harvest.pipeline.reports import session_summary
from price_harvest.quality.outliers import assess_outliers, validate_record
from price_harvest.storage.buffered import BufferedStorage

ALLOWED_TRANSITIONS = {
    SessionPhase.UNINITIALIZED: {SessionPhase.STARTING},
    SessionPhase.STARTING: {
        SessionPhase.BATCH_ACTIVE,
        SessionPhase.FALLBACK_PENDING,
        SessionPhase.FINALIZING,
        SessionPhase.FAILED,
    },
    SessionPhase.BATCH_ACTIVE: {
        SessionPhase.BATCH_PAUSED,
        SessionPhase.FALLBACK_PENDING,
        SessionPhase.FINALIZING,
        SessionPhase.FAILED,
    },
    SessionPhase.BATCH_PAUSED: {SessionPhase.BATCH_ACTIVE, SessionPhase.FAILED},
    SessionPhase.FALLBACK_PENDING: {SessionPhase.FINALIZING, SessionPhase.FAILED},
    SessionPhase.FINALIZING: {SessionPhase.COMPLETED, SessionPhase.FAILED},
    SessionPhase.COMPLETED: set(),
    SessionPhase.FAILED: set(),
}

EXTRACTION_FAILED = "extraction_failed"
VALIDATION_FAILED = "validation_failed"


@dataclass(frozen=True)
class SessionOutcome:
    status: str
    session_id: str
    period: str
    batch_index: int
    total_batches: int
    processed: int
    total_targets: int
    summary: dict

    @property
    def paused(self) -> bool:
        return self.status == "paused"


def transition(state: SessionState, phase: SessionPhase) -> None:
    if phase not in ALLOWED_TRANSITIONS[state.phase]:
        raise StageError(f"Illegal session transition {state.phase.value} -> {phase.value}")
    state.phase = phase


def partition_batches(targets: Sequence[Target], total_batches: int) -> list[list[Target]]:
    """Split into exactly ``total_batches`` batches of ``ceil(n / total_batches)``; trailing ones may be empty."""
    size = max(math.ceil(len(targets) / total_batches), 1)
    batches = [list(targets[start : start + size]) for start in range(0, len(targets), size)]
    while len(batches) < total_batches:
        batches.append([])
    return batches


def _is_retryable_fetch(exc: BaseException) -> bool:
    return isinstance(exc, FetchError) and exc.retryable


class SessionController:
    def __init__(
        self,
        settings: ScraperSettings,
        *,
        fetcher: Fetcher,
        storage: StorageBackend,
        checkpoints: CheckpointStore,
        reference: ReferenceData | None = None,
        logger: logging.Logger | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.fetcher = fetcher
        self.storage = BufferedStorage(
            storage,
            result_batch_size=settings.result_batch_size,
            error_batch_size=settings.error_batch_size,
            retry_attempts=settings.storage_retry_attempts,
            retry_delay_ms=settings.storage_retry_delay_ms,
            sleep=sleep,
        )
        self.checkpoints = checkpoints
        self.reference = reference
        self.logger = logger or get_logger()
        self.sleep = sleep
        self.clock = clock

    def _log(self, state: SessionState | None, message: str, **fields) -> None:
        if state is not None:
            fields.setdefault("session_id", state.session_id)
            fields.setdefault("period", state.period)
            fields.setdefault("batch", state.batch_index)
        log_event(self.logger, message, **fields)

    def _pause(self, milliseconds: int) -> None:
        if milliseconds > 0:
            self.sleep(milliseconds / 1000)

    # -- lifecycle -----------------------------------------------------------------

    def run(self, targets: Sequence[Target], period: str | None = None) -> SessionOutcome:
        """Run or resume the session for ``period``.

        Returns a ``paused`` outcome at a batch boundary unless auto-progress is
        enabled. Any unhandled error marks the session failed and propagates.
        """
        period = parse_period(period)
        targets = self._unique_targets(targets)
        state: SessionState | None = None
        try:
            state, existing = self._start(targets, period)
            batches = partition_batches(targets, state.total_batches)

            while state.batch_index < state.total_batches:
                transition(state, SessionPhase.BATCH_ACTIVE)
                self._run_batch(state, batches[state.batch_index], existing)
                state.batch_index += 1
                if state.batch_index >= state.total_batches:
                    self._save_checkpoint(state, "running")
                    break

                transition(state, SessionPhase.BATCH_PAUSED)
                if not self.settings.auto_progress:
                    self._save_checkpoint(state, "paused")
                    self._log(
                        state,
                        "batch complete; re-run to continue",
                        event="BATCH_PAUSE",
                        status="paused",
                    )
                    return self._outcome(state, "paused")

                self._save_checkpoint(state, "running")
                self._log(state, "pausing between batches", event="BATCH_PAUSE", status="ok")
                self._pause(self.settings.batch_pause_ms)

            if self.settings.fallback_enabled:
                transition(state, SessionPhase.FALLBACK_PENDING)
                state.fallback_count += self.complete_missing(targets, period, state=state)

            return self._finalize(state)
        except Exception as exc:
            if state is not None:
                self._fail(state, exc)
            raise

    def _unique_targets(self, targets: Sequence[Target]) -> list[Target]:
        if not targets:
            raise ConfigError("No targets to process")
        seen: set[str] = set()
        unique = []
        for target in targets:
            if target.location_id in seen:
                continue
            seen.add(target.location_id)
            unique.append(target)
        return unique

    def _start(self, targets: list[Target], period: str) -> tuple[SessionState, set[str]]:
        total_batches = self.settings.total_batches
        snapshot = self.settings.snapshot()
        checkpoint = self.checkpoints.load(period)

        if checkpoint is not None and checkpoint.compatible_with(
            total_targets=len(targets), total_batches=total_batches
        ):
            state = SessionState.from_checkpoint(checkpoint, snapshot)
            transition(state, SessionPhase.STARTING)
            self.storage.update_session(state.session_id, {"status": "running", "resumed_at": utc_timestamp_iso()})
            self._log(
                state,
                f"resuming at batch {state.batch_index + 1}/{total_batches} "
                f"with {len(state.processed_ids)} targets already processed",
                event="SESSION_RESUME",
                status="ok",
            )
        else:
            if checkpoint is not None:
                self._log(
                    None,
                    "checkpoint does not match this run; starting fresh",
                    session_id=checkpoint.session_id,
                    period=period,
                    event="SESSION_START",
                    status="warning",
                )
            session_id = self.storage.start_session(period, len(targets), snapshot)
            state = SessionState(
                session_id=session_id,
                period=period,
                total_batches=total_batches,
                total_targets=len(targets),
                started_at=utc_timestamp_iso(),
                config_snapshot=snapshot,
            )
            transition(state, SessionPhase.STARTING)
            self._log(
                state,
                f"starting session for {len(targets)} targets in {total_batches} batches",
                event="SESSION_START",
                status="ok",
            )
            self._save_checkpoint(state, "running")

        existing: set[str] = set()
        if self.settings.duplicate_handling == "skip":
            existing = self.storage.bulk_existing_ids(period)
        return state, existing

    def _finalize(self, state: SessionState) -> SessionOutcome:
        transition(state, SessionPhase.FINALIZING)
        self.storage.flush()
        summary = session_summary(state)
        self.storage.complete_session(state.session_id, summary)
        self.checkpoints.archive(state.period, "completed")
        transition(state, SessionPhase.COMPLETED)
        self._log(
            state,
            f"session complete: {state.result_count} results, {state.error_count} errors, "
            f"{state.fallback_count} fallbacks",
            event="SESSION_COMPLETE",
            status="ok",
        )
        return self._outcome(state, "completed")

    def _fail(self, state: SessionState, exc: Exception) -> None:
        if SessionPhase.FAILED in ALLOWED_TRANSITIONS[state.phase]:
            transition(state, SessionPhase.FAILED)
        error_code = getattr(exc, "error_code", "UNEXPECTED_ERROR")
        try:
            # Unflushed writes are dropped from the checkpoint so a resume redoes them.
            checkpoint = state.to_checkpoint(
                updated_at=utc_timestamp_iso(),
                status="failed",
                unflushed_records=self.storage.pending_records(),
                unflushed_errors=self.storage.pending_errors(),
            )
            self.checkpoints.save(checkpoint)
        except Exception as save_exc:
            self._log(state, f"could not save checkpoint after failure: {save_exc}", event="CHECKPOINT", status="error")
        try:
            self.storage.fail_session(
                state.session_id,
                {"error_code": error_code, "message": str(exc), "summary": session_summary(state)},
            )
        except Exception as fail_exc:
            self._log(state, f"could not mark session failed: {fail_exc}", event="SESSION_FAIL", status="error")
        self._log(state, f"session failed: {exc}", event="SESSION_FAIL", status="error", error_code=error_code)

    def _outcome(self, state: SessionState, status: str) -> SessionOutcome:
        return SessionOutcome(
            status=status,
            session_id=state.session_id,
            period=state.period,
            batch_index=state.batch_index,
            total_batches=state.total_batches,
            processed=len(state.processed_ids),
            total_targets=state.total_targets,
            summary=session_summary(state),
        )

    def _save_checkpoint(self, state: SessionState, status: str) -> None:
        self.storage.flush()
        self.checkpoints.save(state.to_checkpoint(updated_at=utc_timestamp_iso(), status=status))
        self.storage.update_session(
            state.session_id,
            {
                "status": status,
                "batch_index": state.batch_index,
                "processed_count": len(state.processed_ids),
                "result_count": state.result_count,
                "error_count": state.error_count,
            },
        )
        state.since_checkpoint = 0
        self._log(state, f"checkpoint saved ({len(state.processed_ids)} processed)", event="CHECKPOINT", status=status)

    # -- batches and targets -------------------------------------------------------

    def _run_batch(self, state: SessionState, batch: list[Target], existing: set[str]) -> None:
        self._log(
            state,
            f"batch {state.batch_index + 1}/{state.total_batches} with {len(batch)} targets",
            event="BATCH_START",
            status="ok",
        )
        for target in batch:
            if target.location_id in state.processed_ids:
                continue
            if target.location_id in existing:
                state.skipped_ids.add(target.location_id)
                self._log(
                    state,
                    f"{target.display_name} already has data for this period",
                    location_id=target.location_id,
                    event="TARGET_SKIP",
                    status="skipped",
                )
                continue

            if state.fetch_count > 0:
                self._pause(self.settings.between_requests_ms)
            self.process_target(state, target)
            state.mark_processed(target.location_id)
            if state.since_checkpoint >= self.settings.checkpoint_interval:
                self._save_checkpoint(state, "running")

    def _log_retry(self, state: SessionState, target: Target, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        self._log(
            state,
            f"retrying {target.display_name} after {getattr(exc, 'kind', 'error')}: {exc}",
            location_id=target.location_id,
            event="FETCH_RETRY",
            status="retry",
            attempt=retry_state.attempt_number,
        )

    def _fetch_with_retry(
        self, state: SessionState, target: Target, url: str
    ) -> tuple[FetchedPage | None, FetchError | None, int]:
        retrying = Retrying(
            stop=stop_after_attempt(self.settings.max_retries + 1),
            wait=wait_fixed(self.settings.retry_delay_ms / 1000),
            retry=retry_if_exception(_is_retryable_fetch),
            before_sleep=partial(self._log_retry, state, target),
            sleep=self.sleep,
            reraise=True,
        )
        attempts = 0
        try:
            for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    state.fetch_count += 1
                    return self.fetcher.fetch(url), None, attempts
        except FetchError as exc:
            return None, exc, attempts
        raise StageError(f"Retry loop ended without a result for {url}")

    def process_target(self, state: SessionState, target: Target) -> PriceRecord | None:
        """Fetch, extract, screen and persist one target.

        Per-target failures are logged as error entries and never raised.
        """
        url = self.fetcher.build_url(target)
        started = self.clock()
        page, error, attempts = self._fetch_with_retry(state, target, url)

        if error is not None:
            source = RecordSource.NOT_FOUND if error.kind == "not_found" else RecordSource.ERROR
            self._record_error(
                state,
                target,
                url,
                error.kind,
                str(error),
                source=source,
                attempts=attempts,
                status_code=error.status_code,
            )
            return None

        result = extract(page.html, band=self.settings.band)
        if not result.succeeded:
            self._record_error(
                state,
                target,
                url,
                EXTRACTION_FAILED,
                f"no usable price ({result.city_class.value} page)",
                attempts=attempts,
                status_code=page.status_code,
            )
            return None

        assessment = assess_outliers(
            result.local_provider_price,
            result.green_energy_price,
            self.settings.thresholds,
        )
        record = PriceRecord(
            location_id=target.location_id,
            period=state.period,
            display_name=target.display_name,
            local_provider_price=result.local_provider_price,
            green_energy_price=result.green_energy_price,
            average_price=result.average_price,
            source=RecordSource.ORIGINAL,
            distance_km=0.0,
            is_outlier=assessment.has_outlier,
            outlier_severity=assessment.severity,
            extraction_method=result.method,
            raw_source_url=url,
            latitude=target.latitude,
            longitude=target.longitude,
        )
        validation = validate_record(record, self.settings.band)
        if not validation.valid:
            self._record_error(
                state,
                target,
                url,
                VALIDATION_FAILED,
                "; ".join(validation.issues) or "record failed validation",
                attempts=attempts,
                status_code=page.status_code,
            )
            return None

        record = record.with_changes(quality_score=validation.quality_score)
        self.storage.upsert_record(record)
        state.result_count += 1
        if assessment.has_outlier:
            state.count_outlier(assessment.severity)
        self._log(
            state,
            f"{target.display_name}: average {record.average_price:.4f} EUR/kWh via {result.method}"
            + (f" [{assessment.severity.value} outlier]" if assessment.has_outlier else ""),
            location_id=target.location_id,
            event="TARGET_OK",
            status="ok",
            attempt=attempts,
            duration_ms=elapsed_ms(started, self.clock()),
        )
        return record

    def _record_error(
        self,
        state: SessionState,
        target: Target,
        url: str,
        error_type: str,
        message: str,
        *,
        source: RecordSource = RecordSource.ERROR,
        attempts: int = 1,
        status_code: int | None = None,
    ) -> None:
        entry = ErrorEntry(
            location_id=target.location_id,
            period=state.period,
            error_type=error_type,
            error_message=message,
            source=source,
            url=url,
            attempts=attempts,
            status_code=status_code,
        )
        self.storage.log_error(state.session_id, entry)
        state.count_error(error_type)
        self._log(
            state,
            f"{target.display_name}: {error_type}: {message}",
            location_id=target.location_id,
            event="TARGET_FAIL",
            status="not_found" if source is RecordSource.NOT_FOUND else "error",
            attempt=attempts,
            error_code=error_type.upper(),
        )

    # -- geographic completion -----------------------------------------------------

    def complete_missing(
        self,
        targets: Sequence[Target],
        period: str,
        *,
        state: SessionState | None = None,
    ) -> int:
        """Persist a fallback record for every target that still has none; returns the count."""
        period = parse_period(period)
        records = self.storage.records_for_period(period)
        covered = {record.location_id for record in records}
        originals = [record for record in records if record.source is RecordSource.ORIGINAL]

        completed = 0
        for target in targets:
            if target.location_id in covered:
                continue
            fallback = find_fallback(
                target,
                originals,
                self.settings.max_distance_km,
                self.reference,
            )
            if fallback is None:
                continue
            self.storage.upsert_record(fallback)
            covered.add(target.location_id)
            completed += 1
            self._log(
                state,
                f"{target.display_name}: borrowed prices from {fallback.source_location_id} "
                f"({fallback.distance_km:.2f} km)",
                period=period,
                location_id=target.location_id,
                event="FALLBACK_OK",
                status="ok",
            )
        self.storage.flush()
        return completed
