"""File-backed storage: one JSON document per period, per session, plus error logs."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable

from price_harvest.common.errors import StorageError
from price_harvest.common.fs import ensure_dir, read_json, write_json
from price_harvest.common.ids import generate_session_id
from price_harvest.common.models import ErrorEntry, PriceRecord
from price_harvest.common.time_utils import utc_timestamp_iso

SESSION_STATUSES = ("running", "paused", "completed", "failed")


def _period_key(period: str) -> str:
    return period[:7]


class JsonFileStorage:
    """Upserts keyed on ``(period, location_id)``; every write is durable on return."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self._records: dict[str, dict[str, dict]] = {}

    def _records_path(self, period: str) -> Path:
        return self.root / "records" / f"{_period_key(period)}.json"

    def _session_path(self, session_id: str) -> Path:
        return self.root / "sessions" / f"{session_id}.json"

    def _errors_path(self, session_id: str) -> Path:
        return self.root / "errors" / f"{session_id}.jsonl"

    def _load_period(self, period: str) -> dict[str, dict]:
        key = _period_key(period)
        if key not in self._records:
            path = self._records_path(period)
            try:
                payload = read_json(path) if path.exists() else {}
            except (OSError, ValueError) as exc:
                raise StorageError(f"Cannot read records for {key}: {exc}") from exc
            self._records[key] = dict(payload.get("records", {}))
        return self._records[key]

    def _write(self, path: Path, payload: Any) -> None:
        try:
            write_json(path, payload)
        except OSError as exc:
            raise StorageError(f"Cannot write {path}: {exc}") from exc

    def record_exists(self, period: str, location_id: str) -> bool:
        return location_id in self._load_period(period)

    def bulk_existing_ids(self, period: str) -> set[str]:
        return set(self._load_period(period))

    def upsert_record(self, record: PriceRecord) -> None:
        self.bulk_upsert([record])

    def bulk_upsert(self, records: Iterable[PriceRecord]) -> int:
        by_period: dict[str, list[PriceRecord]] = {}
        for record in records:
            if not record.has_prices:
                raise ValueError(f"Refusing to store record without prices: {record.location_id}")
            by_period.setdefault(record.period, []).append(record)

        written = 0
        for period, items in by_period.items():
            stored = dict(self._load_period(period))
            now = utc_timestamp_iso()
            for record in items:
                payload = record.to_dict()
                payload["updated_at"] = now
                stored[record.location_id] = payload
            self._write(self._records_path(period), {"period": period, "records": stored})
            self._records[_period_key(period)] = stored
            written += len(items)
        return written

    def records_for_period(self, period: str) -> list[PriceRecord]:
        stored = self._load_period(period)
        return [PriceRecord.from_dict(stored[key]) for key in sorted(stored)]

    def _read_session(self, session_id: str) -> dict:
        path = self._session_path(session_id)
        if not path.exists():
            raise StorageError(f"Unknown session: {session_id}")
        try:
            return read_json(path)
        except (OSError, ValueError) as exc:
            raise StorageError(f"Cannot read session {session_id}: {exc}") from exc

    def start_session(self, period: str, total_targets: int, config_snapshot: dict[str, Any]) -> str:
        session_id = generate_session_id(period)
        now = utc_timestamp_iso()
        self._write(
            self._session_path(session_id),
            {
                "session_id": session_id,
                "period": period,
                "status": "running",
                "total_targets": total_targets,
                "config_snapshot": config_snapshot,
                "progress": {},
                "started_at": now,
                "updated_at": now,
            },
        )
        return session_id

    def update_session(self, session_id: str, progress: dict[str, Any]) -> None:
        session = self._read_session(session_id)
        status = progress.get("status")
        if status is not None and status not in SESSION_STATUSES:
            raise ValueError(f"Unknown session status: {status}")
        session["progress"] = {**session.get("progress", {}), **progress}
        if status is not None:
            session["status"] = status
        session["updated_at"] = utc_timestamp_iso()
        self._write(self._session_path(session_id), session)

    def complete_session(self, session_id: str, summary: dict[str, Any]) -> None:
        session = self._read_session(session_id)
        session.update(status="completed", summary=summary, completed_at=utc_timestamp_iso())
        self._write(self._session_path(session_id), session)

    def fail_session(self, session_id: str, error_info: dict[str, Any]) -> None:
        session = self._read_session(session_id)
        session.update(status="failed", error=error_info, completed_at=utc_timestamp_iso())
        self._write(self._session_path(session_id), session)

    def session(self, session_id: str) -> dict:
        return self._read_session(session_id)

    def log_error(self, session_id: str, entry: ErrorEntry) -> None:
        self.log_errors(session_id, [entry])

    def log_errors(self, session_id: str, entries: Iterable[ErrorEntry]) -> None:
        path = self._errors_path(session_id)
        now = utc_timestamp_iso()
        lines = [json.dumps({**entry.to_dict(), "logged_at": now}, ensure_ascii=False) for entry in entries]
        if not lines:
            return
        try:
            ensure_dir(path.parent)
            with path.open("a", encoding="utf-8") as f:
                for line in lines:
                    f.write(line + "\n")
        except OSError as exc:
            raise StorageError(f"Cannot append errors for {session_id}: {exc}") from exc

    def errors_for_session(self, session_id: str) -> list[dict]:
        path = self._errors_path(session_id)
        if not path.exists():
            return []
        with path.open("r", encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]

    def flush(self) -> None:
        return None
