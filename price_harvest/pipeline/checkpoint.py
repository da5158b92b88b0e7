"""Durable session checkpoints, one JSON file per period."""

from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Callable

from price_harvest.common.errors import StorageError
from price_harvest.common.fs import ensure_dir, read_json, write_json
from price_harvest.common.models import Checkpoint
from price_harvest.storage.retrying import storage_retrying


class JsonCheckpointStore:
    def __init__(
        self,
        state_dir: Path,
        *,
        retry_attempts: int = 3,
        retry_delay_ms: int = 500,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.state_dir = state_dir
        self._retry_attempts = retry_attempts
        self._retry_delay_ms = retry_delay_ms
        self._sleep = sleep

    def path_for(self, period: str) -> Path:
        return self.state_dir / f"checkpoint_{period[:7]}.json"

    def load(self, period: str) -> Checkpoint | None:
        path = self.path_for(period)
        if not path.exists():
            return None
        try:
            return Checkpoint.from_dict(read_json(path))
        except (ValueError, KeyError, TypeError):
            # Keep the unreadable file for inspection and start over.
            os.replace(path, path.with_suffix(".corrupt.json"))
            return None

    def _write(self, path: Path, checkpoint: Checkpoint) -> None:
        try:
            write_json(path, checkpoint.to_dict())
        except OSError as exc:
            raise StorageError(f"Cannot write checkpoint {path}: {exc}") from exc

    def save(self, checkpoint: Checkpoint) -> None:
        retrying = storage_retrying(self._retry_attempts, self._retry_delay_ms, sleep=self._sleep)
        retrying(self._write, self.path_for(checkpoint.period), checkpoint)

    def archive(self, period: str, status: str) -> Path | None:
        """Mark the period's checkpoint terminal and move it out of the resume path."""
        checkpoint = self.load(period)
        if checkpoint is None:
            return None
        archive_dir = self.state_dir / "archive"
        ensure_dir(archive_dir)
        target = archive_dir / f"checkpoint_{period[:7]}_{checkpoint.session_id}.json"
        archived = Checkpoint.from_dict({**checkpoint.to_dict(), "status": status})
        self._write(target, archived)
        self.path_for(period).unlink()
        return target

    def reset(self, period: str) -> bool:
        path = self.path_for(period)
        if not path.exists():
            return False
        path.unlink()
        return True
