"""Domain errors and failure typing."""

from __future__ import annotations

FETCH_ERROR_KINDS = ("not_found", "blocked", "timeout", "network", "unknown")
RETRYABLE_FETCH_KINDS = frozenset({"blocked", "timeout", "network", "unknown"})


class PipelineError(Exception):
    """Base class for pipeline failures."""

    error_code = "PIPELINE_ERROR"


class ConfigError(PipelineError):
    """Raised for invalid or missing configuration."""

    error_code = "CONFIG_ERROR"


class StageError(PipelineError):
    """Raised for stage failures that should halt the session."""

    error_code = "STAGE_ERROR"


class FetchError(PipelineError):
    """Per-target fetch failure, classified by kind."""

    error_code = "FETCH_ERROR"

    def __init__(self, kind: str, message: str, *, status_code: int | None = None) -> None:
        if kind not in FETCH_ERROR_KINDS:
            kind = "unknown"
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_FETCH_KINDS


class StorageError(PipelineError):
    """Raised when persistence is unavailable."""

    error_code = "STORAGE_ERROR"
