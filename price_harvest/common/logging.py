"""JSON logging with stable schema."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from price_harvest.common.constants import JSON_LOG_FIELDS
from price_harvest.common.fs import ensure_dir
from price_harvest.common.time_utils import utc_timestamp_iso


class JsonLineFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": utc_timestamp_iso(),
            "session_id": getattr(record, "session_id", None),
            "period": getattr(record, "period", None),
            "batch": getattr(record, "batch", None),
            "location_id": getattr(record, "location_id", None),
            "event": getattr(record, "event", None),
            "status": getattr(record, "status", None),
            "attempt": getattr(record, "attempt", None),
            "duration_ms": getattr(record, "duration_ms", None),
            "error_code": getattr(record, "error_code", None),
            "message": record.getMessage(),
        }
        for field in JSON_LOG_FIELDS:
            payload.setdefault(field, None)
        return json.dumps(payload, ensure_ascii=False)


def build_logger(session_key: str, data_dir: Path, level: str = "INFO") -> logging.Logger:
    logger = logging.getLogger(f"price_harvest.{session_key}")
    logger.setLevel(level.upper())
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.propagate = False

    stream = logging.StreamHandler()
    stream.setFormatter(JsonLineFormatter())
    logger.addHandler(stream)

    log_path = data_dir / "run_meta" / f"{session_key}.log.jsonl"
    ensure_dir(log_path.parent)
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(JsonLineFormatter())
    logger.addHandler(file_handler)

    return logger


def get_logger(name: str = "price_harvest") -> logging.Logger:
    return logging.getLogger(name)


def log_event(logger: logging.Logger, message: str, **event_fields: Any) -> None:
    level = logging.WARNING if event_fields.get("status") == "error" else logging.INFO
    logger.log(level, message, extra=event_fields)
