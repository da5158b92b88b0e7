"""Session identifier helpers."""

from __future__ import annotations

from datetime import datetime, timezone


def generate_session_id(period: str) -> str:
    now = datetime.now(tz=timezone.utc)
    return now.strftime(f"session-{period[:7]}-%Y%m%dT%H%M%S%fZ")
