"""UTC-focused helpers and period parsing."""

from __future__ import annotations

import re
from datetime import date, datetime, timezone

from price_harvest.common.errors import ConfigError

_PERIOD_RE = re.compile(r"^(\d{4})-(\d{2})(?:-(\d{2}))?$")


def utc_timestamp_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat(timespec="milliseconds")


def current_period() -> str:
    today = datetime.now(tz=timezone.utc).date()
    return today.replace(day=1).isoformat()


def parse_period(value: str | None) -> str:
    """Normalise ``YYYY-MM`` or ``YYYY-MM-DD`` to the first day of that month."""
    if not value:
        return current_period()
    match = _PERIOD_RE.match(value.strip())
    if not match:
        raise ConfigError(f"Malformed period: {value!r} (expected YYYY-MM or YYYY-MM-DD)")
    year, month, day = match.groups()
    try:
        parsed = date(int(year), int(month), int(day or 1))
    except ValueError as exc:
        raise ConfigError(f"Malformed period: {value!r}") from exc
    return parsed.replace(day=1).isoformat()


def elapsed_ms(started: float, finished: float) -> int:
    return int(round((finished - started) * 1000))
