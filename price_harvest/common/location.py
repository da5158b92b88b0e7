"""Postal-code location ids and city-name URL slugs."""

from __future__ import annotations

import re

LOCATION_ID_RE = re.compile(r"^\d{5}$")
_DIGITS_RE = re.compile(r"^\d{1,5}$")
_NON_SLUG_RE = re.compile(r"[^a-z0-9]+")
_DASH_RUN_RE = re.compile(r"-{2,}")

_TRANSLITERATION = {
    "ä": "ae",
    "ö": "oe",
    "ü": "ue",
    "ß": "ss",
}


def is_valid_location_id(value: str) -> bool:
    return bool(LOCATION_ID_RE.match(value))


def normalise_location_id(raw) -> str | None:
    if raw is None:
        return None
    cleaned = str(raw).strip().replace(" ", "")
    # Spreadsheet exports sometimes turn postal codes into floats.
    if cleaned.endswith(".0"):
        cleaned = cleaned[:-2]
    if not _DIGITS_RE.match(cleaned):
        return None
    cleaned = cleaned.zfill(5)
    if cleaned == "00000":
        return None
    return cleaned


def normalise_city_name(raw: str | None) -> str:
    """Turn a display name such as ``"Frankfurt am Main, Stadt"`` into a URL slug."""
    if not raw:
        return ""
    name = raw.split(",", 1)[0].strip().lower()
    for char, replacement in _TRANSLITERATION.items():
        name = name.replace(char, replacement)
    name = _NON_SLUG_RE.sub("-", name)
    name = _DASH_RUN_RE.sub("-", name)
    return name.strip("-")
