"""Per-kWh price expressions: parsing, unit detection and normalisation."""

from __future__ import annotations

import re
from dataclasses import dataclass

from bs4 import BeautifulSoup

from price_harvest.common.constants import PRICE_DECIMALS

NUMBER_PATTERN = r"(\d+(?:[.,]\d+)?)"
UNIT_PATTERN = r"(€|euro|eur|cent|ct)?"
PER_KWH_PATTERN = r"\.?\s*(?:pro|je|/)\s*kwh"
PRICE_EXPRESSION_RE = re.compile(NUMBER_PATTERN + r"\s*" + UNIT_PATTERN + PER_KWH_PATTERN, re.IGNORECASE)

_WHITESPACE_RE = re.compile(r"\s+")
_EURO_UNITS = {"€", "euro", "eur"}
_CENT_UNITS = {"cent", "ct"}
# Values above this without an explicit unit are read as cents.
IMPLICIT_CENT_THRESHOLD = 10.0


@dataclass(frozen=True)
class PriceCandidate:
    raw: str
    amount: float
    unit: str | None
    value: float


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def page_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for node in soup(["script", "style", "noscript"]):
        node.decompose()
    return collapse_whitespace(soup.get_text(" "))


def detect_unit(raw_unit: str | None) -> str | None:
    if not raw_unit:
        return None
    unit = raw_unit.strip().lower()
    if unit in _EURO_UNITS:
        return "euro"
    if unit in _CENT_UNITS:
        return "cent"
    return None


def to_euro(amount: float, unit: str | None) -> float:
    if unit == "cent":
        value = amount / 100
    elif unit is None and amount > IMPLICIT_CENT_THRESHOLD:
        value = amount / 100
    else:
        value = amount
    return round(value, PRICE_DECIMALS)


def parse_amount(number_text: str) -> float | None:
    try:
        return float(number_text.replace(",", "."))
    except ValueError:
        return None


def candidate_from_match(match: re.Match) -> PriceCandidate | None:
    amount = parse_amount(match.group(1))
    if amount is None:
        return None
    unit = detect_unit(match.group(2))
    return PriceCandidate(raw=match.group(0), amount=amount, unit=unit, value=to_euro(amount, unit))


def find_price_expression(text: str) -> PriceCandidate | None:
    """Return the first per-kWh price expression in ``text``, if any."""
    for match in PRICE_EXPRESSION_RE.finditer(text):
        candidate = candidate_from_match(match)
        if candidate is not None:
            return candidate
    return None


def contains_price_expression(text: str) -> bool:
    return PRICE_EXPRESSION_RE.search(text) is not None


def keyword_price_pattern(keywords: tuple[str, ...], window: int = 120) -> re.Pattern:
    """Keyword, then at most ``window`` characters, then a per-kWh price expression."""
    alternatives = "|".join(re.escape(keyword) for keyword in keywords)
    return re.compile(
        rf"(?:{alternatives})\w*.{{0,{window}}}?" + NUMBER_PATTERN + r"\s*" + UNIT_PATTERN + PER_KWH_PATTERN,
        re.IGNORECASE,
    )
