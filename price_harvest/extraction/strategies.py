"""Table and regex extraction strategies and their per-size-class order."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from price_harvest.common.config_loader import PriceBand
from price_harvest.common.models import SizeClass
from price_harvest.extraction.classify import ParsedPage, ParsedTable
from price_harvest.extraction.price_text import (
    candidate_from_match,
    contains_price_expression,
    find_price_expression,
    keyword_price_pattern,
)


class Strategy(str, Enum):
    REGEX_SIMPLE = "regex_simple"
    TABLE_SIMPLE = "table_simple"
    TABLE_STANDARD = "table_standard"
    REGEX_STANDARD = "regex_standard"
    TABLE_FIRST = "table_first"
    TABLE_COMPLEX = "table_complex"
    REGEX_ADVANCED = "regex_advanced"

    @property
    def kind(self) -> str:
        return "regex" if self.value.startswith("regex") else "table"


STRATEGY_ORDER: dict[SizeClass, tuple[Strategy, ...]] = {
    SizeClass.SMALL: (Strategy.REGEX_SIMPLE, Strategy.TABLE_SIMPLE),
    SizeClass.MEDIUM: (Strategy.TABLE_STANDARD, Strategy.REGEX_STANDARD, Strategy.TABLE_FIRST),
    SizeClass.LARGE: (Strategy.TABLE_COMPLEX, Strategy.REGEX_ADVANCED, Strategy.TABLE_STANDARD),
}

PRIMARY_STRATEGIES = frozenset(order[0] for order in STRATEGY_ORDER.values())
GEOGRAPHIC_FALLBACK_METHOD = "geographic_fallback"
FALLBACK_TIER_METHODS = frozenset(
    {strategy.value for strategy in Strategy if strategy not in PRIMARY_STRATEGIES} | {GEOGRAPHIC_FALLBACK_METHOD}
)

LOCAL_KEYWORDS = (
    "grundversorger",
    "lokaler versorger",
    "lokaler anbieter",
    "ortsversorger",
    "stadtwerk",
    "basisversorger",
)
LOCAL_KEYWORDS_EXTENDED = LOCAL_KEYWORDS + ("kommunaler versorger",)
GREEN_KEYWORDS = (
    "günstigster ökostrom",
    "ökostromanbieter",
    "ökostromtarif",
    "ökostrom",
    "grünstrom",
    "naturstrom",
)
GREEN_KEYWORDS_EXTENDED = GREEN_KEYWORDS + ("erneuerbarer strom",)
CHEAPEST_KEYWORDS = (
    "günstigster stromanbieter",
    "günstigster tarif",
    "günstigster anbieter",
    "billigster anbieter",
)

MAX_ROW_TEXT_LENGTH = 100
MAX_TABLE_TEXT_LENGTH = 1000
COMPETITOR_BRAND_RE = re.compile(r"\b(?:lichtblick|e\.on|vattenfall|enbw|rwe)\b", re.IGNORECASE)
COMPARISON_PHRASES = (
    "vergleich",
    "anbieter vergleichen",
    "tarif vergleichen",
    "mehr anbieter",
    "alle anbieter",
    "weitere tarife",
)
ANNUAL_COST_RE = re.compile(r"(?:€|eur|euro)\s*(?:/|pro|im|je)\s*jahr", re.IGNORECASE)

_LOCAL_PATTERNS = (keyword_price_pattern(LOCAL_KEYWORDS),)
_GREEN_PATTERNS = (keyword_price_pattern(GREEN_KEYWORDS),)
_CHEAPEST_PATTERNS = (keyword_price_pattern(CHEAPEST_KEYWORDS),)
_LOCAL_PATTERNS_EXTENDED = (keyword_price_pattern(LOCAL_KEYWORDS_EXTENDED, window=160),)
_GREEN_PATTERNS_EXTENDED = (keyword_price_pattern(GREEN_KEYWORDS_EXTENDED, window=160),)


@dataclass(frozen=True)
class StrategyOutcome:
    local: float | None = None
    green: float | None = None
    diagnostics: tuple[str, ...] = ()


def row_skip_reason(cells: tuple[str, ...]) -> str | None:
    row_text = " ".join(cells)
    if len(row_text) > MAX_ROW_TEXT_LENGTH:
        return "row_too_long"
    if COMPETITOR_BRAND_RE.search(cells[0]):
        return "competitor_brand"
    lowered = row_text.lower()
    if any(phrase in lowered for phrase in COMPARISON_PHRASES):
        return "comparison_row"
    if ANNUAL_COST_RE.search(row_text):
        return "annual_cost"
    return None


def label_slot(
    label: str,
    *,
    local_keywords: tuple[str, ...],
    green_keywords: tuple[str, ...],
    cheapest_keywords: tuple[str, ...] = (),
) -> str | None:
    lowered = label.lower()
    if any(keyword in lowered for keyword in local_keywords):
        return "local"
    if any(keyword in lowered for keyword in green_keywords):
        return "green"
    if any(keyword in lowered for keyword in cheapest_keywords):
        return "cheapest"
    return None


def _value_from_cells(cells: tuple[str, ...], band: PriceBand, diagnostics: list[str]) -> float | None:
    for cell in cells:
        candidate = find_price_expression(cell)
        if candidate is None:
            continue
        if band.contains(candidate.value):
            return candidate.value
        diagnostics.append(f"rejected {candidate.raw!r}: {candidate.value} outside plausibility band")
        return None
    return None


def _scan_rows(
    rows,
    band: PriceBand,
    *,
    local_keywords: tuple[str, ...],
    green_keywords: tuple[str, ...],
    cheapest_keywords: tuple[str, ...] = (),
) -> StrategyOutcome:
    found: dict[str, float] = {}
    diagnostics: list[str] = []
    for cells in rows:
        if len(cells) < 2:
            continue
        if row_skip_reason(cells) is not None:
            continue
        slot = label_slot(
            cells[0],
            local_keywords=local_keywords,
            green_keywords=green_keywords,
            cheapest_keywords=cheapest_keywords,
        )
        if slot is None or slot in found:
            continue
        value = _value_from_cells(cells[1:], band, diagnostics)
        if value is not None:
            found[slot] = value
        if "local" in found and "green" in found:
            break

    green = found.get("green")
    if green is None and "cheapest" in found:
        green = found["cheapest"]
        diagnostics.append("green price taken from cheapest tariff row")
    return StrategyOutcome(local=found.get("local"), green=green, diagnostics=tuple(diagnostics))


def _rows_of(tables) -> list[tuple[str, ...]]:
    return [row for table in tables for row in table.rows]


def _first_pattern_value(text: str, patterns, band: PriceBand, diagnostics: list[str]) -> float | None:
    for pattern in patterns:
        for match in pattern.finditer(text):
            candidate = candidate_from_match(match)
            if candidate is None:
                continue
            if band.contains(candidate.value):
                return candidate.value
            diagnostics.append(f"rejected {candidate.raw!r}: {candidate.value} outside plausibility band")
    return None


def _scan_text(text: str, band: PriceBand, *, local_patterns, green_patterns) -> StrategyOutcome:
    diagnostics: list[str] = []
    local = _first_pattern_value(text, local_patterns, band, diagnostics)
    green = _first_pattern_value(text, green_patterns, band, diagnostics)
    return StrategyOutcome(local=local, green=green, diagnostics=tuple(diagnostics))


def _content_tables(page: ParsedPage) -> list[ParsedTable]:
    return [
        table
        for table in page.tables
        if not table.is_comparison and len(table.text) <= MAX_TABLE_TEXT_LENGTH
    ]


def _text_without_comparisons(page: ParsedPage) -> str:
    text = page.text
    for table in page.tables:
        if table.is_comparison and table.text:
            text = text.replace(table.text, " ")
    return text


def table_simple(page: ParsedPage, band: PriceBand) -> StrategyOutcome:
    return _scan_rows(
        _rows_of(page.tables),
        band,
        local_keywords=LOCAL_KEYWORDS,
        green_keywords=GREEN_KEYWORDS,
    )


def table_standard(page: ParsedPage, band: PriceBand) -> StrategyOutcome:
    return _scan_rows(
        _rows_of(page.tables),
        band,
        local_keywords=LOCAL_KEYWORDS,
        green_keywords=GREEN_KEYWORDS,
        cheapest_keywords=CHEAPEST_KEYWORDS,
    )


def table_first(page: ParsedPage, band: PriceBand) -> StrategyOutcome:
    for table in page.tables:
        if any(contains_price_expression(" ".join(row)) for row in table.rows):
            return _scan_rows(
                table.rows,
                band,
                local_keywords=LOCAL_KEYWORDS,
                green_keywords=GREEN_KEYWORDS,
                cheapest_keywords=CHEAPEST_KEYWORDS,
            )
    return StrategyOutcome(diagnostics=("no table with a per-kWh price",))


def table_complex(page: ParsedPage, band: PriceBand) -> StrategyOutcome:
    tables = _content_tables(page)
    outcome = _scan_rows(
        _rows_of(tables),
        band,
        local_keywords=LOCAL_KEYWORDS_EXTENDED,
        green_keywords=GREEN_KEYWORDS_EXTENDED,
        cheapest_keywords=CHEAPEST_KEYWORDS,
    )
    skipped = len(page.tables) - len(tables)
    if skipped:
        return StrategyOutcome(
            local=outcome.local,
            green=outcome.green,
            diagnostics=outcome.diagnostics + (f"skipped {skipped} comparison table(s)",),
        )
    return outcome


def regex_simple(page: ParsedPage, band: PriceBand) -> StrategyOutcome:
    return _scan_text(page.text, band, local_patterns=_LOCAL_PATTERNS, green_patterns=_GREEN_PATTERNS)


def regex_standard(page: ParsedPage, band: PriceBand) -> StrategyOutcome:
    return _scan_text(
        page.text,
        band,
        local_patterns=_LOCAL_PATTERNS,
        green_patterns=_GREEN_PATTERNS + _CHEAPEST_PATTERNS,
    )


def regex_advanced(page: ParsedPage, band: PriceBand) -> StrategyOutcome:
    return _scan_text(
        _text_without_comparisons(page),
        band,
        local_patterns=_LOCAL_PATTERNS_EXTENDED,
        green_patterns=_GREEN_PATTERNS_EXTENDED + _CHEAPEST_PATTERNS,
    )


def apply_strategy(strategy: Strategy, page: ParsedPage, band: PriceBand) -> StrategyOutcome:
    if strategy is Strategy.REGEX_SIMPLE:
        return regex_simple(page, band)
    if strategy is Strategy.TABLE_SIMPLE:
        return table_simple(page, band)
    if strategy is Strategy.TABLE_STANDARD:
        return table_standard(page, band)
    if strategy is Strategy.REGEX_STANDARD:
        return regex_standard(page, band)
    if strategy is Strategy.TABLE_FIRST:
        return table_first(page, band)
    if strategy is Strategy.TABLE_COMPLEX:
        return table_complex(page, band)
    if strategy is Strategy.REGEX_ADVANCED:
        return regex_advanced(page, band)
    raise ValueError(f"Unknown strategy: {strategy}")
