"""Coarse page structure and city size classification."""

from __future__ import annotations

from dataclasses import dataclass

from bs4 import BeautifulSoup

from price_harvest.common.models import SizeClass
from price_harvest.extraction.price_text import collapse_whitespace

SMALL_MAX_TABLES = 1
SMALL_MAX_ROWS = 3
LARGE_MIN_TABLES = 3
LARGE_MIN_ROWS = 15
MEDIUM_COMPLEXITY_ROWS = 6


@dataclass(frozen=True)
class ParsedTable:
    text: str
    rows: tuple[tuple[str, ...], ...]

    @property
    def is_comparison(self) -> bool:
        return "vergleich" in self.text.lower()


@dataclass(frozen=True)
class ParsedPage:
    tables: tuple[ParsedTable, ...]
    text: str

    @property
    def table_count(self) -> int:
        return len(self.tables)

    @property
    def row_count(self) -> int:
        return sum(len(table.rows) for table in self.tables)


@dataclass(frozen=True)
class PageStructure:
    table_count: int
    row_count: int
    size_class: SizeClass
    has_comparison_table: bool
    complexity: str


def parse_page(html: str, text: str) -> ParsedPage:
    soup = BeautifulSoup(html, "html.parser")
    tables = []
    for table in soup.find_all("table"):
        rows = []
        for row in table.find_all("tr"):
            cells = row.find_all(["td", "th"], recursive=False)
            rows.append(tuple(collapse_whitespace(cell.get_text(" ")) for cell in cells))
        tables.append(ParsedTable(text=collapse_whitespace(table.get_text(" ")), rows=tuple(rows)))
    return ParsedPage(tables=tuple(tables), text=text)


def classify_size(table_count: int, row_count: int) -> SizeClass:
    if table_count <= SMALL_MAX_TABLES and row_count <= SMALL_MAX_ROWS:
        return SizeClass.SMALL
    if table_count >= LARGE_MIN_TABLES and row_count >= LARGE_MIN_ROWS:
        return SizeClass.LARGE
    return SizeClass.MEDIUM


def classify_page(page: ParsedPage) -> PageStructure:
    row_count = page.row_count
    if row_count >= LARGE_MIN_ROWS:
        complexity = "high"
    elif row_count >= MEDIUM_COMPLEXITY_ROWS:
        complexity = "medium"
    else:
        complexity = "low"
    return PageStructure(
        table_count=page.table_count,
        row_count=row_count,
        size_class=classify_size(page.table_count, row_count),
        has_comparison_table=any(table.is_comparison for table in page.tables),
        complexity=complexity,
    )
