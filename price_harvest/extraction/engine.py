"""Price extraction: classify the page, run strategies in order, correct and average."""

from __future__ import annotations

from price_harvest.common.config_loader import PriceBand
from price_harvest.common.constants import PRICE_DECIMALS
from price_harvest.common.models import ExtractionResult, SizeClass
from price_harvest.extraction.classify import classify_page, parse_page
from price_harvest.extraction.price_text import page_text as html_to_text
from price_harvest.extraction.strategies import STRATEGY_ORDER, apply_strategy

DEFAULT_BAND = PriceBand(min_price=0.05, max_price=2.0)
# Relative gap (against the larger price) above which local < green is treated as mislabelled.
SWAP_RELATIVE_GAP = 0.10
FAILED_METHOD = "failed"


def correct_price_logic(local: float | None, green: float | None) -> tuple[float | None, float | None, bool]:
    """Swap the pair when the local price sits well below the green price.

    Running the correction on its own output is a no-op.
    """
    if local is None or green is None:
        return local, green, False
    if local < green and (green - local) / green > SWAP_RELATIVE_GAP:
        return green, local, True
    return local, green, False


def average_price(local: float | None, green: float | None) -> float | None:
    values = [value for value in (local, green) if value is not None]
    if not values:
        return None
    return round(sum(values) / len(values), PRICE_DECIMALS)


def _format_label(kinds: list[str]) -> str:
    if not kinds:
        return "none"
    return "+".join(dict.fromkeys(kinds))


def extract(html: str, page_text: str | None = None, *, band: PriceBand = DEFAULT_BAND) -> ExtractionResult:
    """Extract the local-provider and green-energy price from one city page.

    Never raises: unusable input degrades to ``method == "failed"``.
    """
    diagnostics: list[str] = []
    try:
        text = page_text if page_text is not None else html_to_text(html)
        page = parse_page(html, text)
    except Exception as exc:
        return ExtractionResult(
            local_provider_price=None,
            green_energy_price=None,
            average_price=None,
            method=FAILED_METHOD,
            format_detected="none",
            city_class=SizeClass.SMALL,
            diagnostics=(f"unparseable page: {exc}",),
        )

    structure = classify_page(page)
    diagnostics.append(
        f"classified {structure.size_class.value} "
        f"(tables={structure.table_count}, rows={structure.row_count}, complexity={structure.complexity})"
    )

    local: float | None = None
    green: float | None = None
    method: str | None = None
    kinds: list[str] = []

    for strategy in STRATEGY_ORDER[structure.size_class]:
        try:
            outcome = apply_strategy(strategy, page, band)
        except Exception as exc:
            diagnostics.append(f"{strategy.value} errored: {exc}")
            continue
        diagnostics.extend(f"{strategy.value}: {note}" for note in outcome.diagnostics)

        contributed = False
        if local is None and outcome.local is not None:
            local = outcome.local
            contributed = True
        if green is None and outcome.green is not None:
            green = outcome.green
            contributed = True
        if contributed:
            kinds.append(strategy.kind)
            if method is None:
                method = strategy.value
        if local is not None and green is not None:
            break

    local, green, swapped = correct_price_logic(local, green)
    if swapped:
        diagnostics.append(f"price logic corrected: swapped local/green to {local}/{green}")

    avg = average_price(local, green)
    if avg is None:
        method = FAILED_METHOD
        diagnostics.append("no usable price found")

    return ExtractionResult(
        local_provider_price=local,
        green_energy_price=green,
        average_price=avg,
        method=method or FAILED_METHOD,
        format_detected=_format_label(kinds),
        city_class=structure.size_class,
        diagnostics=tuple(diagnostics),
    )