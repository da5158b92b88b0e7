"""Outlier screening, record scoring and quality reporting."""

from __future__ import annotations

import statistics
from typing import Iterable

from price_harvest.common.config_loader import OutlierThresholds, PriceBand
from price_harvest.common.models import OutlierAssessment, PriceRecord, RecordSource, RecordValidation, Severity
from price_harvest.extraction.engine import DEFAULT_BAND, FAILED_METHOD
from price_harvest.extraction.strategies import FALLBACK_TIER_METHODS

DEFAULT_THRESHOLDS = OutlierThresholds(high=0.60, very_high=0.80, extreme=1.20)
LARGE_DIFFERENCE_PCT = 100.0
EXTREME_DIFFERENCE_PCT = 200.0
INVERTED_GREEN_RATIO = 1.5

BOTH_PRICES_SCORE = 1.0
SINGLE_PRICE_SCORE = 0.7
FALLBACK_METHOD_PENALTY = 0.1
OUT_OF_BAND_PENALTY = 0.5

_SLOT_LABELS = (("local", "local provider"), ("green", "green energy"))


def grade_price(price: float, thresholds: OutlierThresholds = DEFAULT_THRESHOLDS) -> Severity:
    if price >= thresholds.extreme:
        return Severity.EXTREME
    if price >= thresholds.very_high:
        return Severity.VERY_HIGH
    if price >= thresholds.high:
        return Severity.HIGH
    return Severity.NORMAL


def relative_difference_pct(a: float, b: float) -> float | None:
    """Gap between two prices as a percentage of the smaller one."""
    smaller = min(a, b)
    if smaller <= 0:
        return None
    return abs(a - b) / smaller * 100


def assess_outliers(
    local: float | None,
    green: float | None,
    thresholds: OutlierThresholds = DEFAULT_THRESHOLDS,
) -> OutlierAssessment:
    severity = Severity.NORMAL
    warnings: list[str] = []
    outlier_types: list[str] = []
    relationship_outlier = False

    for (slot, label), price in zip(_SLOT_LABELS, (local, green)):
        if price is None:
            continue
        graded = grade_price(price, thresholds)
        if graded is not Severity.NORMAL:
            warnings.append(f"{label} price {price:.4f} EUR/kWh graded {graded.value}")
            outlier_types.append(f"{slot}_{graded.value}")
        severity = severity.worst(graded)

    if local is not None and green is not None:
        diff_pct = relative_difference_pct(local, green)
        if diff_pct is not None and diff_pct > EXTREME_DIFFERENCE_PCT:
            warnings.append(f"extreme price difference: {diff_pct:.1f}%")
            outlier_types.append("extreme_difference")
            relationship_outlier = True
        elif diff_pct is not None and diff_pct > LARGE_DIFFERENCE_PCT:
            warnings.append(f"large price difference: {diff_pct:.1f}%")
            outlier_types.append("large_difference")
            relationship_outlier = True
        if green > local * INVERTED_GREEN_RATIO:
            warnings.append("green energy price more than 50% above local provider price")
    elif local is not None or green is not None:
        warnings.append("only one price available")
    else:
        warnings.append("no prices available")

    return OutlierAssessment(
        has_outlier=severity is not Severity.NORMAL or relationship_outlier,
        severity=severity,
        warnings=tuple(warnings),
        outlier_types=tuple(outlier_types),
    )


def validate_record(record: PriceRecord, band: PriceBand = DEFAULT_BAND) -> RecordValidation:
    prices = [
        (label, value)
        for (_slot, label), value in zip(_SLOT_LABELS, (record.local_provider_price, record.green_energy_price))
        if value is not None
    ]
    if not prices or record.extraction_method == FAILED_METHOD:
        return RecordValidation(valid=False, quality_score=0.0, issues=("no prices extracted",))

    valid = True
    issues: list[str] = []
    warnings: list[str] = []
    score = BOTH_PRICES_SCORE if len(prices) == 2 else SINGLE_PRICE_SCORE
    if len(prices) == 1:
        warnings.append(f"only {prices[0][0]} price present")

    if record.extraction_method in FALLBACK_TIER_METHODS:
        score -= FALLBACK_METHOD_PENALTY
        warnings.append(f"fallback-tier extraction method: {record.extraction_method}")

    for label, value in prices:
        if not band.contains(value):
            score -= OUT_OF_BAND_PENALTY
            valid = False
            issues.append(f"{label} price {value} outside [{band.min_price}, {band.max_price}]")

    return RecordValidation(
        valid=valid,
        quality_score=round(max(score, 0.0), 2),
        issues=tuple(issues),
        warnings=tuple(warnings),
    )


def _price_stats(values: list[float]) -> dict:
    if not values:
        return {"count": 0, "min": None, "max": None, "mean": None, "median": None}
    return {
        "count": len(values),
        "min": min(values),
        "max": max(values),
        "mean": round(statistics.fmean(values), 4),
        "median": round(statistics.median(values), 4),
    }


def quality_metrics(records: Iterable[PriceRecord]) -> dict:
    records = list(records)
    severities = {severity.value: 0 for severity in Severity}
    methods: dict[str, int] = {}
    sources: dict[str, int] = {}
    complete = partial = outliers = 0
    local_values: list[float] = []
    green_values: list[float] = []

    for record in records:
        has_local = record.local_provider_price is not None
        has_green = record.green_energy_price is not None
        if has_local and has_green:
            complete += 1
        elif has_local or has_green:
            partial += 1
        if has_local:
            local_values.append(record.local_provider_price)
        if has_green:
            green_values.append(record.green_energy_price)
        if record.is_outlier:
            outliers += 1
        severities[record.outlier_severity.value] += 1
        methods[record.extraction_method] = methods.get(record.extraction_method, 0) + 1
        sources[record.source.value] = sources.get(record.source.value, 0) + 1

    total = len(records)
    scores = [record.quality_score for record in records]
    return {
        "total_records": total,
        "complete_records": complete,
        "partial_records": partial,
        "outlier_records": outliers,
        "outlier_rate": round(outliers / total, 4) if total else 0.0,
        "severity_counts": severities,
        "extraction_methods": dict(sorted(methods.items())),
        "sources": dict(sorted(sources.items())),
        "average_quality_score": round(statistics.fmean(scores), 4) if scores else None,
        "local_provider_price": _price_stats(local_values),
        "green_energy_price": _price_stats(green_values),
    }


def quality_report(records: Iterable[PriceRecord]) -> dict:
    metrics = quality_metrics(records)
    total = metrics["total_records"]
    recommendations: list[str] = []
    if total == 0:
        recommendations.append("No records stored for this period; run a scrape first.")
        return {"status": "empty", "metrics": metrics, "recommendations": recommendations}

    if metrics["outlier_rate"] > 0.10:
        recommendations.append(
            f"{metrics['outlier_rate']:.0%} of records are outliers; review thresholds and extraction patterns."
        )
    if metrics["partial_records"] / total > 0.30:
        recommendations.append("Many records carry a single price; check the table keyword sets.")
    fallback_share = metrics["sources"].get(RecordSource.FALLBACK.value, 0) / total
    if fallback_share > 0.20:
        recommendations.append(f"{fallback_share:.0%} of records are geographic fallbacks.")
    average = metrics["average_quality_score"]
    if average is not None and average < 0.8:
        recommendations.append(f"Average quality score is {average:.2f}; inspect low-scoring locations.")

    status = "ok" if not recommendations else "review"
    return {"status": status, "metrics": metrics, "recommendations": recommendations}
