from price_harvest.common.config_loader import OutlierThresholds
from price_harvest.common.models import PriceRecord, RecordSource, Severity
from price_harvest.quality.outliers import (
    assess_outliers,
    grade_price,
    quality_metrics,
    quality_report,
    validate_record,
)


def _record(local, green, method="table_standard", **changes) -> PriceRecord:
    values = [value for value in (local, green) if value is not None]
    return PriceRecord(
        location_id=changes.pop("location_id", "10115"),
        period="2026-03-01",
        display_name="Berlin",
        local_provider_price=local,
        green_energy_price=green,
        average_price=sum(values) / len(values) if values else None,
        extraction_method=method,
        **changes,
    )


def test_typical_pair_is_not_an_outlier():
    assessment = assess_outliers(0.42, 0.27)
    assert assessment.has_outlier is False
    assert assessment.severity is Severity.NORMAL


def test_extreme_local_price():
    assessment = assess_outliers(1.6, None)
    assert assessment.severity is Severity.EXTREME
    assert assessment.has_outlier is True
    assert "local_extreme" in assessment.outlier_types


def test_thresholds_are_inclusive():
    assert grade_price(0.5999) is Severity.NORMAL
    assert grade_price(0.60) is Severity.HIGH
    assert grade_price(0.80) is Severity.VERY_HIGH
    assert grade_price(1.20) is Severity.EXTREME


def test_severity_is_monotonic_in_price():
    prices = [0.61, 0.7, 0.79, 0.8, 0.95, 1.19, 1.2, 1.5, 2.0]
    ranks = [grade_price(price).rank for price in prices]
    assert ranks == sorted(ranks)


def test_custom_thresholds():
    thresholds = OutlierThresholds(high=0.4, very_high=0.5, extreme=0.6)
    assert assess_outliers(0.45, None, thresholds).severity is Severity.HIGH


def test_overall_severity_is_worst_of_both():
    assert assess_outliers(0.65, 1.3).severity is Severity.EXTREME


def test_large_and_extreme_price_differences():
    large = assess_outliers(0.25, 0.10)
    assert large.has_outlier is True
    assert large.severity is Severity.NORMAL
    assert "large_difference" in large.outlier_types

    extreme = assess_outliers(0.35, 0.10)
    assert "extreme_difference" in extreme.outlier_types
    assert any("extreme price difference" in warning for warning in extreme.warnings)


def test_inverted_pricing_warning():
    assessment = assess_outliers(0.20, 0.32)
    assert any("green energy price more than 50%" in warning for warning in assessment.warnings)


def test_single_price_is_a_completeness_warning_only():
    assessment = assess_outliers(None, 0.31)
    assert assessment.has_outlier is False
    assert assessment.warnings == ("only one price available",)


def test_validate_record_scores():
    assert validate_record(_record(0.40, 0.30)).quality_score == 1.0
    assert validate_record(_record(0.40, None)).quality_score == 0.7
    assert validate_record(_record(0.40, 0.30, method="regex_standard")).quality_score == 0.9
    assert validate_record(_record(0.40, 0.30, method="geographic_fallback")).quality_score == 0.9


def test_validate_record_out_of_band():
    validation = validate_record(_record(2.5, 0.30))
    assert validation.valid is False
    assert validation.quality_score == 0.5
    assert validation.issues


def test_validate_record_without_prices():
    assert validate_record(_record(None, None)).quality_score == 0.0
    failed = validate_record(_record(0.4, 0.3, method="failed"))
    assert failed.valid is False
    assert failed.quality_score == 0.0


def test_validate_record_score_is_floored():
    validation = validate_record(_record(2.5, 3.0, method="table_first"))
    assert validation.quality_score == 0.0
    assert validation.valid is False


def test_quality_metrics_and_report():
    records = [
        _record(0.40, 0.30, location_id="10115"),
        _record(0.40, None, location_id="10117"),
        _record(1.5, 0.30, location_id="10119", is_outlier=True, outlier_severity=Severity.EXTREME),
        _record(0.40, 0.30, location_id="10178", source=RecordSource.FALLBACK, method="geographic_fallback"),
    ]
    metrics = quality_metrics(records)
    assert metrics["total_records"] == 4
    assert metrics["complete_records"] == 3
    assert metrics["partial_records"] == 1
    assert metrics["severity_counts"]["extreme"] == 1
    assert metrics["sources"] == {"FALLBACK": 1, "ORIGINAL": 3}
    assert metrics["local_provider_price"]["max"] == 1.5

    report = quality_report(records)
    assert report["status"] == "review"
    assert report["recommendations"]


def test_quality_report_empty():
    assert quality_report([])["status"] == "empty"
