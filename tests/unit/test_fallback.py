import pytest

from price_harvest.common.models import PriceRecord, RecordSource, ReferenceEntry, Target
from price_harvest.pipeline.fallback import completion_stats, find_fallback
from price_harvest.pipeline.reference import ReferenceTable

HAMBURG = (53.5511, 9.9937)
NORDERSTEDT = (53.7064, 9.9987)
LUEBECK = (53.8655, 10.6866)
BERLIN = (52.5200, 13.4050)


def _record(location_id, coords=None, *, source=RecordSource.ORIGINAL, local=0.40, green=0.30) -> PriceRecord:
    lat, lon = coords if coords else (None, None)
    return PriceRecord(
        location_id=location_id,
        period="2026-03-01",
        display_name=location_id,
        local_provider_price=local,
        green_energy_price=green,
        average_price=round((local + green) / 2, 4),
        source=source,
        quality_score=1.0,
        extraction_method="table_standard",
        raw_source_url=f"https://prices.test/{location_id}.html",
        latitude=lat,
        longitude=lon,
    )


def _target(location_id="20095", coords=HAMBURG) -> Target:
    lat, lon = coords if coords else (None, None)
    return Target(location_id=location_id, display_name="Hamburg", normalized_name="hamburg", latitude=lat, longitude=lon)


def test_nearest_original_record_wins():
    records = [_record("23552", LUEBECK), _record("22844", NORDERSTEDT, local=0.45)]
    fallback = find_fallback(_target(), records, max_radius_km=100)

    assert fallback is not None
    assert fallback.source is RecordSource.FALLBACK
    assert fallback.source_location_id == "22844"
    assert fallback.local_provider_price == 0.45
    assert fallback.location_id == "20095"
    assert fallback.extraction_method == "geographic_fallback"
    assert fallback.distance_km == pytest.approx(17.3, abs=1.0)
    assert fallback.distance_km == round(fallback.distance_km, 2)
    assert fallback.quality_score == 0.9


def test_never_returns_candidate_beyond_radius():
    records = [_record("23552", LUEBECK), _record("10115", BERLIN)]
    assert find_fallback(_target(), records, max_radius_km=50) is None
    found = find_fallback(_target(), records, max_radius_km=60)
    assert found is not None
    assert 0 < found.distance_km <= 60


def test_fallback_records_are_not_sources():
    records = [_record("22844", NORDERSTEDT, source=RecordSource.FALLBACK), _record("23552", LUEBECK)]
    fallback = find_fallback(_target(), records, max_radius_km=100)
    assert fallback.source_location_id == "23552"


def test_target_itself_is_excluded():
    records = [_record("20095", HAMBURG)]
    assert find_fallback(_target(), records) is None


def test_ties_keep_first_candidate():
    records = [_record("22844", NORDERSTEDT, local=0.41), _record("22846", NORDERSTEDT, local=0.52)]
    assert find_fallback(_target(), records).source_location_id == "22844"


def test_colocated_candidate_gets_minimum_positive_distance():
    records = [_record("20097", HAMBURG)]
    fallback = find_fallback(_target(), records)
    assert fallback.distance_km == 0.01


def test_coordinates_resolved_through_reference():
    reference = ReferenceTable(
        [
            ReferenceEntry("20095", "Hamburg", *HAMBURG),
            ReferenceEntry("22844", "Norderstedt", *NORDERSTEDT),
        ]
    )
    fallback = find_fallback(_target(coords=None), [_record("22844")], reference=reference)
    assert fallback is not None
    assert fallback.source_location_id == "22844"
    assert (fallback.latitude, fallback.longitude) == HAMBURG


def test_unresolvable_target_returns_none():
    assert find_fallback(_target(coords=None), [_record("22844", NORDERSTEDT)]) is None


def test_completion_stats_distribution():
    fallbacks = [
        _record("1", source=RecordSource.FALLBACK).with_changes(distance_km=2.0),
        _record("2", source=RecordSource.FALLBACK).with_changes(distance_km=7.5),
        _record("3", source=RecordSource.FALLBACK).with_changes(distance_km=30.0),
    ]
    stats = completion_stats([_record("4", HAMBURG), *fallbacks])

    assert stats["original_records"] == 1
    assert stats["fallback_records"] == 3
    assert stats["fallback_rate"] == 0.75
    assert stats["distance_distribution"] == {"0-5km": 1, "5-10km": 1, "10-25km": 0, "25-50km": 1, "50km+": 0}
    assert stats["distance_km"]["median"] == 7.5
