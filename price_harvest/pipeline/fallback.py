"""Geographic fallback: borrow prices from the nearest location with real data."""

from __future__ import annotations

import statistics
from typing import Iterable

from price_harvest.common.constants import DISTANCE_DECIMALS
from price_harvest.common.geometry import haversine_km, valid_lat_lon
from price_harvest.common.interfaces import ReferenceData
from price_harvest.common.models import PriceRecord, RecordSource, Severity, Target
from price_harvest.extraction.strategies import GEOGRAPHIC_FALLBACK_METHOD
from price_harvest.quality.outliers import FALLBACK_METHOD_PENALTY

DEFAULT_MAX_RADIUS_KM = 50.0
MIN_FALLBACK_DISTANCE_KM = 10 ** -DISTANCE_DECIMALS
DISTANCE_BUCKETS = (
    ("0-5km", 0.0, 5.0),
    ("5-10km", 5.0, 10.0),
    ("10-25km", 10.0, 25.0),
    ("25-50km", 25.0, 50.0),
)


def resolve_coordinates(
    location_id: str,
    latitude: float | None,
    longitude: float | None,
    reference: ReferenceData | None,
) -> tuple[float, float] | None:
    if valid_lat_lon(latitude, longitude):
        return latitude, longitude
    if reference is None:
        return None
    entry = reference.lookup(location_id)
    if entry is None or not valid_lat_lon(entry.latitude, entry.longitude):
        return None
    return entry.latitude, entry.longitude


def find_fallback(
    target: Target,
    available_records: Iterable[PriceRecord],
    max_radius_km: float = DEFAULT_MAX_RADIUS_KM,
    reference: ReferenceData | None = None,
) -> PriceRecord | None:
    """Nearest ORIGINAL record within ``max_radius_km``, cloned as a FALLBACK record.

    Ties on distance keep the first candidate in iteration order.
    """
    origin = resolve_coordinates(target.location_id, target.latitude, target.longitude, reference)
    if origin is None:
        return None

    best: PriceRecord | None = None
    best_distance: float | None = None
    for record in available_records:
        if record.source is not RecordSource.ORIGINAL or not record.has_prices:
            continue
        if record.location_id == target.location_id:
            continue
        coords = resolve_coordinates(record.location_id, record.latitude, record.longitude, reference)
        if coords is None:
            continue
        distance = haversine_km(origin[0], origin[1], coords[0], coords[1])
        if best_distance is None or distance < best_distance:
            best, best_distance = record, distance

    if best is None or best_distance is None or best_distance > max_radius_km:
        return None

    distance_km = min(max(round(best_distance, DISTANCE_DECIMALS), MIN_FALLBACK_DISTANCE_KM), max_radius_km)
    return PriceRecord(
        location_id=target.location_id,
        period=best.period,
        display_name=target.display_name,
        local_provider_price=best.local_provider_price,
        green_energy_price=best.green_energy_price,
        average_price=best.average_price,
        source=RecordSource.FALLBACK,
        source_location_id=best.location_id,
        distance_km=distance_km,
        is_outlier=False,
        outlier_severity=Severity.NORMAL,
        quality_score=round(max(best.quality_score - FALLBACK_METHOD_PENALTY, 0.0), 2),
        extraction_method=GEOGRAPHIC_FALLBACK_METHOD,
        raw_source_url=best.raw_source_url,
        latitude=origin[0],
        longitude=origin[1],
    )


def completion_stats(records: Iterable[PriceRecord]) -> dict:
    records = list(records)
    original = [record for record in records if record.source is RecordSource.ORIGINAL]
    fallback = [record for record in records if record.source is RecordSource.FALLBACK]
    distances = [record.distance_km for record in fallback]

    distribution = {label: 0 for label, _low, _high in DISTANCE_BUCKETS}
    distribution["50km+"] = 0
    for distance in distances:
        for label, low, high in DISTANCE_BUCKETS:
            if low <= distance < high:
                distribution[label] += 1
                break
        else:
            distribution["50km+"] += 1

    total = len(original) + len(fallback)
    return {
        "total_records": total,
        "original_records": len(original),
        "fallback_records": len(fallback),
        "fallback_rate": round(len(fallback) / total, 4) if total else 0.0,
        "distance_km": {
            "mean": round(statistics.fmean(distances), 2) if distances else None,
            "median": round(statistics.median(distances), 2) if distances else None,
            "min": min(distances) if distances else None,
            "max": max(distances) if distances else None,
        },
        "distance_distribution": distribution,
    }
