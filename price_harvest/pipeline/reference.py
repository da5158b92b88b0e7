"""Postal-code reference table: loading, coordinate resolution and target lists."""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Any, Iterable, Iterator

from pyproj import CRS, Transformer

from price_harvest.common.config_loader import ScraperSettings
from price_harvest.common.errors import ConfigError
from price_harvest.common.geometry import valid_lat_lon
from price_harvest.common.location import normalise_city_name, normalise_location_id
from price_harvest.common.models import ReferenceEntry, Target


class ReferenceTable:
    """In-memory ``location_id -> ReferenceEntry`` map; the first row per id wins."""

    def __init__(self, entries: Iterable[ReferenceEntry] = ()) -> None:
        self._entries: dict[str, ReferenceEntry] = {}
        for entry in entries:
            self._entries.setdefault(entry.location_id, entry)

    def lookup(self, location_id: str) -> ReferenceEntry | None:
        return self._entries.get(location_id)

    def __iter__(self) -> Iterator[ReferenceEntry]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)


def _safe_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(str(value).strip().replace(",", "."))
    except (TypeError, ValueError):
        return None


def _parse_point(value: str | None) -> tuple[float | None, float | None]:
    if not value:
        return None, None
    parts = value.split(",")
    if len(parts) != 2:
        return None, None
    return _safe_float(parts[0]), _safe_float(parts[1])


def _transform_to_wgs84(lat: float, lon: float, source_epsg: int) -> tuple[float, float] | None:
    if source_epsg == 4326:
        return lat, lon
    try:
        transformer = Transformer.from_crs(CRS.from_epsg(source_epsg), CRS.from_epsg(4326), always_xy=True)
        # Projected sources store easting in the lon column and northing in the lat column.
        transformed_lon, transformed_lat = transformer.transform(lon, lat)
        return transformed_lat, transformed_lon
    except Exception:
        return None


def load_reference(
    path: Path,
    *,
    id_column: str,
    name_column: str,
    delimiter: str = ";",
    point_column: str | None = None,
    lat_column: str | None = None,
    lon_column: str | None = None,
    source_epsg: int = 4326,
) -> ReferenceTable:
    if not path.exists():
        raise ConfigError(f"Reference file not found: {path}")

    entries: list[ReferenceEntry] = []
    with path.open("r", encoding="utf-8-sig", newline="") as f:
        reader = csv.DictReader(f, delimiter=delimiter)
        missing = {column for column in (id_column, name_column) if column not in (reader.fieldnames or [])}
        if missing:
            raise ConfigError(f"Reference file {path} lacks columns: {', '.join(sorted(missing))}")

        for row in reader:
            location_id = normalise_location_id(row.get(id_column))
            if location_id is None:
                continue
            if point_column:
                lat, lon = _parse_point(row.get(point_column))
            else:
                lat, lon = _safe_float(row.get(lat_column)), _safe_float(row.get(lon_column))
            if lat is None or lon is None:
                continue
            transformed = _transform_to_wgs84(lat, lon, source_epsg)
            if transformed is None or not valid_lat_lon(*transformed):
                continue
            entries.append(
                ReferenceEntry(
                    location_id=location_id,
                    display_name=(row.get(name_column) or "").strip(),
                    latitude=transformed[0],
                    longitude=transformed[1],
                )
            )
    return ReferenceTable(entries)


def load_reference_from_settings(settings: ScraperSettings, path: Path | None = None) -> ReferenceTable:
    ref = settings.reference
    return load_reference(
        path or Path(ref["file"]),
        id_column=ref["id_column"],
        name_column=ref["name_column"],
        delimiter=ref["delimiter"],
        point_column=ref.get("point_column"),
        lat_column=ref.get("lat_column"),
        lon_column=ref.get("lon_column"),
        source_epsg=int(ref["source_epsg"]),
    )


def build_targets(reference: Iterable[ReferenceEntry], *, limit: int | None = None) -> list[Target]:
    targets = []
    for entry in sorted(reference, key=lambda item: item.location_id):
        normalized = normalise_city_name(entry.display_name)
        if not normalized:
            continue
        targets.append(
            Target(
                location_id=entry.location_id,
                display_name=entry.display_name,
                normalized_name=normalized,
                latitude=entry.latitude,
                longitude=entry.longitude,
            )
        )
    if limit is not None:
        return targets[:limit]
    return targets
