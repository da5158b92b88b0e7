"""Configuration loading and validation."""

from __future__ import annotations

import copy
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from price_harvest.common.constants import USER_AGENT
from price_harvest.common.errors import ConfigError
from price_harvest.common.fs import read_yaml
from price_harvest.common.schema import validate_scraper_config

CONFIG_FILENAME = "scraper.yml"


@dataclass(frozen=True)
class OutlierThresholds:
    high: float
    very_high: float
    extreme: float


@dataclass(frozen=True)
class PriceBand:
    min_price: float
    max_price: float

    def contains(self, value: float) -> bool:
        return self.min_price <= value <= self.max_price


@dataclass(frozen=True)
class ScraperSettings:
    base_url: str
    url_suffix: str
    page_markers: tuple[str, ...]
    connect_timeout: float
    read_timeout: float
    user_agent: str
    blocked_markers: tuple[str, ...]
    min_body_length: int
    between_requests_ms: int
    batch_pause_ms: int
    retry_delay_ms: int
    max_retries: int
    total_batches: int
    checkpoint_interval: int
    auto_progress: bool
    band: PriceBand
    thresholds: OutlierThresholds
    fallback_enabled: bool
    max_distance_km: float
    duplicate_handling: str
    result_batch_size: int
    error_batch_size: int
    storage_retry_attempts: int
    storage_retry_delay_ms: int
    reference: dict
    raw: dict

    def snapshot(self) -> dict[str, Any]:
        return copy.deepcopy(self.raw)


def _deep_merge(base: Any, overlay: Any) -> Any:
    if isinstance(base, dict) and isinstance(overlay, dict):
        merged = dict(base)
        for key, value in overlay.items():
            if key in merged:
                merged[key] = _deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged
    return overlay


def _load_yaml_with_overlay(path: Path, overlay_path: Path | None) -> dict:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    base = read_yaml(path)
    if overlay_path is None or not overlay_path.exists():
        return base
    overlay = read_yaml(overlay_path)
    if overlay is None:
        return base
    if not isinstance(overlay, dict):
        raise ConfigError(f"Overlay config must be a mapping: {overlay_path}")
    return _deep_merge(base, overlay)


def settings_from_dict(cfg: dict, *, allow_unknown: bool = False) -> ScraperSettings:
    cfg = validate_scraper_config(cfg, allow_unknown=allow_unknown)
    source = cfg["source"]
    http = cfg["http"]
    delays = cfg["delays"]
    batching = cfg["batching"]
    validation = cfg["validation"]
    thresholds = validation["outlier_thresholds"]
    storage = cfg["storage"]

    return ScraperSettings(
        base_url=source["base_url"],
        url_suffix=source["url_suffix"] or "",
        page_markers=tuple(str(marker).lower() for marker in source["page_markers"] or ()),
        connect_timeout=float(http["connect_timeout_seconds"]),
        read_timeout=float(http["read_timeout_seconds"]),
        user_agent=http.get("user_agent") or USER_AGENT,
        blocked_markers=tuple(str(marker).lower() for marker in http["blocked_markers"] or ()),
        min_body_length=int(http["min_body_length"]),
        between_requests_ms=int(delays["between_requests_ms"]),
        batch_pause_ms=int(delays["batch_pause_ms"]),
        retry_delay_ms=int(delays["retry_delay_ms"]),
        max_retries=int(delays["max_retries"]),
        total_batches=int(batching["total_batches"]),
        checkpoint_interval=int(batching["checkpoint_interval"]),
        auto_progress=bool(batching["auto_progress"]),
        band=PriceBand(float(validation["min_price"]), float(validation["max_price"])),
        thresholds=OutlierThresholds(
            high=float(thresholds["high"]),
            very_high=float(thresholds["very_high"]),
            extreme=float(thresholds["extreme"]),
        ),
        fallback_enabled=bool(cfg["geographic"]["enabled"]),
        max_distance_km=float(cfg["geographic"]["max_distance_km"]),
        duplicate_handling=storage["duplicate_handling"],
        result_batch_size=int(storage["result_batch_size"]),
        error_batch_size=int(storage["error_batch_size"]),
        storage_retry_attempts=int(storage["retry_attempts"]),
        storage_retry_delay_ms=int(storage["retry_delay_ms"]),
        reference=dict(cfg["reference"]),
        raw=copy.deepcopy(cfg),
    )


def load_scraper_settings(
    config_dir: Path,
    *,
    allow_unknown: bool = False,
    overlay_config_dir: Path | None = None,
) -> ScraperSettings:
    path = config_dir / CONFIG_FILENAME
    overlay_path = None
    if overlay_config_dir is not None:
        overlay_path = overlay_config_dir / CONFIG_FILENAME
    return settings_from_dict(_load_yaml_with_overlay(path, overlay_path), allow_unknown=allow_unknown)


def apply_overrides(settings: ScraperSettings, overrides: dict) -> ScraperSettings:
    """Re-validate settings with a nested override mapping (e.g. CLI flags)."""
    if not overrides:
        return settings
    return settings_from_dict(_deep_merge(settings.raw, overrides))
