"""Minimal strict schemas for YAML config validation."""

from __future__ import annotations

from price_harvest.common.errors import ConfigError

SECTION_KEYS = {
    "source": {"base_url", "url_suffix", "page_markers"},
    "http": {"connect_timeout_seconds", "read_timeout_seconds", "user_agent", "blocked_markers", "min_body_length"},
    "delays": {"between_requests_ms", "batch_pause_ms", "retry_delay_ms", "max_retries"},
    "batching": {"total_batches", "checkpoint_interval", "auto_progress"},
    "validation": {"min_price", "max_price", "outlier_thresholds"},
    "geographic": {"enabled", "max_distance_km"},
    "storage": {"duplicate_handling", "result_batch_size", "error_batch_size", "retry_attempts", "retry_delay_ms"},
    "reference": {
        "file",
        "delimiter",
        "id_column",
        "name_column",
        "point_column",
        "lat_column",
        "lon_column",
        "source_epsg",
    },
}
OPTIONAL_KEYS = {
    "http": {"user_agent"},
    "reference": {"point_column", "lat_column", "lon_column"},
}
THRESHOLD_KEYS = ("high", "very_high", "extreme")
DUPLICATE_MODES = ("skip", "overwrite")


def _assert_required_keys(obj: dict, required: set[str], ctx: str) -> None:
    missing = required - set(obj)
    if missing:
        missing_str = ", ".join(sorted(missing))
        raise ConfigError(f"Missing keys in {ctx}: {missing_str}")


def _assert_no_unknown_keys(obj: dict, known: set[str], ctx: str, allow_unknown: bool) -> None:
    if allow_unknown:
        return
    unknown = set(obj) - known
    if unknown:
        unknown_str = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown keys in {ctx}: {unknown_str}")


def _assert_mapping(obj, ctx: str) -> None:
    if not isinstance(obj, dict):
        raise ConfigError(f"{ctx} must be a mapping")


def _assert_number(value, ctx: str, *, minimum: float | None = None, integer: bool = False) -> None:
    # bool is an int subclass; reject it explicitly.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{ctx} must be a number")
    if integer and not isinstance(value, int):
        raise ConfigError(f"{ctx} must be an integer")
    if minimum is not None and value < minimum:
        raise ConfigError(f"{ctx} must be >= {minimum}")


def validate_scraper_config(cfg, *, allow_unknown: bool = False) -> dict:
    _assert_mapping(cfg, "scraper config")
    _assert_required_keys(cfg, set(SECTION_KEYS), "scraper config")
    _assert_no_unknown_keys(cfg, set(SECTION_KEYS), "scraper config", allow_unknown)

    for section, known in SECTION_KEYS.items():
        _assert_mapping(cfg[section], section)
        required = known - OPTIONAL_KEYS.get(section, set())
        _assert_required_keys(cfg[section], required, section)
        _assert_no_unknown_keys(cfg[section], known, section, allow_unknown)

    delays = cfg["delays"]
    for key in ("between_requests_ms", "batch_pause_ms", "retry_delay_ms"):
        _assert_number(delays[key], f"delays.{key}", minimum=0)
    _assert_number(delays["max_retries"], "delays.max_retries", minimum=0, integer=True)

    batching = cfg["batching"]
    _assert_number(batching["total_batches"], "batching.total_batches", minimum=1, integer=True)
    _assert_number(batching["checkpoint_interval"], "batching.checkpoint_interval", minimum=1, integer=True)
    if not isinstance(batching["auto_progress"], bool):
        raise ConfigError("batching.auto_progress must be a boolean")

    validation = cfg["validation"]
    _assert_number(validation["min_price"], "validation.min_price", minimum=0)
    _assert_number(validation["max_price"], "validation.max_price", minimum=0)
    if validation["min_price"] >= validation["max_price"]:
        raise ConfigError("validation.min_price must be below validation.max_price")

    thresholds = validation["outlier_thresholds"]
    _assert_mapping(thresholds, "validation.outlier_thresholds")
    _assert_required_keys(thresholds, set(THRESHOLD_KEYS), "validation.outlier_thresholds")
    _assert_no_unknown_keys(thresholds, set(THRESHOLD_KEYS), "validation.outlier_thresholds", allow_unknown)
    values = []
    for key in THRESHOLD_KEYS:
        _assert_number(thresholds[key], f"validation.outlier_thresholds.{key}", minimum=0)
        values.append(thresholds[key])
    if not values[0] < values[1] < values[2]:
        raise ConfigError("validation.outlier_thresholds must be ascending: high < very_high < extreme")

    geographic = cfg["geographic"]
    if not isinstance(geographic["enabled"], bool):
        raise ConfigError("geographic.enabled must be a boolean")
    _assert_number(geographic["max_distance_km"], "geographic.max_distance_km", minimum=0.01)

    storage = cfg["storage"]
    if storage["duplicate_handling"] not in DUPLICATE_MODES:
        raise ConfigError(f"storage.duplicate_handling must be one of: {', '.join(DUPLICATE_MODES)}")
    for key in ("result_batch_size", "error_batch_size", "retry_attempts"):
        _assert_number(storage[key], f"storage.{key}", minimum=1, integer=True)
    _assert_number(storage["retry_delay_ms"], "storage.retry_delay_ms", minimum=0)

    http = cfg["http"]
    for key in ("connect_timeout_seconds", "read_timeout_seconds"):
        _assert_number(http[key], f"http.{key}", minimum=0.1)
    _assert_number(http["min_body_length"], "http.min_body_length", minimum=0, integer=True)

    if not str(cfg["source"]["base_url"]).startswith(("http://", "https://")):
        raise ConfigError("source.base_url must be an http(s) URL")

    reference = cfg["reference"]
    has_point = bool(reference.get("point_column"))
    has_pair = bool(reference.get("lat_column")) and bool(reference.get("lon_column"))
    if not has_point and not has_pair:
        raise ConfigError("reference needs point_column or both lat_column and lon_column")
    _assert_number(reference["source_epsg"], "reference.source_epsg", minimum=1, integer=True)

    return cfg
