from pathlib import Path

import pytest

from price_harvest.common.config_loader import apply_overrides, load_scraper_settings, settings_from_dict
from price_harvest.common.errors import ConfigError
from price_harvest.common.fs import read_yaml


def _base_config() -> dict:
    return read_yaml(Path("config/scraper.yml"))


def test_load_scraper_settings_from_repo_config_dir():
    settings = load_scraper_settings(Path("config"))

    assert settings.between_requests_ms == 2000
    assert settings.batch_pause_ms == 10000
    assert settings.max_retries == 2
    assert settings.total_batches == 5
    assert settings.auto_progress is False
    assert settings.band.min_price == 0.05
    assert settings.band.max_price == 2.0
    assert settings.thresholds.extreme == 1.2
    assert settings.max_distance_km == 50
    assert settings.duplicate_handling == "skip"
    assert settings.user_agent


def test_overlay_values_are_deep_merged(tmp_path: Path):
    overlay = tmp_path / "overlay"
    overlay.mkdir()
    (overlay / "scraper.yml").write_text(
        """batching:
  auto_progress: true
delays:
  between_requests_ms: 0
""",
        encoding="utf-8",
    )

    settings = load_scraper_settings(Path("config"), overlay_config_dir=overlay)

    assert settings.auto_progress is True
    assert settings.between_requests_ms == 0
    assert settings.total_batches == 5


def test_empty_overlay_file_is_ignored(tmp_path: Path):
    (tmp_path / "scraper.yml").write_text("", encoding="utf-8")
    settings = load_scraper_settings(Path("config"), overlay_config_dir=tmp_path)
    assert settings.auto_progress is False


def test_non_mapping_overlay_is_rejected(tmp_path: Path):
    (tmp_path / "scraper.yml").write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_scraper_settings(Path("config"), overlay_config_dir=tmp_path)


def test_missing_config_file(tmp_path: Path):
    with pytest.raises(ConfigError):
        load_scraper_settings(tmp_path)


def test_thresholds_must_ascend():
    cfg = _base_config()
    cfg["validation"]["outlier_thresholds"]["very_high"] = 0.5
    with pytest.raises(ConfigError, match="ascending"):
        settings_from_dict(cfg)


def test_band_must_be_ordered():
    cfg = _base_config()
    cfg["validation"]["min_price"] = 3.0
    with pytest.raises(ConfigError):
        settings_from_dict(cfg)


def test_unknown_keys_rejected_unless_allowed():
    cfg = _base_config()
    cfg["delays"]["jitter_ms"] = 100
    with pytest.raises(ConfigError, match="Unknown keys"):
        settings_from_dict(cfg)
    assert settings_from_dict(cfg, allow_unknown=True).between_requests_ms == 2000


def test_missing_section_rejected():
    cfg = _base_config()
    del cfg["batching"]
    with pytest.raises(ConfigError, match="Missing keys"):
        settings_from_dict(cfg)


@pytest.mark.parametrize(
    ("section", "key", "value"),
    [
        ("batching", "total_batches", 0),
        ("batching", "auto_progress", "yes"),
        ("delays", "max_retries", -1),
        ("storage", "duplicate_handling", "merge"),
        ("geographic", "max_distance_km", 0),
        ("source", "base_url", "ftp://example.test/"),
    ],
)
def test_invalid_values_rejected(section, key, value):
    cfg = _base_config()
    cfg[section][key] = value
    with pytest.raises(ConfigError):
        settings_from_dict(cfg)


def test_apply_overrides_revalidates():
    settings = load_scraper_settings(Path("config"))
    updated = apply_overrides(settings, {"batching": {"total_batches": 2}})
    assert updated.total_batches == 2
    assert settings.total_batches == 5
    with pytest.raises(ConfigError):
        apply_overrides(settings, {"batching": {"total_batches": 0}})
