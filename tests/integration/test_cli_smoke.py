import json
from pathlib import Path

import pytest

from price_harvest import cli
from price_harvest.common.models import FetchedPage

REFERENCE_CSV = (
    "Postleitzahl / Post code;PLZ Name (short);geo_point_2d\n"
    '10115;Berlin Mitte;"52.532, 13.384"\n'
    '10117;Berlin Mitte;"52.517, 13.387"\n'
    '14467;Potsdam;"52.400, 13.059"\n'
    "00000;Ungültig;\n"
)


class StaticFetcher:
    def __init__(self, html: str):
        self.html = html
        self.calls: list[str] = []

    def __enter__(self):
        return self

    def __exit__(self, *_exc):
        return None

    def build_url(self, target) -> str:
        return f"https://prices.test/{target.normalized_name}-{target.location_id}.html"

    def fetch(self, url: str) -> FetchedPage:
        self.calls.append(url)
        return FetchedPage(url=url, html=self.html, status_code=200)


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch):
    reference = tmp_path / "plz.csv"
    reference.write_text(REFERENCE_CSV, encoding="utf-8")
    overlay = tmp_path / "overlay"
    overlay.mkdir()
    (overlay / "scraper.yml").write_text(
        "delays:\n"
        "  between_requests_ms: 0\n"
        "  batch_pause_ms: 0\n"
        "  retry_delay_ms: 0\n"
        "batching:\n"
        "  total_batches: 2\n",
        encoding="utf-8",
    )
    html = Path("tests/fixtures/pages/medium_city.html").read_text(encoding="utf-8")
    fetcher = StaticFetcher(html)
    monkeypatch.setattr(cli, "fetcher_from_settings", lambda _settings: fetcher)
    return tmp_path, reference, overlay, fetcher


def _argv(command: str, tmp_path: Path, reference: Path, overlay: Path, *extra: str) -> list[str]:
    return [
        command,
        "--config-dir",
        "config",
        "--overlay-config-dir",
        str(overlay),
        "--data-dir",
        str(tmp_path / "data"),
        "--reference-file",
        str(reference),
        "--period",
        "2026-03",
        *extra,
    ]


@pytest.mark.integration
def test_cli_scrape_pauses_then_completes(workspace, capsys):
    tmp_path, reference, overlay, fetcher = workspace
    data_dir = tmp_path / "data"

    assert cli.main(_argv("scrape", tmp_path, reference, overlay)) == 10
    assert cli.main(_argv("status", tmp_path, reference, overlay)) == 0
    status = json.loads(capsys.readouterr().out)
    assert status["status"] == "paused"
    assert status["processed_count"] == 2
    assert "processed_ids" not in status

    assert cli.main(_argv("scrape", tmp_path, reference, overlay)) == 0
    assert len(fetcher.calls) == 3

    reports = sorted((data_dir / "reports").glob("session-2026-03-*.json"))
    assert len(reports) == 1
    report = json.loads(reports[0].read_text(encoding="utf-8"))
    assert report["status"] == "completed"
    assert report["results"] == 3
    assert report["quality"]["metrics"]["total_records"] == 3
    assert (data_dir / "run_meta" / "scrape-2026-03.log.jsonl").exists()


@pytest.mark.integration
def test_cli_auto_progress_with_limit(workspace):
    tmp_path, reference, overlay, fetcher = workspace

    exit_code = cli.main(_argv("scrape", tmp_path, reference, overlay, "--auto-progress", "--limit", "2"))

    assert exit_code == 0
    assert len(fetcher.calls) == 2


@pytest.mark.integration
def test_cli_status_without_checkpoint(workspace, capsys):
    tmp_path, reference, overlay, _fetcher = workspace

    assert cli.main(_argv("status", tmp_path, reference, overlay)) == 0
    assert json.loads(capsys.readouterr().out) == {"period": "2026-03-01", "status": "none"}


@pytest.mark.integration
def test_cli_missing_config_is_hard_failure(workspace, capsys):
    tmp_path, reference, overlay, _fetcher = workspace
    argv = _argv("scrape", tmp_path, reference, overlay)
    argv[argv.index("config")] = str(tmp_path / "nowhere")

    assert cli.main(argv) == 20
    assert "CONFIG_ERROR" in capsys.readouterr().err


def test_parse_args_defaults():
    args = cli.parse_args(["scrape"])
    assert args.config_dir == "./config"
    assert args.data_dir == "./data"
    assert args.period is None
    assert args.auto_progress is False


@pytest.mark.integration
def test_cli_complete_fills_gaps_from_neighbours(workspace):
    tmp_path, reference, overlay, _fetcher = workspace
    data_dir = tmp_path / "data"

    argv = _argv("scrape", tmp_path, reference, overlay, "--auto-progress", "--limit", "2", "--no-fallback")
    assert cli.main(argv) == 0
    assert cli.main(_argv("complete", tmp_path, reference, overlay)) == 0

    stored = json.loads((data_dir / "store" / "records" / "2026-03.json").read_text(encoding="utf-8"))["records"]
    assert stored["14467"]["source"] == "FALLBACK"
    assert stored["14467"]["source_location_id"] == "10117"
    report = json.loads((data_dir / "reports" / "period-2026-03.json").read_text(encoding="utf-8"))
    assert report["fallback_records"] == 1
