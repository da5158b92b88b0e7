import pytest

from price_harvest.common.errors import FetchError
from price_harvest.common.models import FetchedPage, Target
from price_harvest.fetch.source import PriceSiteFetcher


class FakeClient:
    def __init__(self, html: str):
        self.html = html
        self.closed = False

    def get_html(self, url: str) -> FetchedPage:
        return FetchedPage(url=url, html=self.html, status_code=200)

    def close(self) -> None:
        self.closed = True


def _fetcher(html: str = "<p>Stromanbieter 38 ct/kWh</p>") -> PriceSiteFetcher:
    return PriceSiteFetcher(FakeClient(html), base_url="https://prices.test/stromanbieter-in-")


def test_build_url_uses_slug():
    target = Target(location_id="80331", display_name="München", normalized_name="muenchen")
    assert _fetcher().build_url(target) == "https://prices.test/stromanbieter-in-muenchen.html"


def test_build_url_slugs_display_name_when_missing():
    target = Target(location_id="60311", display_name="Frankfurt am Main, Stadt", normalized_name="")
    assert _fetcher().build_url(target).endswith("stromanbieter-in-frankfurt-am-main.html")


def test_unrelated_page_is_rejected():
    fetcher = _fetcher("<html><body>Willkommen</body></html>")
    with pytest.raises(FetchError) as excinfo:
        fetcher.fetch("https://prices.test/x.html")
    assert excinfo.value.kind == "unknown"
    assert excinfo.value.retryable


def test_context_manager_closes_client():
    fetcher = _fetcher()
    with fetcher as active:
        assert active.fetch("https://prices.test/x.html").status_code == 200
    assert fetcher.client.closed
