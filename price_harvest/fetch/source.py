"""City price page source: URL building and page sanity checks."""

from __future__ import annotations

from types import TracebackType
from urllib.parse import quote

from price_harvest.common.config_loader import ScraperSettings
from price_harvest.common.errors import FetchError
from price_harvest.common.http import HttpClient, TimeoutConfig
from price_harvest.common.location import normalise_city_name
from price_harvest.common.models import FetchedPage, Target


class PriceSiteFetcher:
    def __init__(
        self,
        client: HttpClient,
        *,
        base_url: str,
        url_suffix: str = ".html",
        page_markers: tuple[str, ...] = ("stromauskunft", "stromanbieter", "kwh"),
    ) -> None:
        self.client = client
        self.base_url = base_url
        self.url_suffix = url_suffix
        self.page_markers = tuple(marker.lower() for marker in page_markers)

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "PriceSiteFetcher":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def build_url(self, target: Target) -> str:
        slug = target.normalized_name or normalise_city_name(target.display_name)
        return f"{self.base_url}{quote(slug)}{self.url_suffix}"

    def looks_like_price_page(self, html: str) -> bool:
        if not self.page_markers:
            return True
        lowered = html.lower()
        return any(marker in lowered for marker in self.page_markers)

    def fetch(self, url: str) -> FetchedPage:
        page = self.client.get_html(url)
        if not self.looks_like_price_page(page.html):
            raise FetchError("unknown", f"Unexpected page content at {url}", status_code=page.status_code)
        return page


def fetcher_from_settings(settings: ScraperSettings) -> PriceSiteFetcher:
    client = HttpClient(
        timeout=TimeoutConfig(connect=settings.connect_timeout, read=settings.read_timeout),
        user_agent=settings.user_agent,
        blocked_markers=settings.blocked_markers,
        min_body_length=settings.min_body_length,
    )
    return PriceSiteFetcher(
        client,
        base_url=settings.base_url,
        url_suffix=settings.url_suffix,
        page_markers=settings.page_markers,
    )
