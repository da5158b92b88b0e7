"""HTTP client for HTML pages with timeouts and failure classification."""

from __future__ import annotations

from dataclasses import dataclass
from types import TracebackType

import requests

from price_harvest.common.constants import USER_AGENT
from price_harvest.common.errors import FetchError
from price_harvest.common.models import FetchedPage

NOT_FOUND_STATUS_CODES = {404, 410}
BLOCKED_STATUS_CODES = {401, 403, 429, 451}
DEFAULT_BLOCKED_MARKERS = ("access denied", "forbidden", "rate limit", "cloudflare")
MIN_BODY_LENGTH = 500


@dataclass(frozen=True)
class TimeoutConfig:
    connect: float = 10.0
    read: float = 20.0


class HttpClient:
    def __init__(
        self,
        *,
        timeout: TimeoutConfig | None = None,
        user_agent: str = USER_AGENT,
        blocked_markers: tuple[str, ...] = DEFAULT_BLOCKED_MARKERS,
        min_body_length: int = MIN_BODY_LENGTH,
    ) -> None:
        self.timeout = timeout or TimeoutConfig()
        self.user_agent = user_agent
        self.blocked_markers = tuple(marker.lower() for marker in blocked_markers)
        self.min_body_length = min_body_length
        self.session = requests.Session()

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "HttpClient":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _headers(self, headers: dict[str, str] | None) -> dict[str, str]:
        out = {
            "User-Agent": self.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "de-DE,de;q=0.9,en;q=0.8",
        }
        if headers:
            out.update(headers)
        return out

    @staticmethod
    def _decode(response: requests.Response) -> str:
        # Without a declared charset requests assumes ISO-8859-1 for text/*.
        if "charset" not in response.headers.get("content-type", "").lower():
            response.encoding = response.apparent_encoding
        return response.text or ""

    def _raise_for_status(self, url: str, response: requests.Response) -> None:
        status = response.status_code
        if status in NOT_FOUND_STATUS_CODES:
            raise FetchError("not_found", f"Page not found: {url}", status_code=status)
        if status in BLOCKED_STATUS_CODES:
            raise FetchError("blocked", f"Request blocked with HTTP {status}: {url}", status_code=status)
        if status >= 400:
            raise FetchError("unknown", f"HTTP status {status}: {url}", status_code=status)

    def _raise_if_blocked(self, url: str, html: str, status: int) -> None:
        if len(html) < self.min_body_length:
            raise FetchError("blocked", f"Response too short ({len(html)} chars): {url}", status_code=status)
        # Block pages are short; only sniff the head of the document.
        head = html[:5000].lower()
        for marker in self.blocked_markers:
            if marker in head and "kwh" not in head:
                raise FetchError("blocked", f"Block page detected ({marker}): {url}", status_code=status)

    def get_html(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        timeout: TimeoutConfig | None = None,
    ) -> FetchedPage:
        req_timeout = timeout or self.timeout
        try:
            response = self.session.request(
                method="GET",
                url=url,
                headers=self._headers(headers),
                timeout=(req_timeout.connect, req_timeout.read),
            )
        except requests.Timeout as exc:
            raise FetchError("timeout", f"Timed out fetching {url}") from exc
        except requests.ConnectionError as exc:
            raise FetchError("network", f"Connection failed for {url}: {exc}") from exc
        except requests.RequestException as exc:
            raise FetchError("unknown", f"Request failed for {url}: {exc}") from exc

        self._raise_for_status(url, response)
        html = self._decode(response)
        self._raise_if_blocked(url, html, response.status_code)
        return FetchedPage(url=url, html=html, status_code=response.status_code)
