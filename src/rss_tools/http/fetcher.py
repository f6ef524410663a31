"""HTTP clients for conditional feed requests and article page downloads."""

from __future__ import annotations

import logging

import httpx

from rss_tools.errors import FetchError
from rss_tools.ingestion.models import FetchResponse, FetchStatus

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
HTTP_NOT_MODIFIED = 304
DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; RssTools/0.1)"
FEED_ACCEPT = (
    "application/rss+xml, application/atom+xml, application/feed+json, "
    "application/json, application/rdf+xml, application/xml;q=0.9, */*;q=0.8"
)


class ConditionalFetcher:
    """Single-shot feed GET with ETag/Last-Modified revalidation.

    The fetcher never retries; the caller owns the retry policy.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds),
            headers={"User-Agent": user_agent, "Accept": FEED_ACCEPT},
            transport=transport,
            follow_redirects=True,
        )

    def fetch(
        self,
        url: str,
        etag: str | None = None,
        last_modified: str | None = None,
    ) -> FetchResponse:
        """Fetch a feed; raise ``FetchError`` on any status other than 2xx/304."""

        try:
            response = self._client.get(
                url,
                headers=_build_conditional_headers(etag=etag, last_modified=last_modified),
            )
        except httpx.TimeoutException as exc:
            raise FetchError(message=f"Timeout fetching {url}") from exc
        except httpx.HTTPError as exc:
            raise FetchError(message=f"Transport error fetching {url}: {exc}") from exc

        if response.status_code == HTTP_NOT_MODIFIED:
            logger.debug("Feed not modified: %s", url)
            return FetchResponse(status=FetchStatus.NOT_MODIFIED)
        if not response.is_success:
            raise FetchError(
                message=f"HTTP {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
            )

        return FetchResponse(
            status=FetchStatus.OK,
            body=response.content,
            etag=_normalize_header(response.headers.get("ETag")),
            last_modified=_normalize_header(response.headers.get("Last-Modified")),
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> ConditionalFetcher:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


class HttpFetcher:
    """Page downloader for content backfill; returns ``None`` instead of raising."""

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds),
            headers={"User-Agent": user_agent},
            transport=transport,
            follow_redirects=True,
        )

    def fetch_text(self, url: str) -> str | None:
        """Fetch URL body as text; ``None`` on non-2xx, timeout or transport error."""

        try:
            response = self._client.get(url)
        except httpx.TimeoutException:
            logger.warning("Timeout fetching %s", url)
            return None
        except httpx.HTTPError as exc:
            logger.warning("HTTP error fetching %s: %s", url, exc)
            return None

        if not response.is_success:
            logger.warning("HTTP %s fetching %s", response.status_code, url)
            return None
        return response.text

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpFetcher:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _build_conditional_headers(*, etag: str | None, last_modified: str | None) -> dict[str, str]:
    headers: dict[str, str] = {}
    if etag:
        headers["If-None-Match"] = etag
    if last_modified:
        headers["If-Modified-Since"] = last_modified
    return headers


def _normalize_header(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None
