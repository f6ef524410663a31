"""Hacker News popularity lookup keyed by article URL."""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from rss_tools.ingestion.models import PopularityScore

logger = logging.getLogger(__name__)

HN_SEARCH_URL = "https://hn.algolia.com/api/v1/search"
HN_ITEM_URL = "https://news.ycombinator.com/item?id={object_id}"
DEFAULT_TIMEOUT_SECONDS = 10.0


class PopularityLookup(Protocol):
    """Async lookup contract: ``None`` when the URL is unknown or the call failed."""

    async def lookup(self, url: str) -> PopularityScore | None:
        raise NotImplementedError


class HackerNewsLookup:
    """Look up the top Hacker News submission for a URL via the Algolia API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        search_url: str = HN_SEARCH_URL,
    ) -> None:
        self._client = client
        self._search_url = search_url

    async def lookup(self, url: str) -> PopularityScore | None:
        try:
            response = await self._client.get(
                self._search_url,
                params={
                    "query": url,
                    "restrictSearchableAttributes": "url",
                    "hitsPerPage": "1",
                },
            )
        except httpx.HTTPError as exc:
            logger.warning("Popularity lookup failed for %s: %s", url, exc)
            return None

        if not response.is_success:
            logger.warning("Popularity lookup HTTP %s for %s", response.status_code, url)
            return None
        try:
            payload = response.json()
        except ValueError:
            logger.warning("Popularity lookup returned invalid JSON for %s", url)
            return None

        hits = payload.get("hits") if isinstance(payload, dict) else None
        if not hits or not isinstance(hits[0], dict):
            return None
        hit = hits[0]
        if hit.get("points") is None:
            return None
        return PopularityScore(
            score=int(hit["points"]),
            comments=int(hit.get("num_comments") or 0),
            source_url=HN_ITEM_URL.format(object_id=hit.get("objectID", "")),
        )


def build_async_client(*, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS) -> httpx.AsyncClient:
    """Async client shared by all lookups of one ranking request."""

    return httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds), follow_redirects=True)
