"""Readable article text extraction using trafilatura."""

from __future__ import annotations

import logging

import trafilatura

from rss_tools.http.fetcher import HttpFetcher

logger = logging.getLogger(__name__)


def extract_content(html: str, *, url: str | None = None) -> str | None:
    """Extract main content text from HTML.

    Best effort: returns ``None`` on empty input, on extraction failure, or when
    nothing readable is found. Never raises.
    """

    if not html or not html.strip():
        return None

    try:
        text = trafilatura.extract(
            html,
            url=url,
            include_tables=True,
            include_links=False,
            favor_precision=True,
            deduplicate=True,
        )
    except Exception as exc:  # noqa: BLE001
        logger.warning("trafilatura.extract failed for %s: %s", url or "<unknown>", exc)
        text = None

    if not text:
        try:
            text = trafilatura.extract(html, url=url, favor_recall=True)
        except Exception as exc:  # noqa: BLE001
            logger.warning("trafilatura fallback failed for %s: %s", url or "<unknown>", exc)
            return None

    if not text or not text.strip():
        return None
    return text.strip()


def fetch_and_extract(url: str, fetcher: HttpFetcher) -> str | None:
    """Download ``url`` and extract its article text; ``None`` on any failure."""

    html = fetcher.fetch_text(url)
    if html is None:
        return None
    return extract_content(html, url=url)
