"""Refresh orchestration: cooldown, conditional fetch, parse and commit per feed."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Protocol

from rss_tools.config import RefreshSettings
from rss_tools.errors import NotFoundError
from rss_tools.ingestion.models import (
    Feed,
    FetchResponse,
    FetchStatus,
    ParsedFeed,
    RefreshError,
    RefreshOutcome,
    RefreshReport,
)
from rss_tools.ingestion.repository import SQLiteRepository
from rss_tools.ingestion.sources.feed_parser import parse_feed
from rss_tools.ingestion.storage.common import utc_now

logger = logging.getLogger(__name__)


class FeedFetcher(Protocol):
    """Conditional fetch contract used by the orchestrator."""

    def fetch(
        self,
        url: str,
        etag: str | None = None,
        last_modified: str | None = None,
    ) -> FetchResponse:
        raise NotImplementedError


class RefreshOrchestrator:
    """Refreshes feeds one by one; a failing feed never blocks the others."""

    def __init__(
        self,
        *,
        repository: SQLiteRepository,
        fetcher: FeedFetcher,
        settings: RefreshSettings | None = None,
        parser: Callable[[bytes], ParsedFeed] = parse_feed,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.fetcher = fetcher
        self.settings = settings or RefreshSettings()
        self.parser = parser
        self.clock = clock

    def refresh(self, feed_id: int | None = None) -> RefreshReport:
        if feed_id is not None:
            feed = self.repository.get_feed(feed_id)
            if feed is None:
                raise NotFoundError(message=f"Feed {feed_id} not found")
            feeds = [feed]
        else:
            feeds = self.repository.list_feeds()

        report = RefreshReport()
        for feed in feeds:
            try:
                outcome, new_posts = self._refresh_feed(feed)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Refresh failed for feed id=%s url=%s: %s", feed.id, feed.url, exc)
                report.errors.append(RefreshError(feed_id=feed.id, url=feed.url, error=str(exc)))
                outcome, new_posts = RefreshOutcome.ERRORED, 0
            report.record(outcome, new_posts)

        logger.info(
            "Refresh completed: feeds=%s refreshed=%s skipped=%s errored=%s new_posts=%s",
            len(feeds),
            report.refreshed,
            report.skipped,
            report.errored,
            report.new_posts,
        )
        return report

    def _refresh_feed(self, feed: Feed) -> tuple[RefreshOutcome, int]:
        if self._in_cooldown(feed):
            logger.debug("Skipping feed id=%s: fetched at %s", feed.id, feed.last_fetched)
            return RefreshOutcome.SKIPPED, 0

        response = self.fetcher.fetch(feed.url, feed.etag, feed.last_modified)
        if response.status == FetchStatus.NOT_MODIFIED or response.body is None:
            logger.info("Feed id=%s not modified", feed.id)
            return RefreshOutcome.SKIPPED, 0

        parsed = self.parser(response.body)
        new_posts = self.repository.upsert_posts(feed.id, parsed.entries)
        self.repository.update_feed_meta(
            feed.id,
            title=parsed.title,
            site_url=parsed.site_url,
            etag=response.etag,
            last_modified=response.last_modified,
        )
        logger.info(
            "Refreshed feed id=%s dialect=%s entries=%s new_posts=%s",
            feed.id,
            parsed.dialect.value,
            len(parsed.entries),
            new_posts,
        )
        return RefreshOutcome.REFRESHED, new_posts

    def _in_cooldown(self, feed: Feed) -> bool:
        if feed.last_fetched is None:
            return False
        cooldown = timedelta(seconds=self.settings.min_interval_seconds)
        return self.clock() - feed.last_fetched < cooldown
