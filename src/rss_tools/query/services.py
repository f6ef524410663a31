"""Query layer: filtered listings, digest, content view and popularity ranking."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta

from rss_tools.config import ContentSettings, PopularitySettings
from rss_tools.errors import NotFoundError
from rss_tools.http.popularity import HackerNewsLookup, PopularityLookup, build_async_client
from rss_tools.ingestion.models import (
    Digest,
    DigestPost,
    PopularityScore,
    PopularPost,
    PopularPosts,
    Post,
    PostContent,
    PostFilter,
)
from rss_tools.ingestion.repository import SQLiteRepository
from rss_tools.ingestion.sources.feed_parser import parse_datetime
from rss_tools.ingestion.storage.common import utc_now

logger = logging.getLogger(__name__)

SUMMARY_ELLIPSIS = "..."


class QueryService:
    """Read-side operations over the store, plus content backfill."""

    def __init__(
        self,
        *,
        repository: SQLiteRepository,
        content_settings: ContentSettings | None = None,
        popularity_settings: PopularitySettings | None = None,
        content_extractor: Callable[[str], str | None] | None = None,
        popularity_lookup: PopularityLookup | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.content_settings = content_settings or ContentSettings()
        self.popularity_settings = popularity_settings or PopularitySettings()
        self.content_extractor = content_extractor
        self.popularity_lookup = popularity_lookup
        self.clock = clock

    def get_posts(  # noqa: PLR0913
        self,
        *,
        feed_id: int | None = None,
        limit: int = 50,
        offset: int = 0,
        unread_only: bool = False,
        starred_only: bool = False,
        search: str | None = None,
        since: str | datetime | None = None,
    ) -> list[Post]:
        return self.repository.get_posts(
            PostFilter(
                feed_id=feed_id,
                limit=limit,
                offset=offset,
                unread_only=unread_only,
                starred_only=starred_only,
                search=search or None,
                since=_coerce_since(since),
            ),
        )

    def daily_digest(self, *, hours: float = 24, max_summary_length: int = 300) -> Digest:
        since = self.clock() - timedelta(hours=hours)
        posts = self.repository.list_recent_posts(since)
        digest_posts = [
            DigestPost(
                id=post.id,
                feed=post.feed_title,
                title=post.title,
                summary=truncate_summary(post.summary, max_summary_length),
                url=post.url,
                published_at=post.published_at,
            )
            for post in posts
        ]
        return Digest(
            period=f"last {_format_number(hours)}h",
            total_posts=len(digest_posts),
            feeds=len({post.feed_id for post in posts}),
            posts=digest_posts,
        )

    def get_post_content(self, post_id: int, *, full: bool = False) -> PostContent:
        """Return the content view; empty content is backfilled from the post URL once."""

        max_length = self.content_settings.max_content_chars
        result = self.repository.get_post_content(post_id, full=full, max_length=max_length)
        if result is None:
            raise NotFoundError(message=f"Post {post_id} not found")

        if result.content or not result.post.url or self.content_extractor is None:
            return result

        # Absent extraction leaves the post untouched.
        extracted = self.content_extractor(result.post.url)
        if not extracted:
            return result
        self.repository.update_post_content(post_id, extracted)
        refreshed = self.repository.get_post_content(post_id, full=full, max_length=max_length)
        if refreshed is None:
            raise NotFoundError(message=f"Post {post_id} not found")
        return refreshed

    def popular_posts(
        self,
        *,
        days: float = 7,
        limit: int = 10,
        pool_size: int | None = None,
    ) -> PopularPosts:
        """Rank recent posts by their external popularity score."""

        since = self.clock() - timedelta(days=days)
        pool = self.repository.get_posts(
            PostFilter(since=since, limit=pool_size or self.popularity_settings.pool_size),
        )
        ranked = asyncio.run(self._rank(pool))
        return PopularPosts(
            period=f"last {_format_number(days)} days",
            total_checked=len(pool),
            posts=ranked[: max(0, limit)],
        )

    async def _rank(self, pool: Sequence[Post]) -> list[PopularPost]:
        settings = self.popularity_settings
        if self.popularity_lookup is not None:
            return await rank_by_popularity(
                pool,
                self.popularity_lookup,
                concurrency=settings.concurrency,
                timeout_seconds=settings.timeout_seconds,
            )
        async with build_async_client(timeout_seconds=settings.timeout_seconds) as client:
            return await rank_by_popularity(
                pool,
                HackerNewsLookup(client),
                concurrency=settings.concurrency,
                timeout_seconds=settings.timeout_seconds,
            )


async def rank_by_popularity(
    posts: Sequence[Post],
    lookup: PopularityLookup,
    *,
    concurrency: int = 5,
    timeout_seconds: float = 10.0,
) -> list[PopularPost]:
    """Score posts in batches of ``concurrency`` lookups, highest score first.

    Posts without a URL, without a score, or whose lookup fails are dropped.
    """

    candidates = [post for post in posts if post.url]
    scored: list[PopularPost] = []
    batch_size = max(1, concurrency)
    for start in range(0, len(candidates), batch_size):
        batch = candidates[start : start + batch_size]
        results = await asyncio.gather(
            *(_bounded_lookup(lookup, post.url or "", timeout_seconds) for post in batch),
            return_exceptions=True,
        )
        for post, result in zip(batch, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning("Dropping post id=%s from ranking: %s", post.id, result)
                continue
            if result is None or post.url is None:
                continue
            scored.append(
                PopularPost(
                    id=post.id,
                    feed=post.feed_title,
                    title=post.title,
                    url=post.url,
                    published_at=post.published_at,
                    score=result.score,
                    comments=result.comments,
                    source_url=result.source_url,
                ),
            )
    scored.sort(key=lambda item: item.score, reverse=True)
    return scored


async def _bounded_lookup(
    lookup: PopularityLookup,
    url: str,
    timeout_seconds: float,
) -> PopularityScore | None:
    return await asyncio.wait_for(lookup.lookup(url), timeout=timeout_seconds)


def truncate_summary(summary: str | None, max_length: int) -> str | None:
    """Cut summaries longer than ``max_length`` and append an ellipsis."""

    if summary is None or len(summary) <= max_length:
        return summary
    return summary[:max_length] + SUMMARY_ELLIPSIS


def _coerce_since(value: str | datetime | None) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    if not value.strip():
        return None
    parsed = parse_datetime(value)
    if parsed is None:
        raise ValueError(f"Invalid 'since' timestamp: {value!r}")
    return parsed


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)
