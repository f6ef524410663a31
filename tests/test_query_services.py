from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import allure
import pytest

from rss_tools.config import ContentSettings, PopularitySettings
from rss_tools.errors import NotFoundError
from rss_tools.ingestion.models import FeedEntry, PopularityScore
from rss_tools.ingestion.repository import TRUNCATION_MARKER, SQLiteRepository
from rss_tools.query.services import QueryService, rank_by_popularity, truncate_summary

pytestmark = [
    allure.epic("Post Queries"),
    allure.feature("Query Layer"),
]


def _seed(repo: SQLiteRepository) -> dict[str, int]:
    now = datetime.now(tz=UTC)
    first = repo.add_feed("https://one.example.com/feed.xml", title="One")
    second = repo.add_feed("https://two.example.com/feed.xml", title="Two")
    repo.upsert_posts(
        first.id,
        [
            FeedEntry(
                guid="a",
                title="Alpha",
                url="https://one.example.com/a",
                summary="s" * 400,
                published_at=now - timedelta(hours=1),
            ),
            FeedEntry(
                guid="b",
                title="Beta",
                url=None,
                summary="short",
                published_at=now - timedelta(hours=3),
            ),
            FeedEntry(
                guid="old",
                title="Old",
                url="https://one.example.com/old",
                published_at=now - timedelta(days=10),
            ),
        ],
    )
    repo.upsert_posts(
        second.id,
        [
            FeedEntry(
                guid="c",
                title="Gamma",
                url="https://two.example.com/c",
                published_at=now - timedelta(hours=30),
            ),
            FeedEntry(guid="undated", title="Undated", url="https://two.example.com/u"),
        ],
    )
    return {post.guid: post.id for post in repo.get_posts()}


class _FakeLookup:
    def __init__(self, scores: dict[str, PopularityScore | Exception | None]) -> None:
        self.scores = scores
        self.in_flight = 0
        self.max_in_flight = 0
        self.calls: list[str] = []

    async def lookup(self, url: str) -> PopularityScore | None:
        self.calls.append(url)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            result = self.scores.get(url)
            if isinstance(result, Exception):
                raise result
            return result
        finally:
            self.in_flight -= 1


def _score(points: int) -> PopularityScore:
    return PopularityScore(
        score=points,
        comments=points // 10,
        source_url=f"https://news.ycombinator.com/item?id={points}",
    )


def test_get_posts_normalizes_since(repo: SQLiteRepository) -> None:
    _seed(repo)
    service = QueryService(repository=repo)
    since = (datetime.now(tz=UTC) - timedelta(hours=5)).astimezone().isoformat()

    posts = service.get_posts(since=since)

    assert [post.guid for post in posts] == ["a", "b"]
    assert len(service.get_posts(since="")) == 5


def test_get_posts_rejects_unparsable_since(repo: SQLiteRepository) -> None:
    service = QueryService(repository=repo)
    with pytest.raises(ValueError, match="Invalid 'since'"):
        service.get_posts(since="last tuesday")


def test_daily_digest_truncates_summaries(repo: SQLiteRepository) -> None:
    _seed(repo)
    service = QueryService(repository=repo)

    digest = service.daily_digest()

    assert digest.period == "last 24h"
    assert digest.total_posts == 2
    assert digest.feeds == 1
    alpha, beta = digest.posts
    assert alpha.feed == "One"
    assert alpha.summary == "s" * 300 + "..."
    assert beta.summary == "short"

    wider = service.daily_digest(hours=48, max_summary_length=10)
    assert wider.period == "last 48h"
    assert wider.total_posts == 3
    assert wider.feeds == 2
    assert wider.posts[0].summary == "s" * 10 + "..."


def test_truncate_summary_edges() -> None:
    assert truncate_summary(None, 5) is None
    assert truncate_summary("12345", 5) == "12345"
    assert truncate_summary("123456", 5) == "12345..."


def test_get_post_content_backfills_empty_content(repo: SQLiteRepository) -> None:
    ids = _seed(repo)
    extracted: list[str] = []

    def extractor(url: str) -> str | None:
        extracted.append(url)
        return "x" * 120

    service = QueryService(
        repository=repo,
        content_settings=ContentSettings(max_content_chars=100),
        content_extractor=extractor,
    )

    view = service.get_post_content(ids["a"])
    assert extracted == ["https://one.example.com/a"]
    assert view.truncated is True
    assert view.content == "x" * 100 + TRUNCATION_MARKER

    full = service.get_post_content(ids["a"], full=True)
    assert full.content == "x" * 120
    assert extracted == ["https://one.example.com/a"]


def test_get_post_content_without_url_or_extraction(repo: SQLiteRepository) -> None:
    ids = _seed(repo)
    calls: list[str] = []

    def extractor(url: str) -> str | None:
        calls.append(url)
        return None

    service = QueryService(repository=repo, content_extractor=extractor)

    no_url = service.get_post_content(ids["b"])
    assert no_url.content == ""
    assert calls == []

    failed = service.get_post_content(ids["c"])
    assert failed.content == ""
    assert failed.truncated is False
    assert calls == ["https://two.example.com/c"]

    with pytest.raises(NotFoundError):
        service.get_post_content(9999)


def test_popular_posts_ranks_and_drops_failures(repo: SQLiteRepository) -> None:
    _seed(repo)
    lookup = _FakeLookup(
        {
            "https://one.example.com/a": _score(50),
            "https://two.example.com/c": _score(300),
            "https://one.example.com/old": RuntimeError("search unavailable"),
        },
    )
    service = QueryService(repository=repo, popularity_lookup=lookup)

    result = service.popular_posts(days=30, limit=10)

    assert result.period == "last 30 days"
    assert result.total_checked == 4
    assert [post.title for post in result.posts] == ["Gamma", "Alpha"]
    assert result.posts[0].score == 300
    assert result.posts[0].comments == 30
    assert result.posts[0].feed == "Two"
    assert "https://two.example.com/u" not in lookup.calls

    top = service.popular_posts(days=30, limit=1)
    assert [post.title for post in top.posts] == ["Gamma"]


def test_rank_by_popularity_bounds_concurrency(repo: SQLiteRepository) -> None:
    feed = repo.add_feed("https://example.com/feed.xml")
    now = datetime.now(tz=UTC)
    repo.upsert_posts(
        feed.id,
        [
            FeedEntry(
                guid=str(index),
                title=f"Post {index}",
                url=f"https://example.com/{index}",
                published_at=now - timedelta(minutes=index),
            )
            for index in range(12)
        ],
    )
    lookup = _FakeLookup({f"https://example.com/{index}": _score(index) for index in range(12)})

    ranked = asyncio.run(rank_by_popularity(repo.get_posts(), lookup, concurrency=5))

    assert lookup.max_in_flight == 5
    assert len(lookup.calls) == 12
    assert [post.score for post in ranked] == sorted(range(12), reverse=True)


def test_popular_posts_uses_pool_size(repo: SQLiteRepository) -> None:
    _seed(repo)
    lookup = _FakeLookup({})
    service = QueryService(
        repository=repo,
        popularity_settings=PopularitySettings(pool_size=2),
        popularity_lookup=lookup,
    )

    result = service.popular_posts(days=30)

    assert result.total_checked == 2
    assert result.posts == []
