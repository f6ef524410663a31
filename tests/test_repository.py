from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import allure
import pytest
from sqlalchemy import text

from rss_tools.errors import DuplicateFeedError, NotFoundError
from rss_tools.ingestion.models import FeedEntry, PostFilter
from rss_tools.ingestion.repository import MAX_CONTENT_LENGTH, TRUNCATION_MARKER, SQLiteRepository

pytestmark = [
    allure.epic("Feed Ingestion"),
    allure.feature("Storage Engine"),
]


def _entry(guid: str, *, hours_ago: float | None = None, **fields) -> FeedEntry:
    published_at = None
    if hours_ago is not None:
        published_at = datetime.now(tz=UTC) - timedelta(hours=hours_ago)
    return FeedEntry(
        guid=guid,
        title=fields.get("title", f"Post {guid}"),
        url=fields.get("url", f"https://example.com/{guid}"),
        summary=fields.get("summary"),
        author=fields.get("author"),
        published_at=published_at,
    )


def _rows(repo: SQLiteRepository, sql: str, **params) -> list:
    with repo.engine.connect() as connection:
        return list(connection.execute(text(sql), params).mappings())


def _fts_rowids(repo: SQLiteRepository, query: str) -> set[int]:
    rows = _rows(repo, "SELECT rowid FROM posts_fts WHERE posts_fts MATCH :query", query=query)
    return {row["rowid"] for row in rows}


def test_add_feed_rejects_duplicate_url(repo: SQLiteRepository) -> None:
    feed = repo.add_feed("https://example.com/feed.xml", title="Example")

    assert feed.id > 0
    assert feed.title == "Example"
    assert feed.last_fetched is None
    assert feed.etag is None
    assert feed.created_at.tzinfo is not None

    with pytest.raises(DuplicateFeedError):
        repo.add_feed("https://example.com/feed.xml")
    assert len(repo.list_feeds()) == 1


def test_init_schema_is_idempotent(tmp_path: Path) -> None:
    first = SQLiteRepository(tmp_path / "twice.db")
    first.init_schema()
    feed = first.add_feed("https://example.com/feed.xml")
    first.close()

    second = SQLiteRepository(tmp_path / "twice.db")
    second.init_schema()
    assert [stored.id for stored in second.list_feeds()] == [feed.id]
    second.close()


def test_upsert_posts_is_insert_if_absent(repo: SQLiteRepository) -> None:
    feed = repo.add_feed("https://example.com/feed.xml")
    entries = [_entry("a", hours_ago=1, summary="first"), _entry("b", hours_ago=2)]

    assert repo.upsert_posts(feed.id, entries) == 2
    assert repo.upsert_posts(feed.id, entries) == 0

    changed = [_entry("a", hours_ago=1, title="Edited", summary="second")]
    assert repo.upsert_posts(feed.id, changed) == 0

    posts = repo.get_posts()
    assert len(posts) == 2
    first = next(post for post in posts if post.guid == "a")
    assert first.title == "Post a"
    assert first.summary == "first"
    assert first.is_read is False
    assert first.starred is False
    assert first.feed_url == "https://example.com/feed.xml"


def test_upsert_posts_duplicate_guid_in_one_batch_persists_once(repo: SQLiteRepository) -> None:
    feed = repo.add_feed("https://example.com/feed.xml")

    inserted = repo.upsert_posts(feed.id, [_entry("", title="one"), _entry("", title="two")])

    assert inserted == 1
    (post,) = repo.get_posts()
    assert post.title == "one"
    assert _fts_rowids(repo, "one") == {post.id}
    assert _fts_rowids(repo, "two") == set()


def test_same_guid_in_different_feeds_is_distinct(repo: SQLiteRepository) -> None:
    first = repo.add_feed("https://one.example.com/feed.xml")
    second = repo.add_feed("https://two.example.com/feed.xml")

    assert repo.upsert_posts(first.id, [_entry("shared")]) == 1
    assert repo.upsert_posts(second.id, [_entry("shared")]) == 1
    assert len(repo.get_posts()) == 2


def test_update_feed_meta_preserves_title_on_null(repo: SQLiteRepository) -> None:
    feed = repo.add_feed("https://example.com/feed.xml")
    repo.update_feed_meta(
        feed.id,
        title="Known Title",
        site_url="https://example.com/",
        etag='"v1"',
        last_modified="Tue, 17 Feb 2026 13:20:00 GMT",
    )

    repo.update_feed_meta(feed.id, title=None, site_url=None, etag=None, last_modified=None)

    stored = repo.get_feed(feed.id)
    assert stored is not None
    assert stored.title == "Known Title"
    assert stored.site_url == "https://example.com/"
    assert stored.etag is None
    assert stored.last_modified is None
    assert stored.last_fetched is not None
    assert datetime.now(tz=UTC) - stored.last_fetched < timedelta(minutes=1)


def test_update_feed_meta_keeps_title_given_at_subscribe(repo: SQLiteRepository) -> None:
    feed = repo.add_feed(
        "https://example.com/feed.xml",
        title="Chosen Title",
        site_url="https://example.com/home",
    )

    repo.update_feed_meta(feed.id, title=None, site_url=None, etag=None, last_modified=None)

    stored = repo.get_feed(feed.id)
    assert stored is not None
    assert stored.title == "Chosen Title"
    assert stored.site_url == "https://example.com/home"
    assert stored.last_fetched is not None


def test_connections_enforce_foreign_keys_and_wal(repo: SQLiteRepository) -> None:
    assert _rows(repo, "PRAGMA foreign_keys")[0]["foreign_keys"] == 1
    assert _rows(repo, "PRAGMA journal_mode")[0]["journal_mode"] == "wal"


def test_update_feed_meta_unknown_feed(repo: SQLiteRepository) -> None:
    with pytest.raises(NotFoundError):
        repo.update_feed_meta(999, title=None, site_url=None, etag=None, last_modified=None)


def test_get_posts_orders_undated_posts_last(repo: SQLiteRepository) -> None:
    feed = repo.add_feed("https://example.com/feed.xml")
    repo.upsert_posts(
        feed.id,
        [
            _entry("undated"),
            _entry("old", hours_ago=48),
            _entry("new", hours_ago=1),
            _entry("middle", hours_ago=5),
        ],
    )

    assert [post.guid for post in repo.get_posts()] == ["new", "middle", "old", "undated"]

    page = repo.get_posts(PostFilter(limit=2, offset=1))
    assert [post.guid for post in page] == ["middle", "old"]


def test_get_posts_filters_combine(repo: SQLiteRepository) -> None:
    first = repo.add_feed("https://one.example.com/feed.xml")
    second = repo.add_feed("https://two.example.com/feed.xml")
    repo.upsert_posts(first.id, [_entry("a", hours_ago=1), _entry("b", hours_ago=30)])
    repo.upsert_posts(second.id, [_entry("c", hours_ago=2)])
    a_id = next(post.id for post in repo.get_posts() if post.guid == "a")
    repo.mark_read([a_id])

    by_feed = repo.get_posts(PostFilter(feed_id=first.id))
    assert {post.guid for post in by_feed} == {"a", "b"}

    unread_recent = repo.get_posts(
        PostFilter(
            feed_id=first.id,
            unread_only=True,
            since=datetime.now(tz=UTC) - timedelta(hours=48),
        ),
    )
    assert [post.guid for post in unread_recent] == ["b"]

    recent = repo.get_posts(PostFilter(since=datetime.now(tz=UTC) - timedelta(hours=3)))
    assert {post.guid for post in recent} == {"a", "c"}


def test_search_matches_content_only_posts(repo: SQLiteRepository) -> None:
    feed = repo.add_feed("https://example.com/feed.xml")
    repo.upsert_posts(
        feed.id,
        [
            _entry("a", title="Rust release", summary="compiler news"),
            _entry("b", title="Gardening", summary="tomatoes"),
        ],
    )
    gardening = next(post for post in repo.get_posts() if post.guid == "b")

    assert repo.get_posts(PostFilter(search="zeppelin")) == []

    repo.update_post_content(gardening.id, "A long story about a zeppelin over the garden.")

    hits = repo.get_posts(PostFilter(search="zeppelin"))
    assert [post.id for post in hits] == [gardening.id]
    assert [post.guid for post in repo.get_posts(PostFilter(search="compiler"))] == ["a"]


def test_search_with_invalid_syntax_raises_value_error(repo: SQLiteRepository) -> None:
    feed = repo.add_feed("https://example.com/feed.xml")
    repo.upsert_posts(feed.id, [_entry("a")])

    with pytest.raises(ValueError, match="Invalid search query"):
        repo.get_posts(PostFilter(search='"unbalanced'))


def test_remove_feed_cascades_to_posts_and_index(repo: SQLiteRepository) -> None:
    keep = repo.add_feed("https://keep.example.com/feed.xml")
    drop = repo.add_feed("https://drop.example.com/feed.xml")
    repo.upsert_posts(keep.id, [_entry("k")])
    repo.upsert_posts(drop.id, [_entry("d1"), _entry("d2")])

    assert repo.remove_feed(drop.id) is True
    assert repo.remove_feed(drop.id) is False

    remaining = repo.get_posts()
    assert [post.guid for post in remaining] == ["k"]
    assert _fts_rowids(repo, "Post") == {remaining[0].id}
    orphaned = _rows(
        repo,
        "SELECT COUNT(*) AS total FROM posts WHERE feed_id = :feed_id",
        feed_id=drop.id,
    )
    assert orphaned[0]["total"] == 0


def test_mark_read_and_unread_keep_read_at_in_sync(repo: SQLiteRepository) -> None:
    feed = repo.add_feed("https://example.com/feed.xml")
    repo.upsert_posts(feed.id, [_entry("a"), _entry("b")])
    ids = [post.id for post in repo.get_posts()]

    assert repo.mark_read([]) == 0
    assert repo.mark_read([*ids, 9999]) == 2
    assert repo.mark_read(ids) == 0
    for post in repo.get_posts():
        assert post.is_read is True
        assert post.read_at is not None

    assert repo.mark_unread(ids[:1]) == 1
    rows = _rows(repo, "SELECT id, is_read, read_at FROM posts")
    for row in rows:
        assert bool(row["is_read"]) is (row["read_at"] is not None)


def test_star_and_unstar_posts(repo: SQLiteRepository) -> None:
    feed = repo.add_feed("https://example.com/feed.xml")
    repo.upsert_posts(feed.id, [_entry("a"), _entry("b")])
    ids = [post.id for post in repo.get_posts()]

    assert repo.mark_starred(ids[:1]) == 1
    assert [post.id for post in repo.get_posts(PostFilter(starred_only=True))] == ids[:1]
    assert repo.mark_unstarred(ids) == 1
    assert repo.get_posts(PostFilter(starred_only=True)) == []


def test_get_post_content_truncates_unless_full(repo: SQLiteRepository) -> None:
    feed = repo.add_feed("https://example.com/feed.xml")
    repo.upsert_posts(feed.id, [_entry("a")])
    (post,) = repo.get_posts()
    repo.update_post_content(post.id, "x" * 6_000)

    view = repo.get_post_content(post.id)
    assert view is not None
    assert view.truncated is True
    assert view.content == "x" * MAX_CONTENT_LENGTH + TRUNCATION_MARKER

    full = repo.get_post_content(post.id, full=True)
    assert full is not None
    assert full.truncated is False
    assert len(full.content) == 6_000

    assert repo.get_post_content(9999) is None


def test_update_post_content_unknown_post(repo: SQLiteRepository) -> None:
    with pytest.raises(NotFoundError):
        repo.update_post_content(9999, "content")


def test_list_recent_posts_excludes_undated_and_old(repo: SQLiteRepository) -> None:
    feed = repo.add_feed("https://example.com/feed.xml")
    repo.upsert_posts(
        feed.id,
        [_entry("fresh", hours_ago=2), _entry("stale", hours_ago=50), _entry("undated")],
    )

    recent = repo.list_recent_posts(datetime.now(tz=UTC) - timedelta(hours=24))
    assert [post.guid for post in recent] == ["fresh"]
