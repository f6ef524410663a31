"""SQLModel-backed storage facade for feeds, posts and the search index."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime
from pathlib import Path

from sqlalchemy import case, delete, text, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlmodel import Session, col, select

from rss_tools.errors import DuplicateFeedError, NotFoundError
from rss_tools.ingestion.models import Feed, FeedEntry, Post, PostContent, PostFilter
from rss_tools.ingestion.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from rss_tools.ingestion.storage.schema import create_schema
from rss_tools.ingestion.storage.sqlmodel_models import FeedRow, PostRow

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 5_000
TRUNCATION_MARKER = "\n\n[Content truncated. Use full=true for complete article.]"
_SEARCH_CLAUSE = text("posts.id IN (SELECT rowid FROM posts_fts WHERE posts_fts MATCH :search)")


class SQLiteRepository:
    """Facade that owns the SQLite store: feeds, posts, read/star state and FTS index."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self.engine = build_sqlite_engine(db_path=db_path)

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        create_schema(self.engine)

    # Feeds

    def add_feed(self, url: str, title: str | None = None, site_url: str | None = None) -> Feed:
        with Session(self.engine) as session:
            row = FeedRow(
                url=url,
                title=title,
                site_url=site_url,
                created_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError as error:
                session.rollback()
                raise DuplicateFeedError(message=f"Feed already exists: {url}") from error
            session.refresh(row)
            logger.info("Subscribed feed id=%s url=%s", row.id, url)
            return _to_feed(row)

    def list_feeds(self) -> list[Feed]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(FeedRow).order_by(col(FeedRow.created_at).desc(), col(FeedRow.id).desc()),
            ).all()
            return [_to_feed(row) for row in rows]

    def get_feed(self, feed_id: int) -> Feed | None:
        with Session(self.engine) as session:
            row = session.get(FeedRow, feed_id)
            return _to_feed(row) if row is not None else None

    def remove_feed(self, feed_id: int) -> bool:
        """Delete a feed; posts and their index rows go with it via cascade and trigger."""

        with Session(self.engine) as session:
            result = session.exec(
                delete(FeedRow)
                .where(col(FeedRow.id) == feed_id)
                .execution_options(synchronize_session=False),
            )
            session.commit()
            removed = result.rowcount > 0
        if removed:
            logger.info("Removed feed id=%s", feed_id)
        return removed

    def update_feed_meta(
        self,
        feed_id: int,
        *,
        title: str | None,
        site_url: str | None,
        etag: str | None,
        last_modified: str | None,
    ) -> None:
        """Record a completed fetch.

        ``title``/``site_url`` keep their stored value when ``None``; validators are
        always overwritten, so ``None`` clears them.
        """

        with Session(self.engine) as session:
            row = session.get(FeedRow, feed_id)
            if row is None:
                raise NotFoundError(message=f"Feed {feed_id} not found")
            if title is not None:
                row.title = title
            if site_url is not None:
                row.site_url = site_url
            row.last_fetched = to_db_datetime(utc_now())
            row.etag = etag
            row.last_modified = last_modified
            session.add(row)
            session.commit()

    # Posts

    def upsert_posts(self, feed_id: int, entries: Iterable[FeedEntry]) -> int:
        """Insert entries absent by ``(feed_id, guid)``; existing posts are never updated.

        The whole batch runs in one transaction. Returns the number of inserted posts.
        """

        inserted = 0
        fetched_at = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            for entry in entries:
                statement = (
                    sqlite_insert(PostRow.__table__)
                    .values(
                        feed_id=feed_id,
                        guid=entry.guid,
                        title=entry.title,
                        url=entry.url,
                        summary=entry.summary,
                        author=entry.author,
                        published_at=(
                            to_db_datetime(entry.published_at)
                            if entry.published_at is not None
                            else None
                        ),
                        fetched_at=fetched_at,
                        is_read=False,
                        starred=False,
                    )
                    .on_conflict_do_nothing(index_elements=["feed_id", "guid"])
                )
                result = session.exec(statement)
                inserted += max(0, result.rowcount)
            session.commit()
        return inserted

    def get_posts(self, post_filter: PostFilter | None = None) -> list[Post]:
        post_filter = post_filter or PostFilter()
        statement = select(PostRow, FeedRow.title, FeedRow.url).join(
            FeedRow,
            col(FeedRow.id) == col(PostRow.feed_id),
        )
        if post_filter.feed_id is not None:
            statement = statement.where(col(PostRow.feed_id) == post_filter.feed_id)
        if post_filter.unread_only:
            statement = statement.where(col(PostRow.is_read).is_(False))
        if post_filter.starred_only:
            statement = statement.where(col(PostRow.starred).is_(True))
        if post_filter.since is not None:
            statement = statement.where(
                col(PostRow.published_at) >= to_db_datetime(post_filter.since),
            )
        if post_filter.search:
            statement = statement.where(_SEARCH_CLAUSE.bindparams(search=post_filter.search))
        statement = (
            statement.order_by(*_recency_order())
            .limit(max(0, post_filter.limit))
            .offset(max(0, post_filter.offset))
        )

        with Session(self.engine) as session:
            try:
                rows = session.exec(statement).all()
            except OperationalError as error:
                if post_filter.search:
                    raise ValueError(
                        f"Invalid search query {post_filter.search!r}: {error.orig}",
                    ) from error
                raise
            return [
                _to_post(row, feed_title=feed_title, feed_url=feed_url)
                for row, feed_title, feed_url in rows
            ]

    def list_recent_posts(self, since: datetime) -> list[Post]:
        """Posts published at or after ``since``, newest first, without paging."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(PostRow, FeedRow.title, FeedRow.url)
                .join(FeedRow, col(FeedRow.id) == col(PostRow.feed_id))
                .where(col(PostRow.published_at) >= to_db_datetime(since))
                .order_by(*_recency_order()),
            ).all()
            return [
                _to_post(row, feed_title=feed_title, feed_url=feed_url)
                for row, feed_title, feed_url in rows
            ]

    def mark_read(self, post_ids: Sequence[int]) -> int:
        if not post_ids:
            return 0
        return self._update_posts(
            post_ids,
            col(PostRow.is_read).is_(False),
            is_read=True,
            read_at=to_db_datetime(utc_now()),
        )

    def mark_unread(self, post_ids: Sequence[int]) -> int:
        if not post_ids:
            return 0
        return self._update_posts(
            post_ids,
            col(PostRow.is_read).is_(True),
            is_read=False,
            read_at=None,
        )

    def mark_starred(self, post_ids: Sequence[int]) -> int:
        if not post_ids:
            return 0
        return self._update_posts(post_ids, col(PostRow.starred).is_(False), starred=True)

    def mark_unstarred(self, post_ids: Sequence[int]) -> int:
        if not post_ids:
            return 0
        return self._update_posts(post_ids, col(PostRow.starred).is_(True), starred=False)

    def get_post(self, post_id: int) -> Post | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(PostRow, FeedRow.title, FeedRow.url)
                .join(FeedRow, col(FeedRow.id) == col(PostRow.feed_id))
                .where(col(PostRow.id) == post_id),
            ).one_or_none()
            if row is None:
                return None
            post_row, feed_title, feed_url = row
            return _to_post(post_row, feed_title=feed_title, feed_url=feed_url)

    def get_post_content(
        self,
        post_id: int,
        *,
        full: bool = False,
        max_length: int = MAX_CONTENT_LENGTH,
    ) -> PostContent | None:
        post = self.get_post(post_id)
        if post is None:
            return None

        content = post.content or ""
        truncated = False
        if not full and len(content) > max_length:
            content = content[:max_length] + TRUNCATION_MARKER
            truncated = True
        return PostContent(post=post, content=content, truncated=truncated)

    def update_post_content(self, post_id: int, content: str) -> None:
        """Overwrite post content; the update trigger reindexes the row."""

        with Session(self.engine) as session:
            row = session.get(PostRow, post_id)
            if row is None:
                raise NotFoundError(message=f"Post {post_id} not found")
            row.content = content
            session.add(row)
            session.commit()

    def _update_posts(self, post_ids: Sequence[int], *conditions: object, **values: object) -> int:
        with Session(self.engine) as session:
            result = session.exec(
                update(PostRow)
                .where(col(PostRow.id).in_(list(post_ids)), *conditions)
                .values(**values)
                .execution_options(synchronize_session=False),
            )
            session.commit()
            return result.rowcount


def _recency_order() -> tuple:
    # Unknown publish times sort after every dated post.
    return (
        case((col(PostRow.published_at).is_(None), 1), else_=0),
        col(PostRow.published_at).desc(),
        col(PostRow.id).desc(),
    )


def _to_feed(row: FeedRow) -> Feed:
    if row.id is None:
        raise RuntimeError("Feed row has no id")
    return Feed(
        id=row.id,
        url=row.url,
        title=row.title,
        site_url=row.site_url,
        last_fetched=_aware_or_none(row.last_fetched),
        etag=row.etag,
        last_modified=row.last_modified,
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _to_post(row: PostRow, *, feed_title: str | None, feed_url: str | None) -> Post:
    if row.id is None:
        raise RuntimeError("Post row has no id")
    return Post(
        id=row.id,
        feed_id=row.feed_id,
        guid=row.guid,
        title=row.title,
        url=row.url,
        summary=row.summary,
        content=row.content,
        author=row.author,
        published_at=_aware_or_none(row.published_at),
        fetched_at=to_utc_aware_datetime(row.fetched_at),
        is_read=bool(row.is_read),
        read_at=_aware_or_none(row.read_at),
        starred=bool(row.starred),
        feed_title=feed_title,
        feed_url=feed_url,
    )


def _aware_or_none(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return to_utc_aware_datetime(value)
