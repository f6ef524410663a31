"""Tool controller: named tool calls mapped onto store, refresh and query operations."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import asdict, dataclass, is_dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from rss_tools.config import Settings
from rss_tools.errors import RssToolsError
from rss_tools.http.fetcher import ConditionalFetcher, HttpFetcher
from rss_tools.http.html_extractor import fetch_and_extract
from rss_tools.http.popularity import PopularityLookup
from rss_tools.ingestion.opml import import_opml
from rss_tools.ingestion.refresh import FeedFetcher, RefreshOrchestrator
from rss_tools.ingestion.repository import SQLiteRepository
from rss_tools.query.services import QueryService

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolResponse:
    """Result of one tool call; ``payload`` is JSON-ready."""

    payload: Any
    is_error: bool = False


class ToolController:
    """Coordinates tool execution against one open store."""

    def __init__(
        self,
        *,
        repository: SQLiteRepository,
        settings: Settings,
        feed_fetcher: FeedFetcher,
        content_extractor: Callable[[str], str | None] | None = None,
        popularity_lookup: PopularityLookup | None = None,
    ) -> None:
        self.repository = repository
        self.settings = settings
        self.orchestrator = RefreshOrchestrator(
            repository=repository,
            fetcher=feed_fetcher,
            settings=settings.refresh,
        )
        self.queries = QueryService(
            repository=repository,
            content_settings=settings.content,
            popularity_settings=settings.popularity,
            content_extractor=content_extractor,
            popularity_lookup=popularity_lookup,
        )
        self._tools: dict[str, Callable[..., Any]] = {
            "list_feeds": self._list_feeds,
            "add_feed": self._add_feed,
            "remove_feed": self._remove_feed,
            "import_opml": self._import_opml,
            "refresh_feeds": self._refresh_feeds,
            "get_posts": self._get_posts,
            "get_post_content": self._get_post_content,
            "get_daily_digest": self._get_daily_digest,
            "mark_read": self._mark_read,
            "mark_unread": self._mark_unread,
            "star_posts": self._star_posts,
            "unstar_posts": self._unstar_posts,
            "get_popular_posts": self._get_popular_posts,
        }

    @property
    def tool_names(self) -> list[str]:
        return sorted(self._tools)

    def call(self, name: str, params: Mapping[str, Any] | None = None) -> ToolResponse:
        """Run tool ``name``; domain and validation errors become error responses."""

        handler = self._tools.get(name)
        if handler is None:
            return ToolResponse(payload={"error": f"Unknown tool: {name}"}, is_error=True)
        try:
            result = handler(**dict(params or {}))
        except RssToolsError as error:
            logger.info("Tool %s failed: %s", name, error)
            return ToolResponse(
                payload={"error": error.message, "code": error.code},
                is_error=True,
            )
        except (ValueError, TypeError, ArithmeticError) as error:
            logger.info("Tool %s rejected input: %s", name, error)
            return ToolResponse(payload={"error": str(error)}, is_error=True)
        except SQLAlchemyError as error:
            logger.warning("Tool %s hit a store error: %s", name, error)
            return ToolResponse(payload={"error": f"Store error: {error}"}, is_error=True)
        return ToolResponse(payload=to_payload(result))

    def _list_feeds(self) -> Any:
        return self.repository.list_feeds()

    def _add_feed(
        self,
        url: str,
        title: str | None = None,
        site_url: str | None = None,
    ) -> Any:
        url = url.strip()
        if not url:
            raise ValueError("Feed url must not be empty.")
        return self.repository.add_feed(url, title=title, site_url=site_url)

    def _remove_feed(self, feed_id: int) -> Any:
        return {"removed": self.repository.remove_feed(int(feed_id))}

    def _import_opml(self, file_path: str) -> Any:
        path = Path(file_path).expanduser()
        try:
            return import_opml(path, self.repository)
        except OSError as error:
            raise ValueError(f"Cannot read OPML file {path}: {error}") from error

    def _refresh_feeds(self, feed_id: int | None = None) -> Any:
        return self.orchestrator.refresh(None if feed_id is None else int(feed_id))

    def _get_posts(  # noqa: PLR0913
        self,
        feed_id: int | None = None,
        limit: int = 50,
        offset: int = 0,
        unread_only: bool = False,
        starred_only: bool = False,
        search: str | None = None,
        since: str | None = None,
    ) -> Any:
        return self.queries.get_posts(
            feed_id=feed_id,
            limit=int(limit),
            offset=int(offset),
            unread_only=bool(unread_only),
            starred_only=bool(starred_only),
            search=search,
            since=since,
        )

    def _get_post_content(self, post_id: int, full: bool = False) -> Any:
        view = self.queries.get_post_content(int(post_id), full=bool(full))
        payload = to_payload(view.post)
        payload["content"] = view.content
        payload["truncated"] = view.truncated
        return payload

    def _get_daily_digest(self, hours: float = 24, max_summary_length: int = 300) -> Any:
        return self.queries.daily_digest(hours=hours, max_summary_length=int(max_summary_length))

    def _mark_read(self, post_ids: Sequence[int]) -> Any:
        return {"marked": self.repository.mark_read(_ids(post_ids))}

    def _mark_unread(self, post_ids: Sequence[int]) -> Any:
        return {"marked": self.repository.mark_unread(_ids(post_ids))}

    def _star_posts(self, post_ids: Sequence[int]) -> Any:
        return {"starred": self.repository.mark_starred(_ids(post_ids))}

    def _unstar_posts(self, post_ids: Sequence[int]) -> Any:
        return {"unstarred": self.repository.mark_unstarred(_ids(post_ids))}

    def _get_popular_posts(self, days: float = 7, limit: int = 10) -> Any:
        return self.queries.popular_posts(days=days, limit=int(limit))


@contextmanager
def open_controller(settings: Settings) -> Iterator[ToolController]:
    """Open the store and HTTP clients for the lifetime of one controller."""

    repository = SQLiteRepository(settings.db_path)
    feed_fetcher = ConditionalFetcher(timeout_seconds=settings.refresh.request_timeout_seconds)
    page_fetcher = HttpFetcher(timeout_seconds=settings.content.request_timeout_seconds)
    try:
        repository.init_schema()
        yield ToolController(
            repository=repository,
            settings=settings,
            feed_fetcher=feed_fetcher,
            content_extractor=lambda url: fetch_and_extract(url, page_fetcher),
        )
    finally:
        page_fetcher.close()
        feed_fetcher.close()
        repository.close()


def to_payload(value: Any) -> Any:
    """Convert dataclasses, enums and datetimes into JSON-ready structures."""

    if is_dataclass(value) and not isinstance(value, type):
        return to_payload(asdict(value))
    if isinstance(value, Mapping):
        return {str(key): to_payload(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [to_payload(item) for item in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def _ids(post_ids: Sequence[int]) -> list[int]:
    if isinstance(post_ids, str | bytes):
        raise ValueError("post_ids must be a list of integers.")
    return [int(post_id) for post_id in post_ids]
