"""Domain models for feeds, posts, refresh runs and query views."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class FeedDialect(str, Enum):
    """Supported syndication formats."""

    RSS = "rss"
    ATOM = "atom"
    JSON_FEED = "json"
    RDF = "rdf"


class FetchStatus(str, Enum):
    """Outcome of one conditional HTTP request."""

    OK = "ok"
    NOT_MODIFIED = "not-modified"


class RefreshOutcome(str, Enum):
    """Terminal state of one feed within a refresh run."""

    REFRESHED = "refreshed"
    SKIPPED = "skipped"
    ERRORED = "errored"


@dataclass(slots=True)
class FeedEntry:
    """Normalized entry produced by the feed parser."""

    guid: str
    title: str | None = None
    url: str | None = None
    summary: str | None = None
    author: str | None = None
    published_at: datetime | None = None


@dataclass(slots=True)
class ParsedFeed:
    """Feed metadata plus entries in document order."""

    dialect: FeedDialect
    title: str | None
    site_url: str | None
    entries: list[FeedEntry] = field(default_factory=list)


@dataclass(slots=True)
class FetchResponse:
    """Result of a conditional fetch; body is None when not modified."""

    status: FetchStatus
    body: bytes | None = None
    etag: str | None = None
    last_modified: str | None = None


@dataclass(slots=True)
class Feed:
    """Subscribed feed."""

    id: int
    url: str
    title: str | None
    site_url: str | None
    last_fetched: datetime | None
    etag: str | None
    last_modified: str | None
    created_at: datetime


@dataclass(slots=True)
class Post:
    """Stored post joined with its feed title and url."""

    id: int
    feed_id: int
    guid: str
    title: str | None
    url: str | None
    summary: str | None
    content: str | None
    author: str | None
    published_at: datetime | None
    fetched_at: datetime
    is_read: bool
    read_at: datetime | None
    starred: bool
    feed_title: str | None = None
    feed_url: str | None = None


@dataclass(slots=True)
class PostContent:
    """Post with its content view, possibly truncated."""

    post: Post
    content: str
    truncated: bool


@dataclass(slots=True)
class PostFilter:
    """Filter and pagination options for post listings."""

    feed_id: int | None = None
    limit: int = 50
    offset: int = 0
    unread_only: bool = False
    starred_only: bool = False
    search: str | None = None
    since: datetime | None = None


@dataclass(slots=True)
class RefreshError:
    """Per-feed failure recorded in a refresh report."""

    feed_id: int
    url: str
    error: str


@dataclass(slots=True)
class RefreshReport:
    """Aggregated result of one refresh invocation."""

    refreshed: int = 0
    skipped: int = 0
    errored: int = 0
    new_posts: int = 0
    errors: list[RefreshError] = field(default_factory=list)

    def record(self, outcome: RefreshOutcome, new_posts: int = 0) -> None:
        if outcome == RefreshOutcome.REFRESHED:
            self.refreshed += 1
            self.new_posts += new_posts
        elif outcome == RefreshOutcome.SKIPPED:
            self.skipped += 1
        else:
            self.errored += 1


@dataclass(slots=True)
class OpmlFeed:
    """Feed candidate listed in an OPML outline."""

    url: str
    title: str | None = None
    site_url: str | None = None


@dataclass(slots=True)
class ImportResult:
    """Result of subscribing to the feeds of one OPML file."""

    imported: int
    total_in_file: int


@dataclass(slots=True)
class DigestPost:
    """Compact post view used by the digest."""

    id: int
    feed: str | None
    title: str | None
    summary: str | None
    url: str | None
    published_at: datetime | None


@dataclass(slots=True)
class Digest:
    """Posts published within a trailing window."""

    period: str
    total_posts: int
    feeds: int
    posts: list[DigestPost] = field(default_factory=list)


@dataclass(slots=True)
class PopularityScore:
    """External popularity signal for one URL."""

    score: int
    comments: int
    source_url: str


@dataclass(slots=True)
class PopularPost:
    """Post ranked by external popularity."""

    id: int
    feed: str | None
    title: str | None
    url: str
    published_at: datetime | None
    score: int
    comments: int
    source_url: str


@dataclass(slots=True)
class PopularPosts:
    """Popularity ranking over a pool of recent posts."""

    period: str
    total_checked: int
    posts: list[PopularPost] = field(default_factory=list)
