"""Error taxonomy shared by storage, ingestion and query layers."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class RssToolsError(Exception):
    """Base error converted into an error response at the tool boundary."""

    message: str
    code: str = "error"

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class DuplicateFeedError(RssToolsError):
    """Subscribe attempted for a feed URL that is already stored."""

    code: str = "duplicate_feed"


@dataclass(slots=True)
class FeedParseError(RssToolsError):
    """Document could not be parsed as any supported feed dialect."""

    code: str = "feed_parse_error"


@dataclass(slots=True)
class FetchError(RssToolsError):
    """HTTP fetch failed: non-2xx/304 status, timeout, or transport error."""

    code: str = "fetch_error"
    status_code: int | None = None


@dataclass(slots=True)
class NotFoundError(RssToolsError):
    """Operation referenced a feed or post id that does not exist."""

    code: str = "not_found"
