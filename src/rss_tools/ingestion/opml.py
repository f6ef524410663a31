"""OPML subscription list import."""

from __future__ import annotations

import logging
from pathlib import Path

from defusedxml import DefusedXmlException, ElementTree

from rss_tools.errors import DuplicateFeedError, FeedParseError
from rss_tools.ingestion.models import ImportResult, OpmlFeed
from rss_tools.ingestion.repository import SQLiteRepository

logger = logging.getLogger(__name__)


def parse_opml(opml_text: str | bytes) -> list[OpmlFeed]:
    """Flatten nested outline groups into the outlines that carry an ``xmlUrl``."""

    try:
        root = ElementTree.fromstring(opml_text)
    except (ElementTree.ParseError, DefusedXmlException) as error:
        raise FeedParseError(message=f"Invalid OPML: {error}") from error

    body = next((element for element in root if _local_name(element.tag) == "body"), root)
    feeds: list[OpmlFeed] = []
    _collect_outlines(body, feeds)
    return feeds


def _collect_outlines(parent: ElementTree.Element, feeds: list[OpmlFeed]) -> None:
    for outline in parent:
        if _local_name(outline.tag) != "outline":
            continue
        url = _attribute(outline, "xmlUrl")
        if url:
            feeds.append(
                OpmlFeed(
                    url=url,
                    title=_attribute(outline, "text") or _attribute(outline, "title"),
                    site_url=_attribute(outline, "htmlUrl"),
                ),
            )
        _collect_outlines(outline, feeds)


def import_opml(path: Path, repository: SQLiteRepository) -> ImportResult:
    """Subscribe to every feed listed in an OPML file, skipping known URLs."""

    feeds = parse_opml(path.read_bytes())
    imported = 0
    for feed in feeds:
        try:
            repository.add_feed(feed.url, title=feed.title, site_url=feed.site_url)
        except DuplicateFeedError:
            logger.debug("OPML feed already subscribed: %s", feed.url)
            continue
        imported += 1
    logger.info("OPML import from %s: imported=%s total=%s", path, imported, len(feeds))
    return ImportResult(imported=imported, total_in_file=len(feeds))


def _attribute(element: ElementTree.Element, name: str) -> str | None:
    value = element.attrib.get(name)
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


def _local_name(tag: object) -> str:
    if not isinstance(tag, str):
        return ""
    if "}" in tag:
        return tag.rsplit("}", 1)[1].lower()
    return tag.lower()
