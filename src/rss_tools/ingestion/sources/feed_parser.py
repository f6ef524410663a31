"""Normalize RSS, Atom, JSON Feed and RDF documents into feed entries."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

from defusedxml import DefusedXmlException, ElementTree

from rss_tools.errors import FeedParseError
from rss_tools.ingestion.models import FeedDialect, FeedEntry, ParsedFeed

RDF_NAMESPACE = "http://www.w3.org/1999/02/22-rdf-syntax-ns#"
MIN_FEED_YEAR = 1900
_RFC822_YEAR = re.compile(r"\b\d{1,2}\s+[A-Za-z]{3,}\.?\s+(\d{3,})\b")
_UTF8_BOM = "\ufeff"
logger = logging.getLogger(__name__)


def parse_feed(document: str | bytes) -> ParsedFeed:
    """Parse a feed document of any supported dialect.

    Entries that fail to normalize are logged and skipped; a document that cannot
    be parsed at all raises ``FeedParseError``.
    """

    if _looks_like_json(document):
        return _parse_json_feed(document)

    root = _parse_xml(document)
    dialect = detect_dialect(root)
    title, site_url, items = _XML_DIALECTS[dialect](root)
    entries = _collect_entries(items, _XML_ENTRY_EXTRACTORS[dialect])
    return ParsedFeed(dialect=dialect, title=title, site_url=site_url, entries=entries)


def detect_dialect(root: ElementTree.Element) -> FeedDialect:
    """Map an XML root element onto one of the XML dialects."""

    root_name = _local_name(root.tag)
    if root_name == "rss":
        return FeedDialect.RSS
    if root_name == "feed":
        return FeedDialect.ATOM
    if root_name == "rdf":
        return FeedDialect.RDF

    # Best effort: some feeds omit top-level conventions.
    if any(_local_name(element.tag) == "item" for element in root.iter()):
        return FeedDialect.RSS
    if any(_local_name(element.tag) == "entry" for element in root.iter()):
        return FeedDialect.ATOM
    raise FeedParseError(message=f"Unsupported feed format: root element <{root_name}>")


def _parse_xml(document: str | bytes) -> ElementTree.Element:
    if isinstance(document, str):
        document = document.lstrip(_UTF8_BOM)
    try:
        return ElementTree.fromstring(document)
    except (ElementTree.ParseError, DefusedXmlException) as error:
        raise FeedParseError(message=f"Invalid feed XML: {error}") from error


def _looks_like_json(document: str | bytes) -> bool:
    if isinstance(document, bytes):
        return document.lstrip(b"\xef\xbb\xbf").lstrip().startswith(b"{")
    return document.lstrip(_UTF8_BOM).lstrip().startswith("{")


def _collect_entries(
    items: Iterable[object],
    extractor: Callable[[object], FeedEntry],
) -> list[FeedEntry]:
    entries: list[FeedEntry] = []
    for index, item in enumerate(items):
        try:
            entries.append(extractor(item))
        except Exception as exc:  # noqa: BLE001
            logger.warning("Skipping unparsable feed entry #%s: %s", index, exc)
    return entries


# RSS 2.0


def _rss_channel(root: ElementTree.Element) -> tuple[str | None, str | None, list]:
    channel = root.find("channel")
    if channel is None:
        channel = next(
            (element for element in root.iter() if _local_name(element.tag) == "channel"),
            root,
        )
    items = [element for element in channel if _local_name(element.tag) == "item"]
    if not items:
        items = [element for element in root.iter() if _local_name(element.tag) == "item"]
    return _child_text(channel, "title"), _child_text(channel, "link"), items


def _rss_entry(item: ElementTree.Element) -> FeedEntry:
    link = _child_text(item, "link")
    return FeedEntry(
        guid=_child_text(item, "guid") or link or "",
        title=_child_text(item, "title"),
        url=link,
        summary=_child_text(item, "description") or _child_text(item, "encoded"),
        author=_child_text(item, "creator") or _child_text(item, "author"),
        published_at=parse_datetime(_child_text(item, "pubDate") or _child_text(item, "date")),
    )


# Atom


def _atom_feed(root: ElementTree.Element) -> tuple[str | None, str | None, list]:
    entries = [element for element in root if _local_name(element.tag) == "entry"]
    if not entries:
        entries = [element for element in root.iter() if _local_name(element.tag) == "entry"]
    return _child_text(root, "title"), _atom_link(root), entries


def _atom_entry(entry: ElementTree.Element) -> FeedEntry:
    link = _atom_link(entry)
    author = _child(entry, "author")
    author_name = None
    if author is not None:
        author_name = _child_text(author, "name") or _child_text(author, "email")
    return FeedEntry(
        guid=_child_text(entry, "id") or link or "",
        title=_child_text(entry, "title"),
        url=link,
        summary=_child_text(entry, "summary") or _child_text(entry, "content"),
        author=author_name,
        published_at=parse_datetime(
            _child_text(entry, "published") or _child_text(entry, "updated"),
        ),
    )


def _atom_link(element: ElementTree.Element) -> str | None:
    for child in element:
        if _local_name(child.tag) != "link":
            continue
        rel = child.attrib.get("rel", "").strip().lower()
        href = child.attrib.get("href", "").strip()
        if not href:
            continue
        if not rel or rel == "alternate":
            return href
    for child in element:
        if _local_name(child.tag) == "link":
            href = child.attrib.get("href", "").strip()
            if href:
                return href
    return None


# RDF / RSS 1.0


def _rdf_channel(root: ElementTree.Element) -> tuple[str | None, str | None, list]:
    channel = _child(root, "channel")
    title = _child_text(channel, "title") if channel is not None else None
    site_url = _child_text(channel, "link") if channel is not None else None
    items = [element for element in root if _local_name(element.tag) == "item"]
    return title, site_url, items


def _rdf_entry(item: ElementTree.Element) -> FeedEntry:
    link = _child_text(item, "link")
    about = (item.attrib.get(f"{{{RDF_NAMESPACE}}}about") or "").strip()
    return FeedEntry(
        guid=about or link or "",
        title=_child_text(item, "title"),
        url=link,
        summary=_child_text(item, "description") or _child_text(item, "encoded"),
        author=_child_text(item, "creator"),
        published_at=parse_datetime(_child_text(item, "date")),
    )


_XML_DIALECTS: dict[
    FeedDialect,
    Callable[[ElementTree.Element], tuple[str | None, str | None, list]],
] = {
    FeedDialect.RSS: _rss_channel,
    FeedDialect.ATOM: _atom_feed,
    FeedDialect.RDF: _rdf_channel,
}
_XML_ENTRY_EXTRACTORS: dict[FeedDialect, Callable[[ElementTree.Element], FeedEntry]] = {
    FeedDialect.RSS: _rss_entry,
    FeedDialect.ATOM: _atom_entry,
    FeedDialect.RDF: _rdf_entry,
}


# JSON Feed


def _parse_json_feed(document: str | bytes) -> ParsedFeed:
    if isinstance(document, bytes):
        document = document.removeprefix(b"\xef\xbb\xbf")
    else:
        document = document.lstrip(_UTF8_BOM)
    try:
        payload = json.loads(document)
    except ValueError as error:
        raise FeedParseError(message=f"Invalid JSON feed: {error}") from error
    if not isinstance(payload, dict):
        raise FeedParseError(message="JSON feed must be an object")

    items = payload.get("items")
    if not isinstance(items, list):
        items = []
    return ParsedFeed(
        dialect=FeedDialect.JSON_FEED,
        title=_json_string(payload.get("title")),
        site_url=_json_string(payload.get("home_page_url")),
        entries=_collect_entries(items, _json_entry),
    )


def _json_entry(item: object) -> FeedEntry:
    if not isinstance(item, dict):
        raise TypeError(f"JSON feed item must be an object, got {type(item).__name__}")
    url = _json_string(item.get("url"))
    return FeedEntry(
        guid=_json_string(item.get("id")) or url or "",
        title=_json_string(item.get("title")),
        url=url,
        summary=_json_string(item.get("summary"))
        or _json_string(item.get("content_html"))
        or _json_string(item.get("content_text")),
        author=_json_author(item),
        published_at=parse_datetime(
            _json_string(item.get("date_published")) or _json_string(item.get("date_modified")),
        ),
    )


def _json_author(item: dict) -> str | None:
    authors = item.get("authors")
    candidates = list(authors) if isinstance(authors, list) else []
    if isinstance(item.get("author"), dict):
        candidates.append(item["author"])
    for author in candidates:
        if not isinstance(author, dict):
            continue
        name = _json_string(author.get("name"))
        if name:
            return name
        url = _json_string(author.get("url"))
        if url and url.lower().startswith("mailto:"):
            return url[len("mailto:") :]
    return None


def _json_string(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


# Shared helpers


def parse_datetime(raw_value: str | None) -> datetime | None:
    """Parse RFC 822 or ISO 8601 into UTC; unknown or implausible dates stay ``None``."""

    if not raw_value:
        return None

    parsed = _parse_rfc822(raw_value)
    if parsed is None:
        try:
            parsed = datetime.fromisoformat(raw_value.strip())
        except ValueError:
            return None
    if parsed.year < MIN_FEED_YEAR:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _parse_rfc822(raw_value: str) -> datetime | None:
    try:
        parsed = parsedate_to_datetime(raw_value)
    except (TypeError, ValueError, IndexError):
        return None
    # Two-digit years are widened by the email parser; longer ones must survive as written.
    written_year = _RFC822_YEAR.search(raw_value)
    if written_year is not None and int(written_year.group(1)) != parsed.year:
        return None
    return parsed


def _child(element: ElementTree.Element, name: str) -> ElementTree.Element | None:
    target = name.lower()
    for child in element:
        if _local_name(child.tag) == target:
            return child
    return None


def _child_text(element: ElementTree.Element, name: str) -> str | None:
    target = name.lower()
    for child in element:
        if _local_name(child.tag) != target:
            continue
        if child.text and child.text.strip():
            return child.text.strip()
        full_text = "".join(child.itertext()).strip()
        if full_text:
            return full_text
    return None


def _local_name(tag: object) -> str:
    if not isinstance(tag, str):
        return ""
    if "}" in tag:
        return tag.rsplit("}", 1)[1].lower()
    return tag.lower()
