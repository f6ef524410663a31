"""CLI entrypoint for rss-tools."""

import json
import logging
from contextlib import ExitStack
from pathlib import Path
from typing import Any

import rich_click as click
from sqlalchemy.exc import SQLAlchemyError

from rss_tools import __version__
from rss_tools.config import Settings
from rss_tools.controllers import ToolResponse, open_controller

click.rich_click.USE_MARKDOWN = True
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

db_path_option = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path. Defaults to `RSS_TOOLS_DB_PATH` or `~/.rss-tools/rss.db`.",
)


@click.group()
@click.version_option(version=__version__, prog_name="rss-tools")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging level for diagnostics written to stderr.",
)
def rss_tools(log_level: str) -> None:
    """Feed subscriptions, refresh and post queries over a local SQLite store."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@rss_tools.command("list-feeds")
@db_path_option
def list_feeds(db_path: Path | None) -> None:
    """List subscribed feeds, newest first."""

    _run_tool(db_path, "list_feeds", {})


@rss_tools.command("add-feed")
@db_path_option
@click.argument("url")
@click.option("--title", default=None, help="Display title; filled on first refresh if omitted.")
@click.option("--site-url", default=None, help="Home page of the feed.")
def add_feed(db_path: Path | None, url: str, title: str | None, site_url: str | None) -> None:
    """Subscribe to a feed URL."""

    _run_tool(db_path, "add_feed", {"url": url, "title": title, "site_url": site_url})


@rss_tools.command("remove-feed")
@db_path_option
@click.argument("feed_id", type=int)
def remove_feed(db_path: Path | None, feed_id: int) -> None:
    """Unsubscribe from a feed and delete its posts."""

    _run_tool(db_path, "remove_feed", {"feed_id": feed_id})


@rss_tools.command("import-opml")
@db_path_option
@click.argument("file_path", type=click.Path(dir_okay=False, path_type=Path))
def import_opml(db_path: Path | None, file_path: Path) -> None:
    """Subscribe to every feed listed in an OPML file."""

    _run_tool(db_path, "import_opml", {"file_path": str(file_path)})


@rss_tools.command("refresh")
@db_path_option
@click.option("--feed-id", type=int, default=None, help="Refresh only this feed.")
def refresh_feeds(db_path: Path | None, feed_id: int | None) -> None:
    """Fetch feeds outside their cooldown window and store new posts."""

    _run_tool(db_path, "refresh_feeds", {"feed_id": feed_id})


@rss_tools.command("posts")
@db_path_option
@click.option("--feed-id", type=int, default=None, help="Filter by feed id.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Maximum posts to return.",
)
@click.option("--offset", type=click.IntRange(min=0), default=0, show_default=True)
@click.option("--unread-only/--all", default=False, show_default=True)
@click.option("--starred-only", is_flag=True, default=False, help="Only starred posts.")
@click.option("--search", default=None, help="FTS5 query over title, summary and content.")
@click.option("--since", default=None, help="Only posts published at or after this date.")
def get_posts(  # noqa: PLR0913
    db_path: Path | None,
    feed_id: int | None,
    limit: int,
    offset: int,
    unread_only: bool,
    starred_only: bool,
    search: str | None,
    since: str | None,
) -> None:
    """List posts, newest first; undated posts come last."""

    _run_tool(
        db_path,
        "get_posts",
        {
            "feed_id": feed_id,
            "limit": limit,
            "offset": offset,
            "unread_only": unread_only,
            "starred_only": starred_only,
            "search": search,
            "since": since,
        },
    )


@rss_tools.command("content")
@db_path_option
@click.argument("post_id", type=int)
@click.option("--full", is_flag=True, default=False, help="Return content without truncation.")
def get_post_content(db_path: Path | None, post_id: int, full: bool) -> None:
    """Show post content, fetching the article page when nothing is stored."""

    _run_tool(db_path, "get_post_content", {"post_id": post_id, "full": full})


@rss_tools.command("digest")
@db_path_option
@click.option(
    "--hours",
    type=click.FloatRange(min=0, min_open=True),
    default=24,
    show_default=True,
    help="Hours to look back.",
)
@click.option(
    "--max-summary-length",
    type=click.IntRange(min=1),
    default=300,
    show_default=True,
    help="Max characters per summary.",
)
def get_daily_digest(db_path: Path | None, hours: float, max_summary_length: int) -> None:
    """Summarize posts published in a trailing window."""

    _run_tool(
        db_path,
        "get_daily_digest",
        {"hours": hours, "max_summary_length": max_summary_length},
    )


@rss_tools.command("mark-read")
@db_path_option
@click.argument("post_ids", nargs=-1, type=int)
def mark_read(db_path: Path | None, post_ids: tuple[int, ...]) -> None:
    """Mark posts as read."""

    _run_tool(db_path, "mark_read", {"post_ids": list(post_ids)})


@rss_tools.command("mark-unread")
@db_path_option
@click.argument("post_ids", nargs=-1, type=int)
def mark_unread(db_path: Path | None, post_ids: tuple[int, ...]) -> None:
    """Mark posts as unread."""

    _run_tool(db_path, "mark_unread", {"post_ids": list(post_ids)})


@rss_tools.command("star")
@db_path_option
@click.argument("post_ids", nargs=-1, type=int)
def star_posts(db_path: Path | None, post_ids: tuple[int, ...]) -> None:
    """Star posts."""

    _run_tool(db_path, "star_posts", {"post_ids": list(post_ids)})


@rss_tools.command("unstar")
@db_path_option
@click.argument("post_ids", nargs=-1, type=int)
def unstar_posts(db_path: Path | None, post_ids: tuple[int, ...]) -> None:
    """Remove the star from posts."""

    _run_tool(db_path, "unstar_posts", {"post_ids": list(post_ids)})


@rss_tools.command("popular")
@db_path_option
@click.option(
    "--days",
    type=click.FloatRange(min=0, min_open=True),
    default=7,
    show_default=True,
    help="Days to look back.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=100),
    default=10,
    show_default=True,
    help="Max posts to return.",
)
def get_popular_posts(db_path: Path | None, days: float, limit: int) -> None:
    """Rank recent posts by Hacker News score."""

    _run_tool(db_path, "get_popular_posts", {"days": days, "limit": limit})


def _run_tool(db_path: Path | None, name: str, params: dict[str, Any]) -> None:
    settings = Settings.from_env(db_path=db_path)
    try:
        settings.validate()
    except ValueError as error:
        raise click.ClickException(str(error)) from error

    with ExitStack() as stack:
        try:
            controller = stack.enter_context(open_controller(settings))
        except (OSError, SQLAlchemyError) as error:
            raise click.ClickException(
                f"Cannot open store at {settings.db_path}: {error}"
            ) from error
        response = controller.call(name, params)

    _emit_response(response)
    if response.is_error:
        raise SystemExit(1)


def _emit_response(response: ToolResponse) -> None:
    click.echo(json.dumps(response.payload, indent=2, ensure_ascii=False))


if __name__ == "__main__":  # pragma: no cover
    rss_tools()
