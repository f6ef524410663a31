"""Runtime configuration for the feed store, refresh policy and query views."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_DB_PATH = Path.home() / ".rss-tools" / "rss.db"


@dataclass(slots=True)
class RefreshSettings:
    """Feed refresh policy."""

    min_interval_seconds: int = 15 * 60
    request_timeout_seconds: float = 30.0


@dataclass(slots=True)
class ContentSettings:
    """Content view and backfill settings."""

    max_content_chars: int = 5_000
    request_timeout_seconds: float = 30.0


@dataclass(slots=True)
class PopularitySettings:
    """External popularity lookup settings."""

    timeout_seconds: float = 10.0
    concurrency: int = 5
    pool_size: int = 500


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = DEFAULT_DB_PATH
    refresh: RefreshSettings = field(default_factory=RefreshSettings)
    content: ContentSettings = field(default_factory=ContentSettings)
    popularity: PopularitySettings = field(default_factory=PopularitySettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with defaults for a local single-user store."""

        request_timeout = float(os.getenv("RSS_TOOLS_REQUEST_TIMEOUT_SECONDS", "30.0"))
        env_db_path = os.getenv("RSS_TOOLS_DB_PATH", "").strip()
        return cls(
            db_path=db_path or (Path(env_db_path).expanduser() if env_db_path else DEFAULT_DB_PATH),
            refresh=RefreshSettings(
                min_interval_seconds=int(
                    os.getenv("RSS_TOOLS_REFRESH_MIN_INTERVAL_SECONDS", "900"),
                ),
                request_timeout_seconds=request_timeout,
            ),
            content=ContentSettings(
                max_content_chars=int(os.getenv("RSS_TOOLS_MAX_CONTENT_CHARS", "5000")),
                request_timeout_seconds=request_timeout,
            ),
            popularity=PopularitySettings(
                timeout_seconds=float(os.getenv("RSS_TOOLS_POPULARITY_TIMEOUT_SECONDS", "10.0")),
                concurrency=int(os.getenv("RSS_TOOLS_POPULARITY_CONCURRENCY", "5")),
                pool_size=int(os.getenv("RSS_TOOLS_POPULARITY_POOL_SIZE", "500")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if any limit or timeout is out of range."""

        if self.refresh.min_interval_seconds < 0:
            raise ValueError("RSS_TOOLS_REFRESH_MIN_INTERVAL_SECONDS must be >= 0.")
        if self.refresh.request_timeout_seconds <= 0:
            raise ValueError("RSS_TOOLS_REQUEST_TIMEOUT_SECONDS must be > 0.")
        if self.content.max_content_chars <= 0:
            raise ValueError("RSS_TOOLS_MAX_CONTENT_CHARS must be > 0.")
        if self.popularity.timeout_seconds <= 0:
            raise ValueError("RSS_TOOLS_POPULARITY_TIMEOUT_SECONDS must be > 0.")
        if self.popularity.concurrency <= 0:
            raise ValueError("RSS_TOOLS_POPULARITY_CONCURRENCY must be > 0.")
        if self.popularity.pool_size <= 0:
            raise ValueError("RSS_TOOLS_POPULARITY_POOL_SIZE must be > 0.")
