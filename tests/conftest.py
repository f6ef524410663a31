"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from rss_tools.ingestion.repository import SQLiteRepository


@pytest.fixture()
def repo(tmp_path: Path) -> Iterator[SQLiteRepository]:
    """Fresh store with schema in a temporary directory."""
    repository = SQLiteRepository(tmp_path / "rss.db")
    repository.init_schema()
    yield repository
    repository.close()


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "RSS_TOOLS_DB_PATH",
        "RSS_TOOLS_REFRESH_MIN_INTERVAL_SECONDS",
        "RSS_TOOLS_REQUEST_TIMEOUT_SECONDS",
        "RSS_TOOLS_MAX_CONTENT_CHARS",
        "RSS_TOOLS_POPULARITY_TIMEOUT_SECONDS",
        "RSS_TOOLS_POPULARITY_CONCURRENCY",
        "RSS_TOOLS_POPULARITY_POOL_SIZE",
    ):
        monkeypatch.delenv(name, raising=False)
