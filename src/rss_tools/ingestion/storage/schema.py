"""Idempotent schema creation: ORM tables plus the FTS5 post index."""

from __future__ import annotations

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel

# Import registers the tables on SQLModel.metadata.
from rss_tools.ingestion.storage import sqlmodel_models  # noqa: F401

# External-content FTS5 table; the triggers run inside the writing transaction,
# so post rows and index rows commit or roll back together.
SEARCH_INDEX_DDL = (
    """
    CREATE VIRTUAL TABLE IF NOT EXISTS posts_fts USING fts5(
        title, summary, content,
        content='posts',
        content_rowid='id'
    )
    """,
    """
    CREATE TRIGGER IF NOT EXISTS posts_ai AFTER INSERT ON posts BEGIN
        INSERT INTO posts_fts(rowid, title, summary, content)
        VALUES (new.id, new.title, new.summary, new.content);
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS posts_ad AFTER DELETE ON posts BEGIN
        INSERT INTO posts_fts(posts_fts, rowid, title, summary, content)
        VALUES ('delete', old.id, old.title, old.summary, old.content);
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS posts_au AFTER UPDATE OF title, summary, content ON posts BEGIN
        INSERT INTO posts_fts(posts_fts, rowid, title, summary, content)
        VALUES ('delete', old.id, old.title, old.summary, old.content);
        INSERT INTO posts_fts(rowid, title, summary, content)
        VALUES (new.id, new.title, new.summary, new.content);
    END
    """,
)


def create_schema(engine: Engine) -> None:
    """Create missing tables, the search index and its sync triggers."""

    SQLModel.metadata.create_all(engine)
    with engine.begin() as connection:
        for statement in SEARCH_INDEX_DDL:
            connection.exec_driver_sql(statement)
