"""SQLModel ORM tables for the feed store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


class FeedRow(SQLModel, table=True):
    __tablename__ = "feeds"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    url: str = Field(sa_column=Column(Text, nullable=False, unique=True))
    title: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    site_url: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    last_fetched: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    etag: str | None = None
    last_modified: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class PostRow(SQLModel, table=True):
    __tablename__ = "posts"  # type: ignore[bad-override]
    __table_args__ = (UniqueConstraint("feed_id", "guid", name="uq_posts_feed_guid"),)

    id: int | None = Field(default=None, primary_key=True)
    feed_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("feeds.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    guid: str = Field(sa_column=Column(Text, nullable=False))
    title: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    url: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    summary: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    content: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    author: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    published_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True, index=True),
    )
    fetched_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    is_read: bool = Field(default=False, index=True)
    read_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    starred: bool = Field(default=False)
