"""Typed payloads returned by the Hacker News, RSS and GitHub clients."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator


def timestamp_to_datetime(timestamp: int | float | None) -> datetime | None:
    """Convert a Unix timestamp (seconds) into an aware UTC datetime."""
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


class HNItem(BaseModel):
    """Story, comment, job or poll returned by ``/v0/item/{id}.json``."""

    model_config = ConfigDict(extra="ignore")

    id: int
    type: str = "story"
    by: str | None = None
    time: int | None = None
    title: str | None = None
    text: str | None = None
    url: str | None = None
    score: int | None = None
    kids: list[int] = Field(default_factory=list)
    parent: int | None = None
    descendants: int | None = None
    deleted: bool = False
    dead: bool = False

    @field_validator("kids", mode="before")
    @classmethod
    def _coerce_kids(cls, value: object) -> object:
        return [] if value is None else value

    @property
    def published_at(self) -> datetime | None:
        return timestamp_to_datetime(self.time)


class HNUser(BaseModel):
    """Public profile returned by ``/v0/user/{id}.json``."""

    model_config = ConfigDict(extra="ignore")

    id: str
    karma: int = 0
    created: int | None = None
    about: str | None = None
    submitted: list[int] = Field(default_factory=list)

    @field_validator("submitted", mode="before")
    @classmethod
    def _coerce_submitted(cls, value: object) -> object:
        return [] if value is None else value

    @property
    def created_at(self) -> datetime | None:
        return timestamp_to_datetime(self.created)


class HNScanResult(BaseModel):
    items: list[HNItem] = Field(default_factory=list)
    scanned_count: int = 0
    last_item_id: int = 0


class FeedConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    name: str
    category: str = "tech"


class RSSArticle(BaseModel):
    """Normalized RSS ``<item>`` or Atom ``<entry>``."""

    title: str
    link: str
    description: str = ""
    content: str = ""
    published_at: datetime | None = None
    author: str | None = None
    categories: list[str] = Field(default_factory=list)
    guid: str | None = None
    feed_name: str = ""


class RSSFeed(BaseModel):
    url: str
    name: str
    articles: list[RSSArticle] = Field(default_factory=list)
    last_fetched: datetime


class GitHubCompany(BaseModel):
    """Company declared on a public GitHub profile."""

    model_config = ConfigDict(frozen=True)

    company: str
    domain: str | None = None
