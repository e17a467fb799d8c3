"""Scan configuration and results for the orchestrator."""

from __future__ import annotations

from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from app.models.listener import RunCounts, RunStatus, RunType


class ScanMode(str, Enum):
    POSTS = "posts"
    PROFILES = "profiles"
    RSS = "rss"


class HNFeed(str, Enum):
    FRONT_PAGE = "front_page"
    ASK_HN = "ask_hn"
    SHOW_HN = "show_hn"
    ALL = "all"


SOURCE_KEYS: dict[ScanMode, str] = {
    ScanMode.POSTS: "hn",
    ScanMode.PROFILES: "hn_profile",
    ScanMode.RSS: "rss",
}

_MODE_DEFAULTS: dict[ScanMode, dict[str, Any]] = {
    ScanMode.POSTS: {},
    ScanMode.PROFILES: {"auto_promote_threshold": 75, "min_keyword_score": 2},
    ScanMode.RSS: {},
}


class ScanOptions(BaseModel):
    """Per-invocation scan parameters; unused fields are ignored by other modes."""

    mode: ScanMode
    team_id: str = Field(min_length=1)
    run_type: RunType = RunType.SCHEDULED

    min_keyword_score: int = Field(default=1, ge=0)
    auto_promote_threshold: int = Field(default=80, ge=0, le=101)
    rescan_after_hours: float = Field(default=168, ge=0)

    # posts
    feed: HNFeed = HNFeed.ALL
    max_items: int = Field(default=100, ge=1)
    include_comments: bool = True
    min_score_for_comments: int = 3
    max_comment_stories: int = Field(default=10, ge=0)
    max_commenters_per_story: int = Field(default=50, ge=0)

    # profiles
    max_stories_per_scan: int = Field(default=20, ge=0)
    max_users_per_story: int = Field(default=100, ge=0)
    min_karma: int = 50
    min_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    enrich_with_github: bool = False

    # rss
    feed_urls: list[str] = Field(default_factory=list)
    max_articles: int = Field(default=100, ge=1)
    max_age_hours: float = Field(default=48, gt=0)

    @classmethod
    def for_mode(cls, mode: ScanMode | str, team_id: str, **overrides: Any) -> "ScanOptions":
        resolved = ScanMode(mode)
        values = {**_MODE_DEFAULTS[resolved], **{k: v for k, v in overrides.items() if v is not None}}
        return cls(mode=resolved, team_id=team_id, **values)

    @property
    def source_key(self) -> str:
        return SOURCE_KEYS[self.mode]


class ScanStats(BaseModel):
    items_scanned: int = 0
    discoveries_created: int = 0
    duplicates_skipped: int = 0
    auto_promoted: int = 0
    errors_count: int = 0
    high_relevance_stories: int = 0
    commenter_profiles_checked: int = 0
    stories_processed: int = 0
    users_scanned: int = 0
    users_skipped_recent: int = 0
    users_tracked: int = 0

    def counts(self) -> RunCounts:
        return RunCounts(
            items_scanned=self.items_scanned,
            discoveries_created=self.discoveries_created,
            duplicates_skipped=self.duplicates_skipped,
            auto_promoted=self.auto_promoted,
            errors_count=self.errors_count,
        )


class ScanResult(BaseModel):
    run_id: UUID
    status: RunStatus
    stats: ScanStats
    cursor: dict[str, Any] = Field(default_factory=dict)
    duration_ms: float = 0.0
