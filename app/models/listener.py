"""Domain models for signal discovery: keywords, discoveries, runs and authors."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, conint, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExtractionMethod(str, Enum):
    URL = "url"
    MENTION = "mention"
    EMAIL = "email"


class KeywordCategory(str, Enum):
    PAIN_SIGNAL = "pain_signal"
    REGULATORY = "regulatory"
    COST = "cost"
    COMPETITOR = "competitor"


class SourceType(str, Enum):
    HN_POST = "hn_post"
    HN_COMMENT = "hn_comment"
    HN_PROFILE = "hn_profile"
    NEWS_ARTICLE = "news_article"
    REDDIT_POST = "reddit_post"
    REDDIT_COMMENT = "reddit_comment"
    TWITTER = "twitter"
    STATUS_PAGE = "status_page"
    GITHUB_ISSUE = "github_issue"
    LIST_ANALYSIS = "list_analysis"
    MANUAL = "manual"


class DiscoveryStatus(str, Enum):
    NEW = "new"
    REVIEWING = "reviewing"
    PROMOTED = "promoted"
    DISMISSED = "dismissed"
    DUPLICATE = "duplicate"


class DiscoveryOutcome(str, Enum):
    CREATED = "created"
    DUPLICATE = "duplicate"
    AUTO_PROMOTED = "auto_promoted"
    ERROR = "error"


class CompanySignalSource(str, Enum):
    ABOUT_URL = "about_url"
    EMAIL_DOMAIN = "email_domain"
    ABOUT_TEXT = "about_text"
    GITHUB = "github"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIAL = "partial"


class RunType(str, Enum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"
    BACKFILL = "backfill"


class ExtractedDomain(BaseModel):
    """Company domain found in a URL, text mention or email address."""

    model_config = ConfigDict(frozen=True)

    domain: str
    method: ExtractionMethod
    confidence: float = Field(ge=0.0, le=1.0)
    context: str = ""


class KeywordDefinition(BaseModel):
    """Weighted, categorized taxonomy entry."""

    id: UUID = Field(default_factory=uuid4)
    keyword: str = Field(min_length=1)
    category: KeywordCategory
    weight: conint(ge=1, le=5) = 1  # type: ignore[valid-type]
    is_active: bool = True
    product_tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("keyword")
    @classmethod
    def _normalize_keyword(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError("keyword must not be blank")
        return normalized


class KeywordMatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    keyword: str
    category: KeywordCategory
    weight: int
    product_tags: list[str] = Field(default_factory=list)
    matched_text: str
    position: int


class MatchResult(BaseModel):
    matches: list[KeywordMatch] = Field(default_factory=list)
    total_score: int = 0
    categories: list[KeywordCategory] = Field(default_factory=list)
    product_tags: list[str] = Field(default_factory=list)

    @property
    def has_matches(self) -> bool:
        return bool(self.matches)

    @property
    def keywords(self) -> list[str]:
        return list(dict.fromkeys(match.keyword for match in self.matches))


class ConfidenceFactors(BaseModel):
    """Components of a discovery confidence score."""

    keyword_score: conint(ge=0, le=40) = 0  # type: ignore[valid-type]
    source_reliability: conint(ge=0, le=20) = 0  # type: ignore[valid-type]
    domain_quality: conint(ge=0, le=20) = 0  # type: ignore[valid-type]
    recency: conint(ge=0, le=10) = 0  # type: ignore[valid-type]
    context_relevance: conint(ge=0, le=10) = 0  # type: ignore[valid-type]

    @property
    def total(self) -> int:
        raw = (
            self.keyword_score
            + self.source_reliability
            + self.domain_quality
            + self.recency
            + self.context_relevance
        )
        return max(0, min(100, raw))


class ProfileScoreFactors(BaseModel):
    """Components of a profile-derived discovery score."""

    extraction_confidence: int = 0
    user_credibility: int = 0
    story_relevance: int = 0
    social_presence: int = 0

    @property
    def total(self) -> int:
        return min(
            100,
            self.extraction_confidence
            + self.user_credibility
            + self.story_relevance
            + self.social_presence,
        )


class DiscoveryCandidate(BaseModel):
    """Scored, unpersisted discovery proposal produced during a scan."""

    company_domain: str = Field(min_length=1)
    company_name: str | None = None
    source_type: SourceType
    source_url: str = Field(min_length=1)
    source_title: str | None = None
    trigger_text: str = ""
    keywords_matched: list[str] = Field(default_factory=list)
    keyword_category: KeywordCategory | None = None
    confidence_score: conint(ge=0, le=100) = 0  # type: ignore[valid-type]
    product_tags: list[str] = Field(default_factory=list)
    source_published_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class Discovery(DiscoveryCandidate):
    """Persisted sighting tying a company domain to one source URL."""

    id: UUID = Field(default_factory=uuid4)
    team_id: str
    status: DiscoveryStatus = DiscoveryStatus.NEW
    promoted_prospect_id: UUID | None = None
    discovered_at: datetime = Field(default_factory=_utcnow)
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    review_notes: str | None = None
    updated_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def from_candidate(cls, candidate: DiscoveryCandidate, *, team_id: str) -> "Discovery":
        return cls(**candidate.model_dump(), team_id=team_id)


class DiscoveryResult(BaseModel):
    status: DiscoveryOutcome
    discovery_id: UUID | None = None
    prospect_id: UUID | None = None
    error: str | None = None


class DiscoveryBatchResult(BaseModel):
    created: int = 0
    duplicates: int = 0
    auto_promoted: int = 0
    errors: int = 0


class DiscoveryCheck(BaseModel):
    """Outcome of the coarse domain-level pre-check run before scoring."""

    create: bool
    reason: str
    prospect_id: UUID | None = None
    discovery_id: UUID | None = None


class Prospect(BaseModel):
    """Minimal prospect record created when a discovery is promoted."""

    id: UUID = Field(default_factory=uuid4)
    team_id: str
    company_domain: str
    company_name: str
    source: str = "listener"
    discovery_id: UUID | None = None
    created_at: datetime = Field(default_factory=_utcnow)


class CompanyInfo(BaseModel):
    """Employer inferred from a user's profile bio."""

    username: str
    company_domain: str | None = None
    company_name: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    source: CompanySignalSource | None = None
    linkedin_url: str | None = None
    twitter_handle: str | None = None
    github_username: str | None = None
    personal_website: str | None = None
    raw_about: str | None = None


class AuthorProfile(BaseModel):
    """Per-username record of inferred company info and scan history."""

    username: str
    karma: int = 0
    account_created_at: datetime | None = None
    about: str | None = None
    company_domain: str | None = None
    company_name: str | None = None
    extraction_confidence: float | None = None
    extraction_source: CompanySignalSource | None = None
    linkedin_url: str | None = None
    twitter_handle: str | None = None
    github_username: str | None = None
    personal_website: str | None = None
    first_seen_at: datetime = Field(default_factory=_utcnow)
    last_scanned_at: datetime = Field(default_factory=_utcnow)
    scan_count: int = Field(default=1, ge=0)
    discoveries_created: int = Field(default=0, ge=0)
    is_excluded: bool = False
    exclusion_reason: str | None = None
    last_story_id: int | None = None
    last_story_title: str | None = None

    def to_company_info(self) -> CompanyInfo:
        return CompanyInfo(
            username=self.username,
            company_domain=self.company_domain,
            company_name=self.company_name,
            confidence=self.extraction_confidence or 0.0,
            source=self.extraction_source,
            linkedin_url=self.linkedin_url,
            twitter_handle=self.twitter_handle,
            github_username=self.github_username,
            personal_website=self.personal_website,
            raw_about=self.about,
        )


class RunErrorDetail(BaseModel):
    message: str
    timestamp: datetime = Field(default_factory=_utcnow)


class RunCounts(BaseModel):
    items_scanned: int = 0
    discoveries_created: int = 0
    duplicates_skipped: int = 0
    auto_promoted: int = 0
    errors_count: int = 0


class ScanRun(BaseModel):
    """One execution of a source scan."""

    id: UUID = Field(default_factory=uuid4)
    source_type: str
    run_type: RunType = RunType.SCHEDULED
    status: RunStatus = RunStatus.RUNNING
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: datetime | None = None
    items_scanned: int = 0
    discoveries_created: int = 0
    duplicates_skipped: int = 0
    auto_promoted: int = 0
    errors_count: int = 0
    error_details: list[RunErrorDetail] = Field(default_factory=list)
    cursor_data: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_finalized(self) -> bool:
        return self.status is not RunStatus.RUNNING
