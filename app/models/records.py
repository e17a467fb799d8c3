"""SQLModel mappings for persisted listener state."""
# ruff: noqa: UP017

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

import sqlalchemy as sa
from sqlalchemy import BigInteger, Boolean, Column, DateTime, Float, Integer, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql import expression
from sqlmodel import Field, SQLModel

from app.models.listener import (
    AuthorProfile,
    CompanySignalSource,
    Discovery,
    DiscoveryStatus,
    KeywordCategory,
    KeywordDefinition,
    Prospect,
    RunErrorDetail,
    RunStatus,
    RunType,
    ScanRun,
    SourceType,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; treat naive timestamps as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


JSON_BACKING_TYPE = sa.JSON().with_variant(JSONB(astext_type=sa.Text()), "postgresql")


class UtcNow(expression.FunctionElement):
    """Dialect-aware server default that pins timestamps to UTC."""

    type = DateTime(timezone=True)
    inherit_cache = True


@compiles(UtcNow)
def _utc_now_default(
    element, compiler, **kwargs
) -> str:  # pragma: no cover - trivial sql generator
    return "CURRENT_TIMESTAMP"


@compiles(UtcNow, "postgresql")
def _utc_now_default_postgres(
    element, compiler, **kwargs
) -> str:  # pragma: no cover - trivial sql generator
    return "timezone('utc', now())"


def _timestamp_column(*, nullable: bool = False, onupdate: bool = False) -> Column:
    return Column(
        DateTime(timezone=True),
        nullable=nullable,
        server_default=None if nullable else UtcNow(),
        onupdate=UtcNow() if onupdate else None,
    )


class DiscoveryRecord(SQLModel, table=True):
    """ORM model for discoveries; (company_domain, source_url) is unique."""

    __tablename__ = "listener_discoveries"
    __table_args__ = (
        sa.UniqueConstraint(
            "company_domain", "source_url", name="uq_listener_discoveries_domain_url"
        ),
        sa.Index("ix_listener_discoveries_team_domain", "team_id", "company_domain"),
        sa.Index("ix_listener_discoveries_status", "status"),
    )

    id: UUID = Field(
        default_factory=uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True, nullable=False),
    )
    team_id: str = Field(sa_column=Column(String(length=255), nullable=False))
    company_domain: str = Field(sa_column=Column(String(length=255), nullable=False))
    company_name: str | None = Field(default=None, sa_column=Column(String(length=255)))
    source_type: str = Field(sa_column=Column(String(length=32), nullable=False))
    source_url: str = Field(sa_column=Column(String(length=2048), nullable=False))
    source_title: str | None = Field(default=None, sa_column=Column(Text))
    trigger_text: str = Field(default="", sa_column=Column(Text, nullable=False))
    keywords_matched: list[str] = Field(
        default_factory=list, sa_column=Column(JSON_BACKING_TYPE, nullable=False)
    )
    keyword_category: str | None = Field(default=None, sa_column=Column(String(length=32)))
    confidence_score: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    product_tags: list[str] = Field(
        default_factory=list, sa_column=Column(JSON_BACKING_TYPE, nullable=False)
    )
    source_metadata: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSON_BACKING_TYPE, nullable=False)
    )
    status: str = Field(
        default=DiscoveryStatus.NEW.value, sa_column=Column(String(length=16), nullable=False)
    )
    promoted_prospect_id: UUID | None = Field(
        default=None, sa_column=Column(Uuid(as_uuid=True))
    )
    source_published_at: datetime | None = Field(
        default=None, sa_column=_timestamp_column(nullable=True)
    )
    discovered_at: datetime = Field(default_factory=_utcnow, sa_column=_timestamp_column())
    reviewed_by: str | None = Field(default=None, sa_column=Column(String(length=255)))
    reviewed_at: datetime | None = Field(default=None, sa_column=_timestamp_column(nullable=True))
    review_notes: str | None = Field(default=None, sa_column=Column(Text))
    updated_at: datetime = Field(
        default_factory=_utcnow, sa_column=_timestamp_column(onupdate=True)
    )

    @classmethod
    def from_discovery(cls, discovery: Discovery) -> DiscoveryRecord:
        return cls(
            id=discovery.id,
            team_id=discovery.team_id,
            company_domain=discovery.company_domain,
            company_name=discovery.company_name,
            source_type=discovery.source_type.value,
            source_url=discovery.source_url,
            source_title=discovery.source_title,
            trigger_text=discovery.trigger_text,
            keywords_matched=list(discovery.keywords_matched),
            keyword_category=discovery.keyword_category.value
            if discovery.keyword_category
            else None,
            confidence_score=discovery.confidence_score,
            product_tags=list(discovery.product_tags),
            source_metadata=dict(discovery.metadata),
            status=discovery.status.value,
            promoted_prospect_id=discovery.promoted_prospect_id,
            source_published_at=discovery.source_published_at,
            discovered_at=discovery.discovered_at,
            reviewed_by=discovery.reviewed_by,
            reviewed_at=discovery.reviewed_at,
            review_notes=discovery.review_notes,
            updated_at=discovery.updated_at,
        )

    def to_discovery(self) -> Discovery:
        return Discovery(
            id=self.id,
            team_id=self.team_id,
            company_domain=self.company_domain,
            company_name=self.company_name,
            source_type=SourceType(self.source_type),
            source_url=self.source_url,
            source_title=self.source_title,
            trigger_text=self.trigger_text,
            keywords_matched=list(self.keywords_matched or []),
            keyword_category=KeywordCategory(self.keyword_category)
            if self.keyword_category
            else None,
            confidence_score=self.confidence_score,
            product_tags=list(self.product_tags or []),
            metadata=dict(self.source_metadata or {}),
            status=DiscoveryStatus(self.status),
            promoted_prospect_id=self.promoted_prospect_id,
            source_published_at=as_utc(self.source_published_at),
            discovered_at=as_utc(self.discovered_at),
            reviewed_by=self.reviewed_by,
            reviewed_at=as_utc(self.reviewed_at),
            review_notes=self.review_notes,
            updated_at=as_utc(self.updated_at),
        )


class ProspectRecord(SQLModel, table=True):
    """Minimal prospect row; one per (team_id, company_domain)."""

    __tablename__ = "prospects"
    __table_args__ = (
        sa.UniqueConstraint("team_id", "company_domain", name="uq_prospects_team_domain"),
    )

    id: UUID = Field(
        default_factory=uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True, nullable=False),
    )
    team_id: str = Field(sa_column=Column(String(length=255), nullable=False))
    company_domain: str = Field(sa_column=Column(String(length=255), nullable=False))
    company_name: str = Field(sa_column=Column(String(length=255), nullable=False))
    source: str = Field(default="listener", sa_column=Column(String(length=64), nullable=False))
    discovery_id: UUID | None = Field(default=None, sa_column=Column(Uuid(as_uuid=True)))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=_timestamp_column())

    @classmethod
    def from_prospect(cls, prospect: Prospect) -> ProspectRecord:
        return cls(**prospect.model_dump())

    def to_prospect(self) -> Prospect:
        return Prospect(
            id=self.id,
            team_id=self.team_id,
            company_domain=self.company_domain,
            company_name=self.company_name,
            source=self.source,
            discovery_id=self.discovery_id,
            created_at=as_utc(self.created_at),
        )


class KeywordRecord(SQLModel, table=True):
    __tablename__ = "listener_keywords"
    __table_args__ = (sa.UniqueConstraint("keyword", name="uq_listener_keywords_keyword"),)

    id: UUID = Field(
        default_factory=uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True, nullable=False),
    )
    keyword: str = Field(sa_column=Column(String(length=255), nullable=False))
    category: str = Field(sa_column=Column(String(length=32), nullable=False))
    weight: int = Field(default=1, sa_column=Column(Integer, nullable=False))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False))
    product_tags: list[str] = Field(
        default_factory=list, sa_column=Column(JSON_BACKING_TYPE, nullable=False)
    )
    created_at: datetime = Field(default_factory=_utcnow, sa_column=_timestamp_column())
    updated_at: datetime = Field(
        default_factory=_utcnow, sa_column=_timestamp_column(onupdate=True)
    )

    @classmethod
    def from_keyword(cls, keyword: KeywordDefinition) -> KeywordRecord:
        return cls(
            id=keyword.id,
            keyword=keyword.keyword,
            category=keyword.category.value,
            weight=keyword.weight,
            is_active=keyword.is_active,
            product_tags=list(keyword.product_tags),
            created_at=keyword.created_at,
            updated_at=keyword.updated_at,
        )

    def to_keyword(self) -> KeywordDefinition:
        return KeywordDefinition(
            id=self.id,
            keyword=self.keyword,
            category=KeywordCategory(self.category),
            weight=self.weight,
            is_active=self.is_active,
            product_tags=list(self.product_tags or []),
            created_at=as_utc(self.created_at),
            updated_at=as_utc(self.updated_at),
        )


class RunRecord(SQLModel, table=True):
    __tablename__ = "listener_runs"
    __table_args__ = (
        sa.Index("ix_listener_runs_source_started", "source_type", "started_at"),
    )

    id: UUID = Field(
        default_factory=uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True, nullable=False),
    )
    source_type: str = Field(sa_column=Column(String(length=32), nullable=False))
    run_type: str = Field(
        default=RunType.SCHEDULED.value, sa_column=Column(String(length=16), nullable=False)
    )
    status: str = Field(
        default=RunStatus.RUNNING.value, sa_column=Column(String(length=16), nullable=False)
    )
    started_at: datetime = Field(default_factory=_utcnow, sa_column=_timestamp_column())
    completed_at: datetime | None = Field(
        default=None, sa_column=_timestamp_column(nullable=True)
    )
    items_scanned: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    discoveries_created: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    duplicates_skipped: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    auto_promoted: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    errors_count: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    error_details: list[dict[str, Any]] = Field(
        default_factory=list, sa_column=Column(JSON_BACKING_TYPE, nullable=False)
    )
    cursor_data: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSON_BACKING_TYPE, nullable=False)
    )

    @classmethod
    def from_run(cls, run: ScanRun) -> RunRecord:
        payload = run.model_dump(mode="json", exclude={"id", "started_at", "completed_at"})
        return cls(
            id=run.id,
            started_at=run.started_at,
            completed_at=run.completed_at,
            **payload,
        )

    def to_run(self) -> ScanRun:
        return ScanRun(
            id=self.id,
            source_type=self.source_type,
            run_type=RunType(self.run_type),
            status=RunStatus(self.status),
            started_at=as_utc(self.started_at),
            completed_at=as_utc(self.completed_at),
            items_scanned=self.items_scanned,
            discoveries_created=self.discoveries_created,
            duplicates_skipped=self.duplicates_skipped,
            auto_promoted=self.auto_promoted,
            errors_count=self.errors_count,
            error_details=[RunErrorDetail(**entry) for entry in self.error_details or []],
            cursor_data=dict(self.cursor_data or {}),
        )


class AuthorRecord(SQLModel, table=True):
    __tablename__ = "listener_authors"
    __table_args__ = (
        sa.Index("ix_listener_authors_last_scanned", "last_scanned_at"),
        sa.Index("ix_listener_authors_company_domain", "company_domain"),
    )

    username: str = Field(sa_column=Column(String(length=255), primary_key=True, nullable=False))
    karma: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    account_created_at: datetime | None = Field(
        default=None, sa_column=_timestamp_column(nullable=True)
    )
    about: str | None = Field(default=None, sa_column=Column(Text))
    company_domain: str | None = Field(default=None, sa_column=Column(String(length=255)))
    company_name: str | None = Field(default=None, sa_column=Column(String(length=255)))
    extraction_confidence: float | None = Field(default=None, sa_column=Column(Float))
    extraction_source: str | None = Field(default=None, sa_column=Column(String(length=32)))
    linkedin_url: str | None = Field(default=None, sa_column=Column(String(length=512)))
    twitter_handle: str | None = Field(default=None, sa_column=Column(String(length=64)))
    github_username: str | None = Field(default=None, sa_column=Column(String(length=255)))
    personal_website: str | None = Field(default=None, sa_column=Column(String(length=2048)))
    first_seen_at: datetime = Field(default_factory=_utcnow, sa_column=_timestamp_column())
    last_scanned_at: datetime = Field(default_factory=_utcnow, sa_column=_timestamp_column())
    scan_count: int = Field(default=1, sa_column=Column(Integer, nullable=False))
    discoveries_created: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    is_excluded: bool = Field(default=False, sa_column=Column(Boolean, nullable=False))
    exclusion_reason: str | None = Field(default=None, sa_column=Column(String(length=512)))
    last_story_id: int | None = Field(default=None, sa_column=Column(BigInteger))
    last_story_title: str | None = Field(default=None, sa_column=Column(Text))

    @classmethod
    def from_profile(cls, profile: AuthorProfile) -> AuthorRecord:
        payload = profile.model_dump()
        if profile.extraction_source is not None:
            payload["extraction_source"] = profile.extraction_source.value
        return cls(**payload)

    def apply(self, profile: AuthorProfile) -> None:
        """Copy every mutable field of ``profile`` onto this row."""
        for name, value in AuthorRecord.from_profile(profile).model_dump().items():
            if name != "username":
                setattr(self, name, value)

    def to_profile(self) -> AuthorProfile:
        return AuthorProfile(
            username=self.username,
            karma=self.karma,
            account_created_at=as_utc(self.account_created_at),
            about=self.about,
            company_domain=self.company_domain,
            company_name=self.company_name,
            extraction_confidence=self.extraction_confidence,
            extraction_source=CompanySignalSource(self.extraction_source)
            if self.extraction_source
            else None,
            linkedin_url=self.linkedin_url,
            twitter_handle=self.twitter_handle,
            github_username=self.github_username,
            personal_website=self.personal_website,
            first_seen_at=as_utc(self.first_seen_at),
            last_scanned_at=as_utc(self.last_scanned_at),
            scan_count=self.scan_count,
            discoveries_created=self.discoveries_created,
            is_excluded=self.is_excluded,
            exclusion_reason=self.exclusion_reason,
            last_story_id=self.last_story_id,
            last_story_title=self.last_story_title,
        )
