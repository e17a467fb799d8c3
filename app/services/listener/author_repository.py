"""Persistence backends for per-username author profiles."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from threading import Lock
from typing import Protocol

from sqlalchemy.engine import Engine
from sqlmodel import select

from app.models.listener import AuthorProfile
from app.models.records import AuthorRecord
from app.observability.metrics import metrics
from app.services.listener.storage import SqlRepository

logger = logging.getLogger(__name__)


class AuthorRepository(Protocol):
    """Author profiles are upserted by username and never deleted."""

    def get(self, username: str) -> AuthorProfile | None:
        ...

    def get_many(self, usernames: Iterable[str]) -> dict[str, AuthorProfile]:
        ...

    def save(self, profile: AuthorProfile) -> AuthorProfile:
        ...

    def list_profiles(
        self, *, with_company: bool = False, min_confidence: float = 0.0, limit: int | None = None
    ) -> list[AuthorProfile]:
        ...


def _has_company(profile: AuthorProfile, min_confidence: float) -> bool:
    return (
        profile.company_domain is not None
        and not profile.is_excluded
        and (profile.extraction_confidence or 0.0) >= min_confidence
    )


class InMemoryAuthorRepository(AuthorRepository):
    def __init__(self) -> None:
        self._profiles: dict[str, AuthorProfile] = {}
        self._lock = Lock()

    def get(self, username: str) -> AuthorProfile | None:
        with self._lock:
            profile = self._profiles.get(username)
        return profile.model_copy() if profile else None

    def get_many(self, usernames: Iterable[str]) -> dict[str, AuthorProfile]:
        wanted = set(usernames)
        with self._lock:
            return {
                name: profile.model_copy()
                for name, profile in self._profiles.items()
                if name in wanted
            }

    def save(self, profile: AuthorProfile) -> AuthorProfile:
        with self._lock:
            self._profiles[profile.username] = profile.model_copy()
        metrics.increment("listener.author.persisted", tags={"repository": "memory"})
        return profile

    def list_profiles(
        self, *, with_company: bool = False, min_confidence: float = 0.0, limit: int | None = None
    ) -> list[AuthorProfile]:
        with self._lock:
            profiles = [profile.model_copy() for profile in self._profiles.values()]
        if with_company:
            profiles = [profile for profile in profiles if _has_company(profile, min_confidence)]
            profiles.sort(key=lambda profile: profile.extraction_confidence or 0.0, reverse=True)
        return profiles if limit is None else profiles[: max(0, limit)]


class SqlAuthorRepository(SqlRepository, AuthorRepository):
    event_prefix = "listener.author"

    def get(self, username: str) -> AuthorProfile | None:
        with self._session("load author", username=username) as session:
            record = session.get(AuthorRecord, username)
            return record.to_profile() if record else None

    def get_many(self, usernames: Iterable[str]) -> dict[str, AuthorProfile]:
        wanted = list(dict.fromkeys(usernames))
        if not wanted:
            return {}
        with self._session("load authors", count=len(wanted)) as session:
            records = session.exec(
                select(AuthorRecord).where(AuthorRecord.username.in_(wanted))
            ).all()
            return {record.username: record.to_profile() for record in records}

    def save(self, profile: AuthorProfile) -> AuthorProfile:
        with self._session("persist author", username=profile.username) as session:
            record = session.get(AuthorRecord, profile.username)
            if record is None:
                record = AuthorRecord.from_profile(profile)
            else:
                record.apply(profile)
            session.add(record)
            session.commit()
            session.refresh(record)
            metrics.increment("listener.author.persisted", tags=self._metrics_tags)
            return record.to_profile()

    def list_profiles(
        self, *, with_company: bool = False, min_confidence: float = 0.0, limit: int | None = None
    ) -> list[AuthorProfile]:
        statement = select(AuthorRecord)
        if with_company:
            statement = statement.where(
                AuthorRecord.company_domain.is_not(None),
                AuthorRecord.is_excluded.is_(False),
                AuthorRecord.extraction_confidence >= min_confidence,
            ).order_by(AuthorRecord.extraction_confidence.desc())
        if limit is not None:
            statement = statement.limit(max(0, limit))
        with self._session("list authors") as session:
            return [record.to_profile() for record in session.exec(statement).all()]


def build_author_repository(
    engine: Engine | None = None, *, backend: str = "database"
) -> AuthorRepository:
    if engine is None:
        logger.info("listener.author_repository.initialized", extra={"backend": "memory"})
        return InMemoryAuthorRepository()
    logger.info("listener.author_repository.initialized", extra={"backend": backend})
    return SqlAuthorRepository(engine, backend=backend)
