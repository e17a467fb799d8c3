"""Author profile tracking used to skip recently scanned users."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

from app.models.listener import AuthorProfile, CompanyInfo
from app.models.sources import HNItem, HNUser
from app.observability.metrics import MetricsReporter, metrics as default_metrics
from app.services.listener.author_repository import AuthorRepository

logger = logging.getLogger(__name__)

RESCAN_AFTER_HOURS = 168


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthorService:
    def __init__(
        self,
        repository: AuthorRepository,
        *,
        metrics: MetricsReporter | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._metrics = metrics or default_metrics
        self._clock = clock

    def upsert(
        self, user: HNUser, info: CompanyInfo, story: HNItem | None = None
    ) -> AuthorProfile:
        """Record the latest extraction for ``user``; ``scan_count`` only ever grows."""
        now = self._clock()
        existing = self._repository.get(user.id)
        fields: dict[str, Any] = {
            "karma": user.karma,
            "account_created_at": user.created_at,
            "about": user.about,
            "company_domain": info.company_domain,
            "company_name": info.company_name,
            "extraction_confidence": info.confidence if info.company_domain else None,
            "extraction_source": info.source if info.company_domain else None,
            "linkedin_url": info.linkedin_url,
            "twitter_handle": info.twitter_handle,
            "github_username": info.github_username,
            "personal_website": info.personal_website,
            "last_scanned_at": now,
        }
        if story is not None:
            fields["last_story_id"] = story.id
            fields["last_story_title"] = story.title or "HN Story"

        if existing is None:
            profile = AuthorProfile(username=user.id, first_seen_at=now, scan_count=1, **fields)
        else:
            profile = existing.model_copy(
                update={**fields, "scan_count": existing.scan_count + 1}
            )
        stored = self._repository.save(profile)
        logger.debug(
            "listener.author.upserted",
            extra={"username": user.id, "scan_count": stored.scan_count},
        )
        return stored

    def get(self, username: str) -> AuthorProfile | None:
        return self._repository.get(username)

    def recently_scanned(
        self, usernames: Iterable[str], within_hours: float = RESCAN_AFTER_HOURS
    ) -> set[str]:
        cutoff = self._clock() - timedelta(hours=within_hours)
        profiles = self._repository.get_many(usernames)
        return {name for name, profile in profiles.items() if profile.last_scanned_at >= cutoff}

    def increment_discovery_count(self, username: str) -> AuthorProfile | None:
        profile = self._repository.get(username)
        if profile is None:
            return None
        return self._repository.save(
            profile.model_copy(update={"discoveries_created": profile.discoveries_created + 1})
        )

    def exclude(self, username: str, reason: str) -> bool:
        profile = self._repository.get(username)
        if profile is None:
            return False
        self._repository.save(
            profile.model_copy(update={"is_excluded": True, "exclusion_reason": reason})
        )
        self._metrics.increment("listener.author.excluded")
        logger.info("listener.author.excluded", extra={"username": username, "reason": reason})
        return True

    def excluded_usernames(self, usernames: Iterable[str]) -> set[str]:
        profiles = self._repository.get_many(usernames)
        return {name for name, profile in profiles.items() if profile.is_excluded}

    def users_with_companies(
        self, min_confidence: float = 0.0, limit: int | None = None
    ) -> list[AuthorProfile]:
        return self._repository.list_profiles(
            with_company=True, min_confidence=min_confidence, limit=limit
        )

    def author_stats(self) -> dict[str, Any]:
        profiles = self._repository.list_profiles()
        with_company = [profile for profile in profiles if profile.company_domain]
        confidences = [profile.extraction_confidence or 0.0 for profile in with_company]
        return {
            "total": len(profiles),
            "with_company": len(with_company),
            "excluded": sum(1 for profile in profiles if profile.is_excluded),
            "average_confidence": (
                round(sum(confidences) / len(confidences), 2) if confidences else 0.0
            ),
            "discoveries_created": sum(profile.discoveries_created for profile in profiles),
        }
