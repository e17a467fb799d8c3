"""Discovery creation, deduplication and the review/promotion state machine."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from app.models.listener import (
    Discovery,
    DiscoveryBatchResult,
    DiscoveryCandidate,
    DiscoveryCheck,
    DiscoveryOutcome,
    DiscoveryResult,
    DiscoveryStatus,
    SourceType,
)
from app.observability.metrics import MetricsReporter, metrics as default_metrics
from app.services.listener.confidence import AUTO_PROMOTE_THRESHOLD
from app.services.listener.discovery_repository import DiscoveryRepository, ProspectRepository
from app.services.listener.errors import (
    DuplicateDiscoveryError,
    InvalidTransitionError,
    ListenerPersistenceError,
    NotFoundError,
)

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[DiscoveryStatus, frozenset[DiscoveryStatus]] = {
    DiscoveryStatus.NEW: frozenset(
        {
            DiscoveryStatus.REVIEWING,
            DiscoveryStatus.PROMOTED,
            DiscoveryStatus.DISMISSED,
            DiscoveryStatus.DUPLICATE,
        }
    ),
    DiscoveryStatus.REVIEWING: frozenset(
        {DiscoveryStatus.PROMOTED, DiscoveryStatus.DISMISSED, DiscoveryStatus.DUPLICATE}
    ),
    DiscoveryStatus.DUPLICATE: frozenset(
        {DiscoveryStatus.REVIEWING, DiscoveryStatus.PROMOTED, DiscoveryStatus.DISMISSED}
    ),
    DiscoveryStatus.PROMOTED: frozenset(),
    DiscoveryStatus.DISMISSED: frozenset(),
}

RECENT_DISCOVERY_WINDOW_DAYS = 7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DiscoveryService:
    """Creates discoveries idempotently and moves them through review.

    ``(company_domain, source_url)`` is the uniqueness key; the repository's
    unique constraint settles races, and losing one is reported as a duplicate.
    """

    def __init__(
        self,
        discoveries: DiscoveryRepository,
        prospects: ProspectRepository,
        *,
        metrics: MetricsReporter | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._discoveries = discoveries
        self._prospects = prospects
        self._metrics = metrics or default_metrics
        self._clock = clock

    @property
    def repository(self) -> DiscoveryRepository:
        return self._discoveries

    def create_discovery(
        self,
        candidate: DiscoveryCandidate,
        team_id: str,
        auto_promote_threshold: int = AUTO_PROMOTE_THRESHOLD,
    ) -> DiscoveryResult:
        """Persist ``candidate``; failures are reported in the result rather than raised."""
        tags = {"source_type": candidate.source_type.value}
        try:
            existing = self._discoveries.find_by_key(candidate.company_domain, candidate.source_url)
            if existing is not None:
                return self._refresh_duplicate(existing, candidate)

            discovery = Discovery.from_candidate(candidate, team_id=team_id)
            try:
                stored = self._discoveries.insert(discovery)
            except DuplicateDiscoveryError:
                raced = self._discoveries.find_by_key(
                    candidate.company_domain, candidate.source_url
                )
                if raced is None:
                    raise
                return self._refresh_duplicate(raced, candidate)

            self._metrics.increment("listener.discovery.created", tags=tags)
            logger.info(
                "listener.discovery.created",
                extra={
                    "discovery_id": str(stored.id),
                    "company_domain": stored.company_domain,
                    "confidence_score": stored.confidence_score,
                },
            )
            if candidate.confidence_score >= auto_promote_threshold:
                try:
                    prospect_id = self.promote_discovery(stored.id, team_id)
                except (ListenerPersistenceError, NotFoundError, InvalidTransitionError):
                    # The discovery is stored; it stays reviewable as a new row.
                    self._metrics.increment("listener.discovery.auto_promote_failed", tags=tags)
                    logger.exception(
                        "listener.discovery.auto_promote_failed",
                        extra={"discovery_id": str(stored.id)},
                    )
                    return DiscoveryResult(status=DiscoveryOutcome.CREATED, discovery_id=stored.id)
                self._metrics.increment("listener.discovery.auto_promoted", tags=tags)
                return DiscoveryResult(
                    status=DiscoveryOutcome.AUTO_PROMOTED,
                    discovery_id=stored.id,
                    prospect_id=prospect_id,
                )
            return DiscoveryResult(status=DiscoveryOutcome.CREATED, discovery_id=stored.id)
        except (ListenerPersistenceError, NotFoundError, InvalidTransitionError) as exc:
            self._metrics.increment("listener.discovery.error", tags=tags)
            logger.exception(
                "listener.discovery.create_failed",
                extra={
                    "company_domain": candidate.company_domain,
                    "source_url": candidate.source_url,
                },
            )
            return DiscoveryResult(status=DiscoveryOutcome.ERROR, error=str(exc))

    def create_discoveries(
        self,
        candidates: Iterable[DiscoveryCandidate],
        team_id: str,
        auto_promote_threshold: int = AUTO_PROMOTE_THRESHOLD,
    ) -> DiscoveryBatchResult:
        batch = DiscoveryBatchResult()
        for candidate in candidates:
            result = self.create_discovery(candidate, team_id, auto_promote_threshold)
            if result.status is DiscoveryOutcome.ERROR:
                batch.errors += 1
            elif result.status is DiscoveryOutcome.DUPLICATE:
                batch.duplicates += 1
            elif result.status is DiscoveryOutcome.AUTO_PROMOTED:
                batch.auto_promoted += 1
                batch.created += 1
            else:
                batch.created += 1
        return batch

    def promote_discovery(
        self, discovery_id: UUID, team_id: str | None = None, reviewer: str | None = None
    ) -> UUID:
        """Link the discovery to a prospect for its domain; returns the prospect id.

        ``team_id`` defaults to the team that owns the discovery.
        """
        discovery = self.get_discovery(discovery_id)
        if discovery.status is DiscoveryStatus.PROMOTED and discovery.promoted_prospect_id:
            return discovery.promoted_prospect_id
        if (
            discovery.status is DiscoveryStatus.DUPLICATE
            and discovery.promoted_prospect_id is not None
        ):
            return discovery.promoted_prospect_id
        self._check_transition(discovery, DiscoveryStatus.PROMOTED)

        prospect, created = self._prospects.find_or_create(
            team_id or discovery.team_id,
            discovery.company_domain,
            discovery.company_name or discovery.company_domain,
            discovery.id,
        )
        now = self._clock()
        status = DiscoveryStatus.PROMOTED if created else DiscoveryStatus.DUPLICATE
        self._discoveries.save(
            discovery.model_copy(
                update={
                    "status": status,
                    "promoted_prospect_id": prospect.id,
                    "reviewed_by": reviewer or discovery.reviewed_by,
                    "reviewed_at": now,
                    "updated_at": now,
                }
            )
        )
        self._metrics.increment("listener.discovery.promoted", tags={"status": status.value})
        logger.info(
            "listener.discovery.promoted",
            extra={
                "discovery_id": str(discovery.id),
                "prospect_id": str(prospect.id),
                "prospect_created": created,
            },
        )
        return prospect.id

    def dismiss_discovery(
        self, discovery_id: UUID, reviewer: str | None = None, notes: str | None = None
    ) -> Discovery:
        return self.update_status(discovery_id, DiscoveryStatus.DISMISSED, reviewer, notes)

    def update_status(
        self,
        discovery_id: UUID,
        status: DiscoveryStatus,
        reviewer: str | None = None,
        notes: str | None = None,
    ) -> Discovery:
        discovery = self.get_discovery(discovery_id)
        if discovery.status is status:
            return discovery
        self._check_transition(discovery, status)
        now = self._clock()
        updated = discovery.model_copy(
            update={
                "status": status,
                "reviewed_at": now,
                "updated_at": now,
                "reviewed_by": reviewer or discovery.reviewed_by,
                "review_notes": notes or discovery.review_notes,
            }
        )
        stored = self._discoveries.save(updated)
        logger.info(
            "listener.discovery.status_changed",
            extra={
                "discovery_id": str(discovery_id),
                "from_status": discovery.status.value,
                "to_status": status.value,
            },
        )
        return stored

    def get_discovery(self, discovery_id: UUID) -> Discovery:
        discovery = self._discoveries.get(discovery_id)
        if discovery is None:
            raise NotFoundError(f"Discovery {discovery_id} not found.")
        return discovery

    def list_discoveries(
        self,
        *,
        status: DiscoveryStatus | None = None,
        source_type: SourceType | None = None,
        min_confidence: int | None = None,
        team_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
        order_by: str = "discovered_at",
        descending: bool = True,
    ) -> tuple[list[Discovery], int]:
        return self._discoveries.list(
            status=status,
            source_type=source_type,
            min_confidence=min_confidence,
            team_id=team_id,
            limit=limit,
            offset=offset,
            order_by=order_by,
            descending=descending,
        )

    def check_domain_exists(self, company_domain: str, team_id: str) -> dict[str, Any]:
        """Whether the domain is already a non-dismissed discovery or a prospect."""
        discovery = self._discoveries.find_recent_for_domain(
            company_domain, team_id, datetime.min.replace(tzinfo=timezone.utc)
        )
        prospect = self._prospects.find_by_domain(team_id, company_domain)
        return {
            "in_discoveries": discovery is not None,
            "in_prospects": prospect is not None,
            "prospect_id": prospect.id if prospect else None,
        }

    def should_create_discovery(
        self,
        company_domain: str,
        team_id: str,
        window_days: int = RECENT_DISCOVERY_WINDOW_DAYS,
    ) -> DiscoveryCheck:
        """Coarse domain-level pre-check used before the costlier profile work."""
        prospect = self._prospects.find_by_domain(team_id, company_domain)
        if prospect is not None:
            return DiscoveryCheck(create=False, reason="already_prospect", prospect_id=prospect.id)
        since = self._clock() - timedelta(days=window_days)
        recent = self._discoveries.find_recent_for_domain(company_domain, team_id, since)
        if recent is not None:
            return DiscoveryCheck(create=False, reason="recent_discovery", discovery_id=recent.id)
        return DiscoveryCheck(create=True, reason="new")

    def discovery_stats(self) -> dict[str, Any]:
        now = self._clock()
        return self._discoveries.stats(
            day_ago=now - timedelta(days=1), week_ago=now - timedelta(days=7)
        )

    def _refresh_duplicate(
        self, existing: Discovery, candidate: DiscoveryCandidate
    ) -> DiscoveryResult:
        if candidate.confidence_score > existing.confidence_score:
            self._discoveries.save(
                existing.model_copy(
                    update={
                        "confidence_score": candidate.confidence_score,
                        "keywords_matched": list(candidate.keywords_matched),
                        "product_tags": list(candidate.product_tags),
                        "trigger_text": candidate.trigger_text,
                        "updated_at": self._clock(),
                    }
                )
            )
            logger.info(
                "listener.discovery.score_raised",
                extra={
                    "discovery_id": str(existing.id),
                    "from_score": existing.confidence_score,
                    "to_score": candidate.confidence_score,
                },
            )
        self._metrics.increment(
            "listener.discovery.duplicate", tags={"source_type": candidate.source_type.value}
        )
        return DiscoveryResult(status=DiscoveryOutcome.DUPLICATE, discovery_id=existing.id)

    @staticmethod
    def _check_transition(discovery: Discovery, target: DiscoveryStatus) -> None:
        if target not in ALLOWED_TRANSITIONS[discovery.status]:
            raise InvalidTransitionError(discovery.status.value, target.value)
