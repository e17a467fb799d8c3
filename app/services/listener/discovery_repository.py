"""Persistence backends for discoveries and the prospects they are promoted into."""

from __future__ import annotations

import builtins
import logging
from datetime import datetime
from threading import Lock
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from app.models.listener import Discovery, DiscoveryStatus, Prospect, SourceType
from app.models.records import DiscoveryRecord, ProspectRecord
from app.observability.metrics import metrics
from app.services.listener.errors import DuplicateDiscoveryError, NotFoundError, ValidationError
from app.services.listener.storage import SqlRepository

logger = logging.getLogger(__name__)

ORDERABLE_FIELDS = ("discovered_at", "confidence_score", "updated_at", "company_domain")


class DiscoveryRepository(Protocol):
    """Persistence contract for discoveries; (company_domain, source_url) is unique."""

    def get(self, discovery_id: UUID) -> Discovery | None:
        ...

    def find_by_key(self, company_domain: str, source_url: str) -> Discovery | None:
        ...

    def insert(self, discovery: Discovery) -> Discovery:
        ...

    def save(self, discovery: Discovery) -> Discovery:
        ...

    def list(
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
    ) -> tuple[builtins.list[Discovery], int]:
        ...

    def find_recent_for_domain(
        self, company_domain: str, team_id: str, since: datetime
    ) -> Discovery | None:
        ...

    def stats(self, *, day_ago: datetime, week_ago: datetime) -> dict[str, Any]:
        ...


class ProspectRepository(Protocol):
    """Contract with the prospect-owning subsystem: find-or-create by (team, domain)."""

    def get(self, prospect_id: UUID) -> Prospect | None:
        ...

    def find_by_domain(self, team_id: str, company_domain: str) -> Prospect | None:
        ...

    def find_or_create(
        self,
        team_id: str,
        company_domain: str,
        company_name: str,
        discovery_id: UUID | None = None,
    ) -> tuple[Prospect, bool]:
        ...


def _validate_order(order_by: str) -> str:
    if order_by not in ORDERABLE_FIELDS:
        raise ValidationError(
            f"order_by must be one of {', '.join(ORDERABLE_FIELDS)}; got {order_by!r}."
        )
    return order_by


def _empty_stats() -> dict[str, Any]:
    return {
        "total": 0,
        "by_status": {},
        "by_source": {},
        "by_category": {},
        "average_confidence": 0.0,
        "last_24h": 0,
        "last_7d": 0,
    }


class InMemoryDiscoveryRepository(DiscoveryRepository):
    """Thread-safe repository used for API/local development."""

    def __init__(self) -> None:
        self._discoveries: dict[UUID, Discovery] = {}
        self._keys: dict[tuple[str, str], UUID] = {}
        self._lock = Lock()

    def get(self, discovery_id: UUID) -> Discovery | None:
        with self._lock:
            discovery = self._discoveries.get(discovery_id)
        return discovery.model_copy(deep=True) if discovery else None

    def find_by_key(self, company_domain: str, source_url: str) -> Discovery | None:
        with self._lock:
            discovery_id = self._keys.get((company_domain, source_url))
            discovery = self._discoveries.get(discovery_id) if discovery_id else None
        return discovery.model_copy(deep=True) if discovery else None

    def insert(self, discovery: Discovery) -> Discovery:
        key = (discovery.company_domain, discovery.source_url)
        with self._lock:
            if key in self._keys:
                raise DuplicateDiscoveryError(*key)
            self._discoveries[discovery.id] = discovery.model_copy(deep=True)
            self._keys[key] = discovery.id
        metrics.increment("listener.discovery.persisted", tags={"repository": "memory"})
        logger.info(
            "listener.discovery.persisted",
            extra={
                "discovery_id": str(discovery.id),
                "company_domain": discovery.company_domain,
                "backend": "memory",
            },
        )
        return discovery

    def save(self, discovery: Discovery) -> Discovery:
        with self._lock:
            if discovery.id not in self._discoveries:
                raise NotFoundError(f"Discovery {discovery.id} not found.")
            self._discoveries[discovery.id] = discovery.model_copy(deep=True)
        return discovery

    def list(
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
    ) -> tuple[builtins.list[Discovery], int]:
        field = _validate_order(order_by)
        with self._lock:
            rows = [entry.model_copy(deep=True) for entry in self._discoveries.values()]
        filtered = [
            entry
            for entry in rows
            if (status is None or entry.status == status)
            and (source_type is None or entry.source_type == source_type)
            and (min_confidence is None or entry.confidence_score >= min_confidence)
            and (team_id is None or entry.team_id == team_id)
        ]
        filtered.sort(key=lambda entry: getattr(entry, field), reverse=descending)
        start = max(0, offset)
        return filtered[start : start + max(0, limit)], len(filtered)

    def find_recent_for_domain(
        self, company_domain: str, team_id: str, since: datetime
    ) -> Discovery | None:
        with self._lock:
            matches = [
                entry
                for entry in self._discoveries.values()
                if entry.company_domain == company_domain
                and entry.team_id == team_id
                and entry.status != DiscoveryStatus.DISMISSED
                and entry.discovered_at >= since
            ]
        if not matches:
            return None
        return max(matches, key=lambda entry: entry.discovered_at).model_copy(deep=True)

    def stats(self, *, day_ago: datetime, week_ago: datetime) -> dict[str, Any]:
        with self._lock:
            rows = builtins.list(self._discoveries.values())
        result = _empty_stats()
        if not rows:
            return result
        for entry in rows:
            _bump(result["by_status"], entry.status.value)
            _bump(result["by_source"], entry.source_type.value)
            if entry.keyword_category is not None:
                _bump(result["by_category"], entry.keyword_category.value)
        result["total"] = len(rows)
        result["average_confidence"] = round(
            sum(entry.confidence_score for entry in rows) / len(rows), 1
        )
        result["last_24h"] = sum(1 for entry in rows if entry.discovered_at >= day_ago)
        result["last_7d"] = sum(1 for entry in rows if entry.discovered_at >= week_ago)
        return result


def _bump(counter: dict[str, int], key: str) -> None:
    counter[key] = counter.get(key, 0) + 1


class InMemoryProspectRepository(ProspectRepository):
    def __init__(self) -> None:
        self._prospects: dict[UUID, Prospect] = {}
        self._by_domain: dict[tuple[str, str], UUID] = {}
        self._lock = Lock()

    def get(self, prospect_id: UUID) -> Prospect | None:
        with self._lock:
            return self._prospects.get(prospect_id)

    def find_by_domain(self, team_id: str, company_domain: str) -> Prospect | None:
        with self._lock:
            prospect_id = self._by_domain.get((team_id, company_domain))
            return self._prospects.get(prospect_id) if prospect_id else None

    def find_or_create(
        self,
        team_id: str,
        company_domain: str,
        company_name: str,
        discovery_id: UUID | None = None,
    ) -> tuple[Prospect, bool]:
        key = (team_id, company_domain)
        with self._lock:
            existing_id = self._by_domain.get(key)
            if existing_id is not None:
                return self._prospects[existing_id], False
            prospect = Prospect(
                team_id=team_id,
                company_domain=company_domain,
                company_name=company_name,
                discovery_id=discovery_id,
            )
            self._prospects[prospect.id] = prospect
            self._by_domain[key] = prospect.id
        metrics.increment("listener.prospect.created", tags={"repository": "memory"})
        logger.info(
            "listener.prospect.created",
            extra={"prospect_id": str(prospect.id), "company_domain": company_domain},
        )
        return prospect, True


class SqlDiscoveryRepository(SqlRepository, DiscoveryRepository):
    """SQLModel-backed discovery storage; the unique constraint decides duplicates."""

    event_prefix = "listener.discovery"

    def get(self, discovery_id: UUID) -> Discovery | None:
        with self._session("load discovery", discovery_id=str(discovery_id)) as session:
            record = session.get(DiscoveryRecord, discovery_id)
            return record.to_discovery() if record else None

    def find_by_key(self, company_domain: str, source_url: str) -> Discovery | None:
        with self._session("load discovery", company_domain=company_domain) as session:
            statement = select(DiscoveryRecord).where(
                DiscoveryRecord.company_domain == company_domain,
                DiscoveryRecord.source_url == source_url,
            )
            record = session.exec(statement).first()
            return record.to_discovery() if record else None

    def insert(self, discovery: Discovery) -> Discovery:
        record = DiscoveryRecord.from_discovery(discovery)
        with self._session("persist discovery", company_domain=discovery.company_domain) as session:
            session.add(record)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                logger.info(
                    "listener.discovery.conflict",
                    extra={
                        "company_domain": discovery.company_domain,
                        "source_url": discovery.source_url,
                        "backend": self.backend,
                    },
                )
                raise DuplicateDiscoveryError(
                    discovery.company_domain, discovery.source_url
                ) from exc
            session.refresh(record)
            metrics.increment("listener.discovery.persisted", tags=self._metrics_tags)
            logger.info(
                "listener.discovery.persisted",
                extra={
                    "discovery_id": str(record.id),
                    "company_domain": record.company_domain,
                    "backend": self.backend,
                },
            )
            return record.to_discovery()

    def save(self, discovery: Discovery) -> Discovery:
        with self._session("update discovery", discovery_id=str(discovery.id)) as session:
            record = session.get(DiscoveryRecord, discovery.id)
            if record is None:
                raise NotFoundError(f"Discovery {discovery.id} not found.")
            updated = DiscoveryRecord.from_discovery(discovery)
            for name in DiscoveryRecord.model_fields:
                if name != "id":
                    setattr(record, name, getattr(updated, name))
            session.add(record)
            session.commit()
            session.refresh(record)
            return record.to_discovery()

    def list(
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
    ) -> tuple[builtins.list[Discovery], int]:
        column = getattr(DiscoveryRecord, _validate_order(order_by))
        conditions = []
        if status is not None:
            conditions.append(DiscoveryRecord.status == status.value)
        if source_type is not None:
            conditions.append(DiscoveryRecord.source_type == source_type.value)
        if min_confidence is not None:
            conditions.append(DiscoveryRecord.confidence_score >= min_confidence)
        if team_id is not None:
            conditions.append(DiscoveryRecord.team_id == team_id)
        with self._session("list discoveries") as session:
            total = session.exec(
                select(func.count()).select_from(DiscoveryRecord).where(*conditions)
            ).one()
            statement = (
                select(DiscoveryRecord)
                .where(*conditions)
                .order_by(column.desc() if descending else column.asc())
                .offset(max(0, offset))
                .limit(max(0, limit))
            )
            records = session.exec(statement).all()
            return [record.to_discovery() for record in records], int(total)

    def find_recent_for_domain(
        self, company_domain: str, team_id: str, since: datetime
    ) -> Discovery | None:
        with self._session("load recent discovery", company_domain=company_domain) as session:
            statement = (
                select(DiscoveryRecord)
                .where(
                    DiscoveryRecord.company_domain == company_domain,
                    DiscoveryRecord.team_id == team_id,
                    DiscoveryRecord.status != DiscoveryStatus.DISMISSED.value,
                    DiscoveryRecord.discovered_at >= since,
                )
                .order_by(DiscoveryRecord.discovered_at.desc())
            )
            record = session.exec(statement).first()
            return record.to_discovery() if record else None

    def stats(self, *, day_ago: datetime, week_ago: datetime) -> dict[str, Any]:
        result = _empty_stats()
        with self._session("compute discovery stats") as session:
            for column, key in (
                (DiscoveryRecord.status, "by_status"),
                (DiscoveryRecord.source_type, "by_source"),
                (DiscoveryRecord.keyword_category, "by_category"),
            ):
                rows = session.exec(
                    select(column, func.count()).group_by(column)
                ).all()
                result[key] = {value: int(count) for value, count in rows if value is not None}
            total, average = session.exec(
                select(func.count(), func.avg(DiscoveryRecord.confidence_score))
            ).one()
            result["total"] = int(total or 0)
            result["average_confidence"] = round(float(average or 0.0), 1)
            for since, key in ((day_ago, "last_24h"), (week_ago, "last_7d")):
                result[key] = int(
                    session.exec(
                        select(func.count())
                        .select_from(DiscoveryRecord)
                        .where(DiscoveryRecord.discovered_at >= since)
                    ).one()
                )
        return result


class SqlProspectRepository(SqlRepository, ProspectRepository):
    event_prefix = "listener.prospect"

    def get(self, prospect_id: UUID) -> Prospect | None:
        with self._session("load prospect", prospect_id=str(prospect_id)) as session:
            record = session.get(ProspectRecord, prospect_id)
            return record.to_prospect() if record else None

    def find_by_domain(self, team_id: str, company_domain: str) -> Prospect | None:
        with self._session("load prospect", company_domain=company_domain) as session:
            record = session.exec(
                select(ProspectRecord).where(
                    ProspectRecord.team_id == team_id,
                    ProspectRecord.company_domain == company_domain,
                )
            ).first()
            return record.to_prospect() if record else None

    def find_or_create(
        self,
        team_id: str,
        company_domain: str,
        company_name: str,
        discovery_id: UUID | None = None,
    ) -> tuple[Prospect, bool]:
        existing = self.find_by_domain(team_id, company_domain)
        if existing is not None:
            return existing, False
        record = ProspectRecord.from_prospect(
            Prospect(
                team_id=team_id,
                company_domain=company_domain,
                company_name=company_name,
                discovery_id=discovery_id,
            )
        )
        with self._session("create prospect", company_domain=company_domain) as session:
            session.add(record)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                winner = session.exec(
                    select(ProspectRecord).where(
                        ProspectRecord.team_id == team_id,
                        ProspectRecord.company_domain == company_domain,
                    )
                ).one()
                return winner.to_prospect(), False
            session.refresh(record)
        metrics.increment("listener.prospect.created", tags=self._metrics_tags)
        logger.info(
            "listener.prospect.created",
            extra={"prospect_id": str(record.id), "company_domain": company_domain},
        )
        return record.to_prospect(), True


def build_discovery_repositories(
    engine: Engine | None = None, *, backend: str = "database"
) -> tuple[DiscoveryRepository, ProspectRepository]:
    """Instantiate discovery/prospect repositories; no engine means in-memory storage."""
    if engine is None:
        logger.info("listener.discovery_repository.initialized", extra={"backend": "memory"})
        return InMemoryDiscoveryRepository(), InMemoryProspectRepository()
    logger.info("listener.discovery_repository.initialized", extra={"backend": backend})
    return (
        SqlDiscoveryRepository(engine, backend=backend),
        SqlProspectRepository(engine, backend=backend),
    )
