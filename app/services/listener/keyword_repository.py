"""Persistence backends for the keyword taxonomy."""

from __future__ import annotations

import logging
from threading import Lock
from typing import Protocol
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from app.models.listener import KeywordCategory, KeywordDefinition
from app.models.records import KeywordRecord
from app.observability.metrics import metrics
from app.services.listener.errors import KeywordConflictError, NotFoundError
from app.services.listener.storage import SqlRepository

logger = logging.getLogger(__name__)


class KeywordRepository(Protocol):
    """Persistence contract for taxonomy entries (keyword text is unique)."""

    def list_keywords(
        self, *, active_only: bool = False, category: KeywordCategory | None = None
    ) -> list[KeywordDefinition]:
        ...

    def get(self, keyword_id: UUID) -> KeywordDefinition | None:
        ...

    def add(self, keyword: KeywordDefinition) -> KeywordDefinition:
        ...

    def update(self, keyword: KeywordDefinition) -> KeywordDefinition:
        ...

    def delete(self, keyword_id: UUID) -> bool:
        ...

    def count(self) -> int:
        ...


def _ordered(keywords: list[KeywordDefinition]) -> list[KeywordDefinition]:
    return sorted(keywords, key=lambda entry: (-entry.weight, entry.keyword))


class InMemoryKeywordRepository(KeywordRepository):
    def __init__(self) -> None:
        self._keywords: dict[UUID, KeywordDefinition] = {}
        self._lock = Lock()

    def list_keywords(
        self, *, active_only: bool = False, category: KeywordCategory | None = None
    ) -> list[KeywordDefinition]:
        with self._lock:
            entries = [entry.model_copy() for entry in self._keywords.values()]
        return _ordered(
            [
                entry
                for entry in entries
                if (not active_only or entry.is_active)
                and (category is None or entry.category == category)
            ]
        )

    def get(self, keyword_id: UUID) -> KeywordDefinition | None:
        with self._lock:
            entry = self._keywords.get(keyword_id)
        return entry.model_copy() if entry else None

    def add(self, keyword: KeywordDefinition) -> KeywordDefinition:
        with self._lock:
            if any(entry.keyword == keyword.keyword for entry in self._keywords.values()):
                raise KeywordConflictError(keyword.keyword)
            self._keywords[keyword.id] = keyword.model_copy()
        metrics.increment("listener.keyword.persisted", tags={"repository": "memory"})
        return keyword

    def update(self, keyword: KeywordDefinition) -> KeywordDefinition:
        with self._lock:
            if keyword.id not in self._keywords:
                raise NotFoundError(f"Keyword {keyword.id} not found.")
            if any(
                entry.keyword == keyword.keyword and entry.id != keyword.id
                for entry in self._keywords.values()
            ):
                raise KeywordConflictError(keyword.keyword)
            self._keywords[keyword.id] = keyword.model_copy()
        return keyword

    def delete(self, keyword_id: UUID) -> bool:
        with self._lock:
            return self._keywords.pop(keyword_id, None) is not None

    def count(self) -> int:
        with self._lock:
            return len(self._keywords)


class SqlKeywordRepository(SqlRepository, KeywordRepository):
    event_prefix = "listener.keyword"

    def list_keywords(
        self, *, active_only: bool = False, category: KeywordCategory | None = None
    ) -> list[KeywordDefinition]:
        statement = select(KeywordRecord)
        if active_only:
            statement = statement.where(KeywordRecord.is_active.is_(True))
        if category is not None:
            statement = statement.where(KeywordRecord.category == category.value)
        statement = statement.order_by(KeywordRecord.weight.desc(), KeywordRecord.keyword)
        with self._session("list keywords") as session:
            return [record.to_keyword() for record in session.exec(statement).all()]

    def get(self, keyword_id: UUID) -> KeywordDefinition | None:
        with self._session("load keyword", keyword_id=str(keyword_id)) as session:
            record = session.get(KeywordRecord, keyword_id)
            return record.to_keyword() if record else None

    def add(self, keyword: KeywordDefinition) -> KeywordDefinition:
        record = KeywordRecord.from_keyword(keyword)
        with self._session("persist keyword", keyword=keyword.keyword) as session:
            session.add(record)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise KeywordConflictError(keyword.keyword) from exc
            session.refresh(record)
            metrics.increment("listener.keyword.persisted", tags=self._metrics_tags)
            return record.to_keyword()

    def update(self, keyword: KeywordDefinition) -> KeywordDefinition:
        with self._session("update keyword", keyword_id=str(keyword.id)) as session:
            record = session.get(KeywordRecord, keyword.id)
            if record is None:
                raise NotFoundError(f"Keyword {keyword.id} not found.")
            record.keyword = keyword.keyword
            record.category = keyword.category.value
            record.weight = keyword.weight
            record.is_active = keyword.is_active
            record.product_tags = list(keyword.product_tags)
            record.updated_at = keyword.updated_at
            session.add(record)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise KeywordConflictError(keyword.keyword) from exc
            session.refresh(record)
            return record.to_keyword()

    def delete(self, keyword_id: UUID) -> bool:
        with self._session("delete keyword", keyword_id=str(keyword_id)) as session:
            record = session.get(KeywordRecord, keyword_id)
            if record is None:
                return False
            session.delete(record)
            session.commit()
            return True

    def count(self) -> int:
        with self._session("count keywords") as session:
            return int(session.exec(select(func.count()).select_from(KeywordRecord)).one())


def build_keyword_repository(
    engine: Engine | None = None, *, backend: str = "database"
) -> KeywordRepository:
    if engine is None:
        logger.info("listener.keyword_repository.initialized", extra={"backend": "memory"})
        return InMemoryKeywordRepository()
    logger.info("listener.keyword_repository.initialized", extra={"backend": backend})
    return SqlKeywordRepository(engine, backend=backend)
