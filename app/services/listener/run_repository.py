"""Persistence backends for scan run bookkeeping."""

from __future__ import annotations

import logging
from threading import Lock
from typing import Protocol
from uuid import UUID

from sqlalchemy.engine import Engine
from sqlmodel import select

from app.models.listener import RunStatus, ScanRun
from app.models.records import RunRecord
from app.observability.metrics import metrics
from app.services.listener.errors import NotFoundError
from app.services.listener.storage import SqlRepository

logger = logging.getLogger(__name__)


class RunRepository(Protocol):
    def insert(self, run: ScanRun) -> ScanRun:
        ...

    def get(self, run_id: UUID) -> ScanRun | None:
        ...

    def save(self, run: ScanRun) -> ScanRun:
        ...

    def finalize(self, run: ScanRun) -> bool:
        """Persist ``run`` only if the stored row is still running; False otherwise."""
        ...

    def list_runs(
        self,
        *,
        source_type: str | None = None,
        status: RunStatus | None = None,
        limit: int = 20,
    ) -> list[ScanRun]:
        ...


class InMemoryRunRepository(RunRepository):
    def __init__(self) -> None:
        self._runs: dict[UUID, ScanRun] = {}
        self._lock = Lock()

    def insert(self, run: ScanRun) -> ScanRun:
        with self._lock:
            self._runs[run.id] = run.model_copy(deep=True)
        metrics.increment("listener.run.persisted", tags={"repository": "memory"})
        return run

    def get(self, run_id: UUID) -> ScanRun | None:
        with self._lock:
            run = self._runs.get(run_id)
        return run.model_copy(deep=True) if run else None

    def save(self, run: ScanRun) -> ScanRun:
        with self._lock:
            if run.id not in self._runs:
                raise NotFoundError(f"Run {run.id} not found.")
            self._runs[run.id] = run.model_copy(deep=True)
        return run

    def finalize(self, run: ScanRun) -> bool:
        with self._lock:
            stored = self._runs.get(run.id)
            if stored is None:
                raise NotFoundError(f"Run {run.id} not found.")
            if stored.status is not RunStatus.RUNNING:
                return False
            self._runs[run.id] = run.model_copy(deep=True)
            return True

    def list_runs(
        self,
        *,
        source_type: str | None = None,
        status: RunStatus | None = None,
        limit: int = 20,
    ) -> list[ScanRun]:
        with self._lock:
            runs = [run.model_copy(deep=True) for run in self._runs.values()]
        selected = [
            run
            for run in runs
            if (source_type is None or run.source_type == source_type)
            and (status is None or run.status == status)
        ]
        selected.sort(key=lambda run: run.started_at, reverse=True)
        return selected[: max(0, limit)]


class SqlRunRepository(SqlRepository, RunRepository):
    event_prefix = "listener.run"

    def insert(self, run: ScanRun) -> ScanRun:
        record = RunRecord.from_run(run)
        with self._session("persist run", source_type=run.source_type) as session:
            session.add(record)
            session.commit()
            session.refresh(record)
            metrics.increment("listener.run.persisted", tags=self._metrics_tags)
            return record.to_run()

    def get(self, run_id: UUID) -> ScanRun | None:
        with self._session("load run", run_id=str(run_id)) as session:
            record = session.get(RunRecord, run_id)
            return record.to_run() if record else None

    def save(self, run: ScanRun) -> ScanRun:
        with self._session("update run", run_id=str(run.id)) as session:
            record = session.get(RunRecord, run.id)
            if record is None:
                raise NotFoundError(f"Run {run.id} not found.")
            self._apply(record, run)
            session.add(record)
            session.commit()
            session.refresh(record)
            return record.to_run()

    def finalize(self, run: ScanRun) -> bool:
        with self._session("finalize run", run_id=str(run.id)) as session:
            record = session.exec(
                select(RunRecord).where(RunRecord.id == run.id).with_for_update()
            ).first()
            if record is None:
                raise NotFoundError(f"Run {run.id} not found.")
            if record.status != RunStatus.RUNNING.value:
                return False
            self._apply(record, run)
            session.add(record)
            session.commit()
            return True

    def list_runs(
        self,
        *,
        source_type: str | None = None,
        status: RunStatus | None = None,
        limit: int = 20,
    ) -> list[ScanRun]:
        statement = select(RunRecord)
        if source_type is not None:
            statement = statement.where(RunRecord.source_type == source_type)
        if status is not None:
            statement = statement.where(RunRecord.status == status.value)
        statement = statement.order_by(RunRecord.started_at.desc()).limit(max(0, limit))
        with self._session("list runs") as session:
            return [record.to_run() for record in session.exec(statement).all()]

    @staticmethod
    def _apply(record: RunRecord, run: ScanRun) -> None:
        updated = RunRecord.from_run(run)
        for name in RunRecord.model_fields:
            if name != "id":
                setattr(record, name, getattr(updated, name))


def build_run_repository(
    engine: Engine | None = None, *, backend: str = "database"
) -> RunRepository:
    if engine is None:
        logger.info("listener.run_repository.initialized", extra={"backend": "memory"})
        return InMemoryRunRepository()
    logger.info("listener.run_repository.initialized", extra={"backend": backend})
    return SqlRunRepository(engine, backend=backend)
