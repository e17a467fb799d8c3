"""Scan run bookkeeping: start, progress, errors and exactly-once completion."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from app.models.listener import RunCounts, RunErrorDetail, RunStatus, RunType, ScanRun
from app.observability.metrics import MetricsReporter, metrics as default_metrics
from app.services.listener.errors import NotFoundError, RunFinalizedError, ValidationError
from app.services.listener.run_repository import RunRepository

logger = logging.getLogger(__name__)

MAX_ERROR_DETAILS = 50
# Recent runs considered by ``run_stats``.
STATS_WINDOW = 500


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunService:
    def __init__(
        self,
        repository: RunRepository,
        *,
        metrics: MetricsReporter | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._metrics = metrics or default_metrics
        self._clock = clock

    def start_run(
        self,
        source_type: str,
        run_type: RunType = RunType.SCHEDULED,
        cursor: dict[str, Any] | None = None,
    ) -> ScanRun:
        run = ScanRun(
            source_type=source_type,
            run_type=run_type,
            started_at=self._clock(),
            cursor_data=dict(cursor or {}),
        )
        stored = self._repository.insert(run)
        self._metrics.increment("listener.run.started", tags={"source_type": source_type})
        logger.info(
            "listener.run.started",
            extra={"run_id": str(stored.id), "source_type": source_type, "run_type": run_type.value},
        )
        return stored

    def update_progress(
        self,
        run_id: UUID,
        counts: RunCounts | None = None,
        cursor: dict[str, Any] | None = None,
    ) -> ScanRun:
        run = self._running(run_id)
        update: dict[str, Any] = counts.model_dump() if counts is not None else {}
        if cursor is not None:
            update["cursor_data"] = dict(cursor)
        return self._repository.save(run.model_copy(update=update))

    def add_run_error(self, run_id: UUID, message: str) -> ScanRun:
        run = self._running(run_id)
        details = [*run.error_details, RunErrorDetail(message=message, timestamp=self._clock())]
        updated = run.model_copy(
            update={
                "error_details": details[-MAX_ERROR_DETAILS:],
                "errors_count": run.errors_count + 1,
            }
        )
        logger.warning("listener.run.error", extra={"run_id": str(run_id), "error": message})
        return self._repository.save(updated)

    def complete_run(
        self,
        run_id: UUID,
        status: RunStatus,
        counts: RunCounts,
        *,
        error_details: list[RunErrorDetail] | None = None,
        cursor: dict[str, Any] | None = None,
    ) -> ScanRun:
        """Finalize the run once; a second completion raises ``RunFinalizedError``."""
        if status is RunStatus.RUNNING:
            raise ValidationError("A run cannot be completed with status 'running'.")
        run = self.get_run(run_id)
        if run.is_finalized:
            raise RunFinalizedError(str(run_id), run.status.value)
        details = [*run.error_details, *(error_details or [])][-MAX_ERROR_DETAILS:]
        finished = run.model_copy(
            update={
                **counts.model_dump(),
                "errors_count": max(counts.errors_count, run.errors_count),
                "status": status,
                "completed_at": self._clock(),
                "error_details": details,
                "cursor_data": dict(cursor) if cursor is not None else run.cursor_data,
            }
        )
        if not self._repository.finalize(finished):
            current = self.get_run(run_id)
            raise RunFinalizedError(str(run_id), current.status.value)
        duration_ms = (finished.completed_at - run.started_at).total_seconds() * 1000
        tags = {"source_type": run.source_type, "status": status.value}
        self._metrics.increment("listener.run.completed", tags=tags)
        self._metrics.timing("listener.run.duration_ms", duration_ms, tags=tags)
        logger.info(
            "listener.run.completed",
            extra={"run_id": str(run_id), **tags, **counts.model_dump()},
        )
        return finished

    def get_run(self, run_id: UUID) -> ScanRun:
        run = self._repository.get(run_id)
        if run is None:
            raise NotFoundError(f"Run {run_id} not found.")
        return run

    def list_runs(
        self,
        *,
        source_type: str | None = None,
        status: RunStatus | None = None,
        limit: int = 20,
    ) -> list[ScanRun]:
        return self._repository.list_runs(source_type=source_type, status=status, limit=limit)

    def last_successful_run(self, source_type: str) -> ScanRun | None:
        runs = self._repository.list_runs(
            source_type=source_type, status=RunStatus.COMPLETED, limit=1
        )
        return runs[0] if runs else None

    def last_cursor(self, source_type: str) -> dict[str, Any] | None:
        run = self.last_successful_run(source_type)
        return run.cursor_data if run else None

    def run_stats(self) -> dict[str, Any]:
        runs = self._repository.list_runs(limit=STATS_WINDOW)
        day_ago = self._clock() - timedelta(days=1)
        by_source: dict[str, dict[str, int]] = {}
        for run in runs:
            bucket = by_source.setdefault(run.source_type, {"runs": 0, "discoveries": 0})
            bucket["runs"] += 1
            bucket["discoveries"] += run.discoveries_created
        return {
            "total_runs": len(runs),
            "successful_runs": sum(1 for run in runs if run.status is RunStatus.COMPLETED),
            "failed_runs": sum(1 for run in runs if run.status is RunStatus.FAILED),
            "total_items_scanned": sum(run.items_scanned for run in runs),
            "total_discoveries_created": sum(run.discoveries_created for run in runs),
            "last_24h_runs": sum(1 for run in runs if run.started_at >= day_ago),
            "by_source": by_source,
        }

    def _running(self, run_id: UUID) -> ScanRun:
        run = self.get_run(run_id)
        if run.is_finalized:
            raise RunFinalizedError(str(run_id), run.status.value)
        return run
