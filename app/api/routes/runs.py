"""Scan run history, on-demand scans and aggregate listener stats."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from pydantic import BaseModel

from app.api.errors import http_error
from app.clients.fetch import FetchError
from app.config import settings
from app.models.listener import RunStatus, RunType, ScanRun
from app.models.scan import HNFeed, ScanMode, ScanOptions
from app.services.listener.errors import ListenerError
from app.services.listener.orchestrator import ScanOrchestrator
from app.services.listener.services import ListenerServices, get_listener_services

router = APIRouter()
logger = logging.getLogger(__name__)


class ScanRequest(BaseModel):
    """Optional overrides; omitted fields keep the mode's defaults."""

    team_id: str | None = None
    min_keyword_score: int | None = None
    auto_promote_threshold: int | None = None
    feed: HNFeed | None = None
    max_items: int | None = None
    include_comments: bool | None = None
    max_stories_per_scan: int | None = None
    max_users_per_story: int | None = None
    min_karma: int | None = None
    enrich_with_github: bool | None = None
    feed_urls: list[str] | None = None
    max_articles: int | None = None
    max_age_hours: float | None = None


@router.get("/runs", response_model=list[ScanRun])
def list_runs(
    source_type: str | None = Query(None),
    status_filter: RunStatus | None = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=200),
    services: ListenerServices = Depends(get_listener_services),
) -> list[ScanRun]:
    try:
        return services.runs.list_runs(source_type=source_type, status=status_filter, limit=limit)
    except ListenerError as exc:
        raise http_error(exc) from exc


@router.post("/scans/{mode}", status_code=status.HTTP_202_ACCEPTED)
def trigger_scan(
    mode: ScanMode,
    background_tasks: BackgroundTasks,
    payload: ScanRequest | None = None,
    services: ListenerServices = Depends(get_listener_services),
) -> dict[str, Any]:
    payload = payload or ScanRequest()
    overrides = payload.model_dump(exclude={"team_id"}, exclude_none=True)
    options = ScanOptions.for_mode(
        mode,
        payload.team_id or settings.listener_team_id,
        run_type=RunType.MANUAL,
        **overrides,
    )
    if services.orchestrator.guard.is_running(options.source_key):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"A scan for source '{options.source_key}' is already running.",
        )
    background_tasks.add_task(_run_scan, services.orchestrator, options)
    logger.info(
        "listener.api.scan_accepted",
        extra={"mode": mode.value, "source": options.source_key, "team_id": options.team_id},
    )
    return {"status": "accepted", "mode": mode.value, "source": options.source_key}


@router.get("/stats")
def listener_stats(services: ListenerServices = Depends(get_listener_services)) -> dict[str, Any]:
    try:
        return {
            "discoveries": services.discoveries.discovery_stats(),
            "runs": services.runs.run_stats(),
            "keywords": services.keywords.keyword_stats(),
            "authors": services.authors.author_stats(),
        }
    except ListenerError as exc:
        raise http_error(exc) from exc


def _run_scan(orchestrator: ScanOrchestrator, options: ScanOptions) -> None:
    try:
        result = orchestrator.run(options)
    except (ListenerError, FetchError) as exc:
        # The run record already carries the failure.
        logger.error(
            "listener.api.scan_failed",
            extra={"source": options.source_key, "code": exc.code, "error": str(exc)},
        )
        return
    logger.info(
        "listener.api.scan_finished",
        extra={"run_id": str(result.run_id), "status": result.status.value},
    )
