"""Review endpoints for discoveries."""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from app.api.errors import http_error
from app.models.listener import Discovery, DiscoveryStatus, SourceType
from app.services.listener.errors import ListenerError
from app.services.listener.services import ListenerServices, get_listener_services

router = APIRouter()
logger = logging.getLogger(__name__)


class DiscoveryUpdateRequest(BaseModel):
    status: DiscoveryStatus
    reviewer: str | None = None
    notes: str | None = None


class PromoteRequest(BaseModel):
    team_id: str | None = Field(default=None, description="Defaults to the team that owns the discovery.")
    reviewer: str | None = None


class DismissRequest(BaseModel):
    reviewer: str | None = None
    notes: str | None = None


@router.get("/discoveries")
def list_discoveries(
    status: DiscoveryStatus | None = Query(None),
    source_type: SourceType | None = Query(None),
    min_confidence: int | None = Query(None, ge=0, le=100),
    team_id: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    order_by: str = Query("discovered_at"),
    descending: bool = Query(True),
    include_stats: bool = Query(False),
    services: ListenerServices = Depends(get_listener_services),
) -> dict[str, Any]:
    try:
        discoveries, total = services.discoveries.list_discoveries(
            status=status,
            source_type=source_type,
            min_confidence=min_confidence,
            team_id=team_id,
            limit=limit,
            offset=offset,
            order_by=order_by,
            descending=descending,
        )
        payload: dict[str, Any] = {
            "discoveries": discoveries,
            "total": total,
            "limit": limit,
            "offset": offset,
        }
        if include_stats:
            payload["stats"] = services.discoveries.discovery_stats()
        return payload
    except ListenerError as exc:
        raise http_error(exc) from exc


@router.get("/discoveries/{discovery_id}", response_model=Discovery)
def get_discovery(
    discovery_id: UUID, services: ListenerServices = Depends(get_listener_services)
) -> Discovery:
    try:
        return services.discoveries.get_discovery(discovery_id)
    except ListenerError as exc:
        raise http_error(exc) from exc


@router.patch("/discoveries/{discovery_id}", response_model=Discovery)
def update_discovery(
    discovery_id: UUID,
    payload: DiscoveryUpdateRequest,
    services: ListenerServices = Depends(get_listener_services),
) -> Discovery:
    try:
        if payload.status is DiscoveryStatus.PROMOTED:
            services.discoveries.promote_discovery(discovery_id, reviewer=payload.reviewer)
            return services.discoveries.get_discovery(discovery_id)
        return services.discoveries.update_status(
            discovery_id, payload.status, payload.reviewer, payload.notes
        )
    except ListenerError as exc:
        logger.warning(
            "listener.api.discovery_update_failed",
            extra={"discovery_id": str(discovery_id), "code": exc.code},
        )
        raise http_error(exc) from exc


@router.post("/discoveries/{discovery_id}/promote")
def promote_discovery(
    discovery_id: UUID,
    payload: PromoteRequest | None = None,
    services: ListenerServices = Depends(get_listener_services),
) -> dict[str, Any]:
    payload = payload or PromoteRequest()
    try:
        prospect_id = services.discoveries.promote_discovery(
            discovery_id, payload.team_id, payload.reviewer
        )
        discovery = services.discoveries.get_discovery(discovery_id)
    except ListenerError as exc:
        logger.warning(
            "listener.api.promote_failed",
            extra={"discovery_id": str(discovery_id), "code": exc.code},
        )
        raise http_error(exc) from exc
    return {"discovery_id": discovery_id, "prospect_id": prospect_id, "status": discovery.status}


@router.post("/discoveries/{discovery_id}/dismiss", response_model=Discovery)
def dismiss_discovery(
    discovery_id: UUID,
    payload: DismissRequest | None = None,
    services: ListenerServices = Depends(get_listener_services),
) -> Discovery:
    payload = payload or DismissRequest()
    try:
        return services.discoveries.dismiss_discovery(
            discovery_id, payload.reviewer, payload.notes
        )
    except ListenerError as exc:
        raise http_error(exc) from exc
