from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from app.config import settings
from app.core.database import check_database_health
from app.services.listener.errors import ListenerError
from app.services.listener.services import ListenerServices, get_listener_services

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("")
async def health_check():
    """Liveness probe."""
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
    }


@router.get("/ready")
def readiness_check(services: ListenerServices = Depends(get_listener_services)):
    """Readiness: storage answers and the keyword taxonomy can be loaded."""
    if not check_database_health(services.engine):
        raise HTTPException(status_code=503, detail="Database is not available")
    try:
        active_keywords = len(services.keywords.active_keywords())
    except ListenerError as exc:
        logger.warning("listener.health.keywords_unavailable", extra={"code": exc.code})
        raise HTTPException(status_code=503, detail="Keyword taxonomy is not available") from exc

    return {
        "status": "ready",
        "version": settings.app_version,
        "database": "connected" if services.engine is not None else "in-memory",
        "active_keywords": active_keywords,
        "running_scans": services.orchestrator.guard.active_sources(),
    }
