"""Translate listener error codes into HTTP responses."""

from __future__ import annotations

from fastapi import HTTPException, status

from app.services.listener.errors import ListenerError


def _map_error_code(code: str) -> int:
    if code.startswith("404"):
        return status.HTTP_404_NOT_FOUND
    if code.startswith("409"):
        return status.HTTP_409_CONFLICT
    if code.startswith("422"):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def http_error(exc: ListenerError) -> HTTPException:
    return HTTPException(status_code=_map_error_code(exc.code), detail=str(exc))
