"""Keyword taxonomy management endpoints."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from app.api.errors import http_error
from app.models.listener import KeywordCategory, KeywordDefinition
from app.services.listener.errors import ListenerError
from app.services.listener.services import ListenerServices, get_listener_services

router = APIRouter()


class KeywordCreateRequest(BaseModel):
    keyword: str = Field(min_length=1)
    category: KeywordCategory
    weight: int = Field(default=1, ge=1, le=5)
    product_tags: list[str] = Field(default_factory=list)
    is_active: bool = True


class KeywordUpdateRequest(BaseModel):
    keyword: str | None = None
    category: KeywordCategory | None = None
    weight: int | None = Field(default=None, ge=1, le=5)
    product_tags: list[str] | None = None
    is_active: bool | None = None


@router.get("/keywords", response_model=list[KeywordDefinition])
def list_keywords(
    active_only: bool = Query(False),
    category: KeywordCategory | None = Query(None),
    services: ListenerServices = Depends(get_listener_services),
) -> list[KeywordDefinition]:
    try:
        return services.keywords.list_keywords(active_only=active_only, category=category)
    except ListenerError as exc:
        raise http_error(exc) from exc


@router.post(
    "/keywords", response_model=KeywordDefinition, status_code=status.HTTP_201_CREATED
)
def create_keyword(
    payload: KeywordCreateRequest, services: ListenerServices = Depends(get_listener_services)
) -> KeywordDefinition:
    try:
        return services.keywords.add_keyword(
            payload.keyword,
            payload.category,
            payload.weight,
            payload.product_tags,
            is_active=payload.is_active,
        )
    except ListenerError as exc:
        raise http_error(exc) from exc


@router.patch("/keywords/{keyword_id}", response_model=KeywordDefinition)
def update_keyword(
    keyword_id: UUID,
    payload: KeywordUpdateRequest,
    services: ListenerServices = Depends(get_listener_services),
) -> KeywordDefinition:
    try:
        return services.keywords.update_keyword(keyword_id, **payload.model_dump(exclude_none=True))
    except ListenerError as exc:
        raise http_error(exc) from exc


@router.delete("/keywords/{keyword_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_keyword(
    keyword_id: UUID, services: ListenerServices = Depends(get_listener_services)
) -> None:
    try:
        deleted = services.keywords.delete_keyword(keyword_id)
    except ListenerError as exc:
        raise http_error(exc) from exc
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Keyword {keyword_id} not found.")


@router.post("/keywords/seed")
def seed_keywords(services: ListenerServices = Depends(get_listener_services)) -> dict[str, Any]:
    try:
        added, skipped = services.keywords.seed_defaults()
    except ListenerError as exc:
        raise http_error(exc) from exc
    return {"added": added, "skipped": skipped}
