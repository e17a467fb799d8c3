"""Weighted keyword matching and the repository-backed keyword catalog."""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Any
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError

from app.core.text import collapse_whitespace, strip_html
from app.models.listener import KeywordCategory, KeywordDefinition, KeywordMatch, MatchResult
from app.observability.metrics import MetricsReporter, metrics as default_metrics
from app.services.listener.errors import (
    KeywordConflictError,
    ListenerError,
    NotFoundError,
    ValidationError,
)
from app.services.listener.keyword_repository import KeywordRepository
from app.services.listener.keyword_seed import SEED_KEYWORDS

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 300.0
DEFAULT_CONTEXT_CHARS = 150

_BOUNDARY = r"""[\s.,;:!?'"()\[\]{}<>/\\-]"""


def compile_keyword_pattern(keyword: str) -> re.Pattern[str]:
    """Case-insensitive pattern matching ``keyword`` only between word boundaries.

    A boundary is whitespace, punctuation or either end of the text, so
    ``captcha`` matches ``"a CAPTCHA."`` but not ``"scaptcha"``.
    """
    return re.compile(
        rf"(?:\A|(?<={_BOUNDARY})){re.escape(keyword)}(?={_BOUNDARY}|\Z)",
        re.IGNORECASE,
    )


@dataclass(frozen=True)
class CompiledKeyword:
    definition: KeywordDefinition
    pattern: re.Pattern[str]

    @classmethod
    def from_definition(cls, definition: KeywordDefinition) -> "CompiledKeyword":
        return cls(definition=definition, pattern=compile_keyword_pattern(definition.keyword))


def _compile_all(keywords: Iterable[KeywordDefinition | CompiledKeyword]) -> list[CompiledKeyword]:
    return [
        entry if isinstance(entry, CompiledKeyword) else CompiledKeyword.from_definition(entry)
        for entry in keywords
    ]


def match_keywords(
    text: str | None, keywords: Iterable[KeywordDefinition | CompiledKeyword]
) -> MatchResult:
    """Match ``text`` against every keyword.

    Every occurrence is reported in ``matches``; ``total_score`` counts each
    keyword once at its highest weight.
    """
    if not text:
        return MatchResult()
    matches: list[KeywordMatch] = []
    best_weight: dict[str, int] = {}
    categories: list[KeywordCategory] = []
    product_tags: list[str] = []

    for compiled in _compile_all(keywords):
        definition = compiled.definition
        for found in compiled.pattern.finditer(text):
            matches.append(
                KeywordMatch(
                    keyword=definition.keyword,
                    category=definition.category,
                    weight=definition.weight,
                    product_tags=list(definition.product_tags),
                    matched_text=found.group(0),
                    position=found.start(),
                )
            )
            best_weight[definition.keyword] = max(
                best_weight.get(definition.keyword, 0), definition.weight
            )
            if definition.category not in categories:
                categories.append(definition.category)
            for tag in definition.product_tags:
                if tag not in product_tags:
                    product_tags.append(tag)

    return MatchResult(
        matches=matches,
        total_score=sum(best_weight.values()),
        categories=categories,
        product_tags=product_tags,
    )


def best_match_context(
    text: str | None, matches: Sequence[KeywordMatch], chars: int = DEFAULT_CONTEXT_CHARS
) -> str:
    """Text surrounding the highest-weight match, HTML stripped, with ``...`` on cut ends."""
    if not text or not matches:
        return ""
    best = sorted(matches, key=lambda match: match.weight, reverse=True)[0]
    start = max(0, best.position - chars)
    end = min(len(text), best.position + len(best.keyword) + chars)
    context = collapse_whitespace(strip_html(text[start:end]))
    if start > 0:
        context = f"...{context}"
    if end < len(text):
        context = f"{context}..."
    return context


def primary_category(matches: Sequence[KeywordMatch]) -> KeywordCategory | None:
    """Category with the highest summed weight; the first one seen wins ties."""
    totals: dict[KeywordCategory, int] = {}
    for match in matches:
        totals[match.category] = totals.get(match.category, 0) + match.weight
    best: KeywordCategory | None = None
    best_total = 0
    for category, total in totals.items():
        if total > best_total:
            best, best_total = category, total
    return best


class KeywordCatalog:
    """Keyword taxonomy with a short-lived cache of compiled active keywords.

    Every write invalidates the cache before returning, so the next match sees
    the edit immediately.
    """

    def __init__(
        self,
        repository: KeywordRepository,
        *,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        metrics: MetricsReporter | None = None,
    ) -> None:
        self._repository = repository
        self._ttl = ttl_seconds
        self._clock = clock
        self._metrics = metrics or default_metrics
        self._cache: list[CompiledKeyword] | None = None
        self._loaded_at = 0.0
        self._lock = Lock()

    @property
    def repository(self) -> KeywordRepository:
        return self._repository

    def active_keywords(self) -> list[CompiledKeyword]:
        with self._lock:
            now = self._clock()
            if self._cache is not None and now - self._loaded_at < self._ttl:
                return self._cache
            try:
                loaded = self._repository.list_keywords(active_only=True)
            except ListenerError:
                if self._cache is None:
                    raise
                logger.warning(
                    "listener.keywords.reload_failed",
                    extra={"cached_keywords": len(self._cache)},
                    exc_info=True,
                )
                self._metrics.increment("listener.keywords.reload_failed")
                return self._cache
            self._cache = _compile_all(loaded)
            self._loaded_at = now
            logger.debug("listener.keywords.loaded", extra={"keywords": len(self._cache)})
            return self._cache

    def invalidate_cache(self) -> None:
        with self._lock:
            self._cache = None
            self._loaded_at = 0.0

    def match_text(self, text: str | None) -> MatchResult:
        return match_keywords(text, self.active_keywords())

    def list_keywords(
        self, *, active_only: bool = False, category: KeywordCategory | None = None
    ) -> list[KeywordDefinition]:
        return self._repository.list_keywords(active_only=active_only, category=category)

    def get_keyword(self, keyword_id: UUID) -> KeywordDefinition:
        keyword = self._repository.get(keyword_id)
        if keyword is None:
            raise NotFoundError(f"Keyword {keyword_id} not found.")
        return keyword

    def add_keyword(
        self,
        keyword: str,
        category: KeywordCategory | str,
        weight: int = 1,
        product_tags: Iterable[str] | None = None,
        *,
        is_active: bool = True,
    ) -> KeywordDefinition:
        definition = self._build_definition(keyword, category, weight, product_tags, is_active)
        try:
            stored = self._repository.add(definition)
        finally:
            self.invalidate_cache()
        logger.info(
            "listener.keywords.added",
            extra={"keyword": stored.keyword, "category": stored.category.value},
        )
        return stored

    def update_keyword(self, keyword_id: UUID, **changes: Any) -> KeywordDefinition:
        current = self.get_keyword(keyword_id)
        allowed = {"keyword", "category", "weight", "is_active", "product_tags"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"Unknown keyword fields: {', '.join(sorted(unknown))}")
        payload = current.model_dump()
        payload.update({key: value for key, value in changes.items() if value is not None})
        payload["updated_at"] = datetime.now(timezone.utc)
        try:
            updated = KeywordDefinition.model_validate(payload)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid keyword update: {exc.errors()[0]['msg']}") from exc
        try:
            stored = self._repository.update(updated)
        finally:
            self.invalidate_cache()
        logger.info("listener.keywords.updated", extra={"keyword_id": str(keyword_id)})
        return stored

    def toggle_keyword(self, keyword_id: UUID, is_active: bool) -> KeywordDefinition:
        return self.update_keyword(keyword_id, is_active=is_active)

    def delete_keyword(self, keyword_id: UUID) -> bool:
        try:
            deleted = self._repository.delete(keyword_id)
        finally:
            self.invalidate_cache()
        if deleted:
            logger.info("listener.keywords.deleted", extra={"keyword_id": str(keyword_id)})
        return deleted

    def bulk_add(
        self,
        entries: Iterable[tuple[str, KeywordCategory | str, int, Iterable[str]]],
    ) -> tuple[int, int]:
        """Add many keywords; existing ones are skipped. Returns ``(added, skipped)``."""
        added = skipped = 0
        try:
            for keyword, category, weight, tags in entries:
                definition = self._build_definition(keyword, category, weight, tags, True)
                try:
                    self._repository.add(definition)
                except KeywordConflictError:
                    skipped += 1
                    continue
                added += 1
        finally:
            self.invalidate_cache()
        logger.info("listener.keywords.bulk_added", extra={"added": added, "skipped": skipped})
        return added, skipped

    def update_category_weight(self, category: KeywordCategory | str, weight: int) -> int:
        resolved = self._resolve_category(category)
        self._validate_weight(weight)
        updated = 0
        try:
            for keyword in self._repository.list_keywords(category=resolved):
                self._repository.update(
                    keyword.model_copy(
                        update={"weight": weight, "updated_at": datetime.now(timezone.utc)}
                    )
                )
                updated += 1
        finally:
            self.invalidate_cache()
        logger.info(
            "listener.keywords.category_reweighted",
            extra={"category": resolved.value, "weight": weight, "updated": updated},
        )
        return updated

    def seed_defaults(self) -> tuple[int, int]:
        return self.bulk_add(SEED_KEYWORDS)

    def ensure_seeded(self) -> int:
        """Load the default taxonomy when no keywords exist; returns how many were added."""
        if self._repository.count() > 0:
            return 0
        added, _ = self.seed_defaults()
        return added

    def keyword_stats(self) -> dict[str, Any]:
        keywords = self._repository.list_keywords()
        by_category: dict[str, dict[str, int]] = {}
        for keyword in keywords:
            bucket = by_category.setdefault(keyword.category.value, {"total": 0, "active": 0})
            bucket["total"] += 1
            if keyword.is_active:
                bucket["active"] += 1
        average = sum(keyword.weight for keyword in keywords) / len(keywords) if keywords else 0.0
        return {
            "total": len(keywords),
            "active": sum(1 for keyword in keywords if keyword.is_active),
            "by_category": by_category,
            "avg_weight": round(average, 1),
        }

    def _build_definition(
        self,
        keyword: str,
        category: KeywordCategory | str,
        weight: int,
        product_tags: Iterable[str] | None,
        is_active: bool,
    ) -> KeywordDefinition:
        resolved = self._resolve_category(category)
        self._validate_weight(weight)
        if not keyword or not keyword.strip():
            raise ValidationError("Keyword must not be blank.")
        return KeywordDefinition(
            keyword=keyword,
            category=resolved,
            weight=weight,
            is_active=is_active,
            product_tags=list(product_tags or []),
        )

    @staticmethod
    def _resolve_category(category: KeywordCategory | str) -> KeywordCategory:
        try:
            return KeywordCategory(category)
        except ValueError as exc:
            raise ValidationError(f"Unknown keyword category: {category}") from exc

    @staticmethod
    def _validate_weight(weight: int) -> None:
        if isinstance(weight, bool) or not isinstance(weight, int) or not 1 <= weight <= 5:
            raise ValidationError("Keyword weight must be an integer between 1 and 5.")
