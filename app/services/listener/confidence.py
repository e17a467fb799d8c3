"""Multi-factor 0-100 confidence scoring for discovery candidates."""

from __future__ import annotations

import re
from collections.abc import Sequence
from datetime import datetime, timezone

from app.models.listener import ConfidenceFactors, ExtractionMethod, KeywordMatch, SourceType

SOURCE_RELIABILITY: dict[SourceType, int] = {
    SourceType.STATUS_PAGE: 20,
    SourceType.NEWS_ARTICLE: 18,
    SourceType.HN_POST: 15,
    SourceType.GITHUB_ISSUE: 15,
    SourceType.HN_PROFILE: 12,
    SourceType.REDDIT_POST: 12,
    SourceType.LIST_ANALYSIS: 12,
    SourceType.MANUAL: 10,
    SourceType.TWITTER: 10,
    SourceType.HN_COMMENT: 8,
    SourceType.REDDIT_COMMENT: 6,
}
DEFAULT_SOURCE_RELIABILITY = 10

DOMAIN_QUALITY: dict[ExtractionMethod, int] = {
    ExtractionMethod.URL: 18,
    ExtractionMethod.MENTION: 12,
    ExtractionMethod.EMAIL: 10,
}
KNOWN_COMPANY_QUALITY = 20

# Upper bounds in hours paired with the recency score they earn.
RECENCY_STEPS: tuple[tuple[float, int], ...] = ((24, 10), (72, 8), (168, 6), (720, 4))
STALE_RECENCY = 2
UNKNOWN_RECENCY = 5

AUTO_PROMOTE_THRESHOLD = 80
# Sum of keyword weights that earns the full keyword score.
FULL_KEYWORD_WEIGHT = 15


def keyword_score(matches: Sequence[KeywordMatch]) -> int:
    best: dict[str, int] = {}
    for match in matches:
        best[match.keyword] = max(best.get(match.keyword, 0), match.weight)
    total = sum(best.values())
    return min(40, round(total / FULL_KEYWORD_WEIGHT * 40))


def source_reliability(source_type: SourceType | str) -> int:
    try:
        return SOURCE_RELIABILITY.get(SourceType(source_type), DEFAULT_SOURCE_RELIABILITY)
    except ValueError:
        return DEFAULT_SOURCE_RELIABILITY


def domain_quality(method: ExtractionMethod, is_known_company: bool = False) -> int:
    if is_known_company:
        return KNOWN_COMPANY_QUALITY
    return DOMAIN_QUALITY.get(method, 10)


def recency_score(published_at: datetime | None, *, now: datetime | None = None) -> int:
    if published_at is None:
        return UNKNOWN_RECENCY
    current = now or datetime.now(timezone.utc)
    if published_at.tzinfo is None:
        published_at = published_at.replace(tzinfo=timezone.utc)
    age_hours = (current - published_at).total_seconds() / 3600
    for limit, score in RECENCY_STEPS:
        if age_hours < limit:
            return score
    return STALE_RECENCY


def context_relevance(trigger_text: str, company_domain: str, source_title: str | None = None) -> int:
    """Base 5, +3 when the company is in the title, +2/+1 for 3+/2+ mentions in the trigger."""
    company = company_domain.split(".")[0].lower()
    title = (source_title or "").lower()
    score = 5
    if company and (company in title or company_domain.lower() in title):
        score += 3
    mentions = len(re.findall(re.escape(company), trigger_text.lower())) if company else 0
    if mentions >= 3:
        score += 2
    elif mentions >= 2:
        score += 1
    return min(10, score)


def calculate_confidence(factors: ConfidenceFactors) -> int:
    return factors.total


def score_discovery(
    *,
    matches: Sequence[KeywordMatch],
    source_type: SourceType | str,
    domain_method: ExtractionMethod,
    published_at: datetime | None,
    trigger_text: str,
    company_domain: str,
    source_title: str | None = None,
    is_known_company: bool = False,
    now: datetime | None = None,
) -> tuple[int, ConfidenceFactors]:
    factors = ConfidenceFactors(
        keyword_score=keyword_score(matches),
        source_reliability=source_reliability(source_type),
        domain_quality=domain_quality(domain_method, is_known_company),
        recency=recency_score(published_at, now=now),
        context_relevance=context_relevance(trigger_text, company_domain, source_title),
    )
    return calculate_confidence(factors), factors


def should_auto_promote(score: int, threshold: int = AUTO_PROMOTE_THRESHOLD) -> bool:
    return score >= threshold


def confidence_level(score: int) -> str:
    if score >= 80:
        return "very_high"
    if score >= 60:
        return "high"
    if score >= 40:
        return "medium"
    return "low"
