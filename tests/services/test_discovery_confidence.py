from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone

import pytest

from app.models.listener import ConfidenceFactors, ExtractionMethod, KeywordCategory, SourceType
from app.services.listener.confidence import (
    calculate_confidence,
    confidence_level,
    context_relevance,
    domain_quality,
    keyword_score,
    recency_score,
    score_discovery,
    should_auto_promote,
    source_reliability,
)
from app.services.listener.domains import extract_domains_from_source
from app.services.listener.keyword_repository import InMemoryKeywordRepository
from app.services.listener.keywords import KeywordCatalog, best_match_context, match_keywords
from app.models.listener import KeywordDefinition
from tests.helpers.metrics_stub import StubMetrics

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


def _matches(*pairs: tuple[str, int]):
    keywords = [
        KeywordDefinition(keyword=word, category=KeywordCategory.PAIN_SIGNAL, weight=weight)
        for word, weight in pairs
    ]
    return match_keywords(" ".join(word for word, _ in pairs), keywords).matches


@pytest.mark.parametrize(
    "keyword, source, domain, recency, context",
    itertools.product([0, 17, 40], [0, 6, 20], [0, 10, 20], [0, 5, 10], [0, 5, 10]),
)
def test_confidence_always_within_bounds(keyword, source, domain, recency, context):
    factors = ConfidenceFactors(
        keyword_score=keyword,
        source_reliability=source,
        domain_quality=domain,
        recency=recency,
        context_relevance=context,
    )
    assert 0 <= calculate_confidence(factors) <= 100


def test_keyword_score_scales_and_caps():
    assert keyword_score([]) == 0
    assert keyword_score(_matches(("bot", 3))) == 8
    assert keyword_score(_matches(("bot", 5), ("scraper", 5), ("ddos", 5))) == 40
    assert keyword_score(_matches(("a1", 5), ("a2", 5), ("a3", 5), ("a4", 5))) == 40


def test_source_reliability_table():
    assert source_reliability(SourceType.STATUS_PAGE) == 20
    assert source_reliability(SourceType.NEWS_ARTICLE) == 18
    assert source_reliability("hn_post") == 15
    assert source_reliability(SourceType.HN_COMMENT) == 8
    assert source_reliability(SourceType.REDDIT_COMMENT) == 6
    assert source_reliability("carrier_pigeon") == 10


def test_domain_quality_prefers_known_companies():
    assert domain_quality(ExtractionMethod.URL) == 18
    assert domain_quality(ExtractionMethod.MENTION) == 12
    assert domain_quality(ExtractionMethod.EMAIL) == 10
    assert domain_quality(ExtractionMethod.EMAIL, is_known_company=True) == 20


@pytest.mark.parametrize(
    "age, expected",
    [
        (timedelta(hours=2), 10),
        (timedelta(days=2), 8),
        (timedelta(days=5), 6),
        (timedelta(days=20), 4),
        (timedelta(days=90), 2),
    ],
)
def test_recency_steps(age, expected):
    assert recency_score(NOW - age, now=NOW) == expected


def test_recency_unknown_and_naive_dates():
    assert recency_score(None, now=NOW) == 5
    assert recency_score(datetime(2025, 3, 10, 11, 0), now=NOW) == 10


def test_context_relevance_rewards_title_and_mentions():
    assert context_relevance("nothing here", "acme.io") == 5
    assert context_relevance("acme acme", "acme.io") == 6
    assert context_relevance("acme acme acme", "acme.io", "Acme launches") == 10
    assert context_relevance("x", "acme.io", "Why acme.io moved") == 8


def test_auto_promote_threshold_and_levels():
    assert should_auto_promote(80) is True
    assert should_auto_promote(79) is False
    assert should_auto_promote(70, threshold=70) is True
    assert [confidence_level(score) for score in (85, 65, 45, 10)] == [
        "very_high",
        "high",
        "medium",
        "low",
    ]


def test_scalper_news_article_scores_in_high_band():
    catalog = KeywordCatalog(InMemoryKeywordRepository(), metrics=StubMetrics())
    catalog.seed_defaults()
    title = "Ticketmaster faces new scalper bot lawsuit"
    body = "Fans say ticketmaster.com was flooded by bots during the presale."
    text = f"{title}\n\n{body}"

    match = catalog.match_text(text)
    domains = extract_domains_from_source("https://news.example.com/tm-lawsuit", title, body)

    assert {"bot", "scalper"} <= set(match.keywords)
    assert [item.domain for item in domains] == ["ticketmaster.com"]
    score, factors = score_discovery(
        matches=match.matches,
        source_type=SourceType.NEWS_ARTICLE,
        domain_method=domains[0].method,
        published_at=NOW - timedelta(hours=2),
        trigger_text=best_match_context(text, match.matches, 200),
        company_domain="ticketmaster.com",
        source_title=title,
        now=NOW,
    )

    assert score > 60
    assert factors.keyword_score == 40
    assert factors.source_reliability == 18
    assert factors.total == score
