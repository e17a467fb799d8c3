from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from uuid import uuid4

import pytest

from app.core.database import build_engine
from app.models.listener import (
    DiscoveryCandidate,
    DiscoveryOutcome,
    DiscoveryStatus,
    KeywordCategory,
    SourceType,
)
from app.services.listener.discoveries import DiscoveryService
from app.services.listener.discovery_repository import (
    InMemoryProspectRepository,
    build_discovery_repositories,
)
from app.services.listener.errors import (
    InvalidTransitionError,
    ListenerPersistenceError,
    NotFoundError,
    ValidationError,
)
from tests.helpers.metrics_stub import StubMetrics

TEAM = "team-1"


@pytest.fixture(params=["memory", "sqlite"])
def service(request):
    engine = None
    if request.param == "sqlite":
        engine = build_engine("sqlite://", auto_create_schema=True)
    discoveries, prospects = build_discovery_repositories(engine, backend=request.param)
    yield DiscoveryService(discoveries, prospects, metrics=StubMetrics())
    if engine is not None:
        engine.dispose()


def _candidate(
    domain: str = "acme.io",
    url: str = "https://news.ycombinator.com/item?id=1",
    score: int = 55,
    **overrides,
) -> DiscoveryCandidate:
    fields = {
        "company_domain": domain,
        "company_name": "Acme",
        "source_type": SourceType.HN_POST,
        "source_url": url,
        "source_title": "Acme is drowning in bots",
        "trigger_text": "bots everywhere",
        "keywords_matched": ["bots"],
        "keyword_category": KeywordCategory.PAIN_SIGNAL,
        "confidence_score": score,
        "product_tags": ["bot_protection"],
        "source_published_at": datetime(2025, 3, 10, tzinfo=timezone.utc),
    }
    fields.update(overrides)
    return DiscoveryCandidate(**fields)


def test_create_is_idempotent_per_domain_and_url(service):
    first = service.create_discovery(_candidate(), TEAM)
    second = service.create_discovery(_candidate(), TEAM)

    assert first.status is DiscoveryOutcome.CREATED
    assert second.status is DiscoveryOutcome.DUPLICATE
    assert second.discovery_id == first.discovery_id
    rows, total = service.list_discoveries()
    assert total == 1
    assert rows[0].status is DiscoveryStatus.NEW


def test_same_domain_other_url_is_a_new_discovery(service):
    service.create_discovery(_candidate(), TEAM)
    other = service.create_discovery(
        _candidate(url="https://news.ycombinator.com/item?id=2"), TEAM
    )

    assert other.status is DiscoveryOutcome.CREATED
    assert service.list_discoveries()[1] == 2


def test_duplicate_raises_score_but_never_lowers_it(service):
    created = service.create_discovery(_candidate(score=50), TEAM)
    service.create_discovery(_candidate(score=70, keywords_matched=["bots", "captcha"]), TEAM)
    raised = service.get_discovery(created.discovery_id)
    service.create_discovery(_candidate(score=40), TEAM)
    kept = service.get_discovery(created.discovery_id)

    assert raised.confidence_score == 70
    assert raised.keywords_matched == ["bots", "captcha"]
    assert kept.confidence_score == 70


def test_high_score_auto_promotes(service):
    result = service.create_discovery(_candidate(score=85), TEAM, auto_promote_threshold=80)

    assert result.status is DiscoveryOutcome.AUTO_PROMOTED
    assert result.prospect_id is not None
    stored = service.get_discovery(result.discovery_id)
    assert stored.status is DiscoveryStatus.PROMOTED
    assert stored.promoted_prospect_id == result.prospect_id


def test_score_below_threshold_stays_new(service):
    result = service.create_discovery(_candidate(score=79), TEAM, auto_promote_threshold=80)

    assert result.status is DiscoveryOutcome.CREATED
    assert service.get_discovery(result.discovery_id).status is DiscoveryStatus.NEW


def test_promoting_second_sighting_links_existing_prospect(service):
    first = service.create_discovery(_candidate(), TEAM)
    second = service.create_discovery(
        _candidate(url="https://news.ycombinator.com/item?id=2"), TEAM
    )
    prospect_id = service.promote_discovery(first.discovery_id, TEAM, "sam")
    again = service.promote_discovery(second.discovery_id, TEAM)

    assert again == prospect_id
    assert service.get_discovery(first.discovery_id).status is DiscoveryStatus.PROMOTED
    duplicate = service.get_discovery(second.discovery_id)
    assert duplicate.status is DiscoveryStatus.DUPLICATE
    assert duplicate.promoted_prospect_id == prospect_id
    assert service.promote_discovery(first.discovery_id, TEAM) == prospect_id


def test_review_state_machine(service):
    created = service.create_discovery(_candidate(), TEAM)
    discovery_id = created.discovery_id

    reviewing = service.update_status(discovery_id, DiscoveryStatus.REVIEWING, "sam", "looking")
    dismissed = service.dismiss_discovery(discovery_id, notes="consumer brand")

    assert reviewing.reviewed_by == "sam"
    assert reviewing.reviewed_at is not None
    assert dismissed.status is DiscoveryStatus.DISMISSED
    assert dismissed.review_notes == "consumer brand"
    assert dismissed.reviewed_by == "sam"
    with pytest.raises(InvalidTransitionError) as excinfo:
        service.update_status(discovery_id, DiscoveryStatus.REVIEWING)
    assert excinfo.value.code == "409_INVALID_TRANSITION"
    with pytest.raises(InvalidTransitionError):
        service.promote_discovery(discovery_id, TEAM)


def test_same_status_update_is_a_noop(service):
    created = service.create_discovery(_candidate(), TEAM)

    unchanged = service.update_status(created.discovery_id, DiscoveryStatus.NEW)

    assert unchanged.reviewed_at is None


def test_missing_discovery_raises_not_found(service):
    with pytest.raises(NotFoundError):
        service.get_discovery(uuid4())
    with pytest.raises(NotFoundError):
        service.dismiss_discovery(uuid4())


def test_list_filters_and_orders(service):
    service.create_discovery(_candidate(domain="low.io", score=30), TEAM)
    service.create_discovery(
        _candidate(domain="high.io", score=70, source_type=SourceType.NEWS_ARTICLE), TEAM
    )
    service.create_discovery(_candidate(domain="mid.io", score=50), "team-2")

    by_score, total = service.list_discoveries(order_by="confidence_score")
    news, news_total = service.list_discoveries(source_type=SourceType.NEWS_ARTICLE)
    confident, _ = service.list_discoveries(
        min_confidence=50, order_by="confidence_score", descending=False
    )
    team, team_total = service.list_discoveries(team_id="team-2")
    page, _ = service.list_discoveries(order_by="confidence_score", limit=1, offset=1)

    assert total == 3
    assert [entry.company_domain for entry in by_score] == ["high.io", "mid.io", "low.io"]
    assert news_total == 1 and news[0].company_domain == "high.io"
    assert [entry.company_domain for entry in confident] == ["mid.io", "high.io"]
    assert team_total == 1 and team[0].team_id == "team-2"
    assert [entry.company_domain for entry in page] == ["mid.io"]
    with pytest.raises(ValidationError):
        service.list_discoveries(order_by="trigger_text")


def test_should_create_discovery_pre_check(service):
    assert service.should_create_discovery("acme.io", TEAM).create is True

    created = service.create_discovery(_candidate(), TEAM)
    recent = service.should_create_discovery("acme.io", TEAM)
    assert recent.create is False
    assert recent.reason == "recent_discovery"
    assert recent.discovery_id == created.discovery_id
    assert service.should_create_discovery("acme.io", "team-2").create is True

    prospect_id = service.promote_discovery(created.discovery_id, TEAM)
    prospect = service.should_create_discovery("acme.io", TEAM)
    assert prospect.reason == "already_prospect"
    assert prospect.prospect_id == prospect_id


def test_dismissed_discoveries_do_not_block_pre_check(service):
    created = service.create_discovery(_candidate(), TEAM)
    service.dismiss_discovery(created.discovery_id)

    assert service.should_create_discovery("acme.io", TEAM).create is True
    assert service.check_domain_exists("acme.io", TEAM) == {
        "in_discoveries": False,
        "in_prospects": False,
        "prospect_id": None,
    }


def test_batch_counts_outcomes(service):
    batch = service.create_discoveries(
        [
            _candidate(domain="a.io"),
            _candidate(domain="a.io"),
            _candidate(domain="b.io", score=90),
        ],
        TEAM,
    )

    assert (batch.created, batch.duplicates, batch.auto_promoted, batch.errors) == (2, 1, 1, 0)


def test_stats_summarise_rows(service):
    service.create_discovery(_candidate(domain="a.io", score=40), TEAM)
    service.create_discovery(
        _candidate(domain="b.io", score=60, source_type=SourceType.HN_COMMENT), TEAM
    )

    stats = service.discovery_stats()

    assert stats["total"] == 2
    assert stats["by_status"] == {"new": 2}
    assert stats["by_source"] == {"hn_post": 1, "hn_comment": 1}
    assert stats["by_category"] == {"pain_signal": 2}
    assert stats["average_confidence"] == 50.0
    assert stats["last_24h"] == 2


def test_concurrent_creates_leave_one_row():
    discoveries, prospects = build_discovery_repositories(None)
    service = DiscoveryService(discoveries, prospects, metrics=StubMetrics())

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: service.create_discovery(_candidate(), TEAM), range(16)))

    outcomes = [result.status for result in results]
    assert outcomes.count(DiscoveryOutcome.CREATED) == 1
    assert outcomes.count(DiscoveryOutcome.DUPLICATE) == 15
    assert service.list_discoveries()[1] == 1


class FailingProspectRepository(InMemoryProspectRepository):
    def find_or_create(self, team_id, company_domain, company_name, discovery_id=None):
        raise ListenerPersistenceError("prospect store unavailable")


def test_failed_auto_promotion_still_reports_created_discovery():
    discoveries, _ = build_discovery_repositories(None)
    metrics = StubMetrics()
    service = DiscoveryService(discoveries, FailingProspectRepository(), metrics=metrics)

    result = service.create_discovery(_candidate(score=90), TEAM)

    assert result.status is DiscoveryOutcome.CREATED
    assert result.discovery_id is not None
    stored = discoveries.find_by_key("acme.io", "https://news.ycombinator.com/item?id=1")
    assert stored.id == result.discovery_id
    assert stored.status is DiscoveryStatus.NEW
    assert stored.promoted_prospect_id is None
    recorded = [call["metric"] for call in metrics.increment_calls]
    assert "listener.discovery.auto_promote_failed" in recorded
    assert "listener.discovery.error" not in recorded


def test_promotion_defaults_to_the_discovery_team(service):
    ours = service.create_discovery(_candidate(), TEAM)
    theirs = service.create_discovery(
        _candidate(url="https://news.ycombinator.com/item?id=9"), "team-2"
    )
    our_prospect = service.promote_discovery(ours.discovery_id, TEAM)

    their_prospect = service.promote_discovery(theirs.discovery_id)

    assert their_prospect != our_prospect
    assert service.get_discovery(theirs.discovery_id).status is DiscoveryStatus.PROMOTED
