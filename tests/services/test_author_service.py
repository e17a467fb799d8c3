from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.core.database import build_engine
from app.models.listener import CompanyInfo, CompanySignalSource
from app.models.sources import HNItem, HNUser
from app.services.listener.author_repository import build_author_repository
from app.services.listener.authors import AuthorService
from tests.helpers.metrics_stub import StubMetrics


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(params=["memory", "sqlite"])
def authors(request, clock):
    engine = None
    if request.param == "sqlite":
        engine = build_engine("sqlite://", auto_create_schema=True)
    yield AuthorService(
        build_author_repository(engine, backend=request.param), metrics=StubMetrics(), clock=clock
    )
    if engine is not None:
        engine.dispose()


def _user(name: str = "pg", karma: int = 1500) -> HNUser:
    return HNUser(id=name, karma=karma, created=1_500_000_000, about="CTO at acme.io")


def _info(name: str = "pg", domain: str | None = "acme.io", confidence: float = 0.9) -> CompanyInfo:
    return CompanyInfo(
        username=name,
        company_domain=domain,
        company_name="Acme" if domain else None,
        confidence=confidence if domain else 0.0,
        source=CompanySignalSource.ABOUT_URL if domain else None,
        github_username="pg-codes",
    )


def test_upsert_creates_then_bumps_scan_count(authors, clock):
    story = HNItem(id=7, title="Ask HN: bots?")
    first = authors.upsert(_user(), _info(), story)
    clock.now += timedelta(hours=1)
    second = authors.upsert(_user(karma=1600), _info(domain=None))

    assert first.scan_count == 1
    assert first.last_story_id == 7
    assert second.scan_count == 2
    assert second.karma == 1600
    assert second.company_domain is None
    assert second.extraction_confidence is None
    assert second.first_seen_at == first.first_seen_at
    assert second.last_story_title == "Ask HN: bots?"


def test_recently_scanned_uses_window(authors, clock):
    authors.upsert(_user("old"), _info("old"))
    clock.now += timedelta(days=8)
    authors.upsert(_user("fresh"), _info("fresh"))

    assert authors.recently_scanned(["old", "fresh", "unknown"]) == {"fresh"}
    assert authors.recently_scanned(["old", "fresh"], within_hours=24 * 9) == {"old", "fresh"}


def test_exclusion_hides_author_from_company_listing(authors):
    authors.upsert(_user("spam"), _info("spam"))
    authors.upsert(_user("real"), _info("real", domain="initech.com", confidence=0.7))

    assert authors.exclude("spam", "recruiter") is True
    assert authors.exclude("nobody", "n/a") is False
    assert authors.excluded_usernames(["spam", "real"]) == {"spam"}
    listed = authors.users_with_companies()
    assert [profile.username for profile in listed] == ["real"]
    assert authors.users_with_companies(min_confidence=0.8) == []


def test_discovery_count_and_stats(authors):
    authors.upsert(_user("a"), _info("a", confidence=0.9))
    authors.upsert(_user("b"), _info("b", confidence=0.7))
    authors.upsert(_user("c"), _info("c", domain=None))
    authors.increment_discovery_count("a")
    authors.increment_discovery_count("a")

    stats = authors.author_stats()

    assert authors.increment_discovery_count("missing") is None
    assert authors.get("a").discoveries_created == 2
    assert stats == {
        "total": 3,
        "with_company": 2,
        "excluded": 0,
        "average_confidence": 0.8,
        "discoveries_created": 2,
    }
