from __future__ import annotations

from datetime import timedelta

import pytest

from app.clients.hn import item_url, user_url
from app.models.listener import (
    CompanyInfo,
    DiscoveryStatus,
    ExtractionMethod,
    RunStatus,
    SourceType,
)
from app.models.scan import HNFeed, ScanMode, ScanOptions
from app.models.sources import FeedConfig, HNItem, HNUser, RSSArticle
from app.services.listener.discovery_repository import InMemoryDiscoveryRepository
from app.services.listener.errors import ListenerPersistenceError, ScanInProgressError
from app.services.listener.orchestrator import _unique_items
from tests.helpers.listener_fakes import (
    NOW,
    FakeClock,
    FakeHN,
    FakeRSS,
    build_test_services,
    hn_time,
)

TEAM = "team-1"


def _story(item_id: int, title: str, **fields) -> HNItem:
    return HNItem(id=item_id, type="story", title=title, time=hn_time(1), **fields)


def _comment(item_id: int, by: str, text: str, parent: int) -> HNItem:
    return HNItem(id=item_id, type="comment", by=by, text=text, parent=parent, time=hn_time(0.5))


def _posts_hn() -> FakeHN:
    incident = _story(
        101,
        "We were hit by credential stuffing bots",
        url="https://shopwise.io/blog/incident",
        by="bob",
    )
    ask = _story(
        102,
        "Ask HN: How do you stop scrapers?",
        text="We run the initech API and scrapers hammer it daily.",
        by="alice",
    )
    editor = _story(103, "Show HN: My weekend text editor", by="carl")
    return FakeHN(
        feeds={"front_page": [incident], "ask_hn": [ask, incident], "show_hn": [editor]},
        users={"alice": HNUser(id="alice", karma=900, about="alice@initech.com")},
    )


def _domains(services) -> dict[str, object]:
    rows, _ = services.discoveries.list_discoveries(limit=100)
    return {row.company_domain: row for row in rows}


def test_posts_scan_creates_discoveries_and_records_run():
    hn = _posts_hn()
    services = build_test_services(hn)
    options = ScanOptions.for_mode(ScanMode.POSTS, TEAM, include_comments=False)

    result = services.orchestrator.run(options)

    assert result.status is RunStatus.COMPLETED
    assert result.stats.items_scanned == 3
    assert result.stats.discoveries_created == 2
    assert result.stats.errors_count == 0
    assert result.cursor["last_item_id"] == 103
    assert result.cursor["last_scan_at"] == NOW.isoformat()

    found = _domains(services)
    assert set(found) == {"shopwise.io", "initech.com"}
    incident = found["shopwise.io"]
    assert incident.source_type is SourceType.HN_POST
    assert incident.source_url == item_url(101)
    assert incident.metadata["extraction_method"] == ExtractionMethod.URL.value
    assert set(incident.keywords_matched) == {"bots", "credential stuffing"}
    assert 0 < incident.confidence_score < 80
    assert incident.status is DiscoveryStatus.NEW
    from_author = found["initech.com"]
    assert from_author.metadata["extraction_method"] == ExtractionMethod.MENTION.value
    assert services.authors.get("alice") is not None
    assert result.stats.users_tracked == 1

    run = services.runs.get_run(result.run_id)
    assert run.status is RunStatus.COMPLETED
    assert run.source_type == "hn"
    assert run.discoveries_created == 2
    assert run.cursor_data == result.cursor
    assert hn.clear_calls == 1


def test_rerunning_a_posts_scan_only_finds_duplicates():
    hn = _posts_hn()
    services = build_test_services(hn)
    options = ScanOptions.for_mode(ScanMode.POSTS, TEAM, include_comments=False)

    services.orchestrator.run(options)
    second = services.orchestrator.run(options)

    assert second.stats.discoveries_created == 0
    assert second.stats.duplicates_skipped == 2
    assert services.discoveries.list_discoveries()[1] == 2
    assert hn.user_fetches == ["alice"]
    assert len(services.runs.list_runs(source_type="hn")) == 2


def test_feed_option_limits_which_lists_are_read():
    hn = _posts_hn()
    services = build_test_services(hn)

    result = services.orchestrator.run(
        ScanOptions.for_mode(
            ScanMode.POSTS, TEAM, feed=HNFeed.FRONT_PAGE, include_comments=False
        )
    )

    assert result.stats.items_scanned == 1
    assert set(_domains(services)) == {"shopwise.io"}


def test_high_value_story_threads_are_mined_for_commenter_companies():
    story = _story(201, "Bots are eating our signup funnel badly", kids=[301, 302])
    hn = FakeHN(
        feeds={"front_page": [story]},
        comments={
            201: [
                _comment(301, "carol", "Same here, we see bots every single day.", 201),
                _comment(302, "dave", "+1", 201),
            ]
        },
        users={
            "carol": HNUser(id="carol", karma=400, about="Hacking on https://paylane.io these days"),
            "dave": HNUser(id="dave", karma=50),
        },
    )
    services = build_test_services(hn)

    result = services.orchestrator.run(
        ScanOptions.for_mode(ScanMode.POSTS, TEAM, feed=HNFeed.FRONT_PAGE)
    )

    assert result.stats.high_relevance_stories == 1
    assert result.stats.commenter_profiles_checked == 2
    assert result.stats.discoveries_created == 1
    assert hn.bulk_fetches == [["carol", "dave"]]
    commenter = _domains(services)["paylane.io"]
    assert commenter.source_type is SourceType.HN_COMMENT
    assert commenter.source_url == user_url("carol")
    assert commenter.source_title == "carol commented on: Bots are eating our signup funnel badly"
    assert commenter.trigger_text.startswith("User carol from ")
    assert services.authors.get("dave").company_domain is None


def test_profiles_scan_promotes_strong_profile_matches():
    clock = FakeClock()
    story = _story(
        401, "Ask HN: fighting fake accounts and bots at scale?", by="erin", kids=[501]
    )
    hn = FakeHN(
        feeds={
            "front_page": [_story(402, "Show HN: My text editor in Rust")],
            "ask_hn": [story],
        },
        comments={
            401: [
                _comment(501, "frank", "We gave up and just ban by IP range.", 401),
                _comment(502, "grace", "Have you tried rate limiting signups?", 401),
                _comment(503, "spammer", "Buy followers here", 401),
                _comment(504, "henry", "Same problem at our place.", 401),
            ]
        },
        users={
            "erin": HNUser(
                id="erin",
                karma=5000,
                created=1_300_000_000,
                about="Building https://trustfence.com",
            ),
            "frank": HNUser(id="frank", karma=20, about="frank@bigcorp.com"),
            "grace": HNUser(id="grace", karma=200, about="I like turtles"),
        },
    )
    services = build_test_services(hn, clock=clock)
    clock.now = NOW - timedelta(days=30)
    services.authors.upsert(HNUser(id="spammer", karma=5), CompanyInfo(username="spammer"))
    services.authors.exclude("spammer", "spam")
    clock.now = NOW
    services.authors.upsert(HNUser(id="henry", karma=300), CompanyInfo(username="henry"))

    result = services.orchestrator.run(ScanOptions.for_mode(ScanMode.PROFILES, TEAM))

    stats = result.stats
    assert result.status is RunStatus.COMPLETED
    assert stats.stories_processed == 1
    assert stats.users_skipped_recent == 1
    assert stats.users_scanned == 3
    assert stats.items_scanned == 3
    assert stats.users_tracked == 2
    assert stats.discoveries_created == 1
    assert stats.auto_promoted == 1
    assert hn.bulk_fetches == [["erin", "frank", "grace"]]

    discovery = _domains(services)["trustfence.com"]
    assert discovery.source_type is SourceType.HN_PROFILE
    assert discovery.source_url == user_url("erin")
    assert discovery.confidence_score >= 75
    assert discovery.status is DiscoveryStatus.PROMOTED
    assert discovery.trigger_text.startswith('HN user "erin" works at ')
    assert services.authors.get("erin").discoveries_created == 1
    assert services.authors.get("frank") is None
    assert result.cursor["stories_processed"] == 1


def test_profiles_scan_skips_domains_already_discovered():
    story = _story(401, "Ask HN: fighting fake accounts and bots at scale?", by="erin")
    hn = FakeHN(
        feeds={"ask_hn": [story]},
        users={
            "erin": HNUser(
                id="erin", karma=5000, created=1_300_000_000, about="Building https://trustfence.com"
            )
        },
    )
    services = build_test_services(hn)
    first = services.orchestrator.run(ScanOptions.for_mode(ScanMode.PROFILES, TEAM))
    hn.users["ivan"] = HNUser(id="ivan", karma=800, about="Building https://trustfence.com")
    hn.feeds["ask_hn"] = [_story(403, "Ask HN: fake accounts keep signing up", by="ivan")]

    second = services.orchestrator.run(ScanOptions.for_mode(ScanMode.PROFILES, TEAM))

    assert first.stats.discoveries_created == 1
    assert second.stats.discoveries_created == 0
    assert second.stats.duplicates_skipped == 1
    assert services.authors.get("ivan") is not None


def test_rss_scan_scores_news_articles():
    rss = FakeRSS(
        [
            RSSArticle(
                title="Ticketmaster sued over scalper bots",
                link="https://news.example.com/tm",
                description="Fans say ticketmaster.com was flooded by bots during the presale.",
                published_at=NOW - timedelta(hours=2),
                feed_name="TechWire",
            ),
            RSSArticle(title="Short", link="https://news.example.com/short", description="tiny"),
            RSSArticle(
                title="Startup raises a seed round",
                link="https://news.example.com/seed",
                description="The company builds better spreadsheets for finance teams.",
            ),
        ]
    )
    services = build_test_services(rss=rss)

    result = services.orchestrator.run(
        ScanOptions.for_mode(
            ScanMode.RSS, TEAM, feed_urls=["https://feeds.test/rss"], max_articles=10
        )
    )

    assert result.stats.items_scanned == 3
    assert result.stats.discoveries_created == 1
    assert rss.calls[0]["configs"] == [
        FeedConfig(url="https://feeds.test/rss", name="https://feeds.test/rss", category="custom")
    ]
    assert rss.calls[0]["max_articles"] == 10
    article = _domains(services)["ticketmaster.com"]
    assert article.source_type is SourceType.NEWS_ARTICLE
    assert article.source_url == "https://news.example.com/tm"
    assert article.source_title == "[TechWire] Ticketmaster sued over scalper bots"
    assert article.confidence_score >= 60
    assert services.runs.get_run(result.run_id).source_type == "rss"


def test_rss_scan_without_feed_urls_uses_client_defaults():
    rss = FakeRSS()
    services = build_test_services(rss=rss)

    services.orchestrator.run(ScanOptions.for_mode(ScanMode.RSS, TEAM))

    assert rss.calls[0]["configs"] is None


def test_source_failure_marks_run_failed_and_releases_guard():
    hn = _posts_hn()
    hn.fail_with = RuntimeError("list endpoint exploded")
    services = build_test_services(hn)
    options = ScanOptions.for_mode(ScanMode.POSTS, TEAM)

    with pytest.raises(RuntimeError):
        services.orchestrator.run(options)

    (run,) = services.runs.list_runs(source_type="hn")
    assert run.status is RunStatus.FAILED
    assert run.errors_count == 1
    assert run.error_details[-1].message == "list endpoint exploded"
    assert services.orchestrator.guard.is_running("hn") is False
    assert hn.clear_calls == 1


def test_concurrent_scan_of_same_source_is_rejected():
    services = build_test_services(_posts_hn())
    options = ScanOptions.for_mode(ScanMode.POSTS, TEAM)

    with services.orchestrator.guard.hold(options.source_key):
        with pytest.raises(ScanInProgressError) as excinfo:
            services.orchestrator.run(options)
        other = services.orchestrator.run(ScanOptions.for_mode(ScanMode.RSS, TEAM))

    assert excinfo.value.code == "409_SCAN_IN_PROGRESS"
    assert services.runs.list_runs(source_type="hn") == []
    assert other.status is RunStatus.COMPLETED


class BrokenDiscoveryRepository(InMemoryDiscoveryRepository):
    def insert(self, discovery):
        raise ListenerPersistenceError("Failed to persist discovery.")


def test_item_failures_finish_run_as_partial():
    services = build_test_services(
        _posts_hn(), discovery_repository=BrokenDiscoveryRepository()
    )

    result = services.orchestrator.run(
        ScanOptions.for_mode(ScanMode.POSTS, TEAM, include_comments=False)
    )

    run = services.runs.get_run(result.run_id)
    assert result.status is RunStatus.PARTIAL
    assert result.stats.errors_count == 2
    assert run.status is RunStatus.PARTIAL
    assert len(run.error_details) == 2
    assert services.runs.last_cursor("hn") is None


def test_repeated_stories_keep_first_occurrence_and_order():
    first = _story(1, "Bots on the front page", score=10)
    second = _story(2, "Scrapers on Ask HN")
    repeat = _story(1, "Bots on the front page", score=99)

    unique = _unique_items([first, second, repeat])

    assert [item.id for item in unique] == [1, 2]
    assert unique[0] is first
