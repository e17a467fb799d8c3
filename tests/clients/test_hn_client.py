from __future__ import annotations

import httpx

from app.clients.cache import BoundedCache
from app.clients.fetch import ResilientFetcher
from app.clients.hn import HackerNewsClient, item_text, item_url, user_url
from app.models.sources import HNItem
from tests.helpers.metrics_stub import StubMetrics

BASE = "https://hn.test/v0"

ROUTES = {
    "/v0/topstories.json": [1, 10, 11],
    "/v0/askstories.json": [20],
    "/v0/showstories.json": [],
    "/v0/maxitem.json": 105,
    "/v0/item/1.json": {"id": 1, "type": "story", "by": "pg", "title": "Bots everywhere", "kids": [2, 3], "time": 1_700_000_000},
    "/v0/item/2.json": {"id": 2, "type": "comment", "by": "alice", "text": "We fight <i>scrapers</i>", "kids": [4], "parent": 1},
    "/v0/item/3.json": {"id": 3, "type": "comment", "by": "bob", "text": "Same here", "parent": 1},
    "/v0/item/4.json": {"id": 4, "type": "comment", "by": "carol", "text": "Nested", "kids": [5], "parent": 2},
    "/v0/item/5.json": {"id": 5, "type": "comment", "by": "dave", "text": "Too deep", "parent": 4},
    "/v0/item/10.json": {"id": 10, "type": "job", "title": "Hiring"},
    "/v0/item/11.json": {"id": 11, "type": "story", "title": "Dead story", "dead": True},
    "/v0/item/20.json": {"id": 20, "type": "story", "by": "erin", "title": "Ask HN: SMS fraud?"},
    "/v0/user/alice.json": {"id": "alice", "karma": 1200, "about": "Founder at acme.io", "created": 1_400_000_000},
    "/v0/user/bob.json": {"id": "bob", "karma": 40},
}


def _client(calls: list[str] | None = None) -> HackerNewsClient:
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request.url.path)
        payload = ROUTES.get(request.url.path)
        if payload is None:
            return httpx.Response(404)
        return httpx.Response(200, json=payload)

    fetcher = ResilientFetcher(
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
        max_retries=0,
        sleep=lambda _: None,
        metrics=StubMetrics(),
    )
    return HackerNewsClient(
        fetcher,
        base_url=BASE,
        item_cache=BoundedCache(100, 60.0),
        user_cache=BoundedCache(100, 60.0),
        metrics=StubMetrics(),
    )


def test_urls_point_at_hn_web():
    assert item_url(42) == "https://news.ycombinator.com/item?id=42"
    assert user_url("pg") == "https://news.ycombinator.com/user?id=pg"


def test_item_text_joins_title_and_stripped_body():
    item = HNItem(id=1, title="Ask HN", text="<p>Bots &amp; scrapers</p>")
    assert item_text(item) == "Ask HN\n\nBots & scrapers"


def test_front_page_keeps_only_live_stories():
    result = _client().fetch_front_page(10)

    assert [item.id for item in result.items] == [1]
    assert result.scanned_count == 3
    assert result.last_item_id == 11


def test_ask_and_show_lists():
    client = _client()
    assert [item.title for item in client.fetch_ask_hn(5).items] == ["Ask HN: SMS fraud?"]
    assert client.fetch_show_hn(5).items == []


def test_missing_items_are_cached_as_none():
    calls: list[str] = []
    client = _client(calls)

    assert client.fetch_item(999) is None
    assert client.fetch_item(999) is None
    assert calls.count("/v0/item/999.json") == 1


def test_story_comments_respect_depth_limit():
    comments = _client().fetch_story_comments(1, max_depth=2, max_comments=50)
    assert [comment.by for comment in comments] == ["alice", "bob", "carol"]


def test_story_comments_respect_count_limit():
    comments = _client().fetch_story_comments(1, max_depth=5, max_comments=2)
    assert len(comments) == 2


def test_fetch_users_skips_missing_and_caches():
    calls: list[str] = []
    client = _client(calls)

    users = client.fetch_users(["alice", "bob", "ghost", "alice"])
    client.fetch_user("alice")

    assert sorted(users) == ["alice", "bob"]
    assert users["alice"].karma == 1200
    assert users["alice"].created_at is not None
    assert calls.count("/v0/user/alice.json") == 1
    assert client.cache_stats()["users"]["hits"] >= 1


def test_clear_caches_forces_refetch():
    calls: list[str] = []
    client = _client(calls)
    client.fetch_user("alice")
    client.clear_caches()
    client.fetch_user("alice")

    assert calls.count("/v0/user/alice.json") == 2


def test_recent_items_walk_down_from_max_id():
    result = _client().fetch_recent_items(since_id=100, limit=3)

    assert result.scanned_count == 3
    assert result.last_item_id == 105
