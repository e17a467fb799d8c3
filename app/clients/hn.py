"""Client for the Hacker News Firebase API."""

from __future__ import annotations

import logging
from collections import deque
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from app.clients.cache import BoundedCache
from app.clients.fetch import FetchError, ResilientFetcher
from app.clients.workers import run_with_concurrency
from app.config import settings
from app.core.text import strip_html
from app.models.sources import HNItem, HNScanResult, HNUser
from app.observability.metrics import metrics as default_metrics

logger = logging.getLogger(__name__)

HN_API_BASE = "https://hacker-news.firebaseio.com/v0"
HN_WEB_BASE = "https://news.ycombinator.com"

_MISSING = object()


def item_url(item_id: int) -> str:
    return f"{HN_WEB_BASE}/item?id={item_id}"


def user_url(username: str) -> str:
    return f"{HN_WEB_BASE}/user?id={username}"


def item_text(item: HNItem) -> str:
    """Title plus HTML-stripped body, separated by a blank line."""
    parts: list[str] = []
    if item.title:
        parts.append(item.title)
    if item.text:
        cleaned = strip_html(item.text)
        if cleaned:
            parts.append(cleaned)
    return "\n\n".join(parts)


class HackerNewsClient:
    """Cached, rate-limited access to HN items, story lists and users."""

    def __init__(
        self,
        fetcher: ResilientFetcher,
        *,
        base_url: str = HN_API_BASE,
        item_cache: BoundedCache[HNItem | None] | None = None,
        user_cache: BoundedCache[HNUser | None] | None = None,
        metrics: Any = default_metrics,
    ) -> None:
        self._fetcher = fetcher
        self._base_url = base_url.rstrip("/")
        self._item_cache = item_cache or BoundedCache(
            settings.hn_item_cache_size, settings.hn_item_cache_ttl_seconds
        )
        self._user_cache = user_cache or BoundedCache(
            settings.hn_user_cache_size, settings.hn_user_cache_ttl_seconds
        )
        self._metrics = metrics

    @classmethod
    def from_settings(cls, fetcher: ResilientFetcher) -> "HackerNewsClient":
        return cls(fetcher, base_url=settings.hn_api_base_url)

    def fetch_item(self, item_id: int) -> HNItem | None:
        """Return the item, or ``None`` when it is missing, deleted or dead."""
        cache_key = f"item:{item_id}"
        cached = self._item_cache.get(cache_key, _MISSING)
        if cached is not _MISSING:
            return cached  # type: ignore[return-value]

        try:
            response = self._fetcher.fetch(
                f"{self._base_url}/item/{item_id}.json", timeout=8.0, max_retries=1
            )
        except FetchError as exc:
            self._metrics.increment("hn.item.fetch_error", tags={"code": exc.code})
            logger.error("hn.item.fetch_error", extra={"item_id": item_id, "code": exc.code})
            return None

        if response.status_code >= 400:
            self._item_cache.set(cache_key, None)
            return None
        item = _parse_model(HNItem, _decode(response), item_id=item_id)
        if item is None or item.deleted or item.dead:
            self._item_cache.set(cache_key, None)
            return None
        self._item_cache.set(cache_key, item)
        self._metrics.increment("hn.item.fetched")
        return item

    def fetch_items(self, item_ids: list[int], *, concurrency: int = 10) -> list[HNItem]:
        """Fetch items with bounded concurrency, dropping missing ones and keeping order."""
        if not item_ids:
            return []
        results = run_with_concurrency(item_ids, self.fetch_item, concurrency)
        items = [item for item in results if item is not None]
        logger.debug(
            "hn.items.fetched",
            extra={"requested": len(item_ids), "received": len(items)},
        )
        return items

    def fetch_story_ids(self, list_name: str, limit: int) -> list[int]:
        """Return the first ``limit`` ids of ``/{list_name}.json`` or ``[]`` on failure."""
        try:
            payload = self._fetcher.fetch_json(f"{self._base_url}/{list_name}.json")
        except FetchError as exc:
            self._metrics.increment("hn.story_list.error", tags={"list": list_name})
            logger.error(
                "hn.story_list.error", extra={"list": list_name, "code": exc.code}
            )
            return []
        if not isinstance(payload, list):
            logger.error("hn.story_list.invalid", extra={"list": list_name})
            return []
        ids = [int(entry) for entry in payload[: max(0, limit)] if isinstance(entry, int)]
        self._metrics.increment("hn.story_list.fetched", tags={"list": list_name})
        return ids

    def fetch_top_story_ids(self, limit: int = 100) -> list[int]:
        return self.fetch_story_ids("topstories", limit)

    def fetch_new_story_ids(self, limit: int = 100) -> list[int]:
        return self.fetch_story_ids("newstories", limit)

    def fetch_ask_story_ids(self, limit: int = 50) -> list[int]:
        return self.fetch_story_ids("askstories", limit)

    def fetch_show_story_ids(self, limit: int = 50) -> list[int]:
        return self.fetch_story_ids("showstories", limit)

    def fetch_max_item_id(self) -> int:
        try:
            payload = self._fetcher.fetch_json(
                f"{self._base_url}/maxitem.json", timeout=5.0, max_retries=1
            )
        except FetchError as exc:
            logger.error("hn.max_item.error", extra={"code": exc.code})
            return 0
        return payload if isinstance(payload, int) else 0

    def fetch_front_page(self, limit: int = 100) -> HNScanResult:
        ids = self.fetch_top_story_ids(limit)
        items = [item for item in self.fetch_items(ids) if item.type == "story"]
        return HNScanResult(items=items, scanned_count=len(ids), last_item_id=max(ids, default=0))

    def fetch_ask_hn(self, limit: int = 50) -> HNScanResult:
        ids = self.fetch_ask_story_ids(limit)
        return HNScanResult(
            items=self.fetch_items(ids), scanned_count=len(ids), last_item_id=max(ids, default=0)
        )

    def fetch_show_hn(self, limit: int = 50) -> HNScanResult:
        ids = self.fetch_show_story_ids(limit)
        return HNScanResult(
            items=self.fetch_items(ids), scanned_count=len(ids), last_item_id=max(ids, default=0)
        )

    def fetch_recent_items(self, since_id: int, limit: int = 200) -> HNScanResult:
        """Fetch items newer than ``since_id``, newest first, at most ``limit`` of them."""
        max_id = self.fetch_max_item_id()
        if max_id == 0:
            return HNScanResult(items=[], scanned_count=0, last_item_id=since_id)
        start_id = max(since_id + 1, max_id - limit + 1)
        ids = list(range(max_id, start_id - 1, -1))[:limit]
        return HNScanResult(
            items=self.fetch_items(ids), scanned_count=len(ids), last_item_id=max_id
        )

    def fetch_story_comments(
        self,
        story_id: int,
        *,
        max_depth: int = 2,
        max_comments: int = 50,
    ) -> list[HNItem]:
        """Breadth-first walk of a story's comment tree, bounded by depth and count.

        Up to five replies of each kept comment are enqueued while the comment is
        shallower than ``max_depth``.
        """
        story = self.fetch_item(story_id)
        if story is None or not story.kids:
            return []

        comments: list[HNItem] = []
        queue: deque[tuple[int, int]] = deque((kid, 1) for kid in story.kids)
        while queue and len(comments) < max_comments:
            batch = [queue.popleft() for _ in range(min(10, len(queue)))]
            fetched = run_with_concurrency([kid for kid, _ in batch], self.fetch_item, 10)
            for (_, depth), item in zip(batch, fetched):
                if item is None or item.type != "comment":
                    continue
                comments.append(item)
                if depth < max_depth:
                    for kid in item.kids[:5]:
                        queue.append((kid, depth + 1))
        return comments[:max_comments]

    def fetch_user(self, username: str) -> HNUser | None:
        cache_key = f"user:{username}"
        cached = self._user_cache.get(cache_key, _MISSING)
        if cached is not _MISSING:
            return cached  # type: ignore[return-value]

        try:
            response = self._fetcher.fetch(
                f"{self._base_url}/user/{username}.json", timeout=8.0, max_retries=1
            )
        except FetchError as exc:
            self._metrics.increment("hn.user.fetch_error", tags={"code": exc.code})
            logger.error("hn.user.fetch_error", extra={"username": username, "code": exc.code})
            return None

        if response.status_code >= 400:
            self._user_cache.set(cache_key, None)
            return None
        user = _parse_model(HNUser, _decode(response), username=username)
        self._user_cache.set(cache_key, user)
        if user is not None:
            self._metrics.increment("hn.user.fetched")
        return user

    def fetch_users(self, usernames: list[str], *, concurrency: int = 5) -> dict[str, HNUser]:
        """Fetch distinct usernames with bounded concurrency; missing users are omitted."""
        unique = list(dict.fromkeys(name for name in usernames if name))
        if not unique:
            return {}
        results = run_with_concurrency(unique, self.fetch_user, concurrency)
        users = {name: user for name, user in zip(unique, results) if user is not None}
        logger.debug(
            "hn.users.fetched", extra={"requested": len(unique), "received": len(users)}
        )
        return users

    def cache_stats(self) -> dict[str, dict[str, int]]:
        return {"items": self._item_cache.stats(), "users": self._user_cache.stats()}

    def clear_caches(self) -> None:
        self._item_cache.clear()
        self._user_cache.clear()
        logger.info("hn.caches.cleared")


def _decode(response: Any) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _parse_model(model: Any, payload: Any, **context: Any) -> Any:
    if not isinstance(payload, dict):
        return None
    try:
        return model.model_validate(payload)
    except PydanticValidationError:
        logger.warning("hn.payload.invalid", extra={"model": model.__name__, **context})
        return None
