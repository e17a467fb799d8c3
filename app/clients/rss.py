"""RSS/Atom news feed client."""

from __future__ import annotations

import calendar
import io
import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta, timezone
from typing import Any

import feedparser

from app.clients.fetch import FetchError, ResilientFetcher
from app.clients.workers import run_with_concurrency
from app.config import settings
from app.core.text import strip_html
from app.models.sources import FeedConfig, RSSArticle, RSSFeed
from app.observability.metrics import metrics as default_metrics

logger = logging.getLogger(__name__)

FEED_ACCEPT_HEADER = "application/rss+xml, application/xml, text/xml, */*"

DEFAULT_FEEDS: tuple[FeedConfig, ...] = (
    FeedConfig(url="https://techcrunch.com/feed/", name="TechCrunch", category="tech"),
    FeedConfig(url="https://www.wired.com/feed/rss", name="Wired", category="tech"),
    FeedConfig(url="https://www.theverge.com/rss/index.xml", name="The Verge", category="tech"),
    FeedConfig(url="https://arstechnica.com/feed/", name="Ars Technica", category="tech"),
    FeedConfig(
        url="https://krebsonsecurity.com/feed/", name="Krebs on Security", category="security"
    ),
    FeedConfig(
        url="https://www.bleepingcomputer.com/feed/", name="BleepingComputer", category="security"
    ),
    FeedConfig(url="https://www.darkreading.com/rss.xml", name="Dark Reading", category="security"),
    FeedConfig(url="https://threatpost.com/feed/", name="Threatpost", category="security"),
    FeedConfig(url="https://venturebeat.com/feed/", name="VentureBeat", category="startup"),
)


def article_text(article: RSSArticle) -> str:
    """Title plus HTML-stripped description and content."""
    parts = [article.title, strip_html(article.description), strip_html(article.content)]
    return "\n\n".join(part for part in parts if part)


def parse_feed(payload: bytes | str, *, feed_name: str = "") -> list[RSSArticle]:
    """Parse RSS 2.0 items or Atom entries; entries without a title or link are skipped."""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    parsed = feedparser.parse(io.BytesIO(payload))
    if parsed.get("bozo") and not parsed.get("entries"):
        raise ValueError(f"Unparsable feed: {parsed.get('bozo_exception')}")

    articles: list[RSSArticle] = []
    for entry in parsed.get("entries", []):
        title = strip_html(entry.get("title"))
        link = (entry.get("link") or "").strip()
        if not title or not link:
            continue
        articles.append(
            RSSArticle(
                title=title,
                link=link,
                description=entry.get("summary") or "",
                content=_entry_content(entry),
                published_at=_entry_published_at(entry),
                author=entry.get("author") or None,
                categories=[tag.get("term") for tag in entry.get("tags", []) if tag.get("term")],
                guid=entry.get("id") or link,
                feed_name=feed_name,
            )
        )
    return articles


def _entry_content(entry: Any) -> str:
    blocks = entry.get("content") or []
    return "\n".join(block.get("value", "") for block in blocks if block.get("value"))


def _entry_published_at(entry: Any) -> datetime | None:
    for key in ("published_parsed", "updated_parsed"):
        struct = entry.get(key)
        if struct:
            return datetime.fromtimestamp(calendar.timegm(struct), tz=timezone.utc)
    return None


class RSSClient:
    """Fetches configured feeds through the resilient fetch layer."""

    def __init__(
        self,
        fetcher: ResilientFetcher,
        *,
        feeds: Sequence[FeedConfig] | None = None,
        concurrency: int = 5,
        clock: Callable[[], datetime] | None = None,
        metrics: Any = default_metrics,
    ) -> None:
        self._fetcher = fetcher
        self._feeds = tuple(feeds) if feeds else DEFAULT_FEEDS
        self._concurrency = concurrency
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._metrics = metrics

    @classmethod
    def from_settings(cls, fetcher: ResilientFetcher) -> "RSSClient":
        feeds = [
            FeedConfig(url=url, name=url, category="custom") for url in settings.rss_feed_urls
        ]
        return cls(fetcher, feeds=feeds or None)

    @property
    def feeds(self) -> tuple[FeedConfig, ...]:
        return self._feeds

    def fetch_feed(self, config: FeedConfig) -> RSSFeed:
        """Fetch one feed; any failure yields a feed with zero articles."""
        fetched_at = self._clock()
        try:
            response = self._fetcher.fetch(
                config.url,
                headers={
                    "User-Agent": settings.http_user_agent,
                    "Accept": FEED_ACCEPT_HEADER,
                },
            )
            if response.status_code >= 400:
                raise FetchError(
                    f"HTTP {response.status_code} from {config.url}",
                    code=f"FETCH_HTTP_{response.status_code}",
                    url=config.url,
                    status_code=response.status_code,
                )
            articles = parse_feed(response.content, feed_name=config.name)
        except (FetchError, ValueError) as exc:
            self._metrics.increment("rss.feed.error", tags={"feed": config.name})
            logger.error(
                "rss.feed.error",
                extra={"feed": config.name, "url": config.url, "error": str(exc)},
            )
            return RSSFeed(url=config.url, name=config.name, articles=[], last_fetched=fetched_at)

        self._metrics.increment("rss.feed.fetched", tags={"feed": config.name})
        logger.debug("rss.feed.fetched", extra={"feed": config.name, "articles": len(articles)})
        return RSSFeed(url=config.url, name=config.name, articles=articles, last_fetched=fetched_at)

    def fetch_all_feeds(
        self,
        configs: Sequence[FeedConfig] | None = None,
        *,
        max_articles_per_feed: int = 20,
    ) -> list[RSSFeed]:
        selected = list(configs) if configs else list(self._feeds)
        feeds = run_with_concurrency(selected, self.fetch_feed, max(1, self._concurrency))
        return [
            feed.model_copy(update={"articles": feed.articles[:max_articles_per_feed]})
            for feed in feeds
        ]

    def fetch_recent_articles(
        self,
        configs: Sequence[FeedConfig] | None = None,
        *,
        max_articles: int = 100,
        max_age_hours: float = 48,
    ) -> list[RSSArticle]:
        """Recent articles across feeds, newest first; undated articles are kept and sort last."""
        cutoff = self._clock() - timedelta(hours=max_age_hours)
        articles = [
            article
            for feed in self.fetch_all_feeds(configs)
            for article in feed.articles
            if article.published_at is None or article.published_at >= cutoff
        ]
        articles.sort(
            key=lambda article: article.published_at.timestamp() if article.published_at else 0.0,
            reverse=True,
        )
        return articles[: max(0, max_articles)]
