"""Per-source scan pipeline: fetch, filter, extract, score and persist."""

from __future__ import annotations

import html
import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Any
from uuid import UUID

from app.clients.fetch import FetchError
from app.clients.github import GitHubClient
from app.clients.hn import HackerNewsClient, item_text, item_url, user_url
from app.clients.rss import RSSClient, article_text
from app.models.listener import (
    CompanyInfo,
    DiscoveryCandidate,
    DiscoveryOutcome,
    DiscoveryResult,
    ExtractedDomain,
    ExtractionMethod,
    MatchResult,
    RunStatus,
    SourceType,
)
from app.models.scan import HNFeed, ScanMode, ScanOptions, ScanResult, ScanStats
from app.models.sources import FeedConfig, HNItem, HNUser
from app.observability.metrics import MetricsReporter, metrics as default_metrics
from app.services.listener.authors import AuthorService
from app.services.listener.confidence import score_discovery
from app.services.listener.discoveries import DiscoveryService
from app.services.listener.domains import (
    domain_to_company_name,
    extract_domains_from_source,
    is_company_domain,
    is_known_company_domain,
)
from app.services.listener.errors import ListenerError, ScanInProgressError
from app.services.listener.keywords import KeywordCatalog, best_match_context, primary_category
from app.services.listener.profiles import (
    build_trigger_text,
    cross_validate_company_info,
    enrich_company_info,
    extract_company_from_profile,
    is_quality_extraction,
    score_profile_discovery,
)
from app.services.listener.runs import RunService

logger = logging.getLogger(__name__)

TRIGGER_CONTEXT_CHARS = 200
MIN_POST_TEXT = 20
MIN_ARTICLE_TEXT = 50
PROFILE_FRONT_PAGE_STORIES = 50
PROFILE_ASK_HN_STORIES = 30
ASK_SHOW_LIMIT = 50
COMMENTS_PER_STORY = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScanGuard:
    """Allows one running scan per source key within the process."""

    def __init__(self) -> None:
        self._active: set[str] = set()
        self._lock = Lock()

    def is_running(self, source_key: str) -> bool:
        with self._lock:
            return source_key in self._active

    def active_sources(self) -> list[str]:
        with self._lock:
            return sorted(self._active)

    @contextmanager
    def hold(self, source_key: str) -> Iterator[None]:
        with self._lock:
            if source_key in self._active:
                raise ScanInProgressError(source_key)
            self._active.add(source_key)
        try:
            yield
        finally:
            with self._lock:
                self._active.discard(source_key)


@dataclass
class _ScanContext:
    run_id: UUID
    options: ScanOptions
    stats: ScanStats = field(default_factory=ScanStats)
    author_cache: dict[str, CompanyInfo | None] = field(default_factory=dict)


@dataclass(frozen=True)
class _SourceDocument:
    """Normalized post or article handed to domain extraction and scoring."""

    source_type: SourceType
    text: str
    link: str | None
    title: str | None
    body: str | None
    source_url: str
    source_title: str | None
    published_at: datetime | None
    author: str | None = None


class ScanOrchestrator:
    """Runs posts, profile-mining and RSS scans with run bookkeeping."""

    def __init__(
        self,
        *,
        hn: HackerNewsClient,
        rss: RSSClient,
        keywords: KeywordCatalog,
        discoveries: DiscoveryService,
        runs: RunService,
        authors: AuthorService,
        github: GitHubClient | None = None,
        guard: ScanGuard | None = None,
        metrics: MetricsReporter | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._hn = hn
        self._rss = rss
        self._keywords = keywords
        self._discoveries = discoveries
        self._runs = runs
        self._authors = authors
        self._github = github
        self._guard = guard or ScanGuard()
        self._metrics = metrics or default_metrics
        self._clock = clock

    @property
    def guard(self) -> ScanGuard:
        return self._guard

    def run(self, options: ScanOptions) -> ScanResult:
        """Execute one scan; a second concurrent scan of the same source is rejected."""
        source_key = options.source_key
        handlers: dict[ScanMode, Callable[[_ScanContext], dict[str, Any]]] = {
            ScanMode.POSTS: self._scan_posts,
            ScanMode.PROFILES: self._scan_profiles,
            ScanMode.RSS: self._scan_rss,
        }
        with self._guard.hold(source_key):
            previous_cursor = self._runs.last_cursor(source_key) or {}
            run = self._runs.start_run(source_key, options.run_type, previous_cursor)
            ctx = _ScanContext(run_id=run.id, options=options)
            started = time.perf_counter()
            logger.info(
                "listener.scan.started",
                extra={"run_id": str(run.id), "source": source_key, "team_id": options.team_id},
            )
            try:
                cursor = handlers[options.mode](ctx)
            except Exception as exc:
                self._fail_run(ctx, exc)
                raise
            finally:
                self._hn.clear_caches()

            status = RunStatus.PARTIAL if ctx.stats.errors_count else RunStatus.COMPLETED
            self._runs.complete_run(run.id, status, ctx.stats.counts(), cursor=cursor)
            duration_ms = (time.perf_counter() - started) * 1000
            logger.info(
                "listener.scan.completed",
                extra={
                    "run_id": str(run.id),
                    "source": source_key,
                    "status": status.value,
                    "duration_ms": round(duration_ms, 2),
                    **ctx.stats.model_dump(),
                },
            )
            return ScanResult(
                run_id=run.id,
                status=status,
                stats=ctx.stats,
                cursor=cursor,
                duration_ms=duration_ms,
            )

    def _scan_posts(self, ctx: _ScanContext) -> dict[str, Any]:
        options = ctx.options
        stories: list[HNItem] = []
        last_item_id = 0
        fetchers = (
            (HNFeed.FRONT_PAGE, lambda: self._hn.fetch_front_page(options.max_items)),
            (HNFeed.ASK_HN, lambda: self._hn.fetch_ask_hn(min(ASK_SHOW_LIMIT, options.max_items))),
            (HNFeed.SHOW_HN, lambda: self._hn.fetch_show_hn(min(ASK_SHOW_LIMIT, options.max_items))),
        )
        for feed, fetch in fetchers:
            if options.feed in (feed, HNFeed.ALL):
                result = fetch()
                stories.extend(result.items)
                last_item_id = max(last_item_id, result.last_item_id)
        stories = _unique_items(stories)
        ctx.stats.items_scanned = len(stories)

        relevant: list[tuple[HNItem, MatchResult]] = []
        for story in stories:
            try:
                text = item_text(story)
                if len(text) < MIN_POST_TEXT:
                    continue
                match = self._keywords.match_text(text)
                if match.total_score >= options.min_score_for_comments:
                    relevant.append((story, match))
                if not match.has_matches or match.total_score < options.min_keyword_score:
                    continue
                self._process_document(ctx, _story_document(story, text), match)
            except (FetchError, ListenerError) as exc:
                self._item_error(ctx, f"Item {story.id}: {exc}")

        ctx.stats.high_relevance_stories = len(relevant)
        if options.include_comments and relevant:
            relevant.sort(key=lambda pair: pair[1].total_score, reverse=True)
            for story, match in relevant[: options.max_comment_stories]:
                try:
                    self._process_commenters(ctx, story, match)
                except (FetchError, ListenerError) as exc:
                    self._item_error(ctx, f"Comments of {story.id}: {exc}")

        return {"last_scan_at": self._clock().isoformat(), "last_item_id": last_item_id}

    def _scan_rss(self, ctx: _ScanContext) -> dict[str, Any]:
        options = ctx.options
        configs = [FeedConfig(url=url, name=url, category="custom") for url in options.feed_urls]
        articles = self._rss.fetch_recent_articles(
            configs or None,
            max_articles=options.max_articles,
            max_age_hours=options.max_age_hours,
        )
        ctx.stats.items_scanned = len(articles)
        for article in articles:
            try:
                text = article_text(article)
                if len(text) < MIN_ARTICLE_TEXT:
                    continue
                match = self._keywords.match_text(text)
                if not match.has_matches or match.total_score < options.min_keyword_score:
                    continue
                document = _SourceDocument(
                    source_type=SourceType.NEWS_ARTICLE,
                    text=text,
                    link=article.link,
                    title=article.title,
                    body=article.description or article.content,
                    source_url=article.link,
                    source_title=f"[{article.feed_name}] {article.title}"
                    if article.feed_name
                    else article.title,
                    published_at=article.published_at,
                )
                self._process_document(ctx, document, match)
            except (FetchError, ListenerError) as exc:
                self._item_error(ctx, f"Article {article.link}: {exc}")
        return {"last_scan_at": self._clock().isoformat()}

    def _scan_profiles(self, ctx: _ScanContext) -> dict[str, Any]:
        options = ctx.options
        stories = _unique_items(
            self._hn.fetch_front_page(PROFILE_FRONT_PAGE_STORIES).items
            + self._hn.fetch_ask_hn(PROFILE_ASK_HN_STORIES).items
        )
        relevant: list[tuple[HNItem, MatchResult]] = []
        for story in stories:
            text = item_text(story)
            if len(text) < MIN_POST_TEXT:
                continue
            match = self._keywords.match_text(text)
            if match.total_score >= options.min_keyword_score and match.has_matches:
                relevant.append((story, match))
        relevant.sort(key=lambda pair: pair[1].total_score, reverse=True)
        ctx.stats.high_relevance_stories = len(relevant)

        for story, match in relevant[: options.max_stories_per_scan]:
            ctx.stats.stories_processed += 1
            try:
                self._scan_story_users(ctx, story, match)
            except (FetchError, ListenerError) as exc:
                self._item_error(ctx, f"Story {story.id}: {exc}")

        ctx.stats.items_scanned = ctx.stats.users_scanned
        return {
            "last_scan_at": self._clock().isoformat(),
            "stories_processed": ctx.stats.stories_processed,
            "users_tracked": ctx.stats.users_tracked,
            "users_skipped_recent": ctx.stats.users_skipped_recent,
        }

    def _scan_story_users(self, ctx: _ScanContext, story: HNItem, match: MatchResult) -> None:
        options = ctx.options
        comments = self._hn.fetch_story_comments(
            story.id, max_depth=3, max_comments=options.max_users_per_story * 2
        )
        usernames: list[str] = [story.by] if story.by else []
        first_comment: dict[str, HNItem] = {}
        for comment in comments:
            if comment.by:
                usernames.append(comment.by)
                first_comment.setdefault(comment.by, comment)
        usernames = list(dict.fromkeys(usernames))

        excluded = self._authors.excluded_usernames(usernames)
        recent = self._authors.recently_scanned(usernames, options.rescan_after_hours)
        ctx.stats.users_skipped_recent += len(recent)
        to_scan = [name for name in usernames if name not in recent and name not in excluded]
        to_scan = to_scan[: options.max_users_per_story]
        if not to_scan:
            return

        users = self._hn.fetch_users(to_scan, concurrency=5)
        for username, user in users.items():
            ctx.stats.users_scanned += 1
            try:
                self._process_profile(ctx, story, match, user, first_comment.get(username))
            except (FetchError, ListenerError) as exc:
                self._item_error(ctx, f"User {username}: {exc}")

    def _process_profile(
        self,
        ctx: _ScanContext,
        story: HNItem,
        match: MatchResult,
        user: HNUser,
        comment: HNItem | None,
    ) -> None:
        options = ctx.options
        if user.karma < options.min_karma:
            return
        info = enrich_company_info(user, extract_company_from_profile(user))
        if options.enrich_with_github and info.github_username and self._github is not None:
            github_company = self._github.fetch_company(info.github_username)
            info = cross_validate_company_info(info, github_company)

        if not is_quality_extraction(info, user, options.min_confidence):
            self._track_author(ctx, user, info, story)
            return

        domain = info.company_domain or ""
        check = self._discoveries.should_create_discovery(domain, options.team_id)
        if not check.create:
            self._track_author(ctx, user, info, story)
            ctx.stats.duplicates_skipped += 1
            return

        now = self._clock()
        score, _ = score_profile_discovery(info, user, match.total_score * 10, now=now)
        title = story.title or "HN Discussion"
        comment_text = item_text(comment) if comment else ""
        candidate = DiscoveryCandidate(
            company_domain=domain,
            company_name=info.company_name or domain_to_company_name(domain),
            source_type=SourceType.HN_PROFILE,
            source_url=user_url(user.id),
            source_title=f"{user.id}'s profile (commented on: {title})",
            trigger_text=build_trigger_text(user.id, info, title, comment_text, match),
            keywords_matched=match.keywords,
            keyword_category=primary_category(match.matches),
            confidence_score=score,
            product_tags=match.product_tags,
            source_published_at=comment.published_at if comment else None,
            metadata={
                "extraction_source": info.source.value if info.source else None,
                "extraction_confidence": info.confidence,
                "story_id": story.id,
            },
        )
        result = self._record(
            ctx,
            self._discoveries.create_discovery(
                candidate, options.team_id, options.auto_promote_threshold
            ),
        )
        self._track_author(ctx, user, info, story)
        if result.status in (DiscoveryOutcome.CREATED, DiscoveryOutcome.AUTO_PROMOTED):
            self._authors.increment_discovery_count(user.id)

    def _process_commenters(self, ctx: _ScanContext, story: HNItem, match: MatchResult) -> None:
        options = ctx.options
        comments = self._hn.fetch_story_comments(
            story.id, max_depth=2, max_comments=COMMENTS_PER_STORY
        )
        first_comment: dict[str, HNItem] = {}
        for comment in comments:
            if comment.by:
                first_comment.setdefault(comment.by, comment)
        usernames = list(first_comment)[: options.max_commenters_per_story]
        if not usernames:
            return
        self._prefetch_users(ctx, usernames)
        ctx.stats.commenter_profiles_checked += len(usernames)

        title = story.title or "HN Story"
        for username in usernames:
            try:
                info = self._author_company(ctx, username)
                if info is None or not info.company_domain:
                    continue
                if not is_company_domain(info.company_domain):
                    continue
                comment = first_comment[username]
                comment_text = item_text(comment)
                company = info.company_name or info.company_domain
                trigger = f'User {username} from {company} commented on "{title}": {comment_text[:150]}...'
                score, _ = score_discovery(
                    matches=match.matches,
                    source_type=SourceType.HN_COMMENT,
                    domain_method=ExtractionMethod.MENTION,
                    published_at=comment.published_at,
                    trigger_text=trigger,
                    company_domain=info.company_domain,
                    source_title=title,
                    now=self._clock(),
                )
                candidate = DiscoveryCandidate(
                    company_domain=info.company_domain,
                    company_name=info.company_name or domain_to_company_name(info.company_domain),
                    source_type=SourceType.HN_COMMENT,
                    source_url=user_url(username),
                    source_title=f"{username} commented on: {title}",
                    trigger_text=trigger,
                    keywords_matched=match.keywords,
                    keyword_category=primary_category(match.matches),
                    confidence_score=round(score * info.confidence),
                    product_tags=match.product_tags,
                    source_published_at=comment.published_at,
                    metadata={"story_id": story.id, "profile_confidence": info.confidence},
                )
                self._record(
                    ctx,
                    self._discoveries.create_discovery(
                        candidate, options.team_id, options.auto_promote_threshold
                    ),
                )
            except (FetchError, ListenerError) as exc:
                self._item_error(ctx, f"Commenter {username}: {exc}")

    def _process_document(
        self, ctx: _ScanContext, document: _SourceDocument, match: MatchResult
    ) -> None:
        options = ctx.options
        domains = extract_domains_from_source(document.link, document.title, document.body)
        if not domains and document.author:
            info = self._author_company(ctx, document.author)
            if info is not None and info.company_domain and is_company_domain(info.company_domain):
                domains = [
                    ExtractedDomain(
                        domain=info.company_domain,
                        method=ExtractionMethod.MENTION,
                        confidence=info.confidence,
                        context=f"From HN user {document.author}'s profile",
                    )
                ]
        if not domains:
            return

        trigger = best_match_context(document.text, match.matches, TRIGGER_CONTEXT_CHARS)
        category = primary_category(match.matches)
        now = self._clock()
        for extracted in domains:
            score, factors = score_discovery(
                matches=match.matches,
                source_type=document.source_type,
                domain_method=extracted.method,
                published_at=document.published_at,
                trigger_text=trigger,
                company_domain=extracted.domain,
                source_title=document.title,
                is_known_company=is_known_company_domain(extracted.domain),
                now=now,
            )
            candidate = DiscoveryCandidate(
                company_domain=extracted.domain,
                company_name=domain_to_company_name(extracted.domain),
                source_type=document.source_type,
                source_url=document.source_url,
                source_title=document.source_title,
                trigger_text=trigger,
                keywords_matched=match.keywords,
                keyword_category=category,
                confidence_score=score,
                product_tags=match.product_tags,
                source_published_at=document.published_at,
                metadata={
                    "extraction_method": extracted.method.value,
                    "extraction_confidence": extracted.confidence,
                    "factors": factors.model_dump(),
                },
            )
            self._record(
                ctx,
                self._discoveries.create_discovery(
                    candidate, options.team_id, options.auto_promote_threshold
                ),
            )

    def _author_company(self, ctx: _ScanContext, username: str) -> CompanyInfo | None:
        """In-run cache, then a fresh stored profile, then fetch and upsert."""
        if username in ctx.author_cache:
            return ctx.author_cache[username]
        cutoff = self._clock() - timedelta(hours=ctx.options.rescan_after_hours)
        profile = self._authors.get(username)
        if profile is not None and (profile.is_excluded or profile.last_scanned_at >= cutoff):
            info = None if profile.is_excluded else profile.to_company_info()
            ctx.author_cache[username] = info
            return info

        user = self._hn.fetch_user(username)
        if user is None:
            ctx.author_cache[username] = None
            return None
        info = extract_company_from_profile(user)
        self._track_author(ctx, user, info, None)
        ctx.author_cache[username] = info
        return info

    def _prefetch_users(self, ctx: _ScanContext, usernames: list[str]) -> None:
        """Warm the client's user cache for authors that will need a fetch."""
        unknown = [name for name in usernames if name not in ctx.author_cache]
        recent = self._authors.recently_scanned(unknown, ctx.options.rescan_after_hours)
        missing = [name for name in unknown if name not in recent]
        if missing:
            self._hn.fetch_users(missing, concurrency=5)

    def _track_author(
        self, ctx: _ScanContext, user: HNUser, info: CompanyInfo, story: HNItem | None
    ) -> None:
        self._authors.upsert(user, info, story)
        ctx.stats.users_tracked += 1

    def _record(self, ctx: _ScanContext, result: DiscoveryResult) -> DiscoveryResult:
        stats = ctx.stats
        if result.status is DiscoveryOutcome.CREATED:
            stats.discoveries_created += 1
        elif result.status is DiscoveryOutcome.AUTO_PROMOTED:
            stats.discoveries_created += 1
            stats.auto_promoted += 1
        elif result.status is DiscoveryOutcome.DUPLICATE:
            stats.duplicates_skipped += 1
        else:
            self._item_error(ctx, f"Discovery failed: {result.error}")
        return result

    def _item_error(self, ctx: _ScanContext, message: str) -> None:
        ctx.stats.errors_count += 1
        self._metrics.increment(
            "listener.scan.item_error", tags={"source": ctx.options.source_key}
        )
        logger.warning(
            "listener.scan.item_error",
            extra={"run_id": str(ctx.run_id), "error": message},
        )
        self._runs.add_run_error(ctx.run_id, message)

    def _fail_run(self, ctx: _ScanContext, exc: Exception) -> None:
        message = str(exc) or exc.__class__.__name__
        logger.exception(
            "listener.scan.failed",
            extra={"run_id": str(ctx.run_id), "source": ctx.options.source_key},
        )
        self._metrics.increment("listener.scan.failed", tags={"source": ctx.options.source_key})
        counts = ctx.stats.counts()
        counts.errors_count += 1
        try:
            self._runs.add_run_error(ctx.run_id, message)
            self._runs.complete_run(ctx.run_id, RunStatus.FAILED, counts)
        except ListenerError:
            logger.exception("listener.scan.fail_run_error", extra={"run_id": str(ctx.run_id)})


def _unique_items(items: list[HNItem]) -> list[HNItem]:
    """Drop repeated item ids, keeping the first occurrence in place."""
    seen: set[int] = set()
    unique: list[HNItem] = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        unique.append(item)
    return unique


def _story_document(story: HNItem, text: str) -> _SourceDocument:
    return _SourceDocument(
        source_type=SourceType.HN_POST,
        text=text,
        link=story.url,
        title=story.title,
        body=html.unescape(story.text) if story.text else None,
        source_url=item_url(story.id),
        source_title=story.title,
        published_at=story.published_at,
        author=story.by,
    )
