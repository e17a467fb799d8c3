"""Wires repositories, source clients and services into one listener bundle."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.engine import Engine

from app.clients.fetch import ResilientFetcher
from app.clients.github import GitHubClient
from app.clients.hn import HackerNewsClient
from app.clients.rss import RSSClient
from app.config import Settings, settings as default_settings
from app.core.database import build_engine, resolve_backend_tag
from app.services.listener.author_repository import build_author_repository
from app.services.listener.authors import AuthorService
from app.services.listener.discoveries import DiscoveryService
from app.services.listener.discovery_repository import build_discovery_repositories
from app.services.listener.keyword_repository import build_keyword_repository
from app.services.listener.keywords import KeywordCatalog
from app.services.listener.orchestrator import ScanOrchestrator
from app.services.listener.run_repository import build_run_repository
from app.services.listener.runs import RunService

logger = logging.getLogger(__name__)


@dataclass
class ListenerServices:
    engine: Engine | None
    fetcher: ResilientFetcher
    hn: HackerNewsClient
    rss: RSSClient
    github: GitHubClient
    keywords: KeywordCatalog
    discoveries: DiscoveryService
    runs: RunService
    authors: AuthorService
    orchestrator: ScanOrchestrator

    def close(self) -> None:
        self.fetcher.close()
        if self.engine is not None:
            self.engine.dispose()


def build_listener_services(
    config: Settings | None = None,
    *,
    engine: Engine | None = None,
    fetcher: ResilientFetcher | None = None,
) -> ListenerServices:
    """Build the service graph; without a database URL everything lives in memory."""
    config = config or default_settings
    backend = "memory"
    if engine is None and config.database_url:
        engine = build_engine(
            config.database_url,
            pool_min_size=config.db_pool_min_size,
            pool_max_size=config.db_pool_max_size,
            auto_create_schema=config.database_auto_create_schema,
        )
    if engine is not None:
        backend = resolve_backend_tag(str(engine.url))

    discovery_repo, prospect_repo = build_discovery_repositories(engine, backend=backend)
    keywords = KeywordCatalog(build_keyword_repository(engine, backend=backend))
    discoveries = DiscoveryService(discovery_repo, prospect_repo)
    runs = RunService(build_run_repository(engine, backend=backend))
    authors = AuthorService(build_author_repository(engine, backend=backend))

    fetcher = fetcher or ResilientFetcher.from_settings()
    hn = HackerNewsClient.from_settings(fetcher)
    rss = RSSClient.from_settings(fetcher)
    github = GitHubClient.from_settings(fetcher)
    orchestrator = ScanOrchestrator(
        hn=hn,
        rss=rss,
        keywords=keywords,
        discoveries=discoveries,
        runs=runs,
        authors=authors,
        github=github,
    )
    logger.info("listener.services.initialized", extra={"backend": backend})
    return ListenerServices(
        engine=engine,
        fetcher=fetcher,
        hn=hn,
        rss=rss,
        github=github,
        keywords=keywords,
        discoveries=discoveries,
        runs=runs,
        authors=authors,
        orchestrator=orchestrator,
    )


_SERVICES: ListenerServices | None = None


def get_listener_services() -> ListenerServices:
    """Singleton accessor used by API routes."""
    global _SERVICES  # noqa: PLW0603
    if _SERVICES is None:
        _SERVICES = build_listener_services()
    return _SERVICES


def reset_listener_services() -> None:
    global _SERVICES  # noqa: PLW0603
    if _SERVICES is not None:
        _SERVICES.close()
    _SERVICES = None
