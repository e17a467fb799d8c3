"""SQLAlchemy engine construction shared by the SQL repositories."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from app.config import settings

logger = logging.getLogger(__name__)


def coerce_sync_database_url(url: URL) -> tuple[str, dict[str, Any], str]:
    """Convert async connection strings into sync SQLAlchemy URLs."""
    drivername = url.drivername
    connect_args: dict[str, Any] = {}
    if drivername.endswith("+asyncpg"):
        drivername = drivername.replace("+asyncpg", "+psycopg2")
    elif drivername.endswith("+psycopg"):
        drivername = drivername.replace("+psycopg", "+psycopg2")
    sync_url = url.set(drivername=drivername)
    query = dict(sync_url.query) if sync_url.query else {}
    removed_ssl = query.pop("ssl", None) is not None
    sync_url = sync_url.set(query=query or None)

    host = (url.host or "").lower()
    if drivername.startswith("postgresql"):
        if "sslmode" not in query and (removed_ssl or "supabase.co" in host):
            connect_args["sslmode"] = "require"
    if drivername.startswith("sqlite"):
        connect_args.setdefault("check_same_thread", False)
    return sync_url.render_as_string(hide_password=False), connect_args, drivername


def resolve_backend_tag(database_url: str) -> str:
    parsed = make_url(database_url)
    if parsed.drivername.startswith("sqlite"):
        return "sqlite"
    if "supabase.co" in (parsed.host or "").lower():
        return "supabase"
    return "postgres"


def build_engine(
    database_url: str,
    *,
    pool_min_size: int | None = None,
    pool_max_size: int | None = None,
    auto_create_schema: bool = False,
) -> Engine:
    """Create a sync engine; in-memory SQLite shares one connection across threads."""
    if not database_url:
        raise ValueError("DATABASE_URL is required to build a database engine.")
    sync_url, connect_args, drivername = coerce_sync_database_url(make_url(database_url))
    engine_kwargs: dict[str, Any] = {"echo": settings.debug, "connect_args": connect_args}
    if drivername.startswith("sqlite"):
        if ":memory:" in sync_url or sync_url.rstrip("/").endswith("sqlite:"):
            engine_kwargs["poolclass"] = StaticPool
    else:
        pool_min = max(pool_min_size or settings.db_pool_min_size, 1)
        pool_max = max(pool_max_size or settings.db_pool_max_size, pool_min)
        engine_kwargs.update(
            pool_pre_ping=True,
            pool_size=pool_min,
            max_overflow=max(pool_max - pool_min, 0),
        )

    engine = create_engine(sync_url, **engine_kwargs)
    if auto_create_schema:
        # Import registers the listener tables on SQLModel.metadata.
        import app.models.records  # noqa: F401

        SQLModel.metadata.create_all(engine)
    logger.info("database.engine.initialized", extra={"driver": drivername})
    return engine


def check_database_health(engine: Engine | None) -> bool:
    """Return True when the database answers ``SELECT 1`` (or none is configured)."""
    if engine is None:
        return True
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError:
        logger.exception("database.health.failed")
        return False
