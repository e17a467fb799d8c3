"""Shared plumbing for the SQLModel-backed listener repositories."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from app.observability.metrics import metrics
from app.services.listener.errors import ListenerPersistenceError

logger = logging.getLogger(__name__)


class SqlRepository:
    """Base class owning the engine handle and the error-wrapping session scope."""

    event_prefix = "listener"

    def __init__(self, engine: Engine, *, backend: str = "database") -> None:
        self._engine = engine
        self._metrics_tags = {"repository": backend}

    @property
    def backend(self) -> str:
        return self._metrics_tags["repository"]

    @contextmanager
    def _session(self, operation: str, **context: Any) -> Iterator[Session]:
        """Yield a session; SQLAlchemy failures surface as ``ListenerPersistenceError``."""
        try:
            with Session(self._engine, expire_on_commit=False) as session:
                yield session
        except SQLAlchemyError as exc:
            metrics.increment(f"{self.event_prefix}.persistence.error", tags=self._metrics_tags)
            logger.exception(
                f"{self.event_prefix}.persistence.error",
                extra={"operation": operation, "backend": self.backend, **context},
            )
            raise ListenerPersistenceError(f"Failed to {operation}.") from exc
