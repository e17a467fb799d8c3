"""Shared error classes for the listener core and its repositories."""

from __future__ import annotations


class ListenerError(RuntimeError):
    """Base exception raised by the signal listener."""

    def __init__(self, message: str, code: str = "LISTENER_ERROR") -> None:
        super().__init__(message)
        self.code = code


class ListenerPersistenceError(ListenerError):
    """Raised when a repository fails to save or load records."""

    def __init__(self, message: str, code: str = "500_INTERNAL") -> None:
        super().__init__(message, code=code)


class DuplicateDiscoveryError(ListenerError):
    """Raised when a discovery already exists for (company_domain, source_url)."""

    def __init__(self, company_domain: str, source_url: str) -> None:
        super().__init__(
            f"Discovery already exists for {company_domain} at {source_url}.",
            code="409_DISCOVERY_EXISTS",
        )
        self.company_domain = company_domain
        self.source_url = source_url


class KeywordConflictError(ListenerError):
    """Raised when a keyword is already part of the taxonomy."""

    def __init__(self, keyword: str) -> None:
        super().__init__(f"Keyword already exists: {keyword}", code="409_KEYWORD_EXISTS")
        self.keyword = keyword


class NotFoundError(ListenerError):
    """Raised when a requested record does not exist."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="404_NOT_FOUND")


class InvalidTransitionError(ListenerError):
    """Raised when a discovery status change violates the state machine."""

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(
            f"Cannot move discovery from {current} to {requested}.",
            code="409_INVALID_TRANSITION",
        )
        self.current = current
        self.requested = requested


class ValidationError(ListenerError):
    """Raised when caller input is rejected before reaching storage."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="422_INVALID_INPUT")


class ScanInProgressError(ListenerError):
    """Raised when a scan is requested for a source that is already scanning."""

    def __init__(self, source_key: str) -> None:
        super().__init__(
            f"A scan for source '{source_key}' is already running.",
            code="409_SCAN_IN_PROGRESS",
        )
        self.source_key = source_key


class RunFinalizedError(ListenerError):
    """Raised when a scan run is finalized more than once."""

    def __init__(self, run_id: str, status: str) -> None:
        super().__init__(
            f"Run {run_id} is already finalized with status {status}.",
            code="409_RUN_FINALIZED",
        )
        self.run_id = run_id
        self.status = status
