"""Client for reading the company field of public GitHub profiles."""

from __future__ import annotations

import logging
import re
from typing import Any

from app.clients.fetch import FetchError, ResilientFetcher
from app.config import settings
from app.models.sources import GitHubCompany
from app.observability.metrics import metrics as default_metrics

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")


def guess_company_domain(company: str) -> str | None:
    """``"Acme Corp"`` -> ``"acmecorp.com"``; ``None`` when nothing usable remains."""
    slug = _NON_ALNUM_RE.sub("", company.lower())
    return f"{slug}.com" if slug else None


class GitHubClient:
    """Minimal GitHub users API client used to cross-validate profile extraction."""

    def __init__(
        self,
        fetcher: ResilientFetcher,
        *,
        base_url: str = GITHUB_API_BASE,
        token: str | None = None,
        metrics: Any = default_metrics,
    ) -> None:
        self._fetcher = fetcher
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._metrics = metrics

    @classmethod
    def from_settings(cls, fetcher: ResilientFetcher) -> "GitHubClient":
        return cls(fetcher, base_url=settings.github_api_base_url, token=settings.github_token)

    def fetch_company(self, username: str) -> GitHubCompany | None:
        """Return the declared company for ``username`` or ``None`` when absent or unreachable."""
        if not username:
            return None
        headers = {"Accept": "application/vnd.github.v3+json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        try:
            payload = self._fetcher.fetch_json(
                f"{self._base_url}/users/{username}",
                headers=headers,
                max_retries=1,
                use_rate_limiter=False,
            )
        except FetchError as exc:
            self._metrics.increment("github.user.fetch_error", tags={"code": exc.code})
            logger.warning(
                "github.user.fetch_error", extra={"username": username, "code": exc.code}
            )
            return None

        company = payload.get("company") if isinstance(payload, dict) else None
        if not isinstance(company, str) or not company.strip():
            return None
        company = company.strip().removeprefix("@").strip()
        if not company:
            return None
        self._metrics.increment("github.user.company_found")
        return GitHubCompany(company=company, domain=guess_company_domain(company))
