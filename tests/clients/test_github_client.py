from __future__ import annotations

import httpx

from app.clients.fetch import ResilientFetcher
from app.clients.github import GitHubClient, guess_company_domain
from tests.helpers.metrics_stub import StubMetrics


def _client(handler, token: str | None = None) -> GitHubClient:
    fetcher = ResilientFetcher(
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
        max_retries=0,
        sleep=lambda _: None,
        metrics=StubMetrics(),
    )
    return GitHubClient(fetcher, base_url="https://gh.test", token=token, metrics=StubMetrics())


def test_guess_company_domain_slugifies_name():
    assert guess_company_domain("Acme Corp") == "acmecorp.com"
    assert guess_company_domain("!!!") is None


def test_fetch_company_strips_handle_prefix_and_sends_token():
    seen: dict[str, str] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("authorization", "")
        return httpx.Response(200, json={"login": "alice", "company": "@Stripe "})

    company = _client(handler, token="t0ken").fetch_company("alice")

    assert company is not None
    assert company.company == "Stripe"
    assert company.domain == "stripe.com"
    assert seen["auth"] == "Bearer t0ken"


def test_fetch_company_returns_none_without_company_or_on_error():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/nobody"):
            return httpx.Response(200, json={"login": "nobody", "company": None})
        return httpx.Response(500)

    client = _client(handler)

    assert client.fetch_company("nobody") is None
    assert client.fetch_company("broken") is None
    assert client.fetch_company("") is None
