"""Resilient outbound HTTP shared by the source clients.

Requests pass through a fixed middleware chain, outermost first:

    retry -> proxy rotation -> rate limit -> timeout -> transport

so every retry attempt is routed through the current proxy, waits for the
shared token bucket, and carries its own timeout.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from threading import Lock
from typing import Any

import httpx

from app.clients.backoff import exponential_delay, linear_delay
from app.config import settings
from app.observability.metrics import metrics as default_metrics

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], None]
ClockFn = Callable[[], float]


class FetchError(RuntimeError):
    """Base error for outbound fetch failures."""

    def __init__(
        self,
        message: str,
        code: str = "FETCH_ERROR",
        *,
        url: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.url = url
        self.status_code = status_code


class FetchTimeoutError(FetchError):
    """Raised when a request exceeds its timeout on every attempt."""

    def __init__(self, message: str = "Request timed out", *, url: str | None = None) -> None:
        super().__init__(message, code="FETCH_TIMEOUT", url=url)


class FetchNetworkError(FetchError):
    """Raised when the transport fails (DNS, connection reset, proxy failure)."""

    def __init__(self, message: str = "Network error", *, url: str | None = None) -> None:
        super().__init__(message, code="FETCH_NETWORK", url=url)


class FetchRateLimitError(FetchError):
    """Raised when the upstream keeps answering HTTP 429 after all retries."""

    def __init__(self, message: str = "Rate limited", *, url: str | None = None) -> None:
        super().__init__(message, code="FETCH_429", url=url, status_code=429)


@dataclass(frozen=True)
class FetchRequest:
    url: str
    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=dict)
    timeout: float = 10.0
    proxy: str | None = None


Send = Callable[[FetchRequest], httpx.Response]
Middleware = Callable[[Send], Send]


class TokenBucketRateLimiter:
    """Token bucket with a randomized politeness floor between requests.

    Tokens are reserved under the lock before sleeping, so concurrent workers
    queue behind each other instead of racing for the same refill.
    """

    def __init__(
        self,
        capacity: int = 10,
        refill_per_second: float = 2.0,
        *,
        min_interval: float = 0.1,
        max_interval: float = 0.2,
        clock: ClockFn = time.monotonic,
        sleep: SleepFn = time.sleep,
        rng: random.Random | None = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        if refill_per_second <= 0:
            raise ValueError("refill_per_second must be > 0")
        if min_interval < 0 or max_interval < min_interval:
            raise ValueError("politeness interval must satisfy 0 <= min <= max")
        self._capacity = float(capacity)
        self._refill = refill_per_second
        self._min_interval = min_interval
        self._max_interval = max_interval
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._tokens = float(capacity)
        self._updated_at = clock()
        self._lock = Lock()

    @property
    def available_tokens(self) -> float:
        with self._lock:
            self._refill_locked(self._clock())
            return max(self._tokens, 0.0)

    def acquire(self) -> float:
        """Block until a request may be sent; return the seconds waited."""
        with self._lock:
            self._refill_locked(self._clock())
            self._tokens -= 1.0
            token_wait = -self._tokens / self._refill if self._tokens < 0 else 0.0
            floor = self._rng.uniform(self._min_interval, self._max_interval)
        delay = max(token_wait, floor)
        if delay > 0:
            self._sleep(delay)
        return delay

    def _refill_locked(self, now: float) -> None:
        elapsed = max(0.0, now - self._updated_at)
        self._tokens = min(self._capacity, self._tokens + elapsed * self._refill)
        self._updated_at = now


class ProxyRotator:
    """Round-robin proxy selection with temporary quarantine of rate-limited proxies."""

    def __init__(
        self,
        proxies: Sequence[str],
        *,
        quarantine_seconds: float = 300.0,
        clock: ClockFn = time.monotonic,
    ) -> None:
        self._proxies = [proxy for proxy in proxies if proxy]
        self._quarantine_seconds = quarantine_seconds
        self._clock = clock
        self._index = 0
        self._released_at: dict[str, float] = {}
        self._lock = Lock()

    @property
    def enabled(self) -> bool:
        return bool(self._proxies)

    def current(self) -> str | None:
        """Return the active proxy, skipping any still in quarantine."""
        if not self._proxies:
            return None
        with self._lock:
            now = self._clock()
            total = len(self._proxies)
            for offset in range(total):
                index = (self._index + offset) % total
                candidate = self._proxies[index]
                released_at = self._released_at.get(candidate)
                if released_at is None or released_at <= now:
                    self._released_at.pop(candidate, None)
                    self._index = index
                    return candidate
            return min(self._proxies, key=lambda proxy: self._released_at[proxy])

    def mark_rate_limited(self, proxy: str) -> None:
        """Quarantine ``proxy`` and advance to the next one."""
        if proxy not in self._proxies:
            return
        with self._lock:
            self._released_at[proxy] = self._clock() + self._quarantine_seconds
            if self._proxies[self._index] == proxy:
                self._index = (self._index + 1) % len(self._proxies)
        logger.warning(
            "fetch.proxy.quarantined",
            extra={"proxy": _redact_proxy(proxy), "quarantine_seconds": self._quarantine_seconds},
        )

    def quarantined(self) -> list[str]:
        with self._lock:
            now = self._clock()
            return [proxy for proxy, until in self._released_at.items() if until > now]


def timeout_middleware(send: Send) -> Send:
    """Translate httpx timeouts and transport failures into fetch errors."""

    def _send(request: FetchRequest) -> httpx.Response:
        try:
            return send(request)
        except httpx.TimeoutException as exc:
            raise FetchTimeoutError(
                f"Request to {request.url} timed out after {request.timeout}s", url=request.url
            ) from exc
        except httpx.TransportError as exc:
            raise FetchNetworkError(
                f"Network error calling {request.url}: {exc}", url=request.url
            ) from exc

    return _send


def rate_limit_middleware(limiter: TokenBucketRateLimiter | None) -> Middleware:
    def wrap(send: Send) -> Send:
        def _send(request: FetchRequest) -> httpx.Response:
            if limiter is not None:
                limiter.acquire()
            return send(request)

        return _send

    return wrap


def proxy_middleware(rotator: ProxyRotator | None) -> Middleware:
    def wrap(send: Send) -> Send:
        def _send(request: FetchRequest) -> httpx.Response:
            if rotator is None or not rotator.enabled:
                return send(request)
            proxy = rotator.current()
            response = send(replace(request, proxy=proxy))
            if response.status_code == 429 and proxy is not None:
                rotator.mark_rate_limited(proxy)
            return response

        return _send

    return wrap


def retry_middleware(
    *,
    max_retries: int,
    retry_delay: float,
    sleep: SleepFn,
    metrics: Any = default_metrics,
) -> Middleware:
    """Retry 429s with exponential backoff and timeouts/network errors linearly."""
    if max_retries < 0:
        raise ValueError("max_retries must be >= 0")
    max_attempts = max_retries + 1

    def wrap(send: Send) -> Send:
        def _send(request: FetchRequest) -> httpx.Response:
            for attempt in range(max_attempts):
                final_attempt = attempt == max_attempts - 1
                try:
                    response = send(request)
                except (FetchTimeoutError, FetchNetworkError) as exc:
                    if final_attempt:
                        raise
                    delay = linear_delay(attempt, retry_delay)
                    _log_retry(request, exc.code, attempt, max_attempts, delay, metrics)
                    sleep(delay)
                    continue
                if response.status_code != 429:
                    return response
                if final_attempt:
                    raise FetchRateLimitError(
                        f"Rate limited by {request.url} after {max_attempts} attempts",
                        url=request.url,
                    )
                delay = exponential_delay(attempt, retry_delay)
                _log_retry(request, "FETCH_429", attempt, max_attempts, delay, metrics)
                sleep(delay)
            raise FetchError("Retry loop exited without a response.", url=request.url)

        return _send

    return wrap


def _log_retry(
    request: FetchRequest,
    code: str,
    attempt: int,
    max_attempts: int,
    delay: float,
    metrics: Any,
) -> None:
    metrics.increment("fetch.retry", tags={"code": code})
    logger.warning(
        "fetch.retry",
        extra={
            "url": request.url,
            "code": code,
            "attempt": attempt + 1,
            "max_attempts": max_attempts,
            "delay_ms": round(delay * 1000, 2),
        },
    )


def _redact_proxy(proxy: str) -> str:
    parsed = httpx.URL(proxy)
    if parsed.userinfo:
        return str(parsed.copy_with(username=None, password=None))
    return proxy


class ResilientFetcher:
    """HTTP GET helper combining timeout, retry, rate limiting and proxy rotation."""

    def __init__(
        self,
        *,
        rate_limiter: TokenBucketRateLimiter | None = None,
        proxy_rotator: ProxyRotator | None = None,
        http_client: httpx.Client | None = None,
        client_factory: Callable[[str | None], httpx.Client] | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float = 10.0,
        max_retries: int = 2,
        retry_delay: float = 1.0,
        sleep: SleepFn = time.sleep,
        metrics: Any = default_metrics,
    ) -> None:
        self._rate_limiter = rate_limiter
        self._proxy_rotator = proxy_rotator
        self._client_factory = client_factory or _default_client_factory
        self._owns_http_client = http_client is None
        self._http = http_client or self._client_factory(None)
        self._proxy_clients: dict[str, httpx.Client] = {}
        self._headers = dict(headers or {})
        self._timeout = timeout
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._sleep = sleep
        self._metrics = metrics
        self._lock = Lock()

    @classmethod
    def from_settings(cls) -> "ResilientFetcher":
        """Build a fetcher from the configured limiter, proxies and retry defaults."""
        limiter = TokenBucketRateLimiter(
            capacity=settings.rate_limit_capacity,
            refill_per_second=settings.rate_limit_refill_per_second,
            min_interval=settings.rate_limit_min_interval_seconds,
            max_interval=settings.rate_limit_max_interval_seconds,
        )
        rotator = None
        if settings.proxy_urls:
            rotator = ProxyRotator(
                settings.proxy_urls, quarantine_seconds=settings.proxy_quarantine_seconds
            )
        return cls(
            rate_limiter=limiter,
            proxy_rotator=rotator,
            headers={"User-Agent": settings.http_user_agent},
            timeout=settings.fetch_timeout_seconds,
            max_retries=settings.fetch_max_retries,
            retry_delay=settings.fetch_retry_delay_seconds,
        )

    @property
    def proxy_rotator(self) -> ProxyRotator | None:
        return self._proxy_rotator

    def fetch(
        self,
        url: str,
        *,
        timeout: float | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        use_rate_limiter: bool = True,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        """GET ``url`` through the middleware chain and return the final response."""
        request = FetchRequest(
            url=url,
            headers={**self._headers, **(headers or {})},
            timeout=self._timeout if timeout is None else timeout,
        )
        send: Send = self._transport
        send = timeout_middleware(send)
        send = rate_limit_middleware(self._rate_limiter if use_rate_limiter else None)(send)
        send = proxy_middleware(self._proxy_rotator)(send)
        send = retry_middleware(
            max_retries=self._max_retries if max_retries is None else max_retries,
            retry_delay=self._retry_delay if retry_delay is None else retry_delay,
            sleep=self._sleep,
            metrics=self._metrics,
        )(send)

        started = time.perf_counter()
        try:
            response = send(request)
        except FetchError as exc:
            self._metrics.increment("fetch.failed", tags={"code": exc.code})
            raise
        duration_ms = (time.perf_counter() - started) * 1000
        self._metrics.timing(
            "fetch.duration_ms", duration_ms, tags={"status": response.status_code}
        )
        return response

    def fetch_json(self, url: str, **options: Any) -> Any:
        """GET ``url`` and decode JSON, raising ``FetchError`` on HTTP errors or bad payloads."""
        response = self.fetch(url, **options)
        if response.status_code >= 400:
            raise FetchError(
                f"HTTP {response.status_code} from {url}",
                code=f"FETCH_HTTP_{response.status_code}",
                url=url,
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise FetchError(f"Invalid JSON from {url}", code="FETCH_SCHEMA", url=url) from exc

    def close(self) -> None:
        """Close owned HTTP clients, including per-proxy clients."""
        with self._lock:
            proxy_clients = list(self._proxy_clients.values())
            self._proxy_clients.clear()
        for client in proxy_clients:
            client.close()
        if self._owns_http_client:
            self._http.close()

    def _transport(self, request: FetchRequest) -> httpx.Response:
        client = self._client_for(request.proxy)
        return client.request(
            request.method,
            request.url,
            headers=dict(request.headers),
            timeout=request.timeout,
        )

    def _client_for(self, proxy: str | None) -> httpx.Client:
        if proxy is None:
            return self._http
        with self._lock:
            client = self._proxy_clients.get(proxy)
            if client is None:
                client = self._client_factory(proxy)
                self._proxy_clients[proxy] = client
            return client

    def __enter__(self) -> "ResilientFetcher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _default_client_factory(proxy: str | None) -> httpx.Client:
    return httpx.Client(proxy=proxy, follow_redirects=True)
