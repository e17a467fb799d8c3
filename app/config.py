from __future__ import annotations

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Signal Listener"
    app_version: str = "0.1.0"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Database
    database_url: str | None = None
    db_pool_min_size: int = 1
    db_pool_max_size: int = 5
    database_auto_create_schema: bool = True

    # Security
    cors_origins: list[str] = []  # Empty by default for security

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Metrics
    metrics_disable: bool = False
    metrics_namespace: str = "listener"
    metrics_sample_rate: float = 1.0

    # Fetch layer
    http_user_agent: str = "SignalListener/1.0 (+https://news.ycombinator.com)"
    fetch_timeout_seconds: float = 10.0
    fetch_max_retries: int = 2
    fetch_retry_delay_seconds: float = 1.0
    rate_limit_capacity: int = 10
    rate_limit_refill_per_second: float = 2.0
    rate_limit_min_interval_seconds: float = 0.1
    rate_limit_max_interval_seconds: float = 0.2
    proxy_urls: list[str] = []
    proxy_quarantine_seconds: float = 300.0

    # Source caches
    hn_item_cache_size: int = 5000
    hn_item_cache_ttl_seconds: float = 300.0
    hn_user_cache_size: int = 2000
    hn_user_cache_ttl_seconds: float = 600.0

    # Sources
    hn_api_base_url: str = "https://hacker-news.firebaseio.com/v0"
    github_api_base_url: str = "https://api.github.com"
    github_token: str | None = None
    rss_feed_urls: list[str] = []

    # Listener
    listener_team_id: str = "default"

    model_config = ConfigDict(env_file=".env", case_sensitive=False)


settings = Settings()
