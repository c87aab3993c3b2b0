"""Application configuration using Pydantic Settings.

Loads settings from environment variables and .env file.
All settings have sensible defaults for local development.
"""

from __future__ import annotations

import json
import logging

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Valid Python logging levels
VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class Settings(BaseSettings):
    """Service-wide configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Server ---
    service_env: str = "development"
    host: str = "0.0.0.0"
    port: int = 15020
    debug: bool = False

    # --- Logging ---
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level to uppercase.

        Falls back to INFO if an invalid level is provided.
        """
        normalized = v.upper().strip()
        if normalized not in VALID_LOG_LEVELS:
            # Log a warning (to stderr since logging may not be configured yet)
            import sys

            print(
                f"WARNING: Invalid LOG_LEVEL '{v}'. "
                f"Valid levels are: {', '.join(sorted(VALID_LOG_LEVELS))}. "
                "Falling back to INFO.",
                file=sys.stderr,
            )
            return "INFO"
        return normalized

    def get_log_level_int(self) -> int:
        """Return the integer value of the configured log level."""
        return getattr(logging, self.log_level, logging.INFO)

    # --- Database ---
    # SQLite for local development; postgresql+psycopg:// in production
    database_url: str = "sqlite:///./linkparse.db"

    # --- Cache ---
    cache_ttl_seconds: int = 24 * 60 * 60
    # Entries below this confidence (or with a generic title) get re-parsed in the background
    cache_heal_threshold: float = 0.5
    # Entries at or above this confidence are served even when a refresh is forced
    cache_high_confidence: float = 0.7
    cache_heal_cooldown_seconds: int = 600

    # --- Leases (cross-process single flight) ---
    lease_ttl_seconds: int = 30
    lease_poll_interval_seconds: float = 0.25

    # --- Fetcher ---
    fetch_timeout_seconds: float = 8.0
    fetch_total_budget_seconds: float = 20.0
    fetch_max_retries: int = 2
    fetch_backoff_base_seconds: float = 0.5
    fetch_max_redirects: int = 5
    fetch_max_bytes: int = 5 * 1024 * 1024  # 5 MiB page cap
    fetch_probe_bytes: int = 256 * 1024  # metadata probes read at most this much
    oembed_timeout_seconds: float = 3.0
    user_agent: str = "Mozilla/5.0 (compatible; LinkParseBot/1.0; +https://linkparse.dev/bot)"
    browser_user_agent: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    )

    # --- robots.txt ---
    respect_robots_txt: bool = True
    robots_user_agent: str = "LinkParseBot"
    robots_cache_ttl_seconds: int = 24 * 60 * 60

    # --- Backpressure ---
    domain_concurrency: int = 4
    domain_queue_depth: int = 32

    # Requests per client IP per minute on /parse; 0 disables the quota
    client_rate_limit_per_minute: int = 60

    # --- Request budget ---
    request_budget_seconds: float = 25.0

    # --- Extraction / quality ---
    min_content_length: int = 500
    confidence_threshold: float = 0.3
    sanitizer_max_nodes: int = 3000
    # Cover image for results without one; empty disables the fallback
    favicon_fallback_url: str = "https://www.google.com/s2/favicons?domain={domain}&sz=128"

    # --- CORS ---
    cors_origins: str = "http://localhost:3000"

    def get_cors_origins(self) -> list[str]:
        """Parse cors_origins as JSON list or comma-separated string."""
        raw = self.cors_origins.strip()
        if raw.startswith("["):
            return json.loads(raw)
        return [o.strip() for o in raw.split(",") if o.strip()]

    # --- Auth ---
    # Comma-separated list of accepted API keys. Empty means any non-empty
    # credential is accepted (the gateway in front of us validates it).
    api_keys: str = ""

    def get_api_keys(self) -> set[str]:
        """Return the configured API keys as a set."""
        return {k.strip() for k in self.api_keys.split(",") if k.strip()}


settings = Settings()
