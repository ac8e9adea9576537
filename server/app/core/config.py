import logging
import sys
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

# Look for .env in project root (parent of server/)
_env_file = Path(__file__).resolve().parent.parent.parent.parent / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=_env_file, extra="ignore")

    # Environment
    env: Literal["development", "production"] = "development"

    # Server
    port: int = 8000  # PaaS platforms set PORT env var

    # Shared secret for the auth service calling the gate endpoints
    internal_api_key: str = ""

    # Trusted proxy IPs for X-Forwarded-For (comma-separated, CIDR allowed)
    # Set to nginx/load balancer IPs in production; empty = trust direct connection only
    trusted_proxies: str = "127.0.0.1,::1"

    # CORS - comma-separated origins or "*" for all (dev only)
    cors_origins: str = "*"

    # Rate limiting on the public endpoints (never on the internal gate endpoints)
    rate_limit_enabled: bool | None = None  # None = auto (disabled in dev, enabled in prod)
    public_rate_limit_per_minute: int = 60

    # Cloudflare Turnstile (CAPTCHA challenge for risky login attempts)
    turnstile_secret_key: str = ""
    turnstile_site_key: str = ""
    captcha_verify_timeout_seconds: float = 5.0

    # Abuse gate
    abuse_gate_enabled: bool | None = None  # None = auto (enabled everywhere)
    abuse_window_seconds: float = 15 * 60
    abuse_block_failure_threshold: int = 10
    abuse_challenge_failure_ratio: float = 0.4
    abuse_challenge_min_attempts: int = 3
    abuse_velocity_window_seconds: float = 60
    abuse_velocity_threshold: int = 20
    abuse_clock_skew_seconds: float = 5
    abuse_retention_windows: int = 4
    abuse_sweep_interval_seconds: float = 5 * 60
    # Fold a user-agent hash into origin keys (IP + UA) instead of the bare IP
    abuse_origin_include_user_agent: bool = False

    @property
    def is_rate_limit_enabled(self) -> bool:
        """Check if rate limiting is enabled (auto-detect based on env if not set)."""
        if self.rate_limit_enabled is not None:
            return self.rate_limit_enabled
        return self.is_production

    @property
    def is_abuse_gate_enabled(self) -> bool:
        if self.abuse_gate_enabled is not None:
            return self.abuse_gate_enabled
        return True

    @property
    def is_production(self) -> bool:
        return self.env == "production"


def validate_settings(settings: Settings) -> None:
    """Validate required settings and print helpful error messages."""
    errors = []

    if settings.is_production:
        if not settings.internal_api_key:
            errors.append("INTERNAL_API_KEY must be set in production")
        if settings.cors_origins == "*":
            errors.append(
                "CORS_ORIGINS should not be '*' in production - "
                "set to your frontend domain (e.g., https://app.engineo.ai)"
            )
        if not settings.turnstile_secret_key:
            errors.append(
                "TURNSTILE_SECRET_KEY must be set in production - "
                "challenged logins could never pass CAPTCHA verification"
            )

    if not settings.is_production and not settings.turnstile_secret_key:
        logging.warning("TURNSTILE_SECRET_KEY not set - CAPTCHA verification will be skipped")

    if not settings.internal_api_key:
        logging.warning("INTERNAL_API_KEY not set - gate endpoints will reject every request")

    for name in (
        "abuse_challenge_min_attempts",
        "abuse_block_failure_threshold",
        "abuse_velocity_threshold",
        "abuse_retention_windows",
    ):
        if getattr(settings, name) < 1:
            errors.append(f"{name.upper()} must be at least 1")
    if not 0 <= settings.abuse_challenge_failure_ratio <= 1:
        errors.append("ABUSE_CHALLENGE_FAILURE_RATIO must be between 0 and 1")
    if settings.abuse_window_seconds <= 0 or settings.abuse_velocity_window_seconds <= 0:
        errors.append("ABUSE_WINDOW_SECONDS and ABUSE_VELOCITY_WINDOW_SECONDS must be positive")

    if errors:
        for error in errors:
            logging.error("Configuration error: %s", error)
        sys.exit(1)


@lru_cache
def get_settings() -> Settings:
    settings = Settings()
    validate_settings(settings)
    return settings
