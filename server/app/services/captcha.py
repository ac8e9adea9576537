"""Cloudflare Turnstile CAPTCHA verification.

The browser widget hands the user a token; the auth flow forwards it here
and we confirm it with Cloudflare's siteverify endpoint.
"""

import logging

import httpx

from app.core.config import get_settings

logger = logging.getLogger(__name__)

VERIFY_URL = "https://challenges.cloudflare.com/turnstile/v0/siteverify"

# Cloudflare's always-pass test site key, used by the widget in development
# See: https://developers.cloudflare.com/turnstile/troubleshooting/testing/
DEV_SITE_KEY = "1x00000000000000000000AA"

MAX_TOKEN_LENGTH = 2048


def get_captcha_site_key() -> str:
    """Site key the frontend should render the widget with."""
    settings = get_settings()
    if settings.turnstile_site_key:
        return settings.turnstile_site_key
    if settings.is_production:
        return ""
    return DEV_SITE_KEY


async def verify_captcha_token(token: str, remote_ip: str | None = None) -> bool:
    """Verify a Turnstile token with Cloudflare.

    Returns True if valid, False otherwise.
    Skips verification in dev if no secret key is configured; refuses in
    production.
    """
    settings = get_settings()

    if not settings.turnstile_secret_key:
        if settings.is_production:
            logger.error("TURNSTILE_SECRET_KEY not configured - rejecting CAPTCHA token")
            return False
        return True

    if not token or len(token) > MAX_TOKEN_LENGTH:
        return False

    data = {
        "secret": settings.turnstile_secret_key,
        "response": token,
    }
    if remote_ip:
        data["remoteip"] = remote_ip

    try:
        async with httpx.AsyncClient(timeout=settings.captcha_verify_timeout_seconds) as client:
            resp = await client.post(VERIFY_URL, data=data)
            result = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("Turnstile verification request failed: %s", e)
        return False

    if not result.get("success", False):
        logger.info("Turnstile rejected token: %s", result.get("error-codes", []))
        return False
    return True
