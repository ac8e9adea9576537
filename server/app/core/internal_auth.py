"""Shared-secret authentication for the service-to-service gate endpoints."""

import logging
import secrets

from fastapi import Header, HTTPException

from app.core.config import get_settings

logger = logging.getLogger(__name__)


async def verify_internal_api_key(x_internal_api_key: str = Header("")) -> None:
    """Verify the X-Internal-Api-Key header.

    Same 401 for a missing, wrong or unconfigured key.
    """
    settings = get_settings()

    if not settings.internal_api_key:
        logger.error("Internal API key not configured - rejecting gate request")
        raise HTTPException(
            status_code=401,
            detail={"code": "UNAUTHORIZED", "message": "Authentication failed"},
        )

    if not secrets.compare_digest(x_internal_api_key, settings.internal_api_key):
        raise HTTPException(
            status_code=401,
            detail={"code": "UNAUTHORIZED", "message": "Authentication failed"},
        )
