"""
API key authentication for Clipforge.

Endpoints that start work or touch the filesystem depend on verify_api_key.
"""

import logging
from typing import Optional

from fastapi import Header, HTTPException, status

from clipforge.config import get_settings

logger = logging.getLogger(__name__)


async def verify_api_key(
    x_clipforge_api_key: Optional[str] = Header(None, alias="X-Clipforge-API-Key"),
) -> None:
    """
    FastAPI dependency to verify the Clipforge API key.

    If CLIPFORGE_API_KEY is configured, requests must send a matching
    X-Clipforge-API-Key header. Without a configured key authentication is
    skipped (development mode).

    Raises:
        HTTPException: 401 if the key is missing or wrong
    """
    expected_key = get_settings().clipforge_api_key

    if not expected_key:
        logger.debug("CLIPFORGE_API_KEY not configured, skipping authentication")
        return

    if not x_clipforge_api_key:
        logger.warning("Request missing X-Clipforge-API-Key header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key",
            headers={"WWW-Authenticate": "X-Clipforge-API-Key"},
        )

    if x_clipforge_api_key != expected_key:
        logger.warning("Invalid API key received")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "X-Clipforge-API-Key"},
        )
