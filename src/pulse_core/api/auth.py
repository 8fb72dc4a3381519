"""API-key guard shared by every report route.

Keys come from ``PULSE_API_KEYS`` (comma-separated, so a new key can be
rolled out before the old one is revoked) or the single ``PULSE_API_KEY``.
"""
import logging
import os
import secrets
from typing import Annotated, Optional

from fastapi import HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader


logger = logging.getLogger(__name__)


API_KEY_HEADER = "X-PULSE-API-KEY"

api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


def configured_api_keys() -> list[str]:
    """Return the accepted keys, preferring PULSE_API_KEYS over PULSE_API_KEY."""
    raw = os.getenv("PULSE_API_KEYS") or os.getenv("PULSE_API_KEY") or ""
    return [key.strip() for key in raw.split(",") if key.strip()]


def _matches(candidate: str, keys: list[str]) -> bool:
    # Compare against every key so timing does not reveal which one matched
    matched = False
    for key in keys:
        if secrets.compare_digest(candidate.encode("utf-8"), key.encode("utf-8")):
            matched = True
    return matched


async def require_api_key(
    request: Request,
    api_key: Annotated[Optional[str], Security(api_key_header)] = None,
) -> None:
    """Reject report requests without an accepted key.

    Args:
        request: Incoming request (path and client are logged on rejection)
        api_key: Value of the X-PULSE-API-KEY header, if present

    Raises:
        HTTPException: 503 if no key is configured, 401 if the key is
            missing or unknown
    """
    keys = configured_api_keys()
    if not keys:
        logger.error(
            "Rejecting %s: no API key configured (set PULSE_API_KEYS)",
            request.url.path,
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Report API is not configured",
        )

    if not api_key or not _matches(api_key, keys):
        logger.warning(
            "Rejected API key: path=%s, client=%s, header_present=%s",
            request.url.path,
            request.client.host if request.client else "unknown",
            bool(api_key),
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "API-Key"},
        )
