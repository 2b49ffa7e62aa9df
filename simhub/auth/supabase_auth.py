"""Supabase JWT validation dependency for FastAPI."""

import logging
from typing import Optional

from fastapi import Header, HTTPException
from supabase import create_client

from simhub.config import settings

logger = logging.getLogger(__name__)


async def verify_jwt(authorization: Optional[str] = Header(None)):
    """Validate Supabase JWT from Authorization header.

    Returns the authenticated user object.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid token")

    token = authorization[len("Bearer "):]
    try:
        client = create_client(settings.supabase_url, settings.supabase_anon_key)
        user_response = client.auth.get_user(token)
    except Exception as e:
        logger.info("Rejected bearer token: %s", e)
        raise HTTPException(status_code=401, detail="Invalid token") from e
    if user_response is None or user_response.user is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    return user_response.user


async def require_user(authorization: Optional[str] = Header(None)):
    """Route dependency: enforces verify_jwt only when auth is enabled."""
    if not settings.auth_enabled:
        return None
    return await verify_jwt(authorization)
