from __future__ import annotations

import logging
from typing import Optional

from fastapi import Header
from supabase import AuthError

from app import db
from app.exceptions import Unauthorized

logger = logging.getLogger(__name__)


def _bearer_token(authorization: Optional[str]) -> str:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthorized("Missing or invalid authorization header")
    return token.strip()


async def get_current_user_id(authorization: Optional[str] = Header(None)) -> str:
    """Resolve the dashboard's Supabase session token to a user id."""
    token = _bearer_token(authorization)

    if db.SUPABASE is None:
        logger.error("Supabase client not configured; cannot authenticate request")
        raise Unauthorized("Authentication is not configured")

    try:
        response = db.SUPABASE.auth.get_user(token)
    except AuthError as e:
        logger.warning(f"Rejected bearer token: {e}")
        raise Unauthorized("Invalid authentication token") from e

    user = getattr(response, "user", None)
    if user is None:
        raise Unauthorized("Invalid authentication token")
    return str(user.id)
