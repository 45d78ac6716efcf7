# =============================================================================
# Auth Service - Supabase Session Verification
# =============================================================================
#
# Users sign in on the frontend with Google OAuth through Supabase Auth. The
# frontend then sends the Supabase access token (a JWT) with each request.
# This module turns that token into an `AuthUser`, or None when the token is
# missing, invalid or expired.
#
# Tokens are validated by the Supabase Auth API (`auth.get_user(token)`),
# which also catches revoked sessions. The Supabase client is sync, so the
# async wrapper runs it in a worker thread.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from supabase import Client, create_client

from app.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthUser:
    """The authenticated user behind a session token."""

    id: str
    email: str | None = None
    avatar_url: str | None = None
    metadata: dict = field(default_factory=dict)


_client: Client | None = None


def _get_supabase() -> Client:
    """Lazily create and cache the Supabase client."""
    global _client
    if _client is None:
        if not settings.supabase_url or not settings.supabase_anon_key:
            raise ValueError(
                "Missing Supabase configuration. "
                "Set SUPABASE_URL and SUPABASE_ANON_KEY in .env"
            )
        _client = create_client(settings.supabase_url, settings.supabase_anon_key)
    return _client


def get_user_for_token(token: str) -> AuthUser | None:
    """Validate `token` with Supabase Auth. Returns None if it is not valid."""
    client = _get_supabase()
    try:
        res = client.auth.get_user(token)
    except Exception as e:
        logger.info("Session token rejected: %s", e)
        return None

    user = getattr(res, "user", None) if res is not None else None
    if user is None:
        return None

    metadata = dict(getattr(user, "user_metadata", None) or {})
    return AuthUser(
        id=str(user.id),
        email=getattr(user, "email", None),
        avatar_url=metadata.get("avatar_url"),
        metadata=metadata,
    )


async def resolve_user(token: str | None) -> AuthUser | None:
    if not token:
        return None
    return await asyncio.to_thread(get_user_for_token, token)
