# =============================================================================
# API Dependencies - Sessions, Client Identity, Stores
# =============================================================================
#
# FastAPI dependencies shared by the route modules:
#
# 1. get_session_token()     - raw Bearer or cookie token, no lookup
#    get_current_user()      - resolve the Supabase session, or None
# 2. get_client_identifier() - rate-limit identity from proxy headers
# 3. get_ingest_store()      - persistence for the two-phase ingest write
#
# get_current_user never raises for a missing or bad token; each route decides
# whether a session is required. The ingest route only takes the raw token and
# resolves it after the kind and rate-limit checks, for chat messages only.
# Tests replace these via app.dependency_overrides.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.config import settings
from app.db.engine import async_session_factory
from app.services.auth import AuthUser, resolve_user
from app.services.ingest_store import IngestStore, SqlIngestStore

logger = logging.getLogger(__name__)

# Shows the "Authorize" button in Swagger UI
_bearer_scheme = HTTPBearer(auto_error=False)


def get_session_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> str | None:
    """The Bearer token, else the session cookie. Not validated."""
    if credentials is not None:
        return credentials.credentials
    return request.cookies.get(settings.session_cookie_name)


async def get_current_user(
    request: Request,
    token: str | None = Depends(get_session_token),
) -> AuthUser | None:
    """
    Resolve the session's user from the request token.

    Stores the user on request.state for the request logging middleware.
    """
    user = await resolve_user(token)
    if user is not None:
        request.state.user = user
    return user


def get_client_identifier(request: Request) -> str:
    """
    Identify the client for rate limiting.

    First X-Forwarded-For hop, then X-Real-IP, then the socket peer, then
    "localhost".
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    if request.client and request.client.host:
        return request.client.host

    return "localhost"


def get_ingest_store() -> IngestStore:
    return SqlIngestStore(async_session_factory)
