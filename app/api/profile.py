# =============================================================================
# Profile API - One-Time Username Assignment
# =============================================================================
#
# ENDPOINTS:
#   POST /api/profile/username  - set the username (once per user)
#   GET  /api/profile/username  - current username, display name, and
#                                 whether the username can still be changed
#
# Both require a session. Responses use `{success, ...}` bodies like the
# ingest endpoint rather than FastAPI's `{detail}`.
# =============================================================================

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user
from app.db.engine import get_async_session
from app.models.requests import UsernameRequest
from app.models.responses import ProfileInfo, ProfileResponse, UsernameResponse
from app.services.auth import AuthUser
from app.services.profiles import format_display_name, set_username, sync_profile

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/profile", tags=["Profile"])


def _fail(status_code: int, error: str) -> JSONResponse:
    body = UsernameResponse(success=False, error=error)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(by_alias=True, exclude_none=True),
    )


@router.post(
    "/username",
    response_model=UsernameResponse,
    response_model_exclude_none=True,
    summary="Set your username (one time only)",
    responses={
        400: {"model": UsernameResponse},
        401: {"model": UsernameResponse},
        500: {"model": UsernameResponse},
    },
)
async def set_username_endpoint(
    http_request: Request,
    user: AuthUser | None = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    if user is None:
        return _fail(401, "Authentication required")

    try:
        request = UsernameRequest.model_validate(await http_request.json())
    except (json.JSONDecodeError, UnicodeDecodeError, ValidationError):
        return _fail(400, "Username is required")

    try:
        result = await set_username(session, user, request.username)
    except Exception:
        logger.exception("Set username error for user %s", user.id)
        await session.rollback()
        return _fail(500, "Failed to update username")

    if not result.success:
        return _fail(400, result.error or "Failed to set username")

    return UsernameResponse(success=True, username=result.username)


@router.get(
    "/username",
    response_model=ProfileResponse,
    summary="Get your profile",
    responses={401: {"model": UsernameResponse}},
)
async def get_profile_endpoint(
    user: AuthUser | None = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
):
    if user is None:
        return _fail(401, "Authentication required")

    try:
        profile = await sync_profile(session, user)
    except Exception:
        logger.exception("Profile fetch error for user %s", user.id)
        await session.rollback()
        return _fail(500, "Internal server error")

    return ProfileResponse(
        profile=ProfileInfo(
            username=profile.username,
            username_changed=profile.username_changed,
            display_name=format_display_name(user.id, profile.username),
            can_change_username=not profile.username_changed,
        )
    )
