# =============================================================================
# Profile Service - Usernames and Display Names
# =============================================================================
#
# Rules for usernames:
#   - 3-30 characters: letters, digits, underscore
#   - unique, compared case-insensitively
#   - can be set exactly ONCE per user (`username_changed` flag)
#
# Until a username is set, a user is shown as "anon#" plus the last four hex
# characters of their user id.
#
# Profile rows are created lazily the first time an authenticated user hits
# a profile endpoint; the avatar URL is copied from the session's OAuth
# metadata on each visit.
# =============================================================================

from __future__ import annotations

import logging
import re
import uuid
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import UserProfile
from app.services.auth import AuthUser

logger = logging.getLogger(__name__)

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")
USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 30


@dataclass(frozen=True)
class UsernameResult:
    success: bool
    username: str | None = None
    error: str | None = None


def format_display_name(user_id: str, username: str | None) -> str:
    """Username if set, else "anon#" + last 4 hex chars of the user id."""
    if username:
        return username
    digits = str(user_id).replace("-", "")
    return f"anon#{digits[-4:] if len(digits) >= 4 else '????'}"


def validate_username(username: str) -> str | None:
    """Return an error message, or None if the username is acceptable."""
    if len(username) < USERNAME_MIN_LENGTH:
        return f"Username must be at least {USERNAME_MIN_LENGTH} characters"
    if len(username) > USERNAME_MAX_LENGTH:
        return f"Username must be at most {USERNAME_MAX_LENGTH} characters"
    if not USERNAME_PATTERN.match(username):
        return "Username may only contain letters, numbers and underscores"
    return None


async def get_profile(session: AsyncSession, user_id: str) -> UserProfile | None:
    return await session.get(UserProfile, uuid.UUID(user_id))


async def sync_profile(session: AsyncSession, user: AuthUser) -> UserProfile:
    """Fetch the user's profile, creating it on first visit."""
    profile = await get_profile(session, user.id)
    if profile is None:
        profile = UserProfile(
            id=uuid.UUID(user.id),
            username_changed=False,
            avatar_url=user.avatar_url,
        )
        session.add(profile)
        await session.flush()
        logger.info("Created profile for user %s", user.id)
    elif user.avatar_url and profile.avatar_url != user.avatar_url:
        profile.avatar_url = user.avatar_url
    return profile


async def get_display_names(
    session: AsyncSession,
    user_ids: Iterable[str],
) -> dict[str, tuple[str, str | None]]:
    """Map user id → (display name, avatar url) for many users at once."""
    ids = {str(u) for u in user_ids}
    if not ids:
        return {}

    stmt = select(UserProfile.id, UserProfile.username, UserProfile.avatar_url).where(
        UserProfile.id.in_([uuid.UUID(u) for u in ids])
    )
    rows = {str(r.id): r for r in (await session.execute(stmt)).all()}

    names: dict[str, tuple[str, str | None]] = {}
    for user_id in ids:
        row = rows.get(user_id)
        username = row.username if row else None
        avatar_url = row.avatar_url if row else None
        names[user_id] = (format_display_name(user_id, username), avatar_url)
    return names


async def set_username(
    session: AsyncSession,
    user: AuthUser,
    username: str,
) -> UsernameResult:
    """
    Assign a username to `user`, once.

    Rule violations come back as UsernameResult(success=False, error=...).
    Database errors other than a uniqueness race propagate.
    """
    username = username.strip()
    error = validate_username(username)
    if error:
        return UsernameResult(success=False, error=error)

    profile = await sync_profile(session, user)
    if profile.username_changed:
        return UsernameResult(success=False, error="Username can only be changed once")

    stmt = select(UserProfile.id).where(
        func.lower(UserProfile.username) == username.lower(),
        UserProfile.id != profile.id,
    )
    if (await session.execute(stmt)).first() is not None:
        return UsernameResult(success=False, error="Username is already taken")

    profile.username = username
    profile.username_changed = True
    try:
        await session.flush()
    except IntegrityError:
        # Another request claimed the same name between check and write
        await session.rollback()
        return UsernameResult(success=False, error="Username is already taken")

    logger.info("User %s set username '%s'", user.id, username)
    return UsernameResult(success=True, username=username)
