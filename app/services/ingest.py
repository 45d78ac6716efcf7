# =============================================================================
# Ingest Service - Universal Input Dispatch and Handlers
# =============================================================================
#
# Every piece of user-submitted text goes through here. The flow for one
# submission:
#
#   body ──▶ require_kind ──▶ (route: rate limit) ──▶ parse_payload
#        ──▶ dispatch ──┬── ChatMessagePayload       ──▶ resolve session ──▶ handle_chat_message
#                       └── ContactSubmissionPayload ──▶ captcha ──▶ handle_contact_submission
#
# The session token is only resolved (a Supabase Auth call) on the chat branch,
# after the kind and rate-limit checks.
#
# Each handler validates its payload, embeds the text, then performs the
# two-phase write (inputs row, then domain row, compensating delete of the
# inputs row if the domain row fails).
#
# Failures are raised as IngestError(code, message). The route turns them
# into `{success: false, error, code}` with the code's HTTP status.
#
# The embedding call happens before any write and is not retried: if the
# embedding API fails the whole submission fails and nothing is stored.
# =============================================================================

from __future__ import annotations

import asyncio
import enum
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, TypeVar, assert_never

from pydantic import ValidationError

from app.config import settings
from app.models.requests import (
    KNOWN_KINDS,
    ChatMessagePayload,
    ContactSubmissionPayload,
    IngestPayload,
    SurfaceMetadata,
    ingest_payload_adapter,
)
from app.services.auth import AuthUser, resolve_user
from app.services.captcha import CaptchaResult, verify_recaptcha_async
from app.services.embedder import embed_text
from app.services.ingest_store import IngestStore, StoredChatMessage

logger = logging.getLogger(__name__)

T = TypeVar("T")

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


# ---------------------------------------------------------------------------
# Errors and Results
# ---------------------------------------------------------------------------


class IngestErrorCode(str, enum.Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"
    CAPTCHA_REQUIRED = "CAPTCHA_REQUIRED"
    CAPTCHA_FAILED = "CAPTCHA_FAILED"
    RATE_LIMITED = "RATE_LIMITED"
    COOLDOWN = "COOLDOWN"
    EMBEDDING_ERROR = "EMBEDDING_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


_STATUS_CODES: dict[IngestErrorCode, int] = {
    IngestErrorCode.VALIDATION_ERROR: 400,
    IngestErrorCode.UNAUTHORIZED: 401,
    IngestErrorCode.CAPTCHA_REQUIRED: 400,
    IngestErrorCode.CAPTCHA_FAILED: 403,
    IngestErrorCode.RATE_LIMITED: 429,
    IngestErrorCode.COOLDOWN: 429,
    IngestErrorCode.EMBEDDING_ERROR: 502,
    IngestErrorCode.DATABASE_ERROR: 500,
    IngestErrorCode.UNKNOWN_ERROR: 500,
}


class IngestError(Exception):
    """A rejected submission, with the code and HTTP status to report."""

    def __init__(
        self,
        code: IngestErrorCode,
        message: str,
        headers: dict[str, str] | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = _STATUS_CODES[code]
        self.headers = headers or {}


@dataclass(frozen=True)
class IngestResult:
    input_id: str
    domain_id: str
    kind: str
    embedding_generated: bool = True
    # Set for chat messages, published to realtime subscribers
    chat_message: StoredChatMessage | None = None
    user: AuthUser | None = None


CaptchaVerifier = Callable[[str, str | None], Awaitable[CaptchaResult]]


# ---------------------------------------------------------------------------
# Payload Parsing
# ---------------------------------------------------------------------------


def require_kind(body: Any) -> str:
    """Return the `kind` of a raw JSON body, or raise VALIDATION_ERROR."""
    if not isinstance(body, dict) or not body.get("kind"):
        raise IngestError(IngestErrorCode.VALIDATION_ERROR, "Missing 'kind' field")
    kind = body["kind"]
    if not isinstance(kind, str):
        raise IngestError(IngestErrorCode.VALIDATION_ERROR, "'kind' must be a string")
    return kind


def parse_payload(body: dict) -> IngestPayload:
    """Validate a raw body into the payload variant selected by `kind`."""
    kind = require_kind(body)
    if kind not in KNOWN_KINDS:
        raise IngestError(
            IngestErrorCode.VALIDATION_ERROR, f"Unknown input kind: {kind}",
        )

    try:
        return ingest_payload_adapter.validate_python(body)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(p) for p in first["loc"] if p != kind)
        message = f"Invalid '{location}': {first['msg']}" if location else first["msg"]
        raise IngestError(IngestErrorCode.VALIDATION_ERROR, message) from e


def default_surface(
    kind: str,
    user_agent: str | None = None,
    referrer: str | None = None,
) -> SurfaceMetadata:
    """Surface metadata for payloads that didn't send their own."""
    return SurfaceMetadata(
        surface="chatroom" if kind == "chat_message" else "contact",
        user_agent=user_agent,
        referrer=referrer,
    )


def _surface_meta(surface: SurfaceMetadata | None) -> dict | None:
    if surface is None:
        return None
    return surface.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Shared Steps
# ---------------------------------------------------------------------------


async def _embed(text: str) -> list[float]:
    try:
        return await asyncio.to_thread(embed_text, text)
    except Exception as e:
        logger.error("Embedding generation failed: %s", e)
        raise IngestError(
            IngestErrorCode.EMBEDDING_ERROR, "Failed to generate embedding",
        ) from e


async def _compensate(store: IngestStore, input_id: str) -> None:
    """Best-effort delete of an input whose domain row failed. Never raises."""
    try:
        await store.delete_input(input_id)
        logger.info("Rolled back input %s", input_id)
    except Exception as e:
        logger.error(
            "Compensating delete failed, input %s is orphaned: %s",
            input_id, e,
        )


async def _write_two_phase(
    store: IngestStore,
    *,
    user_id: str | None,
    kind: str,
    text: str,
    embedding: list[float],
    meta: dict,
    write_domain: Callable[[str], Awaitable[T]],
    domain_label: str,
) -> tuple[str, T]:
    """
    Insert the input row, then the domain row via `write_domain(input_id)`.

    If the domain insert fails the input row is deleted once (no retry) and
    DATABASE_ERROR is raised with the original exception as its cause.
    """
    try:
        input_id = await store.insert_input(
            user_id=user_id,
            kind=kind,
            text=text,
            embedding=embedding,
            meta=meta,
        )
    except Exception as e:
        logger.error("Input insert error (%s): %s", kind, e)
        raise IngestError(
            IngestErrorCode.DATABASE_ERROR, "Failed to store input",
        ) from e

    try:
        domain = await write_domain(input_id)
    except Exception as e:
        logger.error("%s insert error, rolling back input %s: %s", domain_label, input_id, e)
        await _compensate(store, input_id)
        raise IngestError(
            IngestErrorCode.DATABASE_ERROR, f"Failed to store {domain_label}",
        ) from e

    return input_id, domain


def _is_rls_violation(exc: BaseException | None) -> bool:
    return exc is not None and "violates row-level security" in str(exc)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

COOLDOWN_MESSAGE = "Cooldown: please wait {seconds} seconds between messages."


async def handle_chat_message(
    payload: ChatMessagePayload,
    user: AuthUser,
    store: IngestStore,
    *,
    now: datetime | None = None,
) -> IngestResult:
    """Validate, embed and store a chat message from `user`."""
    text = payload.text or ""
    if not text.strip():
        raise IngestError(IngestErrorCode.VALIDATION_ERROR, "Message text is required")
    if len(text) > settings.chat_max_length:
        raise IngestError(
            IngestErrorCode.VALIDATION_ERROR,
            f"Message exceeds {settings.chat_max_length} character limit",
        )

    room = (payload.room or "").strip() or settings.chat_default_room
    cooldown = COOLDOWN_MESSAGE.format(seconds=settings.chat_cooldown_seconds)

    if settings.chat_cooldown_seconds > 0:
        last = await store.last_chat_message_at(user.id)
        now = now or datetime.now(UTC)
        if last is not None and now - last < timedelta(seconds=settings.chat_cooldown_seconds):
            raise IngestError(IngestErrorCode.COOLDOWN, cooldown)

    embedding = await _embed(text)

    meta = {**(payload.meta or {}), "room": room}
    surface = _surface_meta(payload.surface)
    if surface:
        meta["surface"] = surface

    stored_text = text.strip()
    try:
        input_id, message = await _write_two_phase(
            store,
            user_id=user.id,
            kind="chat_message",
            text=stored_text,
            embedding=embedding,
            meta=meta,
            write_domain=lambda input_id: store.insert_chat_message(
                input_id=input_id,
                user_id=user.id,
                room=room,
                text=stored_text,
            ),
            domain_label="chat message",
        )
    except IngestError as e:
        # A row-level-security policy on chat_messages enforces the cooldown
        # in the database as well
        if _is_rls_violation(e.__cause__):
            raise IngestError(IngestErrorCode.COOLDOWN, cooldown) from e
        raise

    logger.info("Stored chat message %s (room=%s, user=%s)", message.id, room, user.id)
    return IngestResult(
        input_id=input_id,
        domain_id=message.id,
        kind="chat_message",
        chat_message=message,
        user=user,
    )


async def handle_contact_submission(
    payload: ContactSubmissionPayload,
    store: IngestStore,
) -> IngestResult:
    """Validate, embed and store an anonymous contact form submission."""
    email = (payload.email or "").strip()
    if not email or not EMAIL_PATTERN.match(email):
        raise IngestError(IngestErrorCode.VALIDATION_ERROR, "Valid email is required")

    text = payload.text or ""
    if not text.strip():
        raise IngestError(IngestErrorCode.VALIDATION_ERROR, "Message is required")
    if len(text) > settings.contact_max_length:
        raise IngestError(
            IngestErrorCode.VALIDATION_ERROR,
            f"Message exceeds {settings.contact_max_length} character limit",
        )

    embedding = await _embed(text)

    meta = {**(payload.meta or {}), "email": email}
    surface = _surface_meta(payload.surface)
    if surface:
        meta["surface"] = surface

    stored_text = text.strip()
    input_id, submission_id = await _write_two_phase(
        store,
        user_id=None,
        kind="contact_submission",
        text=stored_text,
        embedding=embedding,
        meta=meta,
        write_domain=lambda input_id: store.insert_contact_submission(
            input_id=input_id,
            email=email,
            message=stored_text,
        ),
        domain_label="contact submission",
    )

    logger.info("Stored contact submission %s", submission_id)
    return IngestResult(
        input_id=input_id,
        domain_id=submission_id,
        kind="contact_submission",
    )


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


async def _resolve_session(session_token: str | None) -> AuthUser | None:
    try:
        return await resolve_user(session_token)
    except Exception as e:
        logger.error("Session lookup failed: %s", e)
        raise IngestError(
            IngestErrorCode.UNKNOWN_ERROR, "Internal server error",
        ) from e


async def dispatch(
    payload: IngestPayload,
    *,
    session_token: str | None,
    store: IngestStore,
    client_id: str | None = None,
    captcha_verifier: CaptchaVerifier | None = None,
) -> IngestResult:
    """
    Authorize a parsed payload and hand it to its handler.

    - chat_message: requires a session (UNAUTHORIZED otherwise). The token
      is resolved here and nowhere else.
    - contact_submission: requires a passing captcha (CAPTCHA_REQUIRED /
      CAPTCHA_FAILED otherwise), the token is ignored
    """
    if isinstance(payload, ChatMessagePayload):
        user = await _resolve_session(session_token)
        if user is None:
            raise IngestError(
                IngestErrorCode.UNAUTHORIZED,
                "Authentication required to send messages",
            )
        return await handle_chat_message(payload, user, store)

    if isinstance(payload, ContactSubmissionPayload):
        if not payload.captcha_token:
            raise IngestError(
                IngestErrorCode.CAPTCHA_REQUIRED, "Captcha verification required",
            )

        verifier = captcha_verifier or verify_recaptcha_async
        remote_ip = client_id if client_id and client_id != "localhost" else None
        captcha = await verifier(payload.captcha_token, remote_ip)
        if not captcha.ok:
            raise IngestError(
                IngestErrorCode.CAPTCHA_FAILED,
                captcha.reason or "Captcha verification failed",
            )
        return await handle_contact_submission(payload, store)

    assert_never(payload)
