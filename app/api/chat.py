# =============================================================================
# Chat API - Room History and Realtime Stream
# =============================================================================
#
# ENDPOINTS:
#   GET /api/chat/{room}/messages  - most recent messages, oldest first
#   GET /api/chat/{room}/stream    - server-sent events, one per new message
#
# Messages are public; no session is needed to read. New messages arrive on
# the stream as soon as the ingest route publishes them. Each stream event
# is enriched with the author's display name and avatar, looked up once per
# author per stream.
#
# SSE framing:
#   data: {"id": ..., "text": ..., "createdAt": ..., ...}\n\n
#   : keepalive\n\n          (after `stream_heartbeat_seconds` of silence)
# =============================================================================

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.db.engine import async_session_factory, get_async_session
from app.db.models import ChatMessage
from app.models.responses import ChatHistoryResponse, ChatMessageResponse
from app.services.profiles import get_display_names
from app.services.realtime import get_chat_broadcaster

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["Chat"])

KEEPALIVE = ": keepalive\n\n"


def format_sse(message: ChatMessageResponse) -> str:
    """Frame one message as a server-sent event."""
    payload = message.model_dump(mode="json", by_alias=True)
    return f"data: {json.dumps(payload)}\n\n"


@router.get(
    "/{room}/messages",
    response_model=ChatHistoryResponse,
    summary="Recent messages in a chat room",
)
async def list_messages(
    room: str,
    limit: int = Query(
        default=settings.chat_history_default_limit,
        ge=1,
        le=200,
        description="Number of most recent messages to return",
    ),
    session: AsyncSession = Depends(get_async_session),
) -> ChatHistoryResponse:
    stmt = (
        select(ChatMessage)
        .where(ChatMessage.room == room)
        .order_by(ChatMessage.created_at.desc())
        .limit(limit)
    )
    rows = list((await session.execute(stmt)).scalars().all())
    rows.reverse()

    names = await get_display_names(session, (str(r.user_id) for r in rows))

    messages = []
    for row in rows:
        display_name, avatar_url = names[str(row.user_id)]
        messages.append(
            ChatMessageResponse(
                id=str(row.id),
                text=row.text,
                created_at=row.created_at,
                user_id=str(row.user_id),
                display_name=display_name,
                avatar_url=avatar_url,
            )
        )
    return ChatHistoryResponse(room=room, messages=messages)


async def _display_name_for(user_id: str, cache: dict) -> tuple[str, str | None]:
    if user_id not in cache:
        try:
            uuid.UUID(user_id)
            async with async_session_factory() as session:
                cache.update(await get_display_names(session, [user_id]))
        except Exception as e:
            logger.warning("Display name lookup failed for %s: %s", user_id, e)
            return "Anonymous", None
    return cache[user_id]


async def stream_room_events(
    request: Request,
    room: str,
    broadcaster,
    heartbeat_seconds: float,
) -> AsyncIterator[str]:
    """Yield SSE frames for new messages in `room` until the client leaves."""
    names: dict[str, tuple[str, str | None]] = {}
    async with broadcaster.subscribe(room) as subscription:
        logger.info("Chat stream opened (room=%s)", room)
        try:
            while not await request.is_disconnected():
                event = await subscription.get(timeout=heartbeat_seconds)
                if event is None:
                    yield KEEPALIVE
                    continue

                display_name, avatar_url = await _display_name_for(
                    str(event["user_id"]), names,
                )
                yield format_sse(
                    ChatMessageResponse(
                        id=str(event["id"]),
                        text=event["text"],
                        created_at=event["created_at"],
                        user_id=str(event["user_id"]),
                        display_name=display_name,
                        avatar_url=avatar_url,
                    )
                )
        finally:
            logger.info("Chat stream closed (room=%s)", room)


@router.get(
    "/{room}/stream",
    summary="Realtime feed of new messages in a chat room",
    response_class=StreamingResponse,
)
async def stream_messages(
    room: str,
    request: Request,
    broadcaster=Depends(get_chat_broadcaster),
) -> StreamingResponse:
    return StreamingResponse(
        stream_room_events(
            request, room, broadcaster, settings.stream_heartbeat_seconds,
        ),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
