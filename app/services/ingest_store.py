# =============================================================================
# Ingest Store - Persistence Protocol for the Two-Phase Write
# =============================================================================
#
# Every accepted submission is written as two rows:
#   1. `inputs`            - text, embedding, meta
#   2. the domain row      - `chat_messages` or `contact_submissions`
#
# Each call below is its own committed transaction. If step 2 fails, the
# handler calls `delete_input()` once to remove the row from step 1. There
# is no transaction spanning both rows, so a crash between a failed step 2
# and the delete leaves an orphan input.
#
# ARCHITECTURE:
#   IngestStore (Protocol)
#   └── SqlIngestStore  - async SQLAlchemy, one session per operation
#
# Handlers depend on the Protocol, so tests pass an in-memory fake.
# =============================================================================

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.models import ChatMessage, ContactSubmission, Input

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredChatMessage:
    """A chat message row as returned by the store after insert."""

    id: str
    input_id: str
    user_id: str
    room: str
    text: str
    created_at: datetime


class IngestStore(Protocol):
    """Operations the ingest handlers need from the database."""

    async def insert_input(
        self,
        *,
        user_id: str | None,
        kind: str,
        text: str,
        embedding: list[float],
        meta: dict,
    ) -> str:
        """Insert an `inputs` row and return its id."""
        ...

    async def insert_chat_message(
        self,
        *,
        input_id: str,
        user_id: str,
        room: str,
        text: str,
    ) -> StoredChatMessage:
        ...

    async def insert_contact_submission(
        self,
        *,
        input_id: str,
        email: str,
        message: str,
    ) -> str:
        ...

    async def delete_input(self, input_id: str) -> None:
        """Remove an `inputs` row (compensation for a failed domain insert)."""
        ...

    async def last_chat_message_at(self, user_id: str) -> datetime | None:
        """Timestamp of the user's most recent chat message, if any."""
        ...


class SqlIngestStore:
    """IngestStore backed by the async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def insert_input(
        self,
        *,
        user_id: str | None,
        kind: str,
        text: str,
        embedding: list[float],
        meta: dict,
    ) -> str:
        async with self._session_factory() as session:
            row = Input(
                user_id=uuid.UUID(user_id) if user_id else None,
                kind=kind,
                text=text,
                embedding=embedding,
                meta=meta,
            )
            session.add(row)
            await session.commit()
            return str(row.id)

    async def insert_chat_message(
        self,
        *,
        input_id: str,
        user_id: str,
        room: str,
        text: str,
    ) -> StoredChatMessage:
        async with self._session_factory() as session:
            row = ChatMessage(
                input_id=uuid.UUID(input_id),
                user_id=uuid.UUID(user_id),
                room=room,
                text=text,
            )
            session.add(row)
            await session.commit()
            # created_at is server-generated
            await session.refresh(row)
            return StoredChatMessage(
                id=str(row.id),
                input_id=str(row.input_id),
                user_id=str(row.user_id),
                room=row.room,
                text=row.text,
                created_at=row.created_at,
            )

    async def insert_contact_submission(
        self,
        *,
        input_id: str,
        email: str,
        message: str,
    ) -> str:
        async with self._session_factory() as session:
            row = ContactSubmission(
                input_id=uuid.UUID(input_id),
                email=email,
                message=message,
            )
            session.add(row)
            await session.commit()
            return str(row.id)

    async def delete_input(self, input_id: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                delete(Input).where(Input.id == uuid.UUID(input_id))
            )
            await session.commit()

    async def last_chat_message_at(self, user_id: str) -> datetime | None:
        async with self._session_factory() as session:
            stmt = (
                select(ChatMessage.created_at)
                .where(ChatMessage.user_id == uuid.UUID(user_id))
                .order_by(ChatMessage.created_at.desc())
                .limit(1)
            )
            result = await session.execute(stmt)
            return result.scalar_one_or_none()
