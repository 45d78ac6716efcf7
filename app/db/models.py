# =============================================================================
# Database Models - SQLAlchemy ORM
# =============================================================================
#
# SCHEMA OVERVIEW:
#
# ┌──────────────────────┐        ┌──────────────────────────────────┐
# │  inputs              │        │  chat_messages                   │
# ├──────────────────────┤        ├──────────────────────────────────┤
# │ id (PK, uuid)        │──1:1──▶│ id (PK, uuid)                    │
# │ user_id (nullable)   │   │    │ input_id (FK → inputs.id)        │
# │ kind                 │   │    │ user_id / room / text            │
# │ text                 │   │    │ created_at                       │
# │ embedding vector(N)  │   │    └──────────────────────────────────┘
# │ meta (jsonb)         │   │    ┌──────────────────────────────────┐
# │ created_at           │   │    │  contact_submissions             │
# └──────────────────────┘   │    ├──────────────────────────────────┤
#                            └───▶│ id (PK, uuid)                    │
#                                 │ input_id (FK → inputs.id)        │
# ┌──────────────────────┐        │ email / message / created_at     │
# │  user_profiles       │        └──────────────────────────────────┘
# ├──────────────────────┤
# │ id (PK = auth uid)   │
# │ username (unique ci) │
# │ username_changed     │
# │ avatar_url           │
# └──────────────────────┘
#
# `inputs` is the append-only log of every accepted submission. Each domain
# row points at exactly one input. The two rows are written by two separate
# commits (see services/ingest_store.py), so an orphan input can exist if the
# process dies between the domain insert failing and the compensating delete.
#
# `meta` is named `meta` (not `metadata`) to avoid SQLAlchemy's reserved
# `.metadata` attribute on declarative classes.
# =============================================================================

import uuid
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from app.config import settings


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class."""

    pass


class Input(Base):
    """
    Universal record of an accepted submission.

    Every kind of user text (chat message, contact form, future kinds) lands
    here first with its embedding, then gets a linked domain row.
    """

    __tablename__ = "inputs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # Null for anonymous submissions (contact form)
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    # Ingest kind discriminator: "chat_message", "contact_submission"
    kind: Mapped[str] = mapped_column(String(50), nullable=False)

    text: Mapped[str] = mapped_column(Text, nullable=False)

    embedding: Mapped[list[float] | None] = mapped_column(
        Vector(settings.embedding_dimensions),
        nullable=True,
    )

    # Caller-supplied meta merged with room / email / surface information
    meta: Mapped[dict | None] = mapped_column(JSONB, nullable=True, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Input(id={self.id}, kind='{self.kind}', user_id={self.user_id})>"


class ChatMessage(Base):
    """A message posted to a public chat room."""

    __tablename__ = "chat_messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    input_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("inputs.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    room: Mapped[str] = mapped_column(String(100), nullable=False, default="lobby")

    text: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<ChatMessage(id={self.id}, room='{self.room}', user_id={self.user_id})>"


class ContactSubmission(Base):
    """A contact form submission. Anonymous, gated by captcha."""

    __tablename__ = "contact_submissions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    input_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("inputs.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    email: Mapped[str] = mapped_column(String(320), nullable=False)

    message: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<ContactSubmission(id={self.id}, email='{self.email}')>"


class UserProfile(Base):
    """
    Public profile of an authenticated user.

    `id` is the auth provider's user id. `username` may be set exactly once
    (`username_changed` flips to True); until then the user shows up as
    `anon#xxxx` in the chat.
    """

    __tablename__ = "user_profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)

    username: Mapped[str | None] = mapped_column(String(30), nullable=True)

    username_changed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )

    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<UserProfile(id={self.id}, username='{self.username}')>"


# =============================================================================
# Database Indexes
# =============================================================================

# HNSW index for similarity search over every stored submission
input_embedding_idx = Index(
    "idx_input_embedding_hnsw",
    Input.embedding,
    postgresql_using="hnsw",
    postgresql_with={"m": 16, "ef_construction": 64},
    postgresql_ops={"embedding": "vector_cosine_ops"},
)

# Room timeline queries: newest messages per room
chat_message_room_idx = Index(
    "idx_chat_message_room_created",
    ChatMessage.room,
    ChatMessage.created_at,
)

# Cooldown lookups: latest message per user
chat_message_user_idx = Index(
    "idx_chat_message_user_created",
    ChatMessage.user_id,
    ChatMessage.created_at,
)

# Case-insensitive username uniqueness
user_profile_username_idx = Index(
    "idx_user_profile_username_lower",
    func.lower(UserProfile.username),
    unique=True,
)
