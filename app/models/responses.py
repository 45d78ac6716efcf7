# =============================================================================
# API Response Models - Pydantic V2 Schemas
# =============================================================================
#
# Shapes of data coming OUT of the API. Serialized with camelCase aliases
# (`model_dump(by_alias=True)`; FastAPI does this for `response_model`).
#
# Embedding vectors are never returned.
# =============================================================================

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelResponse(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class HealthResponse(BaseModel):
    """Response for GET /health - confirms the API is running."""

    status: str = "ok"
    version: str
    service: str


# ---------------------------------------------------------------------------
# Ingest
# ---------------------------------------------------------------------------


class IngestSuccessResponse(CamelResponse):
    """Response for an accepted submission (201)."""

    success: bool = True
    input_id: str = Field(description="ID of the universal input row")
    domain_id: str = Field(description="ID of the chat message or contact submission")
    kind: str
    embedding_generated: bool = True


class IngestErrorResponse(CamelResponse):
    """Response for a rejected submission."""

    success: bool = False
    error: str = Field(description="Human-readable reason")
    code: str = Field(
        description=(
            "VALIDATION_ERROR, UNAUTHORIZED, CAPTCHA_REQUIRED, CAPTCHA_FAILED, "
            "RATE_LIMITED, COOLDOWN, EMBEDDING_ERROR, DATABASE_ERROR, UNKNOWN_ERROR"
        ),
    )


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


class UsernameResponse(CamelResponse):
    """Response for POST /api/profile/username."""

    success: bool
    username: str | None = None
    error: str | None = None


class ProfileInfo(CamelResponse):
    username: str | None = None
    username_changed: bool = False
    display_name: str
    can_change_username: bool = True


class ProfileResponse(CamelResponse):
    """Response for GET /api/profile/username."""

    success: bool = True
    profile: ProfileInfo


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


class ChatMessageResponse(CamelResponse):
    """One chat message as shown in the room timeline."""

    id: str
    text: str
    created_at: datetime
    user_id: str
    display_name: str
    avatar_url: str | None = None


class ChatHistoryResponse(CamelResponse):
    """Response for GET /api/chat/{room}/messages."""

    room: str
    messages: list[ChatMessageResponse]
