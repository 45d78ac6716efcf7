# =============================================================================
# API Request Models - Pydantic V2 Schemas
# =============================================================================
#
# Shapes of data coming INTO the API. JSON field names are camelCase (the
# frontend's convention); Python attributes are snake_case via an alias
# generator, and either spelling is accepted on input.
#
# The ingest payload is a closed tagged union discriminated on `kind`:
#
#   IngestPayload = ChatMessagePayload | ContactSubmissionPayload
#
# Payload models only check types. Content rules (blank text, length limits,
# email format) live in the handlers so they can report VALIDATION_ERROR
# with a specific message instead of a 422.
# =============================================================================

from typing import Annotated, Any, Literal, Union, get_args

from pydantic import BaseModel, ConfigDict, Field, StrictStr, TypeAdapter
from pydantic.alias_generators import to_camel

IngestKind = Literal["chat_message", "contact_submission"]

KNOWN_KINDS: tuple[str, ...] = get_args(IngestKind)


class CamelModel(BaseModel):
    """Base for request bodies: camelCase on the wire, unknown keys ignored."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class SurfaceMetadata(CamelModel):
    """Where a submission came from."""

    surface: str = Field(description="e.g. 'chatroom', 'contact', 'api'")
    page: str | None = Field(default=None, description="e.g. '/chatroom'")
    user_agent: str | None = None
    referrer: str | None = None


class _IngestPayloadBase(CamelModel):
    text: str | None = Field(
        default=None,
        description="The submitted text (chat message or contact message)",
    )
    meta: dict[str, Any] | None = Field(
        default=None,
        description="Free-form client metadata, stored on the input row",
    )
    surface: SurfaceMetadata | None = Field(
        default=None,
        description="Submission surface. Derived from request headers if omitted.",
    )


class ChatMessagePayload(_IngestPayloadBase):
    """
    Body for a chat message. Requires an authenticated session.

    Example:
        {"kind": "chat_message", "text": "hello", "room": "lobby"}
    """

    kind: Literal["chat_message"]
    room: str | None = Field(
        default=None,
        max_length=100,
        description="Chat room. Defaults to 'lobby'.",
    )


class ContactSubmissionPayload(_IngestPayloadBase):
    """
    Body for a contact form submission. Anonymous, captcha-gated.

    Example:
        {"kind": "contact_submission", "email": "a@b.com", "text": "hi",
         "captchaToken": "03AGdBq2..."}
    """

    kind: Literal["contact_submission"]
    email: str | None = None
    captcha_token: str | None = Field(
        default=None,
        description="reCAPTCHA token produced by the contact form",
    )


IngestPayload = Annotated[
    Union[ChatMessagePayload, ContactSubmissionPayload],
    Field(discriminator="kind"),
]

ingest_payload_adapter: TypeAdapter[IngestPayload] = TypeAdapter(IngestPayload)


class UsernameRequest(BaseModel):
    """Body for POST /api/profile/username."""

    username: StrictStr = Field(
        ...,
        description="Desired username (3-30 letters, digits or underscores)",
        examples=["chef_anna"],
    )
