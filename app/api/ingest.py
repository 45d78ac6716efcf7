# =============================================================================
# Ingest API - Universal Input Endpoint
# =============================================================================
#
# POST /api/ingest is the SINGLE entry point for all user-submitted text.
# Chat messages, contact submissions, and any future input kinds go through
# it.
#
# FLOW:
#   1. Body must carry a `kind`                      → 400 VALIDATION_ERROR
#   2. Rate limit on "<kind>:<client id>"            → 429 RATE_LIMITED
#   3. Fill in surface metadata from request headers
#   4. Parse into the payload variant for `kind`     → 400 VALIDATION_ERROR
#   5. Authorize + handle (services/ingest.py)       → 201 on success
#      (the session token is resolved here, for chat messages only)
#   6. Chat messages are published to the room feed
#
# Rejections are `{success: false, error, code}` with the code's status;
# unexpected exceptions are 500 UNKNOWN_ERROR.
# =============================================================================

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.api.deps import get_client_identifier, get_ingest_store, get_session_token
from app.models.responses import IngestErrorResponse, IngestSuccessResponse
from app.services.ingest import (
    IngestError,
    IngestErrorCode,
    default_surface,
    dispatch,
    parse_payload,
    require_kind,
)
from app.services.ingest_store import IngestStore
from app.services.rate_limiter import enforce_rate_limit
from app.services.realtime import get_chat_broadcaster, publish_chat_message

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Ingest"])


def _error_response(error: IngestError) -> JSONResponse:
    body = IngestErrorResponse(error=error.message, code=error.code.value)
    return JSONResponse(
        status_code=error.status_code,
        content=body.model_dump(by_alias=True),
        headers=error.headers or None,
    )


@router.post(
    "/ingest",
    status_code=201,
    summary="Submit a chat message or contact form",
    description=(
        "Universal ingest endpoint. The `kind` field selects the handler: "
        "`chat_message` (requires a session) or `contact_submission` "
        "(requires a reCAPTCHA token). Stores the text, its embedding, and "
        "the domain record."
    ),
    responses={
        201: {"model": IngestSuccessResponse},
        400: {"model": IngestErrorResponse},
        401: {"model": IngestErrorResponse},
        403: {"model": IngestErrorResponse},
        429: {"model": IngestErrorResponse},
        500: {"model": IngestErrorResponse},
        502: {"model": IngestErrorResponse},
    },
)
async def ingest_endpoint(
    http_request: Request,
    session_token: str | None = Depends(get_session_token),
    client_id: str = Depends(get_client_identifier),
    store: IngestStore = Depends(get_ingest_store),
    broadcaster=Depends(get_chat_broadcaster),
) -> JSONResponse:
    try:
        try:
            body = await http_request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise IngestError(IngestErrorCode.VALIDATION_ERROR, "Request body must be JSON")

        kind = require_kind(body)

        rate_limit = await enforce_rate_limit(kind, client_id)
        if not rate_limit.allowed:
            raise IngestError(
                IngestErrorCode.RATE_LIMITED,
                f"Rate limited. Try again in {rate_limit.reset_in} seconds.",
                headers={
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(rate_limit.reset_in),
                    "Retry-After": str(rate_limit.reset_in),
                },
            )

        if not body.get("surface"):
            body["surface"] = default_surface(
                kind,
                user_agent=http_request.headers.get("user-agent"),
                referrer=http_request.headers.get("referer"),
            ).model_dump(by_alias=True, exclude_none=True)

        payload = parse_payload(body)
        result = await dispatch(
            payload,
            session_token=session_token,
            store=store,
            client_id=client_id,
        )
    except IngestError as e:
        if e.status_code >= 500:
            logger.error("Ingest failed: code=%s error=%s", e.code.value, e.message)
        else:
            logger.info("Ingest rejected: code=%s error=%s", e.code.value, e.message)
        return _error_response(e)
    except Exception:
        logger.exception("Ingest API error")
        return _error_response(
            IngestError(IngestErrorCode.UNKNOWN_ERROR, "Internal server error")
        )

    if result.user is not None:
        http_request.state.user = result.user
    if result.chat_message is not None:
        await publish_chat_message(broadcaster, result.chat_message)

    response = IngestSuccessResponse(
        input_id=result.input_id,
        domain_id=result.domain_id,
        kind=result.kind,
        embedding_generated=result.embedding_generated,
    )
    return JSONResponse(status_code=201, content=response.model_dump(by_alias=True))
