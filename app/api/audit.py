# =============================================================================
# Request Logging Middleware - Request/Response Lifecycle Logging
# =============================================================================
#
# Logs one line per API request: method, path, status, latency, client id,
# and the session user when one was resolved.
#
# Starlette middleware (not a FastAPI dependency): it wraps the whole
# request, so it sees the final status code and total time, and no endpoint
# has to opt in.
#
# Reads request.state.user (set by get_current_user, or by the ingest route
# once a chat message has resolved its session).
# =============================================================================

from __future__ import annotations

import logging
import time

from starlette.middleware.base import (
    BaseHTTPMiddleware,
    RequestResponseEndpoint,
)
from starlette.requests import Request
from starlette.responses import Response

from app.api.deps import get_client_identifier
from app.config import settings

logger = logging.getLogger(__name__)

# Endpoints to skip (health check, docs)
_SKIP_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every API request with its outcome and latency."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        if not settings.request_logging_enabled:
            return await call_next(request)

        if request.url.path in _SKIP_PATHS:
            return await call_next(request)

        start_time = time.monotonic()
        response = await call_next(request)
        elapsed_ms = int((time.monotonic() - start_time) * 1000)

        user = getattr(request.state, "user", None)

        logger.info(
            "%s %s -> %d (%dms) client=%s user=%s",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            get_client_identifier(request),
            user.id if user else "-",
        )
        return response
