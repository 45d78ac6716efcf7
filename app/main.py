# =============================================================================
# FastAPI Application
# =============================================================================
#
# Wires routers, middleware, logging and lifecycle hooks.
#
# Run locally:
#   uvicorn app.main:app --reload
#
# ROUTES:
#   GET  /health
#   POST /api/ingest
#   GET  /api/profile/username, POST /api/profile/username
#   GET  /api/chat/{room}/messages, GET /api/chat/{room}/stream
# =============================================================================

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.audit import RequestLoggingMiddleware
from app.api.chat import router as chat_router
from app.api.ingest import router as ingest_router
from app.api.profile import router as profile_router
from app.config import settings
from app.db.engine import async_engine, create_tables
from app.models.responses import HealthResponse
from app.services.rate_limiter import close_rate_limiter
from app.services.realtime import close_chat_broadcaster

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.create_tables_on_startup:
        logger.info("Creating database tables")
        await create_tables()

    logger.info("%s v%s started", settings.app_name, settings.app_version)
    yield

    await close_chat_broadcaster()
    await close_rate_limiter()
    await async_engine.dispose()
    logger.info("%s stopped", settings.app_name)


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description=(
        "Universal ingest endpoint for chat messages and contact submissions, "
        "with embeddings, rate limiting, captcha, and a realtime chat feed."
    ),
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(ingest_router)
app.include_router(profile_router)
app.include_router(chat_router)


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health() -> HealthResponse:
    return HealthResponse(version=settings.app_version, service=settings.app_name)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
