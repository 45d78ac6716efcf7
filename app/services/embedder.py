# =============================================================================
# Embedding Service - Vector Generation (Provider-Agnostic)
# =============================================================================
#
# Single source of truth for embeddings. Every ingest kind embeds its text
# through `embed_text`, so all rows in `inputs.embedding` share one model
# and one dimensionality.
#
# Uses the OpenAI SDK with a configurable base_url, so any provider that
# exposes the OpenAI embeddings endpoint works.
#
# The SDK client is sync. The ingest handlers call it through
# `asyncio.to_thread`. No retry logic here: an embedding failure fails the
# submission before anything is written.
# =============================================================================

from __future__ import annotations

import logging

from openai import OpenAI

from app.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Embedding Client - Lazy Singleton
# ---------------------------------------------------------------------------
# Lazy initialization avoids import-time failures when the key isn't set.
# ---------------------------------------------------------------------------

_client: OpenAI | None = None


def _get_client() -> OpenAI:
    """Lazily initialize and cache the embedding client."""
    global _client
    if _client is None:
        if not settings.openai_api_key:
            raise ValueError(
                "No API key configured for embeddings. "
                "Set OPENAI_API_KEY in .env"
            )

        client_kwargs: dict = {"api_key": settings.openai_api_key}
        if settings.embedding_base_url:
            client_kwargs["base_url"] = settings.embedding_base_url

        _client = OpenAI(**client_kwargs)

        logger.info(
            "Initialized embedding client (model=%s, base_url=%s)",
            settings.embedding_model,
            settings.embedding_base_url or "https://api.openai.com/v1",
        )
    return _client


def _create(inputs: list[str]):
    create_kwargs: dict = {
        "model": settings.embedding_model,
        "input": inputs,
    }
    if settings.embedding_dimensions:
        create_kwargs["dimensions"] = settings.embedding_dimensions
    return _get_client().embeddings.create(**create_kwargs)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def embed_text(text: str) -> list[float]:
    """
    Generate the embedding for one submission.

    The text is trimmed first; empty or whitespace-only text raises.

    Raises:
        ValueError: Empty text, or no API key configured.
        openai.APIError: If the API call fails.
    """
    if not text or not text.strip():
        raise ValueError("Cannot generate embedding for empty text")

    response = _create([text.strip()])

    logger.debug(
        "Embedded %d chars (model=%s, prompt_tokens=%d)",
        len(text),
        response.model,
        response.usage.prompt_tokens if response.usage else 0,
    )
    return response.data[0].embedding
