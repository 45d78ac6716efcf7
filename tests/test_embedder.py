# =============================================================================
# Unit Tests - Embedding Service
# =============================================================================
#
# The OpenAI client is replaced with a MagicMock; no API key is needed.
# =============================================================================

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from app.services.embedder import embed_text


def _embedding_response(vectors: list[list[float]]):
    items = [SimpleNamespace(index=i, embedding=v) for i, v in enumerate(vectors)]
    return SimpleNamespace(
        data=items,
        model="text-embedding-3-small",
        usage=SimpleNamespace(prompt_tokens=5),
    )


class TestEmbedText:
    """Tests for embed_text()."""

    def test_returns_vector_for_trimmed_text(self):
        client = MagicMock()
        client.embeddings.create.return_value = _embedding_response([[0.1, 0.2, 0.3]])

        with patch("app.services.embedder._get_client", return_value=client):
            vector = embed_text("  hello chef  ")

        assert vector == [0.1, 0.2, 0.3]
        kwargs = client.embeddings.create.call_args.kwargs
        assert kwargs["input"] == ["hello chef"]

    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    def test_blank_text_raises(self, text):
        with patch("app.services.embedder._get_client") as mock_get:
            with pytest.raises(ValueError):
                embed_text(text)
        mock_get.assert_not_called()

    def test_api_error_propagates(self):
        client = MagicMock()
        client.embeddings.create.side_effect = RuntimeError("upstream 500")
        with patch("app.services.embedder._get_client", return_value=client):
            with pytest.raises(RuntimeError):
                embed_text("hello")

    def test_missing_api_key_raises(self):
        with (
            patch("app.services.embedder._client", None),
            patch("app.services.embedder.settings") as mock_settings,
        ):
            mock_settings.openai_api_key = ""
            with pytest.raises(ValueError, match="No API key"):
                embed_text("hello")
