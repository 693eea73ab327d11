"""Tests for embedding providers with stubbed SDK clients."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import pytest

from advisor_bot.embeddings import (
    GeminiEmbedder,
    OpenAIEmbedder,
    SentenceTransformerEmbedder,
    create_embedder,
)
from advisor_bot.errors import ConfigurationError, ProviderError, ValidationError


def _gemini_client(vectors):
    client = MagicMock()
    client.models.embed_content.return_value = SimpleNamespace(
        embeddings=[SimpleNamespace(values=v) for v in vectors]
    )
    return client


def test_gemini_requests_configured_dimensions():
    client = _gemini_client([[0.1, 0.2, 0.3]])
    embedder = GeminiEmbedder("key", "text-embedding-004", 3, client=client)

    assert embedder.embed("hello") == [0.1, 0.2, 0.3]
    kwargs = client.models.embed_content.call_args.kwargs
    assert kwargs["model"] == "text-embedding-004"
    assert kwargs["contents"] == ["hello"]
    assert kwargs["config"].output_dimensionality == 3


def test_wrong_dimensions_rejected():
    embedder = GeminiEmbedder("key", "m", 4, client=_gemini_client([[0.1, 0.2]]))
    with pytest.raises(ConfigurationError):
        embedder.embed("hello")


def test_count_mismatch_is_provider_error():
    embedder = GeminiEmbedder("key", "m", 2, client=_gemini_client([[0.1, 0.2]]))
    with pytest.raises(ProviderError):
        embedder.embed_many(["a", "b"])


def test_empty_text_rejected_before_calling_backend():
    client = _gemini_client([[0.1, 0.2]])
    embedder = GeminiEmbedder("key", "m", 2, client=client)
    with pytest.raises(ValidationError):
        embedder.embed("  ")
    client.models.embed_content.assert_not_called()
    assert embedder.embed_many([]) == []


def test_openai_restores_input_order():
    client = MagicMock()
    client.embeddings.create.return_value = SimpleNamespace(data=[
        SimpleNamespace(index=1, embedding=[0.0, 1.0]),
        SimpleNamespace(index=0, embedding=[1.0, 0.0]),
    ])
    embedder = OpenAIEmbedder("key", "text-embedding-3-small", 2, client=client)

    assert embedder.embed_many(["first", "second"]) == [[1.0, 0.0], [0.0, 1.0]]
    assert client.embeddings.create.call_args.kwargs["dimensions"] == 2


def test_sentence_transformers_uses_encoder():
    encoder = MagicMock()
    encoder.encode.return_value = [[0.5, 0.5]]
    embedder = SentenceTransformerEmbedder("all-mpnet-base-v2", 2, encoder=encoder)
    assert embedder.embed("text") == [0.5, 0.5]


def test_factory(pinned_settings, monkeypatch):
    local = create_embedder("sentence-transformers")
    assert isinstance(local, SentenceTransformerEmbedder)
    assert local.model == "all-mpnet-base-v2"
    assert local.dimensions == pinned_settings.embedding_dimensions

    monkeypatch.setattr(pinned_settings, "openai_api_key", None)
    with pytest.raises(ConfigurationError):
        create_embedder("openai")


def test_gemini_transport_failure_is_provider_error():
    client = MagicMock()
    client.models.embed_content.side_effect = httpx.ReadTimeout("timed out")
    embedder = GeminiEmbedder("key", "m", 2, client=client)

    with pytest.raises(ProviderError, match="timed out"):
        embedder.embed("hello")
