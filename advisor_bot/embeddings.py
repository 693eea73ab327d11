"""
Embedding providers for Advisor_bot.

Turns text into fixed-length vectors for the vector store. One implementation
per backend, chosen once by `create_embedder()` from settings:

- gemini: Google text-embedding-004 via google-genai (768 dims)
- openai: text-embedding-3-small via the OpenAI SDK (dimensions requested)
- sentence-transformers: local model, no API calls

Failures surface as ProviderError (upstream) or ConfigurationError (no key).
There is no retry; sync callers skip the item that failed.
"""

import logging
from abc import ABC, abstractmethod

import httpx

from .config import settings
from .errors import ConfigurationError, ProviderError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_MODELS = {
    "gemini": "text-embedding-004",
    "openai": "text-embedding-3-small",
    "sentence-transformers": "all-mpnet-base-v2",
}


class EmbeddingProvider(ABC):
    """Common interface: `embed` one text, `embed_many` preserving order."""

    name: str = "base"

    def __init__(self, model: str, dimensions: int):
        self.model = model
        self.dimensions = dimensions

    @abstractmethod
    def _embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Call the backend for a non-empty batch of non-empty texts."""

    def embed(self, text: str) -> list[float]:
        """Embed a single text."""
        return self.embed_many([text])[0]

    def embed_many(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts. Output order matches input order."""
        if not texts:
            return []
        for text in texts:
            if not text or not text.strip():
                raise ValidationError("Cannot embed empty text")

        vectors = self._embed_batch(texts)
        if len(vectors) != len(texts):
            raise ProviderError(
                f"{self.name} returned {len(vectors)} embeddings for {len(texts)} texts"
            )
        for vector in vectors:
            if len(vector) != self.dimensions:
                raise ConfigurationError(
                    f"{self.name} model {self.model} returned {len(vector)} dimensions, "
                    f"expected {self.dimensions} (check EMBEDDING_DIMENSIONS)"
                )
        return vectors


class GeminiEmbedder(EmbeddingProvider):
    """Google Gemini embeddings via the google-genai SDK."""

    name = "gemini"

    def __init__(self, api_key: str, model: str, dimensions: int, client=None):
        super().__init__(model, dimensions)
        if client is None:
            from google import genai
            client = genai.Client(api_key=api_key)
        self.client = client

    def _embed_batch(self, texts: list[str]) -> list[list[float]]:
        from google.genai import errors as genai_errors
        from google.genai import types as genai_types

        try:
            response = self.client.models.embed_content(
                model=self.model,
                contents=texts,
                config=genai_types.EmbedContentConfig(output_dimensionality=self.dimensions),
            )
        except genai_errors.APIError as e:
            logger.error("Gemini embedding request failed: %s", e)
            raise ProviderError(f"Gemini embedding API error: {e.message}", e.code) from e
        except (httpx.HTTPError, OSError) as e:
            logger.error("Gemini embedding request failed: %s", e)
            raise ProviderError(f"Gemini embedding request failed: {e}") from e

        return [list(embedding.values) for embedding in response.embeddings or []]


class OpenAIEmbedder(EmbeddingProvider):
    """OpenAI embeddings API."""

    name = "openai"

    def __init__(self, api_key: str, model: str, dimensions: int, client=None):
        super().__init__(model, dimensions)
        if client is None:
            from openai import OpenAI
            client = OpenAI(api_key=api_key, timeout=settings.http_timeout_seconds)
        self.client = client

    def _embed_batch(self, texts: list[str]) -> list[list[float]]:
        import openai

        try:
            response = self.client.embeddings.create(
                model=self.model,
                input=texts,
                dimensions=self.dimensions,
            )
        except openai.OpenAIError as e:
            logger.error("OpenAI embedding request failed: %s", e)
            raise ProviderError(f"OpenAI embedding API error: {e}") from e

        # The API tags each item with its input index
        ordered = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in ordered]


class SentenceTransformerEmbedder(EmbeddingProvider):
    """Local sentence-transformers model (no API calls)."""

    name = "sentence-transformers"

    def __init__(self, model: str, dimensions: int, encoder=None):
        super().__init__(model, dimensions)
        self._encoder = encoder

    def _get_encoder(self):
        if self._encoder is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError:
                raise ConfigurationError(
                    "sentence-transformers not installed. Install with: pip install sentence-transformers"
                )
            self._encoder = SentenceTransformer(self.model)
        return self._encoder

    def _embed_batch(self, texts: list[str]) -> list[list[float]]:
        vectors = self._get_encoder().encode(texts)
        return [list(map(float, vector)) for vector in vectors]


def create_embedder(provider: str | None = None) -> EmbeddingProvider:
    """Build the embedding provider selected in settings.

    Raises:
        ConfigurationError: If the provider needs an API key that isn't set.
    """
    provider = provider or settings.embedding_provider
    model = settings.embedding_model or DEFAULT_MODELS.get(provider)
    dimensions = settings.embedding_dimensions

    if provider == "gemini":
        return GeminiEmbedder(settings.get_api_key("gemini"), model, dimensions)
    elif provider == "openai":
        return OpenAIEmbedder(settings.get_api_key("openai"), model, dimensions)
    elif provider == "sentence-transformers":
        return SentenceTransformerEmbedder(model, dimensions)
    else:
        raise ConfigurationError(f"Unknown embedding provider: {provider}")
