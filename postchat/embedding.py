"""Embedding client wrapping an OpenAI-compatible embeddings API.

Provides:
- EmbeddingClient.embed: embed one text (used per chunk by the embedding worker).
- EmbeddingClient.embed_query: embed a reader question, served from the Redis
  cache when available.

Every returned vector is checked against the configured dimension; unreachable
endpoints and malformed responses raise UpstreamError.
"""
import logging
from typing import Any, List, Optional

import openai
from openai import OpenAI

from postchat.cache import EmbeddingCache
from postchat.config import Settings
from postchat.errors import UpstreamError

logger = logging.getLogger(__name__)


def build_openai_client(settings: Settings) -> OpenAI:
    """Create an OpenAI client for the configured embedding endpoint."""
    kwargs: dict = {
        # Local OpenAI-compatible hosts accept any key
        "api_key": settings.OPENAI_API_KEY or "not-set",
        "timeout": settings.EMBEDDING_TIMEOUT_SECONDS,
        "max_retries": 0,
    }
    if settings.OPENAI_BASE_URL:
        kwargs["base_url"] = settings.OPENAI_BASE_URL
    return OpenAI(**kwargs)


class EmbeddingClient:
    """Turns text into a fixed-dimension vector."""

    def __init__(
        self,
        model: str,
        dimensions: int,
        client: OpenAI,
        cache: Optional[EmbeddingCache] = None,
    ):
        self.model = model
        self.dimensions = dimensions
        self._client = client
        self._cache = cache

    @classmethod
    def from_settings(cls, settings: Settings, cache: Optional[EmbeddingCache] = None) -> "EmbeddingClient":
        return cls(
            model=settings.OPENAI_EMBEDDING_MODEL,
            dimensions=settings.embedding_dim,
            client=build_openai_client(settings),
            cache=cache,
        )

    def embed(self, text: str) -> List[float]:
        """Embed a single text.

        Args:
            text: Non-empty input string.

        Returns:
            List[float]: The embedding vector.

        Raises:
            UpstreamError: If the endpoint fails or returns malformed data.
        """
        try:
            resp = self._client.embeddings.create(model=self.model, input=[text])
        except openai.OpenAIError as exc:
            raise UpstreamError(f"embedding request failed: {exc}") from exc
        data = getattr(resp, "data", None) or []
        if not data:
            raise UpstreamError("embedding response contained no vectors")
        return self._validate(getattr(data[0], "embedding", None))

    def embed_query(self, text: str) -> List[float]:
        """Embed a question, consulting the cache first."""
        if self._cache is not None:
            cached = self._cache.get(text)
            if cached is not None and len(cached) == self.dimensions:
                return cached
        vector = self.embed(text)
        if self._cache is not None:
            self._cache.set(text, vector)
        return vector

    def _validate(self, raw: Any) -> List[float]:
        if not isinstance(raw, (list, tuple)) or not raw:
            raise UpstreamError("embedding response vector is missing or empty")
        try:
            vector = [float(x) for x in raw]
        except (TypeError, ValueError) as exc:
            raise UpstreamError("embedding response vector is not numeric") from exc
        if self.dimensions and len(vector) != self.dimensions:
            raise UpstreamError(
                f"embedding dimension mismatch: expected {self.dimensions}, got {len(vector)}"
            )
        return vector
