"""Caching utilities for question embeddings using Redis.

Provides:
- create_redis: Redis client from a REDIS_URL with decode_responses.
- EmbeddingCache: JSON-encoded vectors keyed by embedding model + question text,
  stored with a TTL.
"""
import hashlib
import json
import logging
from typing import List, Optional

import redis

logger = logging.getLogger(__name__)


def create_redis(url: str) -> redis.Redis:
    """Return a Redis client configured from a URL.

    Returns:
        redis.Redis: Client with decode_responses=True.
    """
    return redis.from_url(url, decode_responses=True)


class EmbeddingCache:
    """Question-embedding cache.

    Cache failures are logged and treated as misses so that an unavailable
    Redis never blocks a reader's question.
    """

    def __init__(self, client: redis.Redis, model: str, ttl_seconds: int = 600):
        self._client = client
        self._model = model
        self._ttl = ttl_seconds

    def _key_for(self, text: str) -> str:
        """Compute a stable cache key for a text under the configured model."""
        norm = text.strip().lower()
        h = hashlib.sha256(f"{self._model}|{norm}".encode("utf-8")).hexdigest()
        return f"postchat:emb:v1:{h}"

    def get(self, text: str) -> Optional[List[float]]:
        try:
            raw = self._client.get(self._key_for(text))
        except redis.RedisError as exc:
            logger.warning("Embedding cache read failed: %s", exc)
            return None
        if not raw:
            return None
        try:
            value = json.loads(raw)
        except ValueError:
            return None
        if not isinstance(value, list):
            return None
        return [float(x) for x in value]

    def set(self, text: str, vector: List[float]) -> None:
        if self._ttl <= 0:
            return
        try:
            self._client.setex(self._key_for(text), self._ttl, json.dumps(vector))
        except redis.RedisError as exc:
            logger.warning("Embedding cache write failed: %s", exc)
