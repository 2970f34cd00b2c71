import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import openai
import pytest
import redis

from postchat.cache import EmbeddingCache
from postchat.embedding import EmbeddingClient
from postchat.errors import UpstreamError


def _response(*vectors):
    return SimpleNamespace(data=[SimpleNamespace(embedding=v) for v in vectors])


@pytest.fixture
def openai_client():
    client = MagicMock()
    client.embeddings.create.return_value = _response([0.1, 0.2, 0.3])
    return client


@pytest.fixture
def redis_client():
    client = MagicMock()
    client.get.return_value = None
    return client


class TestEmbed:
    def test_returns_vector(self, openai_client):
        embedder = EmbeddingClient(model="m", dimensions=3, client=openai_client)

        assert embedder.embed("hello") == [0.1, 0.2, 0.3]
        openai_client.embeddings.create.assert_called_once_with(model="m", input=["hello"])

    def test_connection_failure_is_upstream_error(self, openai_client):
        openai_client.embeddings.create.side_effect = openai.APIConnectionError(
            request=httpx.Request("POST", "http://embeddings.test/v1/embeddings")
        )
        embedder = EmbeddingClient(model="m", dimensions=3, client=openai_client)

        with pytest.raises(UpstreamError):
            embedder.embed("hello")

    def test_dimension_mismatch_is_upstream_error(self, openai_client):
        embedder = EmbeddingClient(model="m", dimensions=4, client=openai_client)

        with pytest.raises(UpstreamError, match="dimension"):
            embedder.embed("hello")

    def test_empty_response_is_upstream_error(self, openai_client):
        openai_client.embeddings.create.return_value = _response()
        embedder = EmbeddingClient(model="m", dimensions=3, client=openai_client)

        with pytest.raises(UpstreamError):
            embedder.embed("hello")

    def test_non_numeric_vector_is_upstream_error(self, openai_client):
        openai_client.embeddings.create.return_value = _response(["a", "b", "c"])
        embedder = EmbeddingClient(model="m", dimensions=3, client=openai_client)

        with pytest.raises(UpstreamError):
            embedder.embed("hello")

    def test_zero_dimensions_accepts_any_length(self, openai_client):
        openai_client.embeddings.create.return_value = _response([1.0] * 7)
        embedder = EmbeddingClient(model="m", dimensions=0, client=openai_client)

        assert len(embedder.embed("hello")) == 7


class TestEmbedQueryCache:
    def test_miss_calls_model_and_stores(self, openai_client, redis_client):
        cache = EmbeddingCache(redis_client, model="m", ttl_seconds=60)
        embedder = EmbeddingClient(model="m", dimensions=3, client=openai_client, cache=cache)

        assert embedder.embed_query("What is a dog?") == [0.1, 0.2, 0.3]
        openai_client.embeddings.create.assert_called_once()
        key, ttl, raw = redis_client.setex.call_args.args
        assert key.startswith("postchat:emb:v1:")
        assert ttl == 60
        assert json.loads(raw) == [0.1, 0.2, 0.3]

    def test_hit_skips_model(self, openai_client, redis_client):
        redis_client.get.return_value = json.dumps([0.5, 0.5, 0.5])
        cache = EmbeddingCache(redis_client, model="m")
        embedder = EmbeddingClient(model="m", dimensions=3, client=openai_client, cache=cache)

        assert embedder.embed_query("What is a dog?") == [0.5, 0.5, 0.5]
        openai_client.embeddings.create.assert_not_called()

    def test_cached_vector_of_wrong_dimension_ignored(self, openai_client, redis_client):
        redis_client.get.return_value = json.dumps([0.5, 0.5])
        cache = EmbeddingCache(redis_client, model="m")
        embedder = EmbeddingClient(model="m", dimensions=3, client=openai_client, cache=cache)

        assert embedder.embed_query("q") == [0.1, 0.2, 0.3]

    def test_redis_failure_treated_as_miss(self, openai_client, redis_client):
        redis_client.get.side_effect = redis.ConnectionError("down")
        redis_client.setex.side_effect = redis.ConnectionError("down")
        cache = EmbeddingCache(redis_client, model="m")
        embedder = EmbeddingClient(model="m", dimensions=3, client=openai_client, cache=cache)

        assert embedder.embed_query("q") == [0.1, 0.2, 0.3]

    def test_key_normalizes_case_and_whitespace(self, redis_client):
        cache = EmbeddingCache(redis_client, model="m")
        assert cache._key_for("  Hello ") == cache._key_for("hello")
        assert cache._key_for("hello") != EmbeddingCache(redis_client, model="other")._key_for("hello")

    def test_zero_ttl_disables_writes(self, redis_client):
        EmbeddingCache(redis_client, model="m", ttl_seconds=0).set("q", [1.0])
        redis_client.setex.assert_not_called()
