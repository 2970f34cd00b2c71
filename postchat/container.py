"""Composition root.

build_container constructs every component from one Settings object and wires
them together. The API process and the Celery worker process each build their
own container; nothing is shared through module-level state.
"""
from dataclasses import dataclass

import redis
from celery import Celery

from postchat.cache import EmbeddingCache, create_redis
from postchat.config import Settings
from postchat.db import Database
from postchat.embedding import EmbeddingClient
from postchat.generation import GenerationClient
from postchat.jobs import EmbeddingJobQueue, create_celery_app
from postchat.locks import RedisPostLocks
from postchat.obs import Tracer
from postchat.repositories import SqlChatRepository, SqlChunkStore, SqlPostRepository
from postchat.retrieval import RetrievalEngine
from postchat.service import ChatOrchestrator
from postchat.worker import EmbeddingWorker


@dataclass
class Container:
    settings: Settings
    db: Database
    redis: redis.Redis
    celery_app: Celery
    service: ChatOrchestrator
    tracer: Tracer


def build_container(settings: Settings) -> Container:
    """Wire the application from settings."""
    db = Database(settings.DATABASE_URL)
    redis_client = create_redis(settings.REDIS_URL)

    chunks = SqlChunkStore(db)
    posts = SqlPostRepository(db, chunks)
    chats = SqlChatRepository(db)
    locks = RedisPostLocks(
        redis_client,
        timeout=settings.POST_LOCK_TIMEOUT_SECONDS,
        wait=settings.POST_LOCK_WAIT_SECONDS,
    )
    cache = EmbeddingCache(redis_client, settings.OPENAI_EMBEDDING_MODEL, ttl_seconds=settings.EMBEDDING_CACHE_TTL_SECONDS)
    embedder = EmbeddingClient.from_settings(settings, cache=cache)

    def worker_factory() -> EmbeddingWorker:
        return EmbeddingWorker(
            posts=posts,
            chunks=chunks,
            embedder=embedder,
            locks=locks,
            max_chunk_chars=settings.CHUNK_MAX_CHARS,
        )

    celery_app = create_celery_app(settings, worker_factory=worker_factory)
    service = ChatOrchestrator(
        posts=posts,
        chats=chats,
        queue=EmbeddingJobQueue(celery_app, queue_name=settings.EMBEDDING_QUEUE_NAME),
        retrieval=RetrievalEngine(
            embedder,
            chunks,
            top_k=settings.TOP_K,
            fallback=settings.NO_CONTEXT_FALLBACK,
        ),
        generator=GenerationClient.from_settings(settings),
        locks=locks,
    )
    return Container(
        settings=settings,
        db=db,
        redis=redis_client,
        celery_app=celery_app,
        service=service,
        tracer=Tracer(settings),
    )
