"""
Shared test fixtures and in-memory collaborators.

Provides: in-memory post/chunk/chat repositories, a recording job queue, local
per-post locks, a keyword embedder with deterministic vectors, and a fake
streaming HTTP response for the generation client.
Dependencies: pytest
"""

import threading
from contextlib import contextmanager
from dataclasses import replace
from typing import Dict, Iterator, List, Optional, Sequence
from unittest.mock import MagicMock

import pytest

from postchat.entities import ChatExchange, ChunkRecord, PostRecord
from postchat.errors import UpstreamError
from postchat.generation import GenerationClient
from postchat.retrieval import RetrievalEngine
from postchat.service import ChatOrchestrator
from postchat.worker import EmbeddingWorker


AUTHOR_ID = "author-1"
READER_ID = "reader-1"


class InMemoryPostRepository:
    def __init__(self, chunks: Optional["InMemoryChunkStore"] = None) -> None:
        self.chunks = chunks
        self.rows: Dict[str, PostRecord] = {}
        self.updates: List[PostRecord] = []

    def add(self, post: PostRecord) -> None:
        self.rows[post.id] = replace(post)

    def get_by_id(self, post_id: str) -> Optional[PostRecord]:
        row = self.rows.get(post_id)
        return replace(row) if row is not None else None

    def update(self, post: PostRecord) -> None:
        if post.id not in self.rows:
            raise LookupError(post.id)
        self.rows[post.id] = replace(post)
        self.updates.append(replace(post))

    def delete_embeddings_by_post_id(self, post_id: str) -> None:
        if self.chunks is not None:
            self.chunks.delete_chunks(post_id)


class InMemoryChunkStore:
    def __init__(self) -> None:
        self.rows: Dict[str, List[ChunkRecord]] = {}
        self.fail_delete = False
        self.replace_calls = 0

    def get_chunks_by_post(self, post_id: str) -> List[ChunkRecord]:
        return sorted(self.rows.get(post_id, []), key=lambda c: c.position)

    def replace_chunks(self, post_id: str, chunks: Sequence[ChunkRecord]) -> None:
        self.replace_calls += 1
        self.rows[post_id] = list(chunks)

    def delete_chunks(self, post_id: str) -> None:
        if self.fail_delete:
            raise RuntimeError("database unavailable")
        self.rows.pop(post_id, None)


class InMemoryChatRepository:
    def __init__(self) -> None:
        self.rows: List[ChatExchange] = []

    def create_chat(self, exchange: ChatExchange) -> ChatExchange:
        saved = replace(exchange, id=len(self.rows) + 1)
        self.rows.append(saved)
        return saved

    def list_chats(self, post_id: str, user_id: str, limit: int = 50) -> List[ChatExchange]:
        found = [r for r in self.rows if r.post_id == post_id and r.user_id == user_id]
        return list(reversed(found))[:limit]


class RecordingQueue:
    def __init__(self) -> None:
        self.jobs: List[tuple] = []

    def enqueue(self, post_id: str, user_id: str) -> str:
        self.jobs.append((post_id, user_id))
        return f"job-{len(self.jobs)}"


class LocalPostLocks:
    def __init__(self) -> None:
        self._locks: Dict[str, threading.Lock] = {}
        self.acquired: List[str] = []

    @contextmanager
    def hold(self, post_id: str) -> Iterator[None]:
        lock = self._locks.setdefault(post_id, threading.Lock())
        with lock:
            self.acquired.append(post_id)
            yield


class KeywordEmbedder:
    """Deterministic embedder: one dimension per vocabulary stem."""

    VOCAB = ("cat", "dog", "mammal", "loyal", "bird", "fish")

    def __init__(self) -> None:
        self.fail = False
        self.calls: List[str] = []
        self.dimensions = len(self.VOCAB)

    def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail:
            raise UpstreamError("embedding service unreachable")
        tokens = [t.strip(".,?!").lower() for t in text.split()]
        return [float(sum(1 for t in tokens if t.startswith(stem))) for stem in self.VOCAB]

    def embed_query(self, text: str) -> List[float]:
        return self.embed(text)


class FakeStreamResponse:
    """Stands in for a streamed requests.Response.

    Items in `lines` are yielded by iter_lines; an Exception item is raised at
    that point instead.
    """

    def __init__(self, lines: Sequence, status_code: int = 200) -> None:
        self.lines = list(lines)
        self.status_code = status_code
        self.closed = False

    def iter_lines(self, chunk_size=None):
        for item in self.lines:
            if isinstance(item, Exception):
                raise item
            yield item

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            import requests

            raise requests.HTTPError(f"{self.status_code} error")

    def close(self) -> None:
        self.closed = True


class BlockingStreamResponse(FakeStreamResponse):
    """A streamed response that stalls after its lines until it is closed.

    A read blocked on the stall fails with ConnectionError once close() is
    called from another thread, as a real socket read would.
    """

    def __init__(self, lines: Sequence, stall_seconds: float = 5.0) -> None:
        super().__init__(lines)
        self.stall_seconds = stall_seconds
        self.reading = threading.Event()
        self._released = threading.Event()
        self.closed_while_reading = False

    def iter_lines(self, chunk_size=None):
        yield from super().iter_lines(chunk_size)
        self.reading.set()
        self._released.wait(self.stall_seconds)
        if self.closed:
            self.closed_while_reading = True
            import requests

            raise requests.ConnectionError("connection closed")

    def close(self) -> None:
        super().close()
        self._released.set()


@pytest.fixture
def posts(chunk_store: InMemoryChunkStore) -> InMemoryPostRepository:
    return InMemoryPostRepository(chunk_store)


@pytest.fixture
def chunk_store() -> InMemoryChunkStore:
    return InMemoryChunkStore()


@pytest.fixture
def chats() -> InMemoryChatRepository:
    return InMemoryChatRepository()


@pytest.fixture
def queue() -> RecordingQueue:
    return RecordingQueue()


@pytest.fixture
def locks() -> LocalPostLocks:
    return LocalPostLocks()


@pytest.fixture
def embedder() -> KeywordEmbedder:
    return KeywordEmbedder()


@pytest.fixture
def http_session() -> MagicMock:
    """requests.Session double; set .post.return_value per test."""
    session = MagicMock()
    session.post.return_value = FakeStreamResponse(
        [b'data: {"message": {"content": "Dogs "}}', b'data: {"message": {"content": "are loyal."}}', b"data: [DONE]"]
    )
    return session


@pytest.fixture
def generator(http_session: MagicMock) -> GenerationClient:
    return GenerationClient(url="http://model.test/api/generate", model="test-model", session=http_session)


@pytest.fixture
def retrieval(embedder: KeywordEmbedder, chunk_store: InMemoryChunkStore) -> RetrievalEngine:
    return RetrievalEngine(embedder, chunk_store, top_k=3, fallback="NO CONTEXT")


@pytest.fixture
def service(posts, chats, queue, retrieval, generator, locks) -> ChatOrchestrator:
    """Provide ChatOrchestrator wired to in-memory collaborators."""
    return ChatOrchestrator(
        posts=posts,
        chats=chats,
        queue=queue,
        retrieval=retrieval,
        generator=generator,
        locks=locks,
    )


@pytest.fixture
def worker(posts, chunk_store, embedder, locks) -> EmbeddingWorker:
    return EmbeddingWorker(posts=posts, chunks=chunk_store, embedder=embedder, locks=locks, max_chunk_chars=20)


@pytest.fixture
def ready_post(posts: InMemoryPostRepository, chunk_store: InMemoryChunkStore, embedder: KeywordEmbedder) -> PostRecord:
    """A post with chat open and two embedded chunks."""
    post = PostRecord(
        id="post-1",
        author_id=AUTHOR_ID,
        content="cats are mammals\n\ndogs are loyal",
        chat_enabled=True,
        embeddings_ready=True,
        chat_requested=True,
    )
    posts.add(post)
    chunk_store.replace_chunks(
        post.id,
        [
            ChunkRecord(post_id=post.id, position=i, content=text, embedding=embedder.embed(text))
            for i, text in enumerate(["cats are mammals", "dogs are loyal"])
        ],
    )
    embedder.calls.clear()
    chunk_store.replace_calls = 0
    return post


@pytest.fixture
def disabled_post(posts: InMemoryPostRepository) -> PostRecord:
    post = PostRecord(id="post-2", author_id=AUTHOR_ID, content="birds can fly.\n\nfish can swim.")
    posts.add(post)
    return post


@pytest.fixture
def pending_post(posts: InMemoryPostRepository) -> PostRecord:
    """A post whose author asked for chat; its embedding job has not run yet."""
    post = PostRecord(
        id="post-3",
        author_id=AUTHOR_ID,
        content="birds can fly.\n\nfish can swim.",
        chat_requested=True,
    )
    posts.add(post)
    return post
