"""Persistence contracts and their SQLAlchemy implementations.

Contracts (typing.Protocol):
- PostRepository: get_by_id, update, delete_embeddings_by_post_id
- ChunkStore: get_chunks_by_post, replace_chunks (atomic), delete_chunks
- ChatRepository: create_chat, list_chats

Implementations open one transaction per call through Database.session_scope
and return plain records from postchat.entities.
"""
from typing import List, Optional, Protocol, Sequence

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from postchat.db import Database
from postchat.entities import ChatExchange, ChunkRecord, PostRecord
from postchat.models import AIChat, Post, PostChunk


class PostRepository(Protocol):
    def get_by_id(self, post_id: str) -> Optional[PostRecord]: ...

    def update(self, post: PostRecord) -> None: ...

    def delete_embeddings_by_post_id(self, post_id: str) -> None: ...


class ChunkStore(Protocol):
    def get_chunks_by_post(self, post_id: str) -> List[ChunkRecord]: ...

    def replace_chunks(self, post_id: str, chunks: Sequence[ChunkRecord]) -> None: ...

    def delete_chunks(self, post_id: str) -> None: ...


class ChatRepository(Protocol):
    def create_chat(self, exchange: ChatExchange) -> ChatExchange: ...

    def list_chats(self, post_id: str, user_id: str, limit: int = 50) -> List[ChatExchange]: ...


def _to_post_record(row: Post) -> PostRecord:
    return PostRecord(
        id=row.id,
        author_id=row.author_id,
        content=row.content or "",
        chat_enabled=bool(row.chat_enabled),
        embeddings_ready=bool(row.embeddings_ready),
        chat_requested=bool(row.chat_requested),
    )


def _to_exchange(row: AIChat) -> ChatExchange:
    return ChatExchange(
        id=row.id,
        post_id=row.post_id,
        user_id=row.user_id,
        prompt=row.prompt,
        response=row.response,
        created_at=row.created_at,
    )


def _delete_post_chunks(session: Session, post_id: str) -> int:
    result = session.execute(delete(PostChunk).where(PostChunk.post_id == post_id))
    return result.rowcount or 0


class SqlPostRepository:
    """PostRepository backed by the posts table.

    A post's embeddings are removed through the chunk store that holds them.
    """

    def __init__(self, db: Database, chunks: ChunkStore):
        self.db = db
        self.chunks = chunks

    def get_by_id(self, post_id: str) -> Optional[PostRecord]:
        with self.db.session_scope() as session:
            row = session.get(Post, post_id)
            return _to_post_record(row) if row is not None else None

    def update(self, post: PostRecord) -> None:
        """Persist the chat flags of an existing post.

        Raises:
            LookupError: If the post row no longer exists.
        """
        with self.db.session_scope() as session:
            row = session.get(Post, post.id)
            if row is None:
                raise LookupError(f"post {post.id} does not exist")
            row.chat_enabled = post.chat_enabled
            row.embeddings_ready = post.embeddings_ready
            row.chat_requested = post.chat_requested

    def delete_embeddings_by_post_id(self, post_id: str) -> None:
        self.chunks.delete_chunks(post_id)


class SqlChunkStore:
    """ChunkStore backed by the post_chunks table."""

    def __init__(self, db: Database):
        self.db = db

    def get_chunks_by_post(self, post_id: str) -> List[ChunkRecord]:
        with self.db.session_scope() as session:
            rows = session.execute(
                select(PostChunk).where(PostChunk.post_id == post_id).order_by(PostChunk.position, PostChunk.id)
            ).scalars().all()
            return [
                ChunkRecord(
                    post_id=r.post_id,
                    position=r.position,
                    content=r.content,
                    embedding=[float(x) for x in r.embedding],
                )
                for r in rows
            ]

    def replace_chunks(self, post_id: str, chunks: Sequence[ChunkRecord]) -> None:
        """Atomically swap the full chunk set of a post.

        Existing chunks are deleted and the new ones inserted in one transaction,
        so readers see either the old set or the new one.
        """
        with self.db.session_scope() as session:
            _delete_post_chunks(session, post_id)
            session.add_all(
                [
                    PostChunk(
                        post_id=post_id,
                        position=c.position,
                        content=c.content,
                        embedding=list(c.embedding),
                    )
                    for c in chunks
                ]
            )

    def delete_chunks(self, post_id: str) -> None:
        with self.db.session_scope() as session:
            _delete_post_chunks(session, post_id)


class SqlChatRepository:
    """ChatRepository backed by the ai_chats table."""

    def __init__(self, db: Database):
        self.db = db

    def create_chat(self, exchange: ChatExchange) -> ChatExchange:
        with self.db.session_scope() as session:
            row = AIChat(
                post_id=exchange.post_id,
                user_id=exchange.user_id,
                prompt=exchange.prompt,
                response=exchange.response,
            )
            session.add(row)
            session.flush()
            return _to_exchange(row)

    def list_chats(self, post_id: str, user_id: str, limit: int = 50) -> List[ChatExchange]:
        with self.db.session_scope() as session:
            rows = session.execute(
                select(AIChat)
                .where(AIChat.post_id == post_id, AIChat.user_id == user_id)
                .order_by(AIChat.created_at.desc(), AIChat.id.desc())
                .limit(limit)
            ).scalars().all()
            return [_to_exchange(r) for r in rows]
