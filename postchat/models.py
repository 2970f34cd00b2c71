"""Database ORM models.

Defines the persistent entities used by the chat pipeline:
- Post: the slice of a post the chat service reads and the two chat flags it owns.
- PostChunk: an ordered content chunk of a post with its pgvector embedding.
- AIChat: one finished question/answer exchange.
"""
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text

from postchat.db import Base


class Post(Base):
    """A post that may be opted into AI chat.

    The document subsystem owns the row; the chat service only flips
    chat_enabled / embeddings_ready / chat_requested.
    """
    __tablename__ = "posts"

    id = Column(String(64), primary_key=True)
    author_id = Column(String(64), nullable=False)
    content = Column(Text, nullable=False, default="")

    chat_enabled = Column(Boolean, nullable=False, default=False)
    embeddings_ready = Column(Boolean, nullable=False, default=False)
    chat_requested = Column(Boolean, nullable=False, default=False)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class PostChunk(Base):
    """Vector-embedded chunk of a post used for retrieval.

    Indexes:
        - idx_post_chunks_post: chunks are always read, replaced and deleted per post

    Notes:
        The vector column is dimension-agnostic; the embedding client validates
        dimensions against the configured model before anything is written.
    """
    __tablename__ = "post_chunks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    post_id = Column(String(64), nullable=False)
    position = Column(Integer, nullable=False, default=0)  # order within a post
    content = Column(Text, nullable=False)
    embedding = Column(Vector(), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_post_chunks_post", "post_id", "position"),
    )


class AIChat(Base):
    """A persisted question/answer pair for a post."""
    __tablename__ = "ai_chats"

    id = Column(Integer, primary_key=True, autoincrement=True)
    post_id = Column(String(64), nullable=False)
    user_id = Column(String(64), nullable=False)
    prompt = Column(Text, nullable=False)
    response = Column(Text, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_ai_chats_post_user", "post_id", "user_id"),
    )
