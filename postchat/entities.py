"""Plain domain records passed between the service, worker and repositories.

Repositories return these instead of live ORM rows so callers never touch a
detached SQLAlchemy session.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence


@dataclass
class User:
    """The requesting user, as identified by the outer auth layer."""
    id: str


@dataclass
class PostRecord:
    """A post as seen by the chat service.

    Attributes:
        id: Post identity.
        author_id: Identity of the only user allowed to toggle chat.
        content: Plain extracted text of the post.
        chat_enabled: Chat accepts questions.
        embeddings_ready: Retrieval has chunks to search.
        chat_requested: The author asked for chat and has not disabled it
            since; embedding results are only applied while this is set.
    """
    id: str
    author_id: str
    content: str = ""
    chat_enabled: bool = False
    embeddings_ready: bool = False
    chat_requested: bool = False


@dataclass(frozen=True)
class ChunkRecord:
    """An immutable slice of a post's text and its embedding."""
    post_id: str
    position: int
    content: str
    embedding: Sequence[float]


@dataclass(frozen=True)
class EmbeddingJob:
    """Queued request to (re)build the chunk set of a post."""
    post_id: str
    user_id: str


@dataclass
class ChatExchange:
    """One finished question/answer pair.

    Fields are optional so that validation can reject incomplete exchanges
    with a specific reason instead of failing at construction time.
    """
    post_id: Optional[str] = None
    user_id: Optional[str] = None
    prompt: Optional[str] = None
    response: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None

