"""Retrieval of grounding context for a question about one post.

This module implements:
- ScoredChunk: request-scoped pairing of chunk text and similarity score
- rank_chunks: cosine scoring and stable descending top-k selection
- build_context: blank-line concatenation of selected chunk text
- RetrievalEngine: embeds the question, loads the post's chunks and returns
  the context block (or a fixed fallback sentence when nothing is stored)
"""
import logging
from dataclasses import dataclass
from typing import List, Sequence

from postchat.config import DEFAULT_NO_CONTEXT_FALLBACK
from postchat.embedding import EmbeddingClient
from postchat.entities import ChunkRecord
from postchat.repositories import ChunkStore
from postchat.vector_math import cosine_similarity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoredChunk:
    """Chunk text with its similarity to the current question. Never persisted."""
    position: int
    text: str
    score: float


def rank_chunks(query_vec: Sequence[float], chunks: Sequence[ChunkRecord], top_k: int) -> List[ScoredChunk]:
    """Score chunks against a query vector and keep the best top_k.

    Args:
        query_vec: Question embedding.
        chunks: Candidate chunks in their stored order.
        top_k: Number of chunks to keep.

    Returns:
        List[ScoredChunk]: Descending by score; equal scores keep stored order.
    """
    scored = [
        ScoredChunk(position=c.position, text=c.content, score=cosine_similarity(query_vec, c.embedding))
        for c in chunks
    ]
    # sorted() is stable, so ties stay in stored order
    scored = sorted(scored, key=lambda s: -s.score)
    return scored[: max(0, top_k)]


def build_context(selected: Sequence[ScoredChunk]) -> str:
    return "\n\n".join(s.text for s in selected)


class RetrievalEngine:
    """Ranks a post's stored chunks against a question."""

    def __init__(
        self,
        embedder: EmbeddingClient,
        chunks: ChunkStore,
        top_k: int = 3,
        fallback: str = DEFAULT_NO_CONTEXT_FALLBACK,
    ):
        self.embedder = embedder
        self.chunks = chunks
        self.top_k = top_k
        self.fallback = fallback

    def retrieve_chunks(self, post_id: str, question: str) -> List[ScoredChunk]:
        """Return the top_k chunks of a post for a question.

        Raises:
            UpstreamError: If the question cannot be embedded.
        """
        qvec = self.embedder.embed_query(question)
        stored = self.chunks.get_chunks_by_post(post_id)
        selected = rank_chunks(qvec, stored, self.top_k)
        logger.debug(
            "Retrieved %d of %d chunks for post %s (top score %.3f)",
            len(selected),
            len(stored),
            post_id,
            selected[0].score if selected else 0.0,
        )
        return selected

    def retrieve(self, post_id: str, question: str) -> str:
        """Return the grounding context for a question.

        Returns:
            str: Selected chunk text joined by blank lines, or the fallback
                sentence when the post has no chunks.
        """
        context = build_context(self.retrieve_chunks(post_id, question))
        return context if context else self.fallback
