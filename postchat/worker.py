"""Embedding worker: builds the chunk set of a post and marks it ready.

For one job the worker loads the post, chunks its text, embeds every chunk,
then, holding the post's lock, atomically replaces the stored chunk set and
flips chat_enabled / embeddings_ready. Any embedding failure aborts the job
before anything is written, so a post is never ready without chunks. Results
are only applied while the post still has chat_requested set; a job that
outlives a disable is discarded.
"""
import logging
from typing import List

from postchat.embedding import EmbeddingClient
from postchat.entities import ChunkRecord, EmbeddingJob
from postchat.locks import PostLocks
from postchat.obs import span
from postchat.repositories import ChunkStore, PostRepository
from postchat.utils import chunk_text

logger = logging.getLogger(__name__)


class EmbeddingWorker:
    """Processes EmbeddingJobs; one call handles one job."""

    def __init__(
        self,
        posts: PostRepository,
        chunks: ChunkStore,
        embedder: EmbeddingClient,
        locks: PostLocks,
        max_chunk_chars: int = 800,
    ):
        self.posts = posts
        self.chunks = chunks
        self.embedder = embedder
        self.locks = locks
        self.max_chunk_chars = max_chunk_chars

    def build_chunks(self, post_id: str, text: str) -> List[ChunkRecord]:
        """Chunk and embed text.

        Raises:
            UpstreamError: On the first failed embedding call.
        """
        records: List[ChunkRecord] = []
        for position, piece in enumerate(chunk_text(text, self.max_chunk_chars)):
            records.append(
                ChunkRecord(post_id=post_id, position=position, content=piece, embedding=self.embedder.embed(piece))
            )
        return records

    def process(self, job: EmbeddingJob) -> int:
        """Run one embedding job to completion.

        Args:
            job: The dequeued job.

        Returns:
            int: Number of chunks stored; 0 when the post is gone, has no text,
            or chat is no longer requested for it.

        Raises:
            UpstreamError: Embedding failed; the queue decides whether to retry.
            PostBusyError: The post's lock could not be acquired.
        """
        post = self.posts.get_by_id(job.post_id)
        if post is None:
            logger.info("Embedding job for missing post %s skipped", job.post_id)
            return 0
        if not post.chat_requested:
            logger.info("Chat for post %s is no longer requested; job skipped", job.post_id)
            return 0

        logger.info("Embedding post %s (requested by %s)", job.post_id, job.user_id)
        with span("embed_post", {"post_id": job.post_id}):
            records = self.build_chunks(job.post_id, post.content)

        if not records:
            logger.warning("Post %s has no text to embed; chat stays disabled", job.post_id)
            return 0

        with self.locks.hold(job.post_id):
            current = self.posts.get_by_id(job.post_id)
            if current is None or not current.chat_requested:
                logger.info("Post %s deleted or chat withdrawn while embedding; results discarded", job.post_id)
                return 0
            self.chunks.replace_chunks(job.post_id, records)
            current.chat_enabled = True
            current.embeddings_ready = True
            self.posts.update(current)

        logger.info("Post %s ready with %d chunks", job.post_id, len(records))
        return len(records)
