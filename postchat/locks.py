"""Per-post mutual exclusion across API and worker processes.

Chunk replacement followed by the ready flip (worker) must not interleave with
flag reset followed by chunk deletion (disable chat) for the same post. Both
paths hold the post's Redis lock for the duration of their critical section.
"""
import logging
from contextlib import contextmanager
from typing import ContextManager, Iterator, Protocol

import redis
from redis.exceptions import LockError

from postchat.errors import PostBusyError

logger = logging.getLogger(__name__)


class PostLocks(Protocol):
    def hold(self, post_id: str) -> ContextManager[None]: ...


class RedisPostLocks:
    """Redis-backed lock per post id.

    Args:
        client: Redis client shared with the cache.
        timeout: Seconds after which an abandoned lock expires.
        wait: Seconds to wait for the lock before raising PostBusyError.
    """

    def __init__(self, client: redis.Redis, timeout: int = 120, wait: float = 30.0, prefix: str = "postchat:lock:post"):
        self._client = client
        self._timeout = timeout
        self._wait = wait
        self._prefix = prefix

    def key_for(self, post_id: str) -> str:
        return f"{self._prefix}:{post_id}"

    @contextmanager
    def hold(self, post_id: str) -> Iterator[None]:
        lock = self._client.lock(self.key_for(post_id), timeout=self._timeout, blocking_timeout=self._wait)
        if not lock.acquire():
            raise PostBusyError(f"post {post_id} is locked by another operation")
        try:
            yield
        finally:
            try:
                lock.release()
            except LockError:
                # Expired mid-section; another holder may already own it.
                logger.warning("Lock for post %s expired before release", post_id)
