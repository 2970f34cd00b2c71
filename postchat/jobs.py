"""Durable embedding job queue on Celery with a Redis broker.

Provides:
- EmbeddingJobQueue.enqueue: publishes an embedding job by task name.
- RetryPolicy: bounded retries with capped, jittered exponential backoff.
- execute_embedding_job: runs one job through an EmbeddingWorker and applies
  the retry/drop policy.
- create_celery_app: Celery application whose worker pool size bounds how many
  embedding jobs run at once; excess jobs wait in the broker.

Delivery is at-least-once (late acks); a job is terminal on success, when its
post no longer exists, or once its retries are exhausted.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, NoReturn, Optional

from celery import Celery
from celery.utils.time import get_exponential_backoff_interval
from kombu.exceptions import KombuError

from postchat.config import Settings
from postchat.entities import EmbeddingJob
from postchat.errors import PostBusyError, UpstreamError
from postchat.worker import EmbeddingWorker

logger = logging.getLogger(__name__)

EMBED_POST_TASK = "postchat.embed_post"

RETRYABLE_ERRORS = (UpstreamError, PostBusyError)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget for embedding jobs.

    Attributes:
        max_retries: Retries after the first attempt before the job is dropped.
        backoff_seconds: Backoff factor; the n-th retry waits up to factor * 2**n.
        backoff_max_seconds: Upper bound on any single wait.
        jitter: Draw the wait uniformly from [0, bound].
    """
    max_retries: int = 3
    backoff_seconds: int = 10
    backoff_max_seconds: int = 600
    jitter: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_retries=settings.EMBEDDING_JOB_MAX_RETRIES,
            backoff_seconds=settings.EMBEDDING_JOB_BACKOFF_SECONDS,
            backoff_max_seconds=settings.EMBEDDING_JOB_BACKOFF_MAX_SECONDS,
        )

    def countdown(self, retries: int) -> int:
        return get_exponential_backoff_interval(
            factor=self.backoff_seconds,
            retries=retries,
            maximum=self.backoff_max_seconds,
            full_jitter=self.jitter,
        )


def execute_embedding_job(
    worker: EmbeddingWorker,
    job: EmbeddingJob,
    retries: int,
    policy: RetryPolicy,
    retry: Callable[[Exception, int], NoReturn],
) -> Dict[str, Any]:
    """Run one job attempt and apply the retry policy.

    Args:
        worker: The embedding worker.
        job: The job being attempted.
        retries: Retries already performed for this job (0 on first attempt).
        policy: Retry budget and backoff.
        retry: Callback that schedules a retry after the given countdown; it
            must raise (Celery's Task.retry does).

    Returns:
        dict: {"post_id", "status", "chunks"} with status "done", "skipped" or "dropped".
    """
    try:
        stored = worker.process(job)
    except RETRYABLE_ERRORS as exc:
        if retries >= policy.max_retries:
            logger.error(
                "Dropping embedding job for post %s after %d attempts: %s", job.post_id, retries + 1, exc
            )
            return {"post_id": job.post_id, "status": "dropped", "chunks": 0}
        countdown = policy.countdown(retries)
        logger.warning(
            "Embedding job for post %s failed (attempt %d), retrying in %ss: %s",
            job.post_id,
            retries + 1,
            countdown,
            exc,
        )
        retry(exc, countdown)
        raise  # retry() raises; keep the failure visible if it does not
    status = "done" if stored else "skipped"
    return {"post_id": job.post_id, "status": status, "chunks": stored}


def create_celery_app(settings: Settings, worker_factory: Optional[Callable[[], EmbeddingWorker]] = None) -> Celery:
    """Build the Celery application for the embedding queue.

    Args:
        settings: Application settings (broker URL, queue name, pool size, retries).
        worker_factory: Builds the EmbeddingWorker on first use inside a worker
            process. Producers that only enqueue may omit it.

    Returns:
        Celery: Configured application with the embed_post task registered.
    """
    app = Celery("postchat", broker=settings.REDIS_URL)
    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        task_default_queue=settings.EMBEDDING_QUEUE_NAME,
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        task_ignore_result=True,
        worker_prefetch_multiplier=1,
        worker_concurrency=settings.EMBEDDING_WORKER_CONCURRENCY,
        broker_connection_retry_on_startup=True,
    )
    policy = RetryPolicy.from_settings(settings)
    built: Dict[str, EmbeddingWorker] = {}

    def get_worker() -> EmbeddingWorker:
        if "worker" not in built:
            if worker_factory is None:
                raise RuntimeError("this Celery app was created without a worker factory")
            built["worker"] = worker_factory()
        return built["worker"]

    @app.task(name=EMBED_POST_TASK, bind=True, shared=False)
    def embed_post(task, post_id: str, user_id: str) -> Dict[str, Any]:
        def retry(exc: Exception, countdown: int) -> NoReturn:
            raise task.retry(exc=exc, countdown=countdown, max_retries=policy.max_retries)

        return execute_embedding_job(
            get_worker(),
            EmbeddingJob(post_id=post_id, user_id=user_id),
            retries=task.request.retries,
            policy=policy,
            retry=retry,
        )

    return app


class EmbeddingJobQueue:
    """Producer side of the embedding queue."""

    def __init__(self, celery_app: Celery, queue_name: Optional[str] = None):
        self._celery = celery_app
        self._queue_name = queue_name

    def enqueue(self, post_id: str, user_id: str) -> str:
        """Publish an embedding job.

        Returns:
            str: The job id.

        Raises:
            UpstreamError: If the broker cannot accept the job.
        """
        options: Dict[str, Any] = {"queue": self._queue_name} if self._queue_name else {}
        try:
            result = self._celery.send_task(EMBED_POST_TASK, args=[post_id, user_id], **options)
        except (KombuError, OSError) as exc:
            raise UpstreamError(f"could not enqueue embedding job: {exc}") from exc
        logger.info("Enqueued embedding job %s for post %s", result.id, post_id)
        return result.id
