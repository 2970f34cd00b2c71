"""Celery worker entrypoint for the embedding queue.

Run with:
    celery -A postchat.celery_worker worker --loglevel=INFO

Pool size comes from EMBEDDING_WORKER_CONCURRENCY.
"""
import logging

from postchat.config import Settings
from postchat.container import build_container
from postchat.obs import configure_tracing

settings = Settings()
logging.basicConfig(level=settings.LOG_LEVEL.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
configure_tracing(settings)

container = build_container(settings)
celery_app = container.celery_app
