"""AI chat for posts: retrieval-augmented answers grounded in a post's own text.

Submodules overview:
- main: FastAPI application bootstrap and lifecycle.
- api: HTTP and WebSocket routes.
- service: ChatOrchestrator, the chat-mode state machine and ask pipeline.
- worker / jobs: embedding worker and its Celery job queue.
- retrieval: cosine ranking of a post's chunks against a question.
- embedding / generation: clients for the external embedding and streaming generation models.
- intents: offline intent classifier.
- repositories / models / db: SQLAlchemy + pgvector persistence.
- locks / cache: Redis per-post locks and question-embedding cache.
- config: Application settings and environment variable loading.
- container: composition root wiring components from settings.
- obs: Observability utilities (tracing/spans).
- utils: text chunking helpers.
"""
