"""Application configuration and environment-driven settings.

Defines the Settings class based on pydantic-settings to centralize configuration for:
- Embedding model access (OpenAI-compatible API)
- The streaming generation host and model
- Data stores (PostgreSQL + pgvector, Redis) and cache defaults
- Chunking/retrieval knobs
- Embedding job queue (Celery) concurrency and retry policy
- Optional observability (Langfuse, OpenTelemetry)

There is no module-level settings instance: the composition root builds one
Settings object and passes it to each component it constructs.
"""
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_NO_CONTEXT_FALLBACK = (
    "There is no relevant information from the document. "
    "Answer the question as best as you can or inform the user you cannot answer."
)


class Settings(BaseSettings):
    """Strongly-typed application settings loaded from environment variables.

    Uses pydantic-settings to populate fields from a .env file or process env.
    See individual field names for semantics and safe defaults.
    """
    # Embedding model (OpenAI or any OpenAI-compatible host, e.g. Ollama /v1)
    OPENAI_API_KEY: str = Field(default="", description="API key for the embedding endpoint")
    OPENAI_BASE_URL: str = Field(default="", description="Override base URL; empty uses OpenAI")
    OPENAI_EMBEDDING_MODEL: str = "text-embedding-3-small"  # 1536 dims
    EMBEDDING_DIMENSIONS: int = Field(default=0, description="0 derives the dimension from the model name")
    EMBEDDING_TIMEOUT_SECONDS: float = 30.0

    # Generation model (streaming chat endpoint)
    AI_HOST: str = "http://localhost:11434"
    AI_MODEL: str = "llama3"
    AI_GENERATE_PATH: str = "/api/generate"
    GENERATION_CONNECT_TIMEOUT_SECONDS: float = 10.0
    GENERATION_READ_TIMEOUT_SECONDS: float = 120.0

    # Data stores
    DATABASE_URL: str = "postgresql+psycopg2://postchat:postchat@db:5432/postchat"
    REDIS_URL: str = "redis://redis:6379/0"
    EMBEDDING_CACHE_TTL_SECONDS: int = 600

    # Chunking/Retrieval
    CHUNK_MAX_CHARS: int = 800
    TOP_K: int = 3
    NO_CONTEXT_FALLBACK: str = DEFAULT_NO_CONTEXT_FALLBACK

    # Embedding job queue
    EMBEDDING_QUEUE_NAME: str = "embeddings"
    EMBEDDING_WORKER_CONCURRENCY: int = 10
    EMBEDDING_JOB_MAX_RETRIES: int = 3
    EMBEDDING_JOB_BACKOFF_SECONDS: int = 10
    EMBEDDING_JOB_BACKOFF_MAX_SECONDS: int = 600

    # Per-post mutual exclusion
    POST_LOCK_TIMEOUT_SECONDS: int = 120
    POST_LOCK_WAIT_SECONDS: float = 30.0

    # Observability (optional)
    LOG_LEVEL: str = "INFO"
    LANGFUSE_HOST: str = ""
    LANGFUSE_PUBLIC_KEY: str = ""
    LANGFUSE_SECRET_KEY: str = ""
    OTEL_CONSOLE_EXPORT: bool = False

    # HTTP
    ALLOWED_ORIGINS: str = "*"

    # Derived
    @property
    def embedding_dim(self) -> int:
        """Embedding dimension for the configured embedding model.

        Returns:
            int: EMBEDDING_DIMENSIONS when set, otherwise the dimension inferred
                from OPENAI_EMBEDDING_MODEL.
        """
        if self.EMBEDDING_DIMENSIONS > 0:
            return self.EMBEDDING_DIMENSIONS
        model = self.OPENAI_EMBEDDING_MODEL.lower()
        if "text-embedding-3-large" in model:
            return 3072
        if "text-embedding-3-small" in model or "ada-002" in model:
            return 1536
        if "nomic-embed-text" in model:
            return 768
        if "mxbai-embed-large" in model:
            return 1024
        # Fallback
        return 1536

    @property
    def generation_url(self) -> str:
        """Full URL of the streaming generation endpoint."""
        return self.AI_HOST.rstrip("/") + "/" + self.AI_GENERATE_PATH.lstrip("/")

    @property
    def allowed_origins(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

    @property
    def langfuse_enabled(self) -> bool:
        return bool(self.LANGFUSE_HOST and self.LANGFUSE_PUBLIC_KEY and self.LANGFUSE_SECRET_KEY)

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)
