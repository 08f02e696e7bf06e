"""Application settings loaded from environment variables via pydantic-settings.

Values are read from two sources, highest priority first:

  1. Environment variables, e.g. ``OPENAI_API_KEY=sk-abc123``
  2. A ``.env`` file in the working directory (local development)

Field ``openai_api_key`` maps to ``OPENAI_API_KEY``; defaults apply when
neither source sets a value.  Per-plan quota tables are not environment
settings -- they live in ``config/config.yaml`` (see
:mod:`chatiq_kb.config.loader`).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Knowledge-base pipeline settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # === Embedding provider ===
    openai_api_key: str = ""
    openai_base_url: str = ""  # OpenAI-compatible gateway, empty = api.openai.com
    openai_embedding_model: str = "text-embedding-3-small"
    # Cache namespace.  Bump whenever the model or its preprocessing changes
    # so vectors from the previous model are never served.
    embedding_model_version: str = "text-embedding-3-small-v1"
    embedding_timeout_seconds: float = 30.0

    # === Storage ===
    database_path: str = "data/knowledge.db"

    # === Chunking ===
    chunk_size: int = 600
    chunk_overlap: int = 120

    # === Embedding job queue ===
    embedding_max_attempts: int = 5
    embedding_error_max_chars: int = 1000
    retry_backoff_base_seconds: float = 0.0  # 0 = requeued jobs are eligible immediately
    retry_backoff_max_seconds: float = 300.0
    worker_batch_size: int = 5
    worker_id: str = "embedding-worker"
    worker_poll_interval_seconds: float = 5.0
    stale_lock_minutes: int = 5

    # === Retrieval ===
    retrieval_top_k: int = 12

    # === App Config ===
    app_env: str = "development"
    log_level: str = "INFO"

    def embedding_configured(self) -> bool:
        """Return ``True`` when an embedding API key is present."""
        return bool(self.openai_api_key)
