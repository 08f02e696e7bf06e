"""Composition root for the knowledge-base pipeline.

Wires providers and services together via constructor injection.  Loads
configuration from ``.env`` and ``config/config.yaml`` and hands back a
flat dict of named components, used by the CLI and by anything embedding
the pipeline as a library (e.g. an HTTP handler).
"""

from __future__ import annotations

from typing import Any

import structlog

from chatiq_kb.config.loader import load_config, load_plan_quotas
from chatiq_kb.config.settings import Settings
from chatiq_kb.interfaces.embedding_provider import IEmbeddingProvider
from chatiq_kb.providers.cache.sqlite_embedding_cache import SQLiteEmbeddingCache
from chatiq_kb.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from chatiq_kb.providers.language.langdetect_detector import LangdetectLanguageDetector
from chatiq_kb.providers.quota.plan_quota_checker import PlanQuotaChecker
from chatiq_kb.providers.store.sqlite_knowledge_store import SQLiteKnowledgeStore
from chatiq_kb.providers.vector_search.sqlite_vector_search import SQLiteVectorSearchProvider
from chatiq_kb.services.embedding.job_state import RetryPolicy
from chatiq_kb.services.embedding.queue_monitor import EmbeddingQueueMonitor
from chatiq_kb.services.embedding.worker import EmbeddingWorker
from chatiq_kb.services.ingestion.chunker import TextChunker
from chatiq_kb.services.ingestion.ingestion_service import IngestionService
from chatiq_kb.services.retrieval.retriever import Retriever
from chatiq_kb.utils.background import BackgroundEffects
from chatiq_kb.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)


def _build_embedding_provider(app_settings: Settings) -> IEmbeddingProvider | None:
    """Return the embedding provider shared by the worker and the retriever.

    One provider for both paths keeps chunk and query vectors in the same
    space.  Returns ``None`` when no API key is set; read-only commands
    (status, cache stats) still work, and the worker and retriever raise
    :class:`ConfigurationError` when asked to embed.
    """
    if app_settings.openai_api_key:
        provider: IEmbeddingProvider = OpenAIEmbeddingProvider(settings=app_settings)
        if provider.is_available():
            return provider

    _logger.warning("embedding_provider_unconfigured", hint="set OPENAI_API_KEY")
    return None


def build_components(
    custom_settings: Settings | None = None,
    app_config: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Construct every provider and service instance.

    Parameters
    ----------
    custom_settings:
        Application settings.  Read from the environment if not provided.
    app_config:
        Resolved YAML configuration.  Loaded from ``config/config.yaml`` if
        not provided.

    Returns
    -------
    dict
        Service instances keyed by role name.  Call
        :func:`initialize_components` before first use.
    """
    s = custom_settings or Settings()
    cfg = app_config if app_config is not None else load_config(settings=s)
    retrieval_cfg = cfg.get("retrieval") or {}

    background = BackgroundEffects()
    store = SQLiteKnowledgeStore(db_path=s.database_path)
    cache = SQLiteEmbeddingCache(db_path=s.database_path, background=background)
    embedding_provider = _build_embedding_provider(s)
    vector_search = SQLiteVectorSearchProvider(db_path=s.database_path)
    quota_checker = PlanQuotaChecker(store=store, plan_quotas=load_plan_quotas(cfg))

    retry_policy = RetryPolicy(
        max_attempts=s.embedding_max_attempts,
        error_max_chars=s.embedding_error_max_chars,
        backoff_base_seconds=s.retry_backoff_base_seconds,
        backoff_max_seconds=s.retry_backoff_max_seconds,
    )

    language_detector = LangdetectLanguageDetector()

    ingestion_service = IngestionService(
        store=store,
        chunker=TextChunker(chunk_size=s.chunk_size, overlap=s.chunk_overlap),
        language_detector=language_detector,
        quota_checker=quota_checker,
    )
    worker = EmbeddingWorker(
        store=store,
        cache=cache,
        embedding_provider=embedding_provider,
        model_version=s.embedding_model_version,
        retry_policy=retry_policy,
        worker_id=s.worker_id,
        background=background,
    )
    retriever = Retriever(
        store=store,
        embedding_provider=embedding_provider,
        vector_search=vector_search,
        top_k=int(retrieval_cfg.get("top_k", s.retrieval_top_k)),
        language_detector=language_detector,
    )
    queue_monitor = EmbeddingQueueMonitor(store=store, stale_lock_minutes=s.stale_lock_minutes)

    return {
        "store": store,
        "cache": cache,
        "embedding_provider": embedding_provider,
        "vector_search": vector_search,
        "quota_checker": quota_checker,
        "ingestion_service": ingestion_service,
        "worker": worker,
        "retriever": retriever,
        "queue_monitor": queue_monitor,
        "background": background,
        "settings": s,
        "config": cfg,
    }


async def initialize_components(components: dict[str, Any]) -> None:
    """Create the database tables behind the store and the cache."""
    await components["store"].initialize()
    await components["cache"].initialize()
    _logger.info("components_initialized", database=str(components["store"].db_path))
