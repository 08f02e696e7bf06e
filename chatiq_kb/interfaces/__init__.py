"""Public interface definitions for the pipeline's boundary collaborators.

Business logic in ``chatiq_kb.services`` talks to storage, the embedding
API, the vector index, language detection, and quota accounting only
through the abstract base classes here.  Concrete adapters live in
``chatiq_kb.providers`` and are wired together in ``chatiq_kb.main``.

CONCRETE PROVIDER MAP:
    Interface                  ->  Concrete implementations
    ---------------------------------------------------------------
    IKnowledgeStore            ->  SQLiteKnowledgeStore
    IEmbeddingProvider         ->  OpenAIEmbeddingProvider
    IEmbeddingCache            ->  SQLiteEmbeddingCache, MemoryEmbeddingCache
    IVectorSearchProvider      ->  SQLiteVectorSearchProvider
    ILanguageDetector          ->  LangdetectLanguageDetector
    IQuotaChecker              ->  PlanQuotaChecker
"""

from chatiq_kb.interfaces.embedding_cache import IEmbeddingCache
from chatiq_kb.interfaces.embedding_provider import IEmbeddingProvider
from chatiq_kb.interfaces.knowledge_store import IKnowledgeStore
from chatiq_kb.interfaces.language_detector import ILanguageDetector
from chatiq_kb.interfaces.quota_checker import IQuotaChecker
from chatiq_kb.interfaces.vector_search_provider import IVectorSearchProvider

__all__ = [
    "IEmbeddingCache",
    "IEmbeddingProvider",
    "IKnowledgeStore",
    "ILanguageDetector",
    "IQuotaChecker",
    "IVectorSearchProvider",
]
