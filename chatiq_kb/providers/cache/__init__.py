"""Embedding cache providers.

Vectors are cached by content hash so re-ingesting unchanged text never
pays for a second embedding call.

SQLiteEmbeddingCache is shared across worker processes; MemoryEmbeddingCache
is a cachetools LRU for single-process runs and tests.
"""

from chatiq_kb.providers.cache.memory_embedding_cache import MemoryEmbeddingCache
from chatiq_kb.providers.cache.sqlite_embedding_cache import SQLiteEmbeddingCache

__all__ = ["MemoryEmbeddingCache", "SQLiteEmbeddingCache"]
