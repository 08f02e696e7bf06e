"""Vector search providers."""

from chatiq_kb.providers.vector_search.sqlite_vector_search import SQLiteVectorSearchProvider

__all__ = ["SQLiteVectorSearchProvider"]
