"""Abstract base class for nearest-neighbour vector search.

The index behind this interface may be a flat scan, IVF, HNSW, or a
hosted vector database; callers only rely on ranked-by-similarity output
scoped to one tenant and bot.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from chatiq_kb.models.retrieval import SearchMatch


# Concrete implementation: SQLiteVectorSearchProvider (chatiq_kb/providers/vector_search/)
class IVectorSearchProvider(ABC):
    """Contract for similarity search over stored chunk embeddings."""

    @abstractmethod
    async def search(
        self,
        tenant_id: str,
        bot_id: str,
        query_vector: list[float],
        top_k: int,
    ) -> list[SearchMatch]:
        """Return up to *top_k* matches ranked by descending similarity.

        Raises
        ------
        chatiq_kb.utils.errors.VectorSearchError
            If the underlying lookup fails.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this search backend."""
