"""Abstract base class for the content-addressed embedding cache.

Entries are keyed by the tuple (content hash, tenant id, model version):

* **tenant id** -- a hit in tenant A is never visible to tenant B, even for
  byte-identical text, so the cache cannot leak data across tenants.
* **model version** -- upgrading the embedding model moves lookups to a new
  namespace; rows written under the old version stay in place (for
  rollback and analytics) but are never served for the new one.

Implementations must never raise from :meth:`get` or :meth:`put`: a read
failure is reported as a miss, a write failure is logged and dropped.
The worst case of a broken cache is "recompute and re-cache".
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from chatiq_kb.models.embedding import CacheStats


# Concrete implementations:
#   SQLiteEmbeddingCache -- shared table next to the job queue (production)
#   MemoryEmbeddingCache -- cachetools LRU, single process (dev / tests)
# Located in: chatiq_kb/providers/cache/
class IEmbeddingCache(ABC):
    """Contract for tenant- and model-version-scoped vector caching."""

    @abstractmethod
    async def get(
        self, content_hash: str, tenant_id: str, model_version: str
    ) -> list[float] | None:
        """Return the cached vector, or ``None`` on miss or read failure.

        On a hit, implementations schedule a best-effort bump of the entry's
        usage counter and last-used timestamp; the bump must not delay or
        fail the read.
        """

    @abstractmethod
    async def put(
        self,
        content_hash: str,
        tenant_id: str,
        model_version: str,
        vector: list[float],
    ) -> None:
        """Upsert *vector* under the key.

        Concurrent writers of the same key must not conflict: last write
        wins, ``usage_count`` resets to 1, ``last_used_at`` moves to now.
        """

    @abstractmethod
    async def get_stats(self, tenant_id: str | None = None) -> CacheStats:
        """Return entry / usage counts, optionally restricted to one tenant."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this cache backend."""
