"""In-memory embedding cache using cachetools.LRUCache.

Simple, fast cache suitable for development, tests, and single-process
deployments.  Not shared across processes; swap in
:class:`SQLiteEmbeddingCache` when several workers run.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from cachetools import LRUCache

from chatiq_kb.interfaces.embedding_cache import IEmbeddingCache
from chatiq_kb.models.embedding import CacheStats, CachedEmbedding

logger = structlog.get_logger(logger_name=__name__)

_CacheKey = tuple[str, str, str]


class MemoryEmbeddingCache(IEmbeddingCache):
    """LRU embedding cache keyed by ``(hash, tenant_id, model_version)``.

    Parameters
    ----------
    max_size:
        Maximum number of entries before the least-recently-used entry
        is evicted.
    """

    def __init__(self, max_size: int = 10_000) -> None:
        self._cache: LRUCache[_CacheKey, CachedEmbedding] = LRUCache(maxsize=max_size)

    # ------------------------------------------------------------------
    # IEmbeddingCache implementation
    # ------------------------------------------------------------------

    async def get(
        self, content_hash: str, tenant_id: str, model_version: str
    ) -> list[float] | None:
        key = (content_hash, tenant_id, model_version)
        entry = self._cache.get(key)
        if entry is None:
            logger.debug("embedding_cache_miss", tenant_id=tenant_id)
            return None
        self._cache[key] = entry.model_copy(
            update={
                "usage_count": entry.usage_count + 1,
                "last_used_at": datetime.now(timezone.utc),
            }
        )
        logger.debug("embedding_cache_hit", tenant_id=tenant_id)
        return list(entry.vector)

    async def put(
        self,
        content_hash: str,
        tenant_id: str,
        model_version: str,
        vector: list[float],
    ) -> None:
        key = (content_hash, tenant_id, model_version)
        now = datetime.now(timezone.utc)
        existing = self._cache.get(key)
        self._cache[key] = CachedEmbedding(
            content_hash=content_hash,
            tenant_id=tenant_id,
            model_version=model_version,
            vector=list(vector),
            usage_count=1,
            last_used_at=now,
            created_at=existing.created_at if existing else now,
        )

    async def get_stats(self, tenant_id: str | None = None) -> CacheStats:
        entries = [
            e for e in self._cache.values() if tenant_id is None or e.tenant_id == tenant_id
        ]
        if not entries:
            return CacheStats()
        created = [e.created_at for e in entries if e.created_at is not None]
        return CacheStats(
            total_entries=len(entries),
            total_usage_count=sum(e.usage_count for e in entries),
            oldest_entry=min(created) if created else None,
            newest_entry=max(created) if created else None,
        )

    def get_provider_name(self) -> str:
        return "memory_embedding_cache"
