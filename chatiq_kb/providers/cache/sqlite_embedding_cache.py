"""SQLite-backed embedding cache shared by every worker process.

Rows live in an ``embedding_cache`` table keyed by the unique triple
(``hash``, ``tenant_id``, ``model_version``).  Writes are upserts, so two
workers that race to cache the same content simply overwrite each other.
A hit schedules a detached bump of ``usage_count`` / ``last_used_at``
through :class:`~chatiq_kb.utils.background.BackgroundEffects`.

Read and write failures are logged and swallowed: a broken cache degrades
to recomputing embeddings, never to failing a job.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite
import structlog

from chatiq_kb.interfaces.embedding_cache import IEmbeddingCache
from chatiq_kb.models.embedding import CacheStats
from chatiq_kb.utils.background import BackgroundEffects

logger = structlog.get_logger(logger_name=__name__)

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS embedding_cache (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    hash           TEXT NOT NULL,
    tenant_id      TEXT NOT NULL,
    model_version  TEXT NOT NULL,
    vector         TEXT NOT NULL,
    usage_count    INTEGER NOT NULL DEFAULT 1,
    last_used_at   TEXT NOT NULL,
    created_at     TEXT NOT NULL,
    UNIQUE(hash, tenant_id, model_version)
);
"""

_CREATE_INDEX_SQL = (
    "CREATE INDEX IF NOT EXISTS idx_embedding_cache_tenant ON embedding_cache(tenant_id);"
)

_SELECT_SQL = """\
SELECT vector FROM embedding_cache
WHERE hash = ? AND tenant_id = ? AND model_version = ?;
"""

_UPSERT_SQL = """\
INSERT INTO embedding_cache (hash, tenant_id, model_version, vector, usage_count,
                             last_used_at, created_at)
VALUES (?, ?, ?, ?, 1, ?, ?)
ON CONFLICT(hash, tenant_id, model_version)
DO UPDATE SET vector       = excluded.vector,
              usage_count  = 1,
              last_used_at = excluded.last_used_at;
"""

_TOUCH_SQL = """\
UPDATE embedding_cache
SET usage_count = usage_count + 1, last_used_at = ?
WHERE hash = ? AND tenant_id = ? AND model_version = ?;
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class SQLiteEmbeddingCache(IEmbeddingCache):
    """Persistent, cross-process embedding cache.

    Parameters
    ----------
    db_path:
        SQLite file holding the ``embedding_cache`` table.  Usually the same
        file as the knowledge store.
    background:
        Runner for the detached usage-counter bumps.
    """

    def __init__(
        self,
        db_path: str | Path,
        background: BackgroundEffects | None = None,
    ) -> None:
        self._db_path = Path(db_path)
        self._background = background or BackgroundEffects()

    async def initialize(self) -> None:
        """Create the cache table if it doesn't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(_CREATE_TABLE_SQL)
            await db.execute(_CREATE_INDEX_SQL)
            await db.commit()
        logger.info("embedding_cache_initialized", path=str(self._db_path))

    # ------------------------------------------------------------------
    # IEmbeddingCache implementation
    # ------------------------------------------------------------------

    async def get(
        self, content_hash: str, tenant_id: str, model_version: str
    ) -> list[float] | None:
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                cursor = await db.execute(_SELECT_SQL, (content_hash, tenant_id, model_version))
                row = await cursor.fetchone()
            if row is None:
                logger.debug("embedding_cache_miss", tenant_id=tenant_id)
                return None
            vector = json.loads(row[0])
        except (aiosqlite.Error, ValueError) as exc:
            logger.warning(
                "embedding_cache_read_failed",
                tenant_id=tenant_id,
                model_version=model_version,
                error=str(exc),
            )
            return None

        logger.debug("embedding_cache_hit", tenant_id=tenant_id)
        self._background.spawn(
            self._touch(content_hash, tenant_id, model_version),
            name="embedding_cache_touch",
        )
        return vector

    async def put(
        self,
        content_hash: str,
        tenant_id: str,
        model_version: str,
        vector: list[float],
    ) -> None:
        now = _now()
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute(
                    _UPSERT_SQL,
                    (content_hash, tenant_id, model_version, json.dumps(vector), now, now),
                )
                await db.commit()
        except aiosqlite.Error as exc:
            logger.warning(
                "embedding_cache_write_failed",
                tenant_id=tenant_id,
                model_version=model_version,
                error=str(exc),
            )

    async def get_stats(self, tenant_id: str | None = None) -> CacheStats:
        sql = (
            "SELECT COUNT(*), COALESCE(SUM(usage_count), 0), MIN(created_at), MAX(created_at) "
            "FROM embedding_cache"
        )
        params: tuple = ()
        if tenant_id is not None:
            sql += " WHERE tenant_id = ?"
            params = (tenant_id,)
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                cursor = await db.execute(sql, params)
                row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            logger.warning("embedding_cache_stats_failed", error=str(exc))
            return CacheStats()
        return CacheStats(
            total_entries=row[0],
            total_usage_count=row[1],
            oldest_entry=datetime.fromisoformat(row[2]) if row[2] else None,
            newest_entry=datetime.fromisoformat(row[3]) if row[3] else None,
        )

    def get_provider_name(self) -> str:
        return "sqlite_embedding_cache"

    async def _touch(self, content_hash: str, tenant_id: str, model_version: str) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(_TOUCH_SQL, (_now(), content_hash, tenant_id, model_version))
            await db.commit()
