"""SQLite-backed knowledge store.

Persists documents, chunks, embedding jobs, stored embeddings, and
conversation pin sets to a single SQLite database (default
``data/knowledge.db``).  Uses ``aiosqlite`` for async I/O, one short-lived
connection per operation.

The job claim is a single conditional ``UPDATE ... WHERE status =
'pending'``; SQLite serialises writers, so exactly one of several racing
claimants sees ``rowcount == 1``.  Foreign keys are enabled on every
connection so deleting chunks cascades to their jobs and embeddings.
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator

import aiosqlite
import structlog

from chatiq_kb.interfaces.knowledge_store import IKnowledgeStore
from chatiq_kb.models.document import Chunk, Document
from chatiq_kb.models.embedding import EmbeddingJob, JobStatus
from chatiq_kb.models.retrieval import ChunkMetadata
from chatiq_kb.utils.errors import StorageError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/knowledge.db")

_CREATE_TABLES_SQL = [
    """\
CREATE TABLE IF NOT EXISTS documents (
    id                   TEXT PRIMARY KEY,
    tenant_id            TEXT NOT NULL,
    bot_id               TEXT NOT NULL,
    title                TEXT NOT NULL DEFAULT '',
    canonical_url        TEXT,
    language_override    TEXT,
    language             TEXT,
    language_confidence  REAL,
    translation_group_id TEXT,
    created_at           TEXT NOT NULL,
    updated_at           TEXT NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS chunks (
    id                   TEXT PRIMARY KEY,
    tenant_id            TEXT NOT NULL,
    document_id          TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    idx                  INTEGER NOT NULL,
    text                 TEXT NOT NULL,
    hash                 TEXT,
    anchor_id            TEXT,
    language             TEXT,
    language_confidence  REAL,
    language_override    TEXT,
    created_at           TEXT NOT NULL,
    UNIQUE(document_id, idx)
);
""",
    """\
CREATE TABLE IF NOT EXISTS embedding_jobs (
    id               TEXT PRIMARY KEY,
    chunk_id         TEXT NOT NULL REFERENCES chunks(id) ON DELETE CASCADE,
    tenant_id        TEXT NOT NULL,
    status           TEXT NOT NULL DEFAULT 'pending'
                     CHECK (status IN ('pending', 'processing', 'completed', 'failed')),
    attempts         INTEGER NOT NULL DEFAULT 0,
    locked_at        TEXT,
    locked_by        TEXT,
    error            TEXT,
    next_attempt_at  TEXT,
    created_at       TEXT NOT NULL,
    updated_at       TEXT NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS embeddings (
    chunk_id    TEXT PRIMARY KEY REFERENCES chunks(id) ON DELETE CASCADE,
    tenant_id   TEXT NOT NULL,
    vector      TEXT NOT NULL,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS conversations (
    id                 TEXT PRIMARY KEY,
    tenant_id          TEXT,
    bot_id             TEXT,
    context_chunk_ids  TEXT NOT NULL DEFAULT '[]',
    updated_at         TEXT NOT NULL
);
""",
]

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_documents_tenant ON documents(tenant_id);",
    "CREATE INDEX IF NOT EXISTS idx_chunks_document ON chunks(document_id);",
    "CREATE INDEX IF NOT EXISTS idx_chunks_tenant ON chunks(tenant_id);",
    "CREATE INDEX IF NOT EXISTS idx_jobs_status_created ON embedding_jobs(status, created_at);",
    "CREATE INDEX IF NOT EXISTS idx_jobs_tenant_status ON embedding_jobs(tenant_id, status);",
    "CREATE INDEX IF NOT EXISTS idx_jobs_chunk ON embedding_jobs(chunk_id);",
    "CREATE INDEX IF NOT EXISTS idx_embeddings_tenant ON embeddings(tenant_id);",
]

_UPSERT_DOCUMENT_SQL = """\
INSERT INTO documents (id, tenant_id, bot_id, title, canonical_url, language_override,
                       language, language_confidence, translation_group_id,
                       created_at, updated_at)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id)
DO UPDATE SET tenant_id           = excluded.tenant_id,
              bot_id              = excluded.bot_id,
              title               = excluded.title,
              canonical_url       = excluded.canonical_url,
              language_override   = excluded.language_override,
              translation_group_id = excluded.translation_group_id,
              updated_at          = excluded.updated_at;
"""

_JOB_COLUMNS = (
    "id, chunk_id, tenant_id, status, attempts, locked_at, locked_by, error, "
    "next_attempt_at, created_at, updated_at"
)

_CHUNK_COLUMNS = (
    "id, tenant_id, document_id, idx, text, hash, anchor_id, language, "
    "language_confidence, language_override"
)

_FETCH_PENDING_SQL = f"""\
SELECT {_JOB_COLUMNS}
FROM embedding_jobs
WHERE status = 'pending'
  AND (next_attempt_at IS NULL OR next_attempt_at <= ?)
ORDER BY created_at ASC, rowid ASC
LIMIT 1;
"""

_CLAIM_SQL = """\
UPDATE embedding_jobs
SET status     = 'processing',
    locked_at  = ?,
    locked_by  = ?,
    attempts   = attempts + 1,
    error      = NULL,
    updated_at = ?
WHERE id = ? AND status = 'pending';
"""

_COMPLETE_SQL = """\
UPDATE embedding_jobs
SET status          = 'completed',
    locked_at       = NULL,
    locked_by       = NULL,
    error           = NULL,
    next_attempt_at = NULL,
    updated_at      = ?
WHERE id = ? AND status = 'processing';
"""

_RELEASE_SQL = """\
UPDATE embedding_jobs
SET status          = ?,
    locked_at       = NULL,
    locked_by       = NULL,
    error           = ?,
    next_attempt_at = ?,
    updated_at      = ?
WHERE id = ? AND status = 'processing';
"""

_UPSERT_EMBEDDING_SQL = """\
INSERT INTO embeddings (chunk_id, tenant_id, vector, created_at, updated_at)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT(chunk_id)
DO UPDATE SET vector     = excluded.vector,
              tenant_id  = excluded.tenant_id,
              updated_at = excluded.updated_at;
"""

_UPSERT_PINS_SQL = """\
INSERT INTO conversations (id, tenant_id, bot_id, context_chunk_ids, updated_at)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT(id)
DO UPDATE SET context_chunk_ids = excluded.context_chunk_ids,
              tenant_id         = COALESCE(conversations.tenant_id, excluded.tenant_id),
              bot_id            = COALESCE(conversations.bot_id, excluded.bot_id),
              updated_at        = excluded.updated_at;
"""


def _ts(value: datetime | None) -> str | None:
    """Serialise a datetime as a sortable UTC ISO-8601 string."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _row_to_job(row: aiosqlite.Row) -> EmbeddingJob:
    return EmbeddingJob(
        job_id=row["id"],
        chunk_id=row["chunk_id"],
        tenant_id=row["tenant_id"],
        status=JobStatus(row["status"]),
        attempts=row["attempts"],
        locked_at=_parse_ts(row["locked_at"]),
        locked_by=row["locked_by"],
        error=row["error"],
        next_attempt_at=_parse_ts(row["next_attempt_at"]),
        created_at=_parse_ts(row["created_at"]),
        updated_at=_parse_ts(row["updated_at"]),
    )


def _row_to_chunk(row: aiosqlite.Row) -> Chunk:
    return Chunk(
        chunk_id=row["id"],
        tenant_id=row["tenant_id"],
        document_id=row["document_id"],
        index=row["idx"],
        text=row["text"],
        content_hash=row["hash"],
        anchor_id=row["anchor_id"],
        language=row["language"],
        language_confidence=row["language_confidence"],
        language_override=row["language_override"],
    )


def _row_to_document(row: aiosqlite.Row) -> Document:
    return Document(
        document_id=row["id"],
        tenant_id=row["tenant_id"],
        bot_id=row["bot_id"],
        title=row["title"],
        canonical_url=row["canonical_url"],
        language_override=row["language_override"],
        language=row["language"],
        language_confidence=row["language_confidence"],
        translation_group_id=row["translation_group_id"],
    )


class SQLiteKnowledgeStore(IKnowledgeStore):
    """SQLite persistence for the ingestion and retrieval pipeline.

    Parameters
    ----------
    db_path:
        Database file path.  Parent directories are created on
        :meth:`initialize`.
    timeout:
        Seconds a connection waits on a locked database before failing.
    """

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH, timeout: float = 10.0) -> None:
        self._db_path = Path(db_path)
        self._timeout = timeout

    @property
    def db_path(self) -> Path:
        return self._db_path

    @asynccontextmanager
    async def _connect(self, operation: str) -> AsyncIterator[aiosqlite.Connection]:
        """Open a connection with foreign keys on; wrap driver errors."""
        try:
            async with aiosqlite.connect(str(self._db_path), timeout=self._timeout) as db:
                db.row_factory = aiosqlite.Row
                await db.execute("PRAGMA foreign_keys = ON;")
                yield db
        except aiosqlite.Error as exc:
            logger.error("store_operation_failed", operation=operation, error=str(exc))
            raise StorageError(
                message=f"{operation} failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def initialize(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with self._connect("initialize") as db:
            await db.execute("PRAGMA journal_mode = WAL;")
            for table_sql in _CREATE_TABLES_SQL:
                await db.execute(table_sql)
            for idx_sql in _CREATE_INDICES_SQL:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("knowledge_store_initialized", path=str(self._db_path))

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def upsert_document(self, document: Document) -> Document:
        now = _ts(datetime.now(timezone.utc))
        async with self._connect("upsert_document") as db:
            await db.execute(
                _UPSERT_DOCUMENT_SQL,
                (
                    document.document_id,
                    document.tenant_id,
                    document.bot_id,
                    document.title,
                    document.canonical_url,
                    document.language_override,
                    document.language,
                    document.language_confidence,
                    document.translation_group_id,
                    now,
                    now,
                ),
            )
            await db.commit()
            cursor = await db.execute(
                "SELECT * FROM documents WHERE id = ?", (document.document_id,)
            )
            row = await cursor.fetchone()
        return _row_to_document(row)

    async def get_document(self, document_id: str) -> Document | None:
        async with self._connect("get_document") as db:
            cursor = await db.execute("SELECT * FROM documents WHERE id = ?", (document_id,))
            row = await cursor.fetchone()
        return _row_to_document(row) if row else None

    async def update_document_language(
        self, document_id: str, language: str | None, confidence: float | None
    ) -> None:
        async with self._connect("update_document_language") as db:
            await db.execute(
                "UPDATE documents SET language = ?, language_confidence = ?, updated_at = ? "
                "WHERE id = ?",
                (language, confidence, _ts(datetime.now(timezone.utc)), document_id),
            )
            await db.commit()

    async def count_documents(self, tenant_id: str) -> int:
        async with self._connect("count_documents") as db:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM documents WHERE tenant_id = ?", (tenant_id,)
            )
            row = await cursor.fetchone()
        return int(row[0])

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    async def delete_document_chunks(self, document_id: str) -> int:
        async with self._connect("delete_document_chunks") as db:
            cursor = await db.execute("DELETE FROM chunks WHERE document_id = ?", (document_id,))
            deleted = cursor.rowcount
            await db.commit()
        logger.debug("document_chunks_deleted", document_id=document_id, deleted=deleted)
        return deleted

    async def insert_chunks_with_jobs(
        self, chunks: list[Chunk], now: datetime
    ) -> list[EmbeddingJob]:
        if not chunks:
            return []
        created = _ts(now)
        jobs = [
            EmbeddingJob(
                job_id=f"job_{chunk.chunk_id}",
                chunk_id=chunk.chunk_id,
                tenant_id=chunk.tenant_id,
                status=JobStatus.PENDING,
                created_at=now,
                updated_at=now,
            )
            for chunk in chunks
        ]
        # Both executemany calls share one implicit transaction; nothing is
        # visible to other connections until the commit.
        async with self._connect("insert_chunks_with_jobs") as db:
            await db.executemany(
                f"INSERT INTO chunks ({_CHUNK_COLUMNS}, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        c.chunk_id,
                        c.tenant_id,
                        c.document_id,
                        c.index,
                        c.text,
                        c.content_hash,
                        c.anchor_id,
                        c.language,
                        c.language_confidence,
                        c.language_override,
                        created,
                    )
                    for c in chunks
                ],
            )
            await db.executemany(
                "INSERT INTO embedding_jobs (id, chunk_id, tenant_id, status, attempts, "
                "created_at, updated_at) VALUES (?, ?, ?, 'pending', 0, ?, ?)",
                [(j.job_id, j.chunk_id, j.tenant_id, created, created) for j in jobs],
            )
            await db.commit()
        return jobs

    async def get_chunk(self, chunk_id: str) -> Chunk | None:
        async with self._connect("get_chunk") as db:
            cursor = await db.execute(
                f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE id = ?", (chunk_id,)
            )
            row = await cursor.fetchone()
        return _row_to_chunk(row) if row else None

    async def list_document_chunks(self, document_id: str) -> list[Chunk]:
        async with self._connect("list_document_chunks") as db:
            cursor = await db.execute(
                f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE document_id = ? ORDER BY idx ASC",
                (document_id,),
            )
            rows = await cursor.fetchall()
        return [_row_to_chunk(r) for r in rows]

    async def count_chunks(self, tenant_id: str) -> int:
        async with self._connect("count_chunks") as db:
            cursor = await db.execute("SELECT COUNT(*) FROM chunks WHERE tenant_id = ?", (tenant_id,))
            row = await cursor.fetchone()
        return int(row[0])

    async def fetch_chunks_with_metadata(
        self, tenant_id: str, chunk_ids: list[str]
    ) -> list[tuple[Chunk, ChunkMetadata]]:
        if not chunk_ids:
            return []
        placeholders = ", ".join("?" for _ in chunk_ids)
        async with self._connect("fetch_chunks_with_metadata") as db:
            cursor = await db.execute(
                "SELECT c.id, c.tenant_id, c.document_id, c.idx, c.text, c.hash, c.anchor_id, "
                "c.language, c.language_confidence, c.language_override, d.canonical_url, "
                "d.translation_group_id "
                "FROM chunks c JOIN documents d ON d.id = c.document_id "
                f"WHERE c.tenant_id = ? AND c.id IN ({placeholders})",
                (tenant_id, *chunk_ids),
            )
            rows = await cursor.fetchall()
        return [
            (
                _row_to_chunk(r),
                ChunkMetadata(
                    anchor_id=r["anchor_id"],
                    canonical_url=r["canonical_url"],
                    translation_group_id=r["translation_group_id"],
                ),
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Embedding jobs
    # ------------------------------------------------------------------

    async def fetch_oldest_pending_job(self, now: datetime) -> EmbeddingJob | None:
        async with self._connect("fetch_oldest_pending_job") as db:
            cursor = await db.execute(_FETCH_PENDING_SQL, (_ts(now),))
            row = await cursor.fetchone()
        return _row_to_job(row) if row else None

    async def claim_job(
        self, job: EmbeddingJob, worker_id: str, now: datetime
    ) -> EmbeddingJob | None:
        stamp = _ts(now)
        async with self._connect("claim_job") as db:
            cursor = await db.execute(_CLAIM_SQL, (stamp, worker_id, stamp, job.job_id))
            if cursor.rowcount == 0:
                await db.rollback()
                return None
            cursor = await db.execute(
                f"SELECT {_JOB_COLUMNS} FROM embedding_jobs WHERE id = ?", (job.job_id,)
            )
            row = await cursor.fetchone()
            await db.commit()
        return _row_to_job(row)

    async def complete_job(self, job_id: str, now: datetime) -> None:
        async with self._connect("complete_job") as db:
            await db.execute(_COMPLETE_SQL, (_ts(now), job_id))
            await db.commit()

    async def release_job(
        self,
        job_id: str,
        status: JobStatus,
        error: str | None,
        next_attempt_at: datetime | None,
        now: datetime,
    ) -> None:
        async with self._connect("release_job") as db:
            await db.execute(
                _RELEASE_SQL,
                (status.value, error, _ts(next_attempt_at), _ts(now), job_id),
            )
            await db.commit()

    async def get_job(self, job_id: str) -> EmbeddingJob | None:
        async with self._connect("get_job") as db:
            cursor = await db.execute(
                f"SELECT {_JOB_COLUMNS} FROM embedding_jobs WHERE id = ?", (job_id,)
            )
            row = await cursor.fetchone()
        return _row_to_job(row) if row else None

    async def count_jobs_by_status(
        self, tenant_id: str | None = None, document_id: str | None = None
    ) -> dict[JobStatus, int]:
        clauses: list[str] = []
        params: list[str] = []
        if tenant_id is not None:
            clauses.append("j.tenant_id = ?")
            params.append(tenant_id)
        if document_id is not None:
            clauses.append("c.document_id = ?")
            params.append(document_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        async with self._connect("count_jobs_by_status") as db:
            cursor = await db.execute(
                "SELECT j.status, COUNT(*) AS total FROM embedding_jobs j "
                f"JOIN chunks c ON c.id = j.chunk_id {where} GROUP BY j.status",
                params,
            )
            rows = await cursor.fetchall()
        counts = {status: 0 for status in JobStatus}
        for row in rows:
            counts[JobStatus(row["status"])] = row["total"]
        return counts

    async def count_completed_since(self, tenant_id: str, since: datetime) -> int:
        async with self._connect("count_completed_since") as db:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM embedding_jobs "
                "WHERE tenant_id = ? AND status = 'completed' AND updated_at >= ?",
                (tenant_id, _ts(since)),
            )
            row = await cursor.fetchone()
        return int(row[0])

    async def list_stale_jobs(
        self, locked_before: datetime, tenant_id: str | None = None
    ) -> list[EmbeddingJob]:
        sql = (
            f"SELECT {_JOB_COLUMNS} FROM embedding_jobs "
            "WHERE status = 'processing' AND locked_at IS NOT NULL AND locked_at < ?"
        )
        params: list[str | None] = [_ts(locked_before)]
        if tenant_id is not None:
            sql += " AND tenant_id = ?"
            params.append(tenant_id)
        sql += " ORDER BY locked_at ASC"
        async with self._connect("list_stale_jobs") as db:
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
        return [_row_to_job(r) for r in rows]

    async def requeue_job(self, job_id: str, now: datetime) -> bool:
        async with self._connect("requeue_job") as db:
            cursor = await db.execute(
                "UPDATE embedding_jobs SET status = 'pending', locked_at = NULL, "
                "locked_by = NULL, next_attempt_at = NULL, updated_at = ? "
                "WHERE id = ? AND status = 'processing'",
                (_ts(now), job_id),
            )
            requeued = cursor.rowcount == 1
            await db.commit()
        return requeued

    async def reset_failed_jobs(self, tenant_id: str, limit: int, now: datetime) -> int:
        async with self._connect("reset_failed_jobs") as db:
            cursor = await db.execute(
                "UPDATE embedding_jobs SET status = 'pending', attempts = 0, error = NULL, "
                "locked_at = NULL, locked_by = NULL, next_attempt_at = NULL, updated_at = ? "
                "WHERE id IN (SELECT id FROM embedding_jobs "
                "WHERE tenant_id = ? AND status = 'failed' ORDER BY created_at ASC LIMIT ?)",
                (_ts(now), tenant_id, limit),
            )
            reset = cursor.rowcount
            await db.commit()
        return reset

    # ------------------------------------------------------------------
    # Stored embeddings
    # ------------------------------------------------------------------

    async def store_embedding(self, chunk_id: str, tenant_id: str, vector: list[float]) -> None:
        now = _ts(datetime.now(timezone.utc))
        async with self._connect("store_embedding") as db:
            await db.execute(
                _UPSERT_EMBEDDING_SQL, (chunk_id, tenant_id, json.dumps(vector), now, now)
            )
            await db.commit()

    async def get_stored_embedding(self, chunk_id: str) -> list[float] | None:
        async with self._connect("get_stored_embedding") as db:
            cursor = await db.execute(
                "SELECT vector FROM embeddings WHERE chunk_id = ?", (chunk_id,)
            )
            row = await cursor.fetchone()
        return json.loads(row["vector"]) if row else None

    # ------------------------------------------------------------------
    # Conversation pin sets
    # ------------------------------------------------------------------

    async def get_pinned_chunk_ids(self, conversation_id: str) -> list[str]:
        async with self._connect("get_pinned_chunk_ids") as db:
            cursor = await db.execute(
                "SELECT context_chunk_ids FROM conversations WHERE id = ?", (conversation_id,)
            )
            row = await cursor.fetchone()
        if not row or not row["context_chunk_ids"]:
            return []
        try:
            values = json.loads(row["context_chunk_ids"])
        except json.JSONDecodeError:
            logger.warning("pinned_chunk_ids_unparseable", conversation_id=conversation_id)
            return []
        if not isinstance(values, list):
            return []
        return [v for v in values if isinstance(v, str)]

    async def set_pinned_chunk_ids(
        self,
        conversation_id: str,
        chunk_ids: list[str],
        tenant_id: str | None = None,
        bot_id: str | None = None,
    ) -> None:
        async with self._connect("set_pinned_chunk_ids") as db:
            await db.execute(
                _UPSERT_PINS_SQL,
                (
                    conversation_id,
                    tenant_id,
                    bot_id,
                    json.dumps(chunk_ids),
                    _ts(datetime.now(timezone.utc)),
                ),
            )
            await db.commit()

    def get_provider_name(self) -> str:
        return "sqlite_store"
