"""Abstract base class for the relational store behind the pipeline.

The store holds documents, chunks, embedding jobs, stored embeddings, and
conversation pin sets.  Any backend offering row-level atomic conditional
updates suffices.  The embedding job table doubles as the shared work
queue: :meth:`IKnowledgeStore.claim_job` is a compare-and-swap on the
``status`` column and is the *only* mechanism preventing two workers from
processing the same job, so it must be atomic at the storage layer.

Deleting a document's chunks cascades to their jobs and stored embeddings.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from chatiq_kb.models.document import Chunk, Document
from chatiq_kb.models.embedding import EmbeddingJob, JobStatus
from chatiq_kb.models.retrieval import ChunkMetadata


# Concrete implementation: SQLiteKnowledgeStore (chatiq_kb/providers/store/)
class IKnowledgeStore(ABC):
    """Contract for document, chunk, job, embedding, and pin persistence.

    Mutating methods raise :class:`~chatiq_kb.utils.errors.StorageError`
    on backend failure.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables and indices if they don't exist (idempotent)."""

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    @abstractmethod
    async def upsert_document(self, document: Document) -> Document:
        """Create or update a document record (text is not stored here)."""

    @abstractmethod
    async def get_document(self, document_id: str) -> Document | None:
        """Return the document, or ``None`` if it does not exist."""

    @abstractmethod
    async def update_document_language(
        self, document_id: str, language: str | None, confidence: float | None
    ) -> None:
        """Persist the effective language tag and confidence."""

    @abstractmethod
    async def count_documents(self, tenant_id: str) -> int:
        """Return the number of documents owned by *tenant_id*."""

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    @abstractmethod
    async def delete_document_chunks(self, document_id: str) -> int:
        """Delete every chunk of a document (cascading to jobs and vectors).

        Returns the number of chunk rows removed.
        """

    @abstractmethod
    async def insert_chunks_with_jobs(
        self, chunks: list[Chunk], now: datetime
    ) -> list[EmbeddingJob]:
        """Insert *chunks* and one ``pending`` job per chunk atomically.

        Either every chunk and job is committed or none is, so a job is
        never enqueued for a chunk that failed to insert.
        """

    @abstractmethod
    async def get_chunk(self, chunk_id: str) -> Chunk | None:
        """Return the chunk row, or ``None`` if it was deleted."""

    @abstractmethod
    async def list_document_chunks(self, document_id: str) -> list[Chunk]:
        """Return a document's chunks ordered by index."""

    @abstractmethod
    async def count_chunks(self, tenant_id: str) -> int:
        """Return the number of chunk rows (embedding units) for a tenant."""

    @abstractmethod
    async def fetch_chunks_with_metadata(
        self, tenant_id: str, chunk_ids: list[str]
    ) -> list[tuple[Chunk, ChunkMetadata]]:
        """Return the tenant's chunks among *chunk_ids* with document metadata.

        Unknown or foreign ids are silently absent; order is unspecified.
        """

    # ------------------------------------------------------------------
    # Embedding jobs (the work queue)
    # ------------------------------------------------------------------

    @abstractmethod
    async def fetch_oldest_pending_job(self, now: datetime) -> EmbeddingJob | None:
        """Return the oldest ``pending`` job eligible at *now*, any tenant."""

    @abstractmethod
    async def claim_job(
        self, job: EmbeddingJob, worker_id: str, now: datetime
    ) -> EmbeddingJob | None:
        """Atomically move *job* from ``pending`` to ``processing``.

        Records the lock holder and timestamp, clears the previous error,
        and increments ``attempts``.  Returns the claimed job, or ``None``
        when the conditional update matched zero rows (another worker won).
        """

    @abstractmethod
    async def complete_job(self, job_id: str, now: datetime) -> None:
        """Mark a job ``completed`` and clear lock and error fields."""

    @abstractmethod
    async def release_job(
        self,
        job_id: str,
        status: JobStatus,
        error: str | None,
        next_attempt_at: datetime | None,
        now: datetime,
    ) -> None:
        """Move a ``processing`` job to ``pending`` or ``failed`` and clear its lock."""

    @abstractmethod
    async def get_job(self, job_id: str) -> EmbeddingJob | None:
        """Return one job by id."""

    @abstractmethod
    async def count_jobs_by_status(
        self, tenant_id: str | None = None, document_id: str | None = None
    ) -> dict[JobStatus, int]:
        """Return job counts keyed by status (missing statuses map to 0)."""

    @abstractmethod
    async def count_completed_since(self, tenant_id: str, since: datetime) -> int:
        """Return how many of the tenant's jobs completed at or after *since*."""

    @abstractmethod
    async def list_stale_jobs(
        self, locked_before: datetime, tenant_id: str | None = None
    ) -> list[EmbeddingJob]:
        """Return ``processing`` jobs whose lock timestamp is older than *locked_before*."""

    @abstractmethod
    async def requeue_job(self, job_id: str, now: datetime) -> bool:
        """Conditionally move a ``processing`` job back to ``pending``.

        Attempts are kept.  Returns ``False`` if the job was not processing.
        """

    @abstractmethod
    async def reset_failed_jobs(self, tenant_id: str, limit: int, now: datetime) -> int:
        """Reset up to *limit* failed jobs to ``pending`` with zero attempts."""

    # ------------------------------------------------------------------
    # Stored embeddings
    # ------------------------------------------------------------------

    @abstractmethod
    async def store_embedding(self, chunk_id: str, tenant_id: str, vector: list[float]) -> None:
        """Upsert the retrieval vector for a chunk (one per chunk)."""

    @abstractmethod
    async def get_stored_embedding(self, chunk_id: str) -> list[float] | None:
        """Return the stored vector for a chunk, if any."""

    # ------------------------------------------------------------------
    # Conversation pin sets
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_pinned_chunk_ids(self, conversation_id: str) -> list[str]:
        """Return the conversation's ordered pinned chunk ids (empty if none)."""

    @abstractmethod
    async def set_pinned_chunk_ids(
        self,
        conversation_id: str,
        chunk_ids: list[str],
        tenant_id: str | None = None,
        bot_id: str | None = None,
    ) -> None:
        """Replace the conversation's pin list, creating the record if needed."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this store."""
