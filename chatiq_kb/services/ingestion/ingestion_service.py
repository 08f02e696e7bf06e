"""Orchestrator for (re)ingesting one document's text.

Pipeline stages: **language -> clear -> chunk -> quota -> store + enqueue**.

The :class:`IngestionService` coordinates the knowledge store, the chunker,
the language detector, and the quota checker without any of them knowing
about each other.  Re-ingestion is destructive-and-rebuild: every prior
chunk of the document is deleted (cascading to its embedding jobs and
stored vectors) before the new chunk set is written.

Embedding itself happens later, in :class:`EmbeddingWorker`; ingestion only
enqueues one ``pending`` job per chunk.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog

from chatiq_kb.models.document import Chunk, IngestResult, LanguageDetection
from chatiq_kb.models.quota import QuotaResource
from chatiq_kb.providers.language.langdetect_detector import normalize_language_tag
from chatiq_kb.services.ingestion.chunker import TextChunker
from chatiq_kb.services.ingestion.hasher import content_hash
from chatiq_kb.utils.errors import IngestionError, StorageError

if TYPE_CHECKING:
    from chatiq_kb.interfaces.knowledge_store import IKnowledgeStore
    from chatiq_kb.interfaces.language_detector import ILanguageDetector
    from chatiq_kb.interfaces.quota_checker import IQuotaChecker

logger = structlog.get_logger(logger_name=__name__)


class IngestionService:
    """Chunks a document, records its language, and enqueues embedding jobs.

    Parameters
    ----------
    store:
        Persistence for documents, chunks, and the job queue.
    chunker:
        Splits the full text into overlapping word windows.
    language_detector:
        Used only when the document carries no manual language override.
    quota_checker:
        Synchronous gate on the tenant's embedding allowance.
    """

    def __init__(
        self,
        store: IKnowledgeStore,
        chunker: TextChunker,
        language_detector: ILanguageDetector,
        quota_checker: IQuotaChecker,
    ) -> None:
        self._store = store
        self._chunker = chunker
        self._language_detector = language_detector
        self._quota_checker = quota_checker

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ingest(
        self,
        document_id: str,
        tenant_id: str,
        full_text: str,
        plan: str,
    ) -> IngestResult:
        """Replace the document's chunk set and queue one embedding job per chunk.

        Returns
        -------
        IngestResult
            ``chunk_count`` and ``job_count`` (always equal).  Both are 0
            when the text yields no chunks; no quota is consumed then.

        Raises
        ------
        QuotaExceededError
            If the new chunks would push the tenant over its embedding
            quota.  Nothing is inserted; prior chunks are already gone.
        StorageError
            If deleting, inserting, or enqueueing fails.
        IngestionError
            If the document record does not exist.
        """
        log = logger.bind(document_id=document_id, tenant_id=tenant_id)

        override, language = await self._resolve_language(document_id, full_text, log)
        try:
            await self._store.update_document_language(
                document_id, language.language, language.confidence
            )
        except StorageError as exc:
            log.warning("document_language_update_failed", error=str(exc))

        deleted = await self._store.delete_document_chunks(document_id)
        log.debug("previous_chunks_cleared", deleted=deleted)

        drafts = self._chunker.chunk(full_text)
        if not drafts:
            log.info("ingestion_no_chunks")
            return IngestResult(chunk_count=0, job_count=0)

        await self._quota_checker.ensure_allows(
            tenant_id, plan, QuotaResource.EMBEDDINGS, len(drafts)
        )

        chunks = [
            Chunk(
                chunk_id=str(uuid.uuid4()),
                document_id=document_id,
                tenant_id=tenant_id,
                index=draft.index,
                text=draft.text,
                content_hash=content_hash(draft.text),
                anchor_id=None,
                language=language.language,
                language_confidence=language.confidence,
                language_override=override,
            )
            for draft in drafts
        ]
        jobs = await self._store.insert_chunks_with_jobs(chunks, datetime.now(timezone.utc))

        log.info(
            "document_ingested",
            chunks=len(chunks),
            jobs=len(jobs),
            language=language.language,
        )
        return IngestResult(chunk_count=len(chunks), job_count=len(jobs))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _resolve_language(
        self, document_id: str, full_text: str, log: structlog.BoundLogger
    ) -> tuple[str | None, LanguageDetection]:
        """Return ``(override, effective language)`` for the document.

        A manual override wins with confidence 1.0.  If the document record
        cannot be read the override is treated as absent.
        """
        override: str | None = None
        try:
            document = await self._store.get_document(document_id)
        except StorageError as exc:
            log.warning("language_override_lookup_failed", error=str(exc))
        else:
            if document is None:
                raise IngestionError(
                    message=f"Document {document_id} does not exist",
                    provider_name=self._store.get_provider_name(),
                )
            if document.language_override and document.language_override.strip():
                override = document.language_override.strip()

        if override:
            return override, LanguageDetection(
                language=normalize_language_tag(override), confidence=1.0
            )

        # langdetect is CPU-bound; keep it off the event loop.
        detection = await asyncio.to_thread(self._language_detector.detect, full_text)
        if detection.language:
            detection = LanguageDetection(
                language=normalize_language_tag(detection.language),
                confidence=detection.confidence,
            )
        return None, detection
