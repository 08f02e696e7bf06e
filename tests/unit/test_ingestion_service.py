"""Unit tests for IngestionService.

Real store and quota checker on a temp SQLite file; the language detector
is mocked so results do not depend on langdetect's model.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from chatiq_kb.interfaces.language_detector import ILanguageDetector
from chatiq_kb.models.document import Document, LanguageDetection
from chatiq_kb.models.embedding import JobStatus
from chatiq_kb.models.quota import PlanQuota
from chatiq_kb.providers.quota.plan_quota_checker import PlanQuotaChecker
from chatiq_kb.providers.store.sqlite_knowledge_store import SQLiteKnowledgeStore
from chatiq_kb.services.ingestion.chunker import TextChunker
from chatiq_kb.services.ingestion.hasher import content_hash
from chatiq_kb.services.ingestion.ingestion_service import IngestionService
from chatiq_kb.utils.errors import IngestionError, QuotaExceededError, StorageError


def _words(count: int) -> str:
    return " ".join(f"w{i}" for i in range(count))


@pytest.fixture
def detector() -> MagicMock:
    mock = MagicMock(spec=ILanguageDetector)
    mock.detect.return_value = LanguageDetection(language="EN", confidence=0.93)
    return mock


@pytest.fixture
def service(
    store: SQLiteKnowledgeStore, detector: MagicMock, plan_quotas: dict[str, PlanQuota]
) -> IngestionService:
    return IngestionService(
        store=store,
        chunker=TextChunker(),
        language_detector=detector,
        quota_checker=PlanQuotaChecker(store, plan_quotas),
    )


class TestIngest:
    @pytest.mark.asyncio
    async def test_thousand_words_make_two_chunks_and_jobs(
        self, service: IngestionService, store: SQLiteKnowledgeStore, document: Document
    ) -> None:
        result = await service.ingest("doc-1", "team-1", _words(1000), plan="free")

        assert result.chunk_count == 2
        assert result.job_count == 2
        chunks = await store.list_document_chunks("doc-1")
        assert [c.index for c in chunks] == [0, 1]
        for chunk in chunks:
            assert chunk.content_hash == content_hash(chunk.text)
            assert chunk.anchor_id is None
            job = await store.get_job(f"job_{chunk.chunk_id}")
            assert job.status is JobStatus.PENDING
            assert job.attempts == 0
            assert job.tenant_id == "team-1"

    @pytest.mark.asyncio
    async def test_detected_language_is_normalized_and_recorded(
        self, service: IngestionService, store: SQLiteKnowledgeStore, document: Document
    ) -> None:
        await service.ingest("doc-1", "team-1", _words(50), plan="free")

        doc = await store.get_document("doc-1")
        assert doc.language == "en"
        assert doc.language_confidence == pytest.approx(0.93)
        chunk = (await store.list_document_chunks("doc-1"))[0]
        assert chunk.language == "en"
        assert chunk.language_override is None

    @pytest.mark.asyncio
    async def test_override_skips_detection(
        self,
        service: IngestionService,
        store: SQLiteKnowledgeStore,
        document: Document,
        detector: MagicMock,
    ) -> None:
        await store.upsert_document(document.model_copy(update={"language_override": " th "}))

        await service.ingest("doc-1", "team-1", _words(50), plan="free")

        detector.detect.assert_not_called()
        doc = await store.get_document("doc-1")
        assert doc.language == "th"
        assert doc.language_confidence == 1.0
        chunk = (await store.list_document_chunks("doc-1"))[0]
        assert chunk.language_override == "th"
        assert chunk.language_confidence == 1.0

    @pytest.mark.asyncio
    async def test_detection_runs_off_the_event_loop_thread(
        self, service: IngestionService, document: Document, detector: MagicMock
    ) -> None:
        loop_thread = threading.get_ident()
        detect_threads: list[int] = []

        def detect(text: str) -> LanguageDetection:
            detect_threads.append(threading.get_ident())
            return LanguageDetection(language="en", confidence=0.9)

        detector.detect.side_effect = detect

        await service.ingest("doc-1", "team-1", _words(50), plan="free")

        assert len(detect_threads) == 1
        assert detect_threads[0] != loop_thread

    @pytest.mark.asyncio
    async def test_undetected_language_is_null(
        self,
        service: IngestionService,
        store: SQLiteKnowledgeStore,
        document: Document,
        detector: MagicMock,
    ) -> None:
        detector.detect.return_value = LanguageDetection()

        await service.ingest("doc-1", "team-1", "12 34 56", plan="free")

        doc = await store.get_document("doc-1")
        assert doc.language is None
        assert doc.language_confidence is None

    @pytest.mark.asyncio
    async def test_blank_text_yields_nothing(
        self, service: IngestionService, store: SQLiteKnowledgeStore, document: Document
    ) -> None:
        result = await service.ingest("doc-1", "team-1", "   \n  ", plan="free")

        assert (result.chunk_count, result.job_count) == (0, 0)
        assert await store.list_document_chunks("doc-1") == []

    @pytest.mark.asyncio
    async def test_missing_document_raises(self, service: IngestionService) -> None:
        with pytest.raises(IngestionError):
            await service.ingest("ghost", "team-1", _words(10), plan="free")


class TestReingest:
    @pytest.mark.asyncio
    async def test_reingest_replaces_chunks_jobs_and_embeddings(
        self, service: IngestionService, store: SQLiteKnowledgeStore, document: Document
    ) -> None:
        await service.ingest("doc-1", "team-1", _words(1000), plan="free")
        old = await store.list_document_chunks("doc-1")
        await store.store_embedding(old[0].chunk_id, "team-1", [1.0, 2.0])

        result = await service.ingest("doc-1", "team-1", _words(100), plan="free")

        assert result.chunk_count == 1
        new = await store.list_document_chunks("doc-1")
        assert len(new) == 1
        assert new[0].chunk_id not in {c.chunk_id for c in old}
        assert await store.get_job(f"job_{old[0].chunk_id}") is None
        assert await store.get_stored_embedding(old[0].chunk_id) is None

    @pytest.mark.asyncio
    async def test_reingest_does_not_double_count_quota(
        self, service: IngestionService, store: SQLiteKnowledgeStore, document: Document
    ) -> None:
        # free plan allows 5 embeddings; 4 + 4 only fits if old chunks are dropped first
        text = _words(600 + 480 * 3)
        assert (await service.ingest("doc-1", "team-1", text, plan="free")).chunk_count == 4
        assert (await service.ingest("doc-1", "team-1", text, plan="free")).chunk_count == 4


class TestQuota:
    @pytest.mark.asyncio
    async def test_quota_exceeded_inserts_nothing(
        self,
        store: SQLiteKnowledgeStore,
        document: Document,
        detector: MagicMock,
        plan_quotas: dict[str, PlanQuota],
    ) -> None:
        service = IngestionService(
            store=store,
            chunker=TextChunker(chunk_size=2, overlap=0),
            language_detector=detector,
            quota_checker=PlanQuotaChecker(store, plan_quotas),
        )

        with pytest.raises(QuotaExceededError) as exc_info:
            await service.ingest("doc-1", "team-1", _words(20), plan="free")

        assert exc_info.value.resource == "embeddings"
        assert exc_info.value.limit == 5
        assert exc_info.value.used == 10
        assert await store.list_document_chunks("doc-1") == []
        assert await store.fetch_oldest_pending_job(datetime.now(timezone.utc)) is None

    @pytest.mark.asyncio
    async def test_higher_plan_allows_more(
        self,
        store: SQLiteKnowledgeStore,
        document: Document,
        detector: MagicMock,
        plan_quotas: dict[str, PlanQuota],
    ) -> None:
        service = IngestionService(
            store=store,
            chunker=TextChunker(chunk_size=2, overlap=0),
            language_detector=detector,
            quota_checker=PlanQuotaChecker(store, plan_quotas),
        )

        result = await service.ingest("doc-1", "team-1", _words(20), plan="pro")

        assert result.chunk_count == 10


class TestStoreFailures:
    @pytest.mark.asyncio
    async def test_language_update_failure_does_not_abort(
        self, service: IngestionService, store: SQLiteKnowledgeStore, document: Document
    ) -> None:
        store.update_document_language = AsyncMock(side_effect=StorageError("locked"))

        result = await service.ingest("doc-1", "team-1", _words(10), plan="free")

        assert result.chunk_count == 1

    @pytest.mark.asyncio
    async def test_override_lookup_failure_falls_back_to_detection(
        self,
        service: IngestionService,
        store: SQLiteKnowledgeStore,
        document: Document,
        detector: MagicMock,
    ) -> None:
        store.get_document = AsyncMock(side_effect=StorageError("locked"))

        await service.ingest("doc-1", "team-1", _words(10), plan="free")

        detector.detect.assert_called_once()

    @pytest.mark.asyncio
    async def test_insert_failure_propagates(
        self, service: IngestionService, store: SQLiteKnowledgeStore, document: Document
    ) -> None:
        store.insert_chunks_with_jobs = AsyncMock(side_effect=StorageError("disk full"))

        with pytest.raises(StorageError):
            await service.ingest("doc-1", "team-1", _words(10), plan="free")
