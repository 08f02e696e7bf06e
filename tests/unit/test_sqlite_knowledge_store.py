"""Unit tests for SQLiteKnowledgeStore.

Runs against a temporary SQLite file: document upserts, atomic chunk +
job insertion, cascade deletes, the compare-and-swap job claim, queue
counters, stored embeddings, and conversation pins.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from chatiq_kb.models.document import Chunk, Document
from chatiq_kb.models.embedding import JobStatus
from chatiq_kb.providers.store.sqlite_knowledge_store import SQLiteKnowledgeStore
from chatiq_kb.utils.errors import StorageError

_T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _chunks(document_id: str = "doc-1", tenant_id: str = "team-1", n: int = 3) -> list[Chunk]:
    return [
        Chunk(
            chunk_id=f"{document_id}-c{i}",
            document_id=document_id,
            tenant_id=tenant_id,
            index=i,
            text=f"chunk {i} of {document_id}",
            content_hash=f"hash-{document_id}-{i}",
        )
        for i in range(n)
    ]


# ─── Initialization ───────────────────────────────────────────────


@pytest.mark.asyncio
async def test_double_initialize_is_idempotent(store: SQLiteKnowledgeStore) -> None:
    await store.initialize()
    assert store.get_provider_name() == "sqlite_store"


# ─── Documents ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_upsert_and_get_document(store: SQLiteKnowledgeStore, document: Document) -> None:
    fetched = await store.get_document("doc-1")

    assert fetched is not None
    assert fetched.tenant_id == "team-1"
    assert fetched.canonical_url == "https://example.com/handbook"
    assert await store.get_document("missing") is None


@pytest.mark.asyncio
async def test_upsert_keeps_detected_language(
    store: SQLiteKnowledgeStore, document: Document
) -> None:
    await store.update_document_language("doc-1", "en", 0.97)
    updated = await store.upsert_document(document.model_copy(update={"title": "Renamed"}))

    assert updated.title == "Renamed"
    assert updated.language == "en"
    assert updated.language_confidence == pytest.approx(0.97)


@pytest.mark.asyncio
async def test_count_documents_by_tenant(store: SQLiteKnowledgeStore, document: Document) -> None:
    await store.upsert_document(Document(document_id="doc-x", tenant_id="team-2", bot_id="b"))

    assert await store.count_documents("team-1") == 1
    assert await store.count_documents("team-2") == 1


# ─── Chunks + jobs ────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_insert_chunks_creates_one_pending_job_each(
    store: SQLiteKnowledgeStore, document: Document
) -> None:
    jobs = await store.insert_chunks_with_jobs(_chunks(), _T0)

    assert len(jobs) == 3
    assert {j.status for j in jobs} == {JobStatus.PENDING}
    assert [c.index for c in await store.list_document_chunks("doc-1")] == [0, 1, 2]
    counts = await store.count_jobs_by_status(tenant_id="team-1")
    assert counts[JobStatus.PENDING] == 3
    assert counts[JobStatus.COMPLETED] == 0


@pytest.mark.asyncio
async def test_insert_is_all_or_nothing(store: SQLiteKnowledgeStore, document: Document) -> None:
    chunks = _chunks()
    duplicate = chunks + [chunks[0].model_copy(update={"chunk_id": "dup", "index": 0})]

    with pytest.raises(StorageError):
        await store.insert_chunks_with_jobs(duplicate, _T0)

    assert await store.list_document_chunks("doc-1") == []
    assert await store.fetch_oldest_pending_job(_T0) is None


@pytest.mark.asyncio
async def test_chunks_require_an_existing_document(store: SQLiteKnowledgeStore) -> None:
    with pytest.raises(StorageError):
        await store.insert_chunks_with_jobs(_chunks(document_id="ghost"), _T0)


@pytest.mark.asyncio
async def test_delete_cascades_to_jobs_and_embeddings(
    store: SQLiteKnowledgeStore, document: Document
) -> None:
    jobs = await store.insert_chunks_with_jobs(_chunks(), _T0)
    await store.store_embedding(jobs[0].chunk_id, "team-1", [1.0, 0.0])

    deleted = await store.delete_document_chunks("doc-1")

    assert deleted == 3
    assert await store.get_chunk(jobs[0].chunk_id) is None
    assert await store.get_job(jobs[0].job_id) is None
    assert await store.get_stored_embedding(jobs[0].chunk_id) is None
    assert await store.count_chunks("team-1") == 0


@pytest.mark.asyncio
async def test_fetch_chunks_with_metadata_is_tenant_scoped(
    store: SQLiteKnowledgeStore, document: Document
) -> None:
    await store.insert_chunks_with_jobs(_chunks(), _T0)

    rows = await store.fetch_chunks_with_metadata("team-1", ["doc-1-c2", "doc-1-c0", "nope"])
    foreign = await store.fetch_chunks_with_metadata("team-2", ["doc-1-c0"])

    assert {chunk.chunk_id for chunk, _ in rows} == {"doc-1-c0", "doc-1-c2"}
    assert all(meta.canonical_url == "https://example.com/handbook" for _, meta in rows)
    assert foreign == []


# ─── Queue: fetch + claim ─────────────────────────────────────────


@pytest.mark.asyncio
async def test_fetch_oldest_pending_is_fifo(store: SQLiteKnowledgeStore, document: Document) -> None:
    await store.upsert_document(Document(document_id="doc-2", tenant_id="team-2", bot_id="b"))
    await store.insert_chunks_with_jobs(_chunks("doc-2", "team-2", n=1), _T0 + timedelta(seconds=5))
    await store.insert_chunks_with_jobs(_chunks(n=2), _T0)

    job = await store.fetch_oldest_pending_job(_T0 + timedelta(minutes=1))

    assert job is not None
    assert job.chunk_id == "doc-1-c0"


@pytest.mark.asyncio
async def test_claim_records_lock_and_increments_attempts(
    store: SQLiteKnowledgeStore, document: Document
) -> None:
    await store.insert_chunks_with_jobs(_chunks(n=1), _T0)
    job = await store.fetch_oldest_pending_job(_T0)

    claimed = await store.claim_job(job, "worker-a", _T0)

    assert claimed is not None
    assert claimed.status is JobStatus.PROCESSING
    assert claimed.locked_by == "worker-a"
    assert claimed.locked_at == _T0
    assert claimed.attempts == 1
    assert await store.fetch_oldest_pending_job(_T0) is None


@pytest.mark.asyncio
async def test_concurrent_claims_only_one_wins(
    store: SQLiteKnowledgeStore, document: Document
) -> None:
    await store.insert_chunks_with_jobs(_chunks(n=1), _T0)
    job = await store.fetch_oldest_pending_job(_T0)

    results = await asyncio.gather(
        store.claim_job(job, "worker-a", _T0),
        store.claim_job(job, "worker-b", _T0),
    )

    winners = [r for r in results if r is not None]
    assert len(winners) == 1
    assert (await store.get_job(job.job_id)).attempts == 1


@pytest.mark.asyncio
async def test_separate_store_instances_race_on_same_file(
    db_path, document: Document, store: SQLiteKnowledgeStore
) -> None:
    await store.insert_chunks_with_jobs(_chunks(n=1), _T0)
    other = SQLiteKnowledgeStore(db_path=db_path)
    job = await store.fetch_oldest_pending_job(_T0)

    first = await store.claim_job(job, "worker-a", _T0)
    second = await other.claim_job(job, "worker-b", _T0)

    assert first is not None
    assert second is None


@pytest.mark.asyncio
async def test_backoff_hides_job_until_due(store: SQLiteKnowledgeStore, document: Document) -> None:
    await store.insert_chunks_with_jobs(_chunks(n=1), _T0)
    job = await store.claim_job(await store.fetch_oldest_pending_job(_T0), "w", _T0)
    due = _T0 + timedelta(seconds=30)

    await store.release_job(job.job_id, JobStatus.PENDING, "boom", due, _T0)

    assert await store.fetch_oldest_pending_job(_T0 + timedelta(seconds=10)) is None
    assert (await store.fetch_oldest_pending_job(due)).job_id == job.job_id


# ─── Queue: complete / release / requeue / reset ──────────────────


@pytest.mark.asyncio
async def test_complete_clears_lock_and_error(
    store: SQLiteKnowledgeStore, document: Document
) -> None:
    await store.insert_chunks_with_jobs(_chunks(n=1), _T0)
    job = await store.claim_job(await store.fetch_oldest_pending_job(_T0), "w", _T0)

    await store.complete_job(job.job_id, _T0 + timedelta(seconds=1))

    done = await store.get_job(job.job_id)
    assert done.status is JobStatus.COMPLETED
    assert done.locked_by is None and done.locked_at is None and done.error is None


@pytest.mark.asyncio
async def test_release_to_failed_records_error(
    store: SQLiteKnowledgeStore, document: Document
) -> None:
    await store.insert_chunks_with_jobs(_chunks(n=1), _T0)
    job = await store.claim_job(await store.fetch_oldest_pending_job(_T0), "w", _T0)

    await store.release_job(job.job_id, JobStatus.FAILED, "bad payload", None, _T0)

    failed = await store.get_job(job.job_id)
    assert failed.status is JobStatus.FAILED
    assert failed.error == "bad payload"
    assert failed.locked_by is None


@pytest.mark.asyncio
async def test_reset_failed_jobs(store: SQLiteKnowledgeStore, document: Document) -> None:
    await store.insert_chunks_with_jobs(_chunks(n=2), _T0)
    for _ in range(2):
        job = await store.claim_job(await store.fetch_oldest_pending_job(_T0), "w", _T0)
        await store.release_job(job.job_id, JobStatus.FAILED, "err", None, _T0)

    reset = await store.reset_failed_jobs("team-1", limit=1, now=_T0)

    assert reset == 1
    counts = await store.count_jobs_by_status(tenant_id="team-1")
    assert counts[JobStatus.FAILED] == 1
    assert counts[JobStatus.PENDING] == 1
    pending = await store.fetch_oldest_pending_job(_T0)
    assert pending.attempts == 0 and pending.error is None


@pytest.mark.asyncio
async def test_stale_jobs_and_requeue(store: SQLiteKnowledgeStore, document: Document) -> None:
    await store.insert_chunks_with_jobs(_chunks(n=1), _T0)
    job = await store.claim_job(await store.fetch_oldest_pending_job(_T0), "w", _T0)

    assert await store.list_stale_jobs(_T0 - timedelta(minutes=1)) == []
    stale = await store.list_stale_jobs(_T0 + timedelta(minutes=10), tenant_id="team-1")
    assert [j.job_id for j in stale] == [job.job_id]

    assert await store.requeue_job(job.job_id, _T0) is True
    assert await store.requeue_job(job.job_id, _T0) is False
    requeued = await store.get_job(job.job_id)
    assert requeued.status is JobStatus.PENDING
    assert requeued.attempts == 1


@pytest.mark.asyncio
async def test_count_completed_since(store: SQLiteKnowledgeStore, document: Document) -> None:
    await store.insert_chunks_with_jobs(_chunks(n=1), _T0)
    job = await store.claim_job(await store.fetch_oldest_pending_job(_T0), "w", _T0)
    await store.complete_job(job.job_id, _T0 + timedelta(minutes=30))

    assert await store.count_completed_since("team-1", _T0) == 1
    assert await store.count_completed_since("team-1", _T0 + timedelta(hours=1)) == 0


@pytest.mark.asyncio
async def test_count_jobs_by_document(store: SQLiteKnowledgeStore, document: Document) -> None:
    await store.upsert_document(Document(document_id="doc-2", tenant_id="team-1", bot_id="bot-1"))
    await store.insert_chunks_with_jobs(_chunks(n=2), _T0)
    await store.insert_chunks_with_jobs(_chunks("doc-2", n=1), _T0)

    counts = await store.count_jobs_by_status(document_id="doc-2")
    assert sum(counts.values()) == 1


# ─── Stored embeddings + pins ─────────────────────────────────────


@pytest.mark.asyncio
async def test_store_embedding_upserts(store: SQLiteKnowledgeStore, document: Document) -> None:
    await store.insert_chunks_with_jobs(_chunks(n=1), _T0)

    await store.store_embedding("doc-1-c0", "team-1", [0.1, 0.2])
    await store.store_embedding("doc-1-c0", "team-1", [0.3, 0.4])

    assert await store.get_stored_embedding("doc-1-c0") == [0.3, 0.4]


@pytest.mark.asyncio
async def test_pinned_chunk_ids_round_trip(store: SQLiteKnowledgeStore) -> None:
    assert await store.get_pinned_chunk_ids("conv-1") == []

    await store.set_pinned_chunk_ids("conv-1", ["c2", "c1"], tenant_id="team-1", bot_id="bot-1")
    assert await store.get_pinned_chunk_ids("conv-1") == ["c2", "c1"]

    await store.set_pinned_chunk_ids("conv-1", ["c2", "c1", "c3"])
    assert await store.get_pinned_chunk_ids("conv-1") == ["c2", "c1", "c3"]
