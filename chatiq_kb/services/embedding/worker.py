"""Embedding worker loop over the shared job table.

Any number of :class:`EmbeddingWorker` instances, in any number of
processes, may run against the same store.  They coordinate only through
:meth:`IKnowledgeStore.claim_job`, the conditional ``pending ->
processing`` update; there is no central scheduler.

Per job:

    1. Fetch the oldest eligible ``pending`` job (any tenant).
    2. Claim it; if another worker won the race, fetch again.
    3. Load the chunk.  A missing chunk or hash fails the job outright.
    4. Look up the embedding cache for (hash, tenant, model version).
       Hit: reuse the vector (the cache bumps its own usage counter).
       Miss: call the embedding provider and populate the cache in the
       background.
    5. Store the vector as the chunk's retrieval embedding.
    6. Mark the job ``completed``, or hand the failure to
       :class:`RetryPolicy` to decide between ``pending`` and ``failed``.

Cache writes are fire-and-forget through :class:`BackgroundEffects`; a
cache failure never fails a job.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable

import structlog

from chatiq_kb.models.document import Chunk
from chatiq_kb.models.embedding import EmbeddingJob, JobStatus, WorkerRunResult
from chatiq_kb.services.embedding.job_state import JobOutcome, RetryPolicy
from chatiq_kb.utils.background import BackgroundEffects
from chatiq_kb.utils.errors import ChunkDataError, ConfigurationError, StorageError

if TYPE_CHECKING:
    from chatiq_kb.interfaces.embedding_cache import IEmbeddingCache
    from chatiq_kb.interfaces.embedding_provider import IEmbeddingProvider
    from chatiq_kb.interfaces.knowledge_store import IKnowledgeStore

logger = structlog.get_logger(logger_name=__name__)

_CHUNK_MISSING_MESSAGE = "Chunk not found or empty"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EmbeddingWorker:
    """Processes embedding jobs in bounded batches.

    Parameters
    ----------
    store:
        The knowledge store holding chunks, jobs, and stored embeddings.
    cache:
        Tenant- and model-version-scoped embedding cache.
    embedding_provider:
        Called once per cache miss.  ``None`` (no API key configured) makes
        :meth:`run_batch` raise :class:`ConfigurationError` before claiming.
    model_version:
        Cache namespace for the provider's current model.
    retry_policy:
        Attempt ceiling, error truncation, and backoff.
    worker_id:
        Recorded as the lock holder on claimed jobs.
    background:
        Runner for fire-and-forget cache writes.
    clock:
        Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        store: IKnowledgeStore,
        cache: IEmbeddingCache,
        embedding_provider: IEmbeddingProvider | None,
        model_version: str,
        retry_policy: RetryPolicy | None = None,
        worker_id: str = "embedding-worker",
        background: BackgroundEffects | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._embedding_provider = embedding_provider
        self._model_version = model_version
        self._retry_policy = retry_policy or RetryPolicy()
        self._worker_id = worker_id
        self._background = background or BackgroundEffects()
        self._clock = clock or _utcnow

    @property
    def worker_id(self) -> str:
        return self._worker_id

    @property
    def background(self) -> BackgroundEffects:
        return self._background

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run_batch(self, batch_size: int = 5) -> WorkerRunResult:
        """Claim and process up to *batch_size* jobs, then return counters.

        Every claimed job counts toward the limit whatever its outcome, so
        a job that keeps failing cannot hold the batch open.  Stops early
        when no eligible ``pending`` job remains, or when the store cannot
        be read; the next batch simply tries again.
        """
        if self._embedding_provider is None:
            raise ConfigurationError(
                message="No embedding provider configured (set OPENAI_API_KEY)"
            )

        claimed = processed = cache_hits = retried = failed = lost_claims = 0

        while claimed < batch_size:
            now = self._clock()
            try:
                job = await self._store.fetch_oldest_pending_job(now)
                if job is None:
                    break
                locked = await self._store.claim_job(job, self._worker_id, now)
            except StorageError as exc:
                logger.warning(
                    "embedding_job_fetch_failed", worker_id=self._worker_id, error=str(exc)
                )
                break

            if locked is None:
                lost_claims += 1
                logger.debug("embedding_job_claim_lost", job_id=job.job_id)
                continue
            claimed += 1

            outcome, from_cache = await self._process(locked)
            await self._finish(locked, outcome)

            if outcome.status is JobStatus.COMPLETED:
                processed += 1
                cache_hits += int(from_cache)
            elif outcome.status is JobStatus.PENDING:
                retried += 1
            else:
                failed += 1

        result = WorkerRunResult(
            claimed=claimed,
            processed=processed,
            cache_hits=cache_hits,
            retried=retried,
            failed=failed,
            lost_claims=lost_claims,
        )
        if claimed:
            logger.info("embedding_batch_complete", worker_id=self._worker_id, **result.model_dump())
        return result

    async def run_forever(
        self,
        batch_size: int = 5,
        poll_interval: float = 5.0,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Run batches until *stop_event* is set, sleeping when the queue is empty."""
        stop_event = stop_event or asyncio.Event()
        logger.info("embedding_worker_started", worker_id=self._worker_id)
        try:
            while not stop_event.is_set():
                result = await self.run_batch(batch_size)
                if result.claimed == 0:
                    try:
                        await asyncio.wait_for(stop_event.wait(), timeout=poll_interval)
                    except asyncio.TimeoutError:
                        pass
        finally:
            await self._background.drain()
            logger.info("embedding_worker_stopped", worker_id=self._worker_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _process(self, job: EmbeddingJob) -> tuple[JobOutcome, bool]:
        """Compute and store the job's vector; return the outcome and cache-hit flag."""
        log = logger.bind(job_id=job.job_id, chunk_id=job.chunk_id, tenant_id=job.tenant_id)

        try:
            chunk = await self._load_chunk(job)
        except ChunkDataError as exc:
            log.warning("embedding_chunk_missing")
            return self._retry_policy.on_data_error(exc.message), False
        except StorageError as exc:
            log.warning("embedding_chunk_load_failed", error=str(exc))
            return self._retry_policy.on_failure(job.attempts, str(exc), self._clock()), False

        try:
            vector = await self._cache.get(chunk.content_hash, job.tenant_id, self._model_version)
            from_cache = vector is not None
            if vector is None:
                vector = await self._embedding_provider.embed_single(chunk.text)
                self._background.spawn(
                    self._cache.put(
                        chunk.content_hash, job.tenant_id, self._model_version, vector
                    ),
                    name="embedding_cache_populate",
                )
            await self._store.store_embedding(job.chunk_id, job.tenant_id, vector)
        except Exception as exc:  # noqa: BLE001 -- any failure is recorded on the job
            log.warning("embedding_job_attempt_failed", attempts=job.attempts, error=str(exc))
            return self._retry_policy.on_failure(job.attempts, str(exc), self._clock()), False

        log.debug("embedding_job_vector_stored", from_cache=from_cache)
        return self._retry_policy.on_success(), from_cache

    async def _load_chunk(self, job: EmbeddingJob) -> Chunk:
        chunk = await self._store.get_chunk(job.chunk_id)
        if chunk is None or not chunk.text or not chunk.content_hash:
            raise ChunkDataError(message=_CHUNK_MISSING_MESSAGE)
        return chunk

    async def _finish(self, job: EmbeddingJob, outcome: JobOutcome) -> None:
        """Persist the outcome.  A failure here leaves the lock for a supervisor."""
        now = self._clock()
        try:
            if outcome.status is JobStatus.COMPLETED:
                await self._store.complete_job(job.job_id, now)
            else:
                await self._store.release_job(
                    job.job_id, outcome.status, outcome.error, outcome.next_attempt_at, now
                )
        except StorageError as exc:
            logger.error(
                "embedding_job_release_failed",
                job_id=job.job_id,
                target_status=outcome.status.value,
                error=str(exc),
            )
            return

        if outcome.status is JobStatus.COMPLETED:
            logger.info("embedding_job_completed", job_id=job.job_id, tenant_id=job.tenant_id)
        elif outcome.status is JobStatus.FAILED:
            logger.warning(
                "embedding_job_failed",
                job_id=job.job_id,
                tenant_id=job.tenant_id,
                attempts=job.attempts,
                error=outcome.error,
            )
        else:
            logger.info(
                "embedding_job_requeued",
                job_id=job.job_id,
                attempts=job.attempts,
                next_attempt_at=outcome.next_attempt_at.isoformat()
                if outcome.next_attempt_at
                else None,
            )
