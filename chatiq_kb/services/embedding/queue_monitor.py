"""Operational status view and manual controls for the embedding queue.

Embedding failures never reach end users; they surface here instead, as
per-tenant pending / processing / failed counts, a health verdict, and a
list of jobs whose lock has gone stale.  Nothing here runs automatically:
failed jobs and stale locks are only touched when an operator (or an
external supervisor) calls :meth:`retry_failed_jobs` / :meth:`requeue_job`.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable

import structlog

from chatiq_kb.models.document import DocumentEmbeddingStatus
from chatiq_kb.models.embedding import EmbeddingJob, JobStatus, QueueHealth, QueueStats

if TYPE_CHECKING:
    from chatiq_kb.interfaces.knowledge_store import IKnowledgeStore

logger = structlog.get_logger(logger_name=__name__)

_RATE_WINDOW = timedelta(hours=1)
_FAILED_ERROR_THRESHOLD = 10
_PENDING_WARNING_THRESHOLD = 50


def classify_queue_health(pending: int, failed: int, stuck: int) -> QueueHealth:
    """``error`` on any stuck job or more than 10 failures; ``warning`` on a
    backlog over 50 or any failure; otherwise ``healthy``."""
    if stuck > 0 or failed > _FAILED_ERROR_THRESHOLD:
        return QueueHealth.ERROR
    if pending > _PENDING_WARNING_THRESHOLD or failed > 0:
        return QueueHealth.WARNING
    return QueueHealth.HEALTHY


class EmbeddingQueueMonitor:
    """Read-mostly view of the job table for operators and supervisors.

    Parameters
    ----------
    store:
        The knowledge store holding the job table.
    stale_lock_minutes:
        How long a job may sit in ``processing`` before it counts as stuck.
    clock:
        Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        store: IKnowledgeStore,
        stale_lock_minutes: int = 5,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._stale_window = timedelta(minutes=stale_lock_minutes)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def get_queue_stats(self, tenant_id: str) -> QueueStats:
        now = self._clock()
        counts = await self._store.count_jobs_by_status(tenant_id=tenant_id)
        stuck = await self._store.list_stale_jobs(now - self._stale_window, tenant_id=tenant_id)
        rate = await self._store.count_completed_since(tenant_id, now - _RATE_WINDOW)

        pending = counts.get(JobStatus.PENDING, 0)
        failed = counts.get(JobStatus.FAILED, 0)
        return QueueStats(
            pending=pending,
            processing=counts.get(JobStatus.PROCESSING, 0),
            failed=failed,
            completed=counts.get(JobStatus.COMPLETED, 0),
            processing_rate=rate,
            stuck_jobs=len(stuck),
            status=classify_queue_health(pending, failed, len(stuck)),
            last_updated=now,
        )

    async def retry_failed_jobs(self, tenant_id: str, limit: int = 50) -> int:
        """Reset up to *limit* failed jobs to ``pending`` with a fresh attempt budget."""
        reset = await self._store.reset_failed_jobs(tenant_id, limit, self._clock())
        logger.info("failed_jobs_reset", tenant_id=tenant_id, reset=reset, limit=limit)
        return reset

    async def list_stale_jobs(self, tenant_id: str | None = None) -> list[EmbeddingJob]:
        """Return ``processing`` jobs locked longer than the stale window."""
        return await self._store.list_stale_jobs(
            self._clock() - self._stale_window, tenant_id=tenant_id
        )

    async def requeue_job(self, job_id: str) -> bool:
        """Return a stuck ``processing`` job to ``pending``, keeping its attempts."""
        requeued = await self._store.requeue_job(job_id, self._clock())
        if requeued:
            logger.info("stale_job_requeued", job_id=job_id)
        else:
            logger.warning("stale_job_requeue_skipped", job_id=job_id)
        return requeued

    async def get_document_status(self, document_id: str) -> DocumentEmbeddingStatus:
        counts = await self._store.count_jobs_by_status(document_id=document_id)
        return DocumentEmbeddingStatus(
            document_id=document_id,
            total=sum(counts.values()),
            pending=counts.get(JobStatus.PENDING, 0),
            processing=counts.get(JobStatus.PROCESSING, 0),
            completed=counts.get(JobStatus.COMPLETED, 0),
            failed=counts.get(JobStatus.FAILED, 0),
        )
