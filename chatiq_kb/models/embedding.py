"""Embedding job, cache entry, and queue statistics models.

Embedding job lifecycle::

    pending -> processing -> completed
                         \\-> pending   (retry, attempts < max)
                         \\-> failed    (attempts exhausted, or data error)
    failed  -> pending                  (explicit operator retry only)

The allowed edges are enforced in
:mod:`chatiq_kb.services.embedding.job_state`.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    """States of an embedding job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class EmbeddingJob(BaseModel):
    """Unit of work: compute the vector for one chunk."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    chunk_id: str
    tenant_id: str
    status: JobStatus = JobStatus.PENDING
    attempts: int = Field(default=0, ge=0)
    locked_by: str | None = None
    locked_at: datetime | None = None
    error: str | None = None
    next_attempt_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class CachedEmbedding(BaseModel):
    """A reusable vector keyed by (content hash, tenant, model version)."""

    model_config = ConfigDict(frozen=True)

    content_hash: str
    tenant_id: str
    model_version: str
    vector: list[float]
    usage_count: int = Field(default=1, ge=0)
    last_used_at: datetime | None = None
    created_at: datetime | None = None


class CacheStats(BaseModel):
    """Snapshot of embedding-cache size and reuse."""

    model_config = ConfigDict(frozen=True)

    total_entries: int = 0
    total_usage_count: int = 0
    oldest_entry: datetime | None = None
    newest_entry: datetime | None = None


class QueueHealth(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    ERROR = "error"


class QueueStats(BaseModel):
    """Operational view of a tenant's embedding queue."""

    model_config = ConfigDict(frozen=True)

    pending: int = 0
    processing: int = 0
    failed: int = 0
    completed: int = 0
    processing_rate: int = Field(default=0, description="Jobs completed in the last hour.")
    stuck_jobs: int = Field(
        default=0, description="Processing jobs whose lock is older than the stale window."
    )
    status: QueueHealth = QueueHealth.HEALTHY
    last_updated: datetime


class WorkerRunResult(BaseModel):
    """Counters for one :meth:`EmbeddingWorker.run_batch` call."""

    model_config = ConfigDict(frozen=True)

    claimed: int = 0
    processed: int = 0
    cache_hits: int = 0
    retried: int = 0
    failed: int = 0
    lost_claims: int = 0
