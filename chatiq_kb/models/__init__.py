"""Pydantic v2 data models for the knowledge-base pipeline."""

from chatiq_kb.models.document import (
    Chunk,
    ChunkDraft,
    Document,
    DocumentEmbeddingStatus,
    IngestResult,
    LanguageDetection,
)
from chatiq_kb.models.embedding import (
    CachedEmbedding,
    CacheStats,
    EmbeddingJob,
    JobStatus,
    QueueHealth,
    QueueStats,
    WorkerRunResult,
)
from chatiq_kb.models.quota import PlanQuota, QuotaResource, QuotaStatus
from chatiq_kb.models.retrieval import (
    ChunkMetadata,
    ChunkSource,
    RetrievedChunk,
    RetrieveResult,
    SearchMatch,
)

__all__ = [
    "CacheStats",
    "CachedEmbedding",
    "Chunk",
    "ChunkDraft",
    "ChunkMetadata",
    "ChunkSource",
    "Document",
    "DocumentEmbeddingStatus",
    "EmbeddingJob",
    "IngestResult",
    "JobStatus",
    "LanguageDetection",
    "PlanQuota",
    "QueueHealth",
    "QueueStats",
    "QuotaResource",
    "QuotaStatus",
    "RetrieveResult",
    "RetrievedChunk",
    "SearchMatch",
    "WorkerRunResult",
]
