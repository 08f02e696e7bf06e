"""Embedding job processing: state machine, worker loop, and queue monitor."""

from chatiq_kb.services.embedding.job_state import RetryPolicy, validate_transition
from chatiq_kb.services.embedding.queue_monitor import EmbeddingQueueMonitor
from chatiq_kb.services.embedding.worker import EmbeddingWorker

__all__ = ["EmbeddingQueueMonitor", "EmbeddingWorker", "RetryPolicy", "validate_transition"]
