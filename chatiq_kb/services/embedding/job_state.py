"""Embedding job state machine and retry policy.

The allowed status edges live in one table, and every decision about what
a job becomes after an attempt is made by :class:`RetryPolicy`, so retry
behaviour can be tested without a store or an embedding provider::

    pending    -> processing                     (claim)
    processing -> completed | pending | failed   (success / retry / give up)
    failed     -> pending                        (operator retry only)
    completed  -> (terminal)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from chatiq_kb.models.embedding import JobStatus
from chatiq_kb.utils.errors import InvalidJobTransitionError

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset(
        {JobStatus.COMPLETED, JobStatus.PENDING, JobStatus.FAILED}
    ),
    JobStatus.FAILED: frozenset({JobStatus.PENDING}),
    JobStatus.COMPLETED: frozenset(),
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def validate_transition(current: JobStatus, target: JobStatus) -> None:
    """Raise :class:`InvalidJobTransitionError` if ``current -> target`` is not allowed."""
    if not can_transition(current, target):
        raise InvalidJobTransitionError(current=current.value, target=target.value)


@dataclass(frozen=True)
class JobOutcome:
    """Where a processing job goes next, and what is recorded on it."""

    status: JobStatus
    error: str | None = None
    next_attempt_at: datetime | None = None

    @property
    def will_retry(self) -> bool:
        return self.status is JobStatus.PENDING


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt ceiling, error truncation, and optional exponential backoff.

    ``attempts`` arguments are the job's attempt count *after* the claim
    that started the current attempt, so the first try is attempt 1.
    """

    max_attempts: int = 5
    error_max_chars: int = 1000
    backoff_base_seconds: float = 0.0
    backoff_max_seconds: float = 300.0

    def status_after_failure(self, attempts: int) -> JobStatus:
        return JobStatus.FAILED if attempts >= self.max_attempts else JobStatus.PENDING

    def backoff_delay(self, attempts: int) -> float:
        """Seconds to wait before a retried job becomes eligible again."""
        if self.backoff_base_seconds <= 0 or attempts < 1:
            return 0.0
        return min(self.backoff_base_seconds * 2 ** (attempts - 1), self.backoff_max_seconds)

    def truncate_error(self, message: str) -> str:
        return message[: self.error_max_chars]

    def on_success(self) -> JobOutcome:
        validate_transition(JobStatus.PROCESSING, JobStatus.COMPLETED)
        return JobOutcome(status=JobStatus.COMPLETED)

    def on_failure(self, attempts: int, message: str, now: datetime) -> JobOutcome:
        """Transient failure: back to ``pending`` until the ceiling, then ``failed``."""
        status = self.status_after_failure(attempts)
        validate_transition(JobStatus.PROCESSING, status)
        next_attempt_at = None
        if status is JobStatus.PENDING:
            delay = self.backoff_delay(attempts)
            if delay > 0:
                next_attempt_at = now + timedelta(seconds=delay)
        return JobOutcome(
            status=status,
            error=self.truncate_error(message),
            next_attempt_at=next_attempt_at,
        )

    def on_data_error(self, message: str) -> JobOutcome:
        """Non-retryable failure: ``failed`` regardless of attempts left."""
        validate_transition(JobStatus.PROCESSING, JobStatus.FAILED)
        return JobOutcome(status=JobStatus.FAILED, error=self.truncate_error(message))
