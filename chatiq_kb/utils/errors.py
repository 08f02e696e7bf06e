"""Custom exception hierarchy for the chatiq knowledge-base pipeline.

All pipeline exceptions inherit from :class:`ChatIQError`, which carries an
optional ``provider_name`` so error handlers can identify which collaborator
(e.g. "openai_embedding", "sqlite_store") caused the failure.

The hierarchy follows the pipeline's error taxonomy:

    ChatIQError  (base -- catch-all for any pipeline error)
    +-- ConfigurationError         (startup / missing config)
    +-- StorageError               (relational store read/write failure)
    +-- EmbeddingError             (provider non-2xx or malformed payload)
    +-- VectorSearchError          (nearest-neighbour lookup failure)
    +-- ChunkDataError             (missing chunk or hash -- never retried)
    +-- IngestionError             (orchestrator abort)
    +-- QuotaExceededError         (plan quota would be exceeded)
    +-- InvalidJobTransitionError  (illegal embedding-job status change)

Transient errors (StorageError, EmbeddingError) are retried through the
job's attempt counter; ChunkDataError fails a job immediately;
QuotaExceededError aborts ingestion synchronously; VectorSearchError is
recovered inside the retriever.
"""


class ChatIQError(Exception):
    """Base exception for all knowledge-base pipeline errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name``.  ``__str__`` prefixes the provider name in brackets,
    e.g. ``[openai_embedding] 429 Too Many Requests``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


class ConfigurationError(ChatIQError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Boundary collaborator errors
# ---------------------------------------------------------------------------


class StorageError(ChatIQError):
    """Raised when the relational store fails a read or write."""

    def __init__(
        self,
        message: str = "Storage operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class EmbeddingError(ChatIQError):
    """Raised when the embedding provider errors or returns a malformed payload."""

    def __init__(
        self,
        message: str = "Embedding request failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class VectorSearchError(ChatIQError):
    """Raised when a nearest-neighbour similarity search fails."""

    def __init__(
        self,
        message: str = "Vector similarity search failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Pipeline errors
# ---------------------------------------------------------------------------


class ChunkDataError(ChatIQError):
    """Raised when a job's chunk row or content hash is missing.

    This is a data error: the job is failed immediately rather than retried.
    """

    def __init__(
        self,
        message: str = "Chunk not found or empty",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class IngestionError(ChatIQError):
    """Raised when document ingestion is aborted."""

    def __init__(
        self,
        message: str = "Document ingestion failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class QuotaExceededError(ChatIQError):
    """Raised when a tenant's plan quota would be exceeded by a request.

    Carries the quota ``resource`` plus the ``limit``, projected ``used``
    count, and ``remaining`` headroom so callers can report a clear reason.
    """

    def __init__(
        self,
        resource: str,
        limit: int | None,
        used: int,
        remaining: int | None = None,
        provider_name: str | None = None,
    ) -> None:
        self._resource = resource
        self._limit = limit
        self._used = used
        self._remaining = remaining
        super().__init__(
            message=f"Quota exceeded for {resource} (limit={limit}, used={used})",
            provider_name=provider_name,
        )

    @property
    def resource(self) -> str:
        return self._resource

    @property
    def limit(self) -> int | None:
        return self._limit

    @property
    def used(self) -> int:
        return self._used

    @property
    def remaining(self) -> int | None:
        return self._remaining


class InvalidJobTransitionError(ChatIQError):
    """Raised when an embedding job is moved along an edge the state machine forbids."""

    def __init__(self, current: str, target: str) -> None:
        self._current = current
        self._target = target
        super().__init__(message=f"Invalid embedding job transition: {current} -> {target}")

    @property
    def current(self) -> str:
        return self._current

    @property
    def target(self) -> str:
        return self._target
