"""Document and chunk models for the knowledge base.

A :class:`Document` is opaque text owned by a tenant (team) and attached to
a bot.  Ingestion splits it into :class:`Chunk` rows -- contiguous slices
with gapless 0-based ordinals -- each of which gets exactly one embedding
job.  Re-ingestion deletes the whole chunk set and rebuilds it.

All models are frozen; updates go through the store, which returns fresh
instances.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class Document(BaseModel):
    """A tenant-owned source document."""

    model_config = ConfigDict(frozen=True)

    document_id: str = Field(description="Unique identifier of the document.")
    tenant_id: str = Field(description="Owning tenant (team) identifier.")
    bot_id: str = Field(description="Bot whose knowledge base the document belongs to.")
    title: str = Field(default="", description="Human-readable title.")
    canonical_url: str | None = Field(
        default=None, description="Canonical source URL, surfaced as citation metadata."
    )
    language_override: str | None = Field(
        default=None,
        description="Manually set language tag; when present detection is skipped.",
    )
    language: str | None = Field(default=None, description="Effective language tag.")
    language_confidence: float | None = Field(
        default=None, ge=0.0, le=1.0, description="Confidence of the effective language."
    )
    translation_group_id: str | None = Field(
        default=None,
        description="Shared by documents that are translations of one another.",
    )


class ChunkDraft(BaseModel):
    """A chunk produced by the chunker, before it has a row id."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=0, description="0-based ordinal within the document.")
    text: str = Field(min_length=1, description="Stripped chunk text, never empty.")


class Chunk(BaseModel):
    """A persisted chunk row."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    document_id: str
    tenant_id: str
    index: int = Field(ge=0)
    text: str
    content_hash: str | None = Field(
        default=None, description="SHA-256 hex digest of ``text``; the embedding cache key."
    )
    anchor_id: str | None = None
    language: str | None = None
    language_confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    language_override: str | None = None


class LanguageDetection(BaseModel):
    """Output of a language detector; both fields are None when undecided."""

    model_config = ConfigDict(frozen=True)

    language: str | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)


class IngestResult(BaseModel):
    """Summary of one ingestion run."""

    model_config = ConfigDict(frozen=True)

    chunk_count: int = Field(default=0, ge=0)
    job_count: int = Field(default=0, ge=0)


class DocumentEmbeddingStatus(BaseModel):
    """Per-document roll-up of embedding job states."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    total: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0

    @property
    def ready(self) -> bool:
        """``True`` once every chunk of the document has a stored embedding."""
        return self.total > 0 and self.completed == self.total
