"""Retrieval models: search matches, merged chunks, and results.

A :class:`RetrievedChunk` is what the downstream generation step consumes.
Its ``source`` says whether it was carried over from the conversation's
pin set (``pinned``) or freshly matched by similarity search
(``retrieved``).  Citation details sourced from the parent document travel
in a typed :class:`ChunkMetadata` rather than a free-form dict so the
merge/dedupe logic stays type-safe.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ChunkSource(str, Enum):
    PINNED = "pinned"
    RETRIEVED = "retrieved"


class ChunkMetadata(BaseModel):
    """Optional citation metadata joined from the chunk's document."""

    model_config = ConfigDict(frozen=True)

    anchor_id: str | None = None
    canonical_url: str | None = None
    translation_group_id: str | None = None


class SearchMatch(BaseModel):
    """One nearest-neighbour hit from the vector search provider."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    document_id: str
    text: str
    similarity: float
    language: str | None = Field(
        default=None, description="Chunk language, falling back to the document's."
    )
    metadata: ChunkMetadata = Field(default_factory=ChunkMetadata)


class RetrievedChunk(BaseModel):
    """A chunk selected as grounding context for a conversational turn."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    document_id: str
    text: str
    source: ChunkSource
    language: str | None = None
    similarity: float | None = Field(
        default=None, description="Search similarity; None for pinned chunks."
    )
    metadata: ChunkMetadata = Field(default_factory=ChunkMetadata)


class RetrieveResult(BaseModel):
    """Merged, document-deduplicated chunks plus the updated pin set."""

    model_config = ConfigDict(frozen=True)

    chunks: list[RetrievedChunk] = Field(default_factory=list)
    pinned_chunk_ids: list[str] = Field(default_factory=list)
