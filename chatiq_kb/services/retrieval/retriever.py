"""Conversation-aware retrieval of grounding chunks.

Each turn blends two sources of context:

* **pinned** chunks -- what the conversation's previous turns surfaced, in
  pin order, so the model keeps seeing what it already cited;
* **retrieved** chunks -- fresh nearest-neighbour matches for the query.

The index is asked for ``min(top_k * 4, 200)`` candidates.  Each candidate
is scored by similarity plus a small bonus when its language is one the
reader prefers (+0.02 for the first preference, +0.01 for the second).
Selection then walks the candidates by score and keeps one chunk per
document, also skipping a second member of a translation group.  Anything
skipped goes to a secondary list used to fill up to ``top_k`` documents
when the primary pass runs short.  Documents already represented by a pin
never contribute a retrieved chunk.

Similarity search is the only part allowed to fail quietly: if the query
cannot be embedded or searched, the turn gets its pinned chunks alone.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Iterable

import structlog

from chatiq_kb.models.document import Chunk, LanguageDetection
from chatiq_kb.models.retrieval import (
    ChunkMetadata,
    ChunkSource,
    RetrievedChunk,
    RetrieveResult,
    SearchMatch,
)
from chatiq_kb.providers.language.langdetect_detector import normalize_language_tag
from chatiq_kb.utils.errors import ConfigurationError, StorageError

if TYPE_CHECKING:
    from chatiq_kb.interfaces.embedding_provider import IEmbeddingProvider
    from chatiq_kb.interfaces.knowledge_store import IKnowledgeStore
    from chatiq_kb.interfaces.language_detector import ILanguageDetector
    from chatiq_kb.interfaces.vector_search_provider import IVectorSearchProvider

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_TOP_K = 12
MAX_CANDIDATES = 200
CANDIDATE_MULTIPLIER = 4
LANGUAGE_BONUS = (0.02, 0.01)
MIN_QUERY_CONFIDENCE = 0.6
FALLBACK_LANGUAGE = "en"


def candidate_limit(top_k: int) -> int:
    """Number of matches to request from the index for *top_k* results."""
    return min(max(top_k * CANDIDATE_MULTIPLIER, top_k), MAX_CANDIDATES)


def resolve_preferred_languages(
    explicit: Iterable[str] | None, detection: LanguageDetection
) -> list[str]:
    """Explicit preferences win; else a confident query language, then English."""
    preferred = [normalize_language_tag(tag) for tag in explicit or () if tag and tag.strip()]
    if not preferred:
        if detection.language and (detection.confidence or 0.0) >= MIN_QUERY_CONFIDENCE:
            preferred = [normalize_language_tag(detection.language), FALLBACK_LANGUAGE]
        else:
            preferred = [FALLBACK_LANGUAGE]
    return _dedupe(preferred)


def language_bonus(language: str | None, preferred: list[str]) -> float:
    if not language:
        return 0.0
    tag = normalize_language_tag(language)
    if tag not in preferred:
        return 0.0
    rank = preferred.index(tag)
    return LANGUAGE_BONUS[rank] if rank < len(LANGUAGE_BONUS) else 0.0


def select_matches(
    matches: list[SearchMatch],
    preferred: list[str],
    top_k: int,
    seen_documents: Iterable[str] = (),
    seen_groups: Iterable[str] = (),
) -> list[SearchMatch]:
    """Pick up to *top_k* matches from distinct documents, best score first.

    A match whose document or translation group was already taken goes to
    a secondary list.  If fewer than *top_k* documents were found, the
    secondary list fills the gap with matches from documents still unseen;
    translation groups are not enforced in that pass.
    """
    # Stable: equal scores keep the index's return order.
    ranked = sorted(
        matches, key=lambda m: -(m.similarity + language_bonus(m.language, preferred))
    )
    documents = set(seen_documents)
    groups = set(seen_groups)
    selected: list[SearchMatch] = []
    secondary: list[SearchMatch] = []

    for match in ranked:
        if len(selected) >= top_k:
            break
        group = match.metadata.translation_group_id
        if match.document_id in documents or (group and group in groups):
            secondary.append(match)
            continue
        selected.append(match)
        documents.add(match.document_id)
        if group:
            groups.add(group)

    for match in secondary:
        if len(selected) >= top_k:
            break
        if match.document_id in documents:
            continue
        selected.append(match)
        documents.add(match.document_id)

    return selected


def merge_chunks(
    pinned: list[RetrievedChunk], retrieved: list[RetrievedChunk]
) -> list[RetrievedChunk]:
    """Pinned chunks first, then retrieved chunks from not-yet-seen documents."""
    merged = list(pinned)
    seen_documents = {chunk.document_id for chunk in pinned}
    for chunk in retrieved:
        if chunk.document_id in seen_documents:
            continue
        seen_documents.add(chunk.document_id)
        merged.append(chunk)
    return merged


def _dedupe(ids: list[str]) -> list[str]:
    return list(dict.fromkeys(ids))


def _pinned_chunk(chunk: Chunk, metadata: ChunkMetadata) -> RetrievedChunk:
    return RetrievedChunk(
        chunk_id=chunk.chunk_id,
        document_id=chunk.document_id,
        text=chunk.text,
        source=ChunkSource.PINNED,
        language=chunk.language,
        metadata=metadata,
    )


def _retrieved_chunk(match: SearchMatch) -> RetrievedChunk:
    return RetrievedChunk(
        chunk_id=match.chunk_id,
        document_id=match.document_id,
        text=match.text,
        source=ChunkSource.RETRIEVED,
        language=match.language,
        similarity=match.similarity,
        metadata=match.metadata,
    )


class Retriever:
    """Builds the grounding context for one conversational turn.

    Parameters
    ----------
    store:
        Source of pinned chunk ids and pinned chunk text.
    embedding_provider:
        Must be the provider (and model) used for chunk embeddings.
        ``None`` makes :meth:`retrieve` raise :class:`ConfigurationError`.
    vector_search:
        Nearest-neighbour index scoped by tenant and bot.
    top_k:
        Maximum number of distinct documents contributed by search.
    language_detector:
        Detects the query language when the caller states no preference.
        Without one, English is preferred.
    """

    def __init__(
        self,
        store: IKnowledgeStore,
        embedding_provider: IEmbeddingProvider | None,
        vector_search: IVectorSearchProvider,
        top_k: int = DEFAULT_TOP_K,
        language_detector: ILanguageDetector | None = None,
    ) -> None:
        self._store = store
        self._embedding_provider = embedding_provider
        self._vector_search = vector_search
        self._top_k = top_k
        self._language_detector = language_detector

    async def retrieve(
        self,
        tenant_id: str,
        bot_id: str,
        conversation_id: str | None,
        query_text: str,
        preferred_languages: list[str] | None = None,
    ) -> RetrieveResult:
        """Return merged chunks and the conversation's updated pin list.

        The new pin list is the ids of the merged chunks, pinned first.
        Never raises for search or query-embedding failures; those degrade
        to the pinned chunks alone and leave the stored pin list untouched.
        A blank query returns an empty result without reading or writing
        any pins.

        Raises
        ------
        ConfigurationError
            If no embedding provider is configured.
        """
        if self._embedding_provider is None:
            raise ConfigurationError(
                message="No embedding provider configured (set OPENAI_API_KEY)"
            )

        query = (query_text or "").strip()
        if not query:
            return RetrieveResult()

        log = logger.bind(tenant_id=tenant_id, bot_id=bot_id, conversation_id=conversation_id)

        pinned_ids: list[str] = []
        pins_loaded = conversation_id is not None
        if conversation_id is not None:
            try:
                pinned_ids = await self._store.get_pinned_chunk_ids(conversation_id)
            except StorageError as exc:
                log.warning("pinned_chunk_ids_load_failed", error=str(exc))
                pins_loaded = False

        pinned = await self._load_pinned_chunks(tenant_id, pinned_ids, log)

        preferred = resolve_preferred_languages(
            preferred_languages,
            await self._detect_query_language(query, preferred_languages, log),
        )

        try:
            query_vector = await self._embedding_provider.embed_single(query)
            matches = await self._vector_search.search(
                tenant_id, bot_id, query_vector, candidate_limit(self._top_k)
            )
        except Exception as exc:  # noqa: BLE001 -- search failures degrade to pinned only
            log.warning("retrieval_search_failed", error=str(exc), pinned=len(pinned))
            return RetrieveResult(chunks=pinned, pinned_chunk_ids=pinned_ids)

        selected = select_matches(
            matches,
            preferred,
            self._top_k,
            seen_documents=[c.document_id for c in pinned],
            seen_groups=[
                c.metadata.translation_group_id
                for c in pinned
                if c.metadata.translation_group_id
            ],
        )
        merged = merge_chunks(pinned, [_retrieved_chunk(m) for m in selected])

        next_pinned_ids = _dedupe([c.chunk_id for c in merged])
        if pins_loaded:
            try:
                await self._store.set_pinned_chunk_ids(
                    conversation_id, next_pinned_ids, tenant_id=tenant_id, bot_id=bot_id
                )
            except StorageError as exc:
                log.warning("pinned_chunk_ids_save_failed", error=str(exc))

        log.info(
            "retrieval_complete",
            pinned=len(pinned),
            matches=len(matches),
            returned=len(merged),
            preferred_languages=preferred,
            preferred_language_hit=any(
                c.language and normalize_language_tag(c.language) == preferred[0]
                for c in merged
                if c.source is ChunkSource.RETRIEVED
            ),
        )
        return RetrieveResult(chunks=merged, pinned_chunk_ids=next_pinned_ids)

    async def _detect_query_language(
        self,
        query: str,
        preferred_languages: list[str] | None,
        log: structlog.BoundLogger,
    ) -> LanguageDetection:
        if preferred_languages or self._language_detector is None:
            return LanguageDetection()
        try:
            return await asyncio.to_thread(self._language_detector.detect, query)
        except Exception as exc:  # noqa: BLE001 -- preference falls back to English
            log.warning("query_language_detection_failed", error=str(exc))
            return LanguageDetection()

    async def _load_pinned_chunks(
        self, tenant_id: str, chunk_ids: list[str], log: structlog.BoundLogger
    ) -> list[RetrievedChunk]:
        """Fetch pinned chunks in pin order; ids that no longer resolve are skipped."""
        if not chunk_ids:
            return []
        try:
            rows = await self._store.fetch_chunks_with_metadata(tenant_id, chunk_ids)
        except StorageError as exc:
            log.warning("pinned_chunks_fetch_failed", error=str(exc))
            return []
        by_id = {chunk.chunk_id: _pinned_chunk(chunk, meta) for chunk, meta in rows}
        return [by_id[cid] for cid in _dedupe(chunk_ids) if cid in by_id]
