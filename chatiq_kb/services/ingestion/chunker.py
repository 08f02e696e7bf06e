"""Sliding-window text chunking over whitespace-delimited words.

Splits document text into :class:`~chatiq_kb.models.document.ChunkDraft`
objects of up to 600 words, with 120 words shared between consecutive
chunks so a sentence straddling a boundary is fully contained in at least
one of them.

A "word" is any run of non-whitespace characters; no NLP tokenizer is
involved.  Each chunk is the original substring from its first word to its
last word (plus the single whitespace run that follows it), stripped, so
the source spacing and line breaks inside a chunk are preserved.
"""

from __future__ import annotations

import re

import structlog

from chatiq_kb.models.document import ChunkDraft

logger = structlog.get_logger(logger_name=__name__)

_PART_RE = re.compile(r"\S+|\s+")


class TextChunker:
    """Splits text into overlapping word windows.

    Parameters
    ----------
    chunk_size:
        Maximum number of words per chunk (default 600).
    overlap:
        Number of words shared by consecutive chunks (default 120).
    """

    def __init__(self, chunk_size: int = 600, overlap: int = 120) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        if overlap < 0:
            raise ValueError("overlap must not be negative")
        self._chunk_size = chunk_size
        self._overlap = overlap

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def overlap(self) -> int:
        return self._overlap

    @property
    def stride(self) -> int:
        return max(1, self._chunk_size - self._overlap)

    def chunk(self, text: str) -> list[ChunkDraft]:
        """Split *text* into ordered chunks with gapless 0-based indices.

        Empty or whitespace-only input yields an empty list.  The last
        window always ends on the final word; once it does, chunking stops.
        """
        normalized = (text or "").strip()
        if not normalized:
            return []

        parts = _PART_RE.findall(normalized)
        word_positions = [i for i, part in enumerate(parts) if not part.isspace()]
        if not word_positions:
            return []

        word_count = len(word_positions)
        chunks: list[ChunkDraft] = []
        start_word = 0

        while start_word < word_count:
            end_word = min(start_word + self._chunk_size, word_count) - 1
            start_part = word_positions[start_word]
            end_part = word_positions[end_word]

            # Keep the whitespace run right after the window's last word.
            if end_part + 1 < len(parts) and parts[end_part + 1].isspace():
                end_part += 1

            chunk_text = "".join(parts[start_part : end_part + 1]).strip()
            if chunk_text:
                chunks.append(ChunkDraft(index=len(chunks), text=chunk_text))

            if end_word >= word_count - 1:
                break
            start_word = max(end_word - self._overlap + 1, start_word + self.stride)

        logger.debug("text_chunked", words=word_count, chunks=len(chunks))
        return chunks
