"""Flat cosine-similarity search over embeddings stored in SQLite.

Loads every stored vector for one tenant and bot, then ranks them with a
single numpy matrix product.  Exact, and adequate for knowledge bases of a
few hundred thousand chunks; a larger deployment swaps in an ANN index
behind the same :class:`IVectorSearchProvider` interface.
"""

from __future__ import annotations

import json
from pathlib import Path

import aiosqlite
import numpy as np
import structlog

from chatiq_kb.interfaces.vector_search_provider import IVectorSearchProvider
from chatiq_kb.models.retrieval import ChunkMetadata, SearchMatch
from chatiq_kb.utils.errors import VectorSearchError

logger = structlog.get_logger(logger_name=__name__)

_CANDIDATES_SQL = """\
SELECT e.chunk_id, e.vector, c.document_id, c.text, c.anchor_id, d.canonical_url,
       COALESCE(c.language, d.language), d.translation_group_id
FROM embeddings e
JOIN chunks c ON c.id = e.chunk_id
JOIN documents d ON d.id = c.document_id
WHERE e.tenant_id = ? AND c.tenant_id = ? AND d.bot_id = ?
ORDER BY c.document_id, c.idx;
"""


class SQLiteVectorSearchProvider(IVectorSearchProvider):
    """Exact nearest-neighbour search against the knowledge store's tables."""

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)

    async def search(
        self,
        tenant_id: str,
        bot_id: str,
        query_vector: list[float],
        top_k: int,
    ) -> list[SearchMatch]:
        if top_k <= 0 or not query_vector:
            return []

        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                cursor = await db.execute(_CANDIDATES_SQL, (tenant_id, tenant_id, bot_id))
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise VectorSearchError(
                message=f"candidate scan failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        query = np.asarray(query_vector, dtype=np.float32)
        query_norm = float(np.linalg.norm(query))
        if query_norm == 0.0:
            return []

        kept: list[tuple] = []
        vectors: list[list[float]] = []
        for row in rows:
            try:
                vector = json.loads(row[1])
            except ValueError:
                logger.warning("stored_vector_unparseable", chunk_id=row[0])
                continue
            if len(vector) != query.shape[0]:
                logger.warning(
                    "stored_vector_dimension_mismatch",
                    chunk_id=row[0],
                    expected=query.shape[0],
                    actual=len(vector),
                )
                continue
            kept.append(row)
            vectors.append(vector)

        if not vectors:
            return []

        matrix = np.asarray(vectors, dtype=np.float32)
        norms = np.linalg.norm(matrix, axis=1)
        norms[norms == 0.0] = 1.0
        similarities = (matrix @ query) / (norms * query_norm)

        # Stable sort keeps store order among equal scores.
        order = np.argsort(-similarities, kind="stable")[:top_k]
        matches = [
            SearchMatch(
                chunk_id=kept[i][0],
                document_id=kept[i][2],
                text=kept[i][3],
                similarity=float(similarities[i]),
                language=kept[i][6],
                metadata=ChunkMetadata(
                    anchor_id=kept[i][4],
                    canonical_url=kept[i][5],
                    translation_group_id=kept[i][7],
                ),
            )
            for i in order
        ]
        logger.debug(
            "vector_search_complete",
            tenant_id=tenant_id,
            bot_id=bot_id,
            candidates=len(vectors),
            returned=len(matches),
        )
        return matches

    def get_provider_name(self) -> str:
        return "sqlite_vector_search"
