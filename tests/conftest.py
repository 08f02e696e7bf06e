"""Shared pytest fixtures for the chatiq-kb test suite."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
import structlog

from chatiq_kb.interfaces.embedding_provider import IEmbeddingProvider
from chatiq_kb.models.document import Document
from chatiq_kb.models.quota import PlanQuota
from chatiq_kb.providers.cache.memory_embedding_cache import MemoryEmbeddingCache
from chatiq_kb.providers.store.sqlite_knowledge_store import SQLiteKnowledgeStore
from chatiq_kb.utils.background import BackgroundEffects

# Loggers resolve sys.stdout on every call, so output captured by capsys in
# one test never leaves a closed stream behind for the next.
structlog.configure(cache_logger_on_first_use=False)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Path of a fresh SQLite file inside pytest's temp directory."""
    return tmp_path / "knowledge.db"


@pytest_asyncio.fixture
async def store(db_path: Path) -> SQLiteKnowledgeStore:
    """An initialized SQLiteKnowledgeStore backed by a temp file."""
    s = SQLiteKnowledgeStore(db_path=db_path)
    await s.initialize()
    return s


@pytest_asyncio.fixture
async def document(store: SQLiteKnowledgeStore) -> Document:
    """A registered document for tenant ``team-1`` / bot ``bot-1``."""
    return await store.upsert_document(
        Document(
            document_id="doc-1",
            tenant_id="team-1",
            bot_id="bot-1",
            title="Handbook",
            canonical_url="https://example.com/handbook",
        )
    )


@pytest.fixture
def background() -> BackgroundEffects:
    return BackgroundEffects()


@pytest.fixture
def memory_cache() -> MemoryEmbeddingCache:
    return MemoryEmbeddingCache(max_size=100)


@pytest.fixture
def mock_embedding_provider() -> MagicMock:
    """A mock IEmbeddingProvider returning a fixed 3-dim vector."""
    provider = MagicMock(spec=IEmbeddingProvider)
    provider.embed_single = AsyncMock(return_value=[0.1, 0.2, 0.3])
    provider.embed = AsyncMock(return_value=[[0.1, 0.2, 0.3]])
    provider.get_dimension.return_value = 3
    provider.get_provider_name.return_value = "mock_embedding"
    provider.is_available.return_value = True
    return provider


@pytest.fixture
def plan_quotas() -> dict[str, PlanQuota]:
    return {
        "free": PlanQuota(documents=1, embeddings=5, warning_ratio=0.8),
        "pro": PlanQuota(documents=50, embeddings=10_000, warning_ratio=0.8),
        "enterprise": PlanQuota(documents=None, embeddings=None, warning_ratio=1.0),
    }
