"""Document ingestion: chunking, hashing, and the ingestion orchestrator."""

from chatiq_kb.services.ingestion.chunker import TextChunker
from chatiq_kb.services.ingestion.hasher import content_hash
from chatiq_kb.services.ingestion.ingestion_service import IngestionService

__all__ = ["IngestionService", "TextChunker", "content_hash"]
