"""Embedding provider implementations.

The same provider embeds chunks in the worker loop and queries in the
retriever, so both vector spaces always come from one model.
"""

from chatiq_kb.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

__all__ = ["OpenAIEmbeddingProvider"]
