"""Abstract base class for text-embedding service providers.

Defines the contract for turning text into fixed-length vectors.  The same
provider (and therefore the same model) is used for chunk embeddings in the
worker loop and for query embeddings in the retriever, so the two vector
spaces always match.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementation: OpenAIEmbeddingProvider (chatiq_kb/providers/embedding/)
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services used by the pipeline."""

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Returns
        -------
        list[list[float]]
            Vectors corresponding positionally to *texts*.

        Raises
        ------
        chatiq_kb.utils.errors.EmbeddingError
            If the API call fails (non-2xx) or the payload is malformed.
            A partial result is never returned.
        """

    @abstractmethod
    async def embed_single(self, text: str) -> list[float]:
        """Generate the embedding vector for one text (a chunk or a query)."""

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the dimensionality of the embedding vectors."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"openai_embedding"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured (credentials present)."""
