"""Conversation-aware retrieval."""

from chatiq_kb.services.retrieval.retriever import DEFAULT_TOP_K, Retriever, merge_chunks

__all__ = ["DEFAULT_TOP_K", "Retriever", "merge_chunks"]
