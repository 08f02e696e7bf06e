"""Relational store providers."""

from chatiq_kb.providers.store.sqlite_knowledge_store import SQLiteKnowledgeStore

__all__ = ["SQLiteKnowledgeStore"]
