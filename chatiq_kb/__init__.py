"""Multi-tenant document ingestion and retrieval pipeline.

Documents are split into overlapping chunks, embedded asynchronously by a
pool of queue workers (with a content-addressed cache), and served back as
grounding context for conversational turns.
"""

__version__ = "0.1.0"
