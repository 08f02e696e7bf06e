"""Business logic: ingestion, embedding jobs, and retrieval."""
