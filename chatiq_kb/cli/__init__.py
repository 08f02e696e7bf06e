"""Command-line tools for operating the pipeline.

- ``python -m chatiq_kb.cli ingest`` -- register and ingest a text document
- ``python -m chatiq_kb.cli work`` -- run embedding workers (``--loop`` to poll)
- ``python -m chatiq_kb.cli retrieve`` -- run one retrieval turn
- ``python -m chatiq_kb.cli status`` / ``document-status`` / ``stale-jobs`` /
  ``retry-failed`` / ``cache-stats`` -- queue and cache operations
"""
