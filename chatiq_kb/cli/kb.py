"""Operator CLI for the knowledge-base pipeline.

Usage::

    python -m chatiq_kb.cli ingest --document-id doc-1 --tenant team-1 \\
        --bot bot-1 --file handbook.txt --plan pro

    python -m chatiq_kb.cli work --batch-size 20
    python -m chatiq_kb.cli work --loop

    python -m chatiq_kb.cli retrieve --tenant team-1 --bot bot-1 \\
        --conversation conv-1 --query "How do refunds work?"

    python -m chatiq_kb.cli status --tenant team-1
    python -m chatiq_kb.cli retry-failed --tenant team-1
    python -m chatiq_kb.cli stale-jobs --requeue

No extra dependencies beyond the core project requirements.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any

from chatiq_kb.config.settings import Settings
from chatiq_kb.models.document import Document
from chatiq_kb.utils.errors import ChatIQError, ConfigurationError, QuotaExceededError
from chatiq_kb.utils.logging import configure_logging


def _build(app_settings: Settings) -> dict[str, Any]:
    # Deferred so ``--help`` stays fast.
    from chatiq_kb.main import build_components

    return build_components(custom_settings=app_settings)


def _require_embedding_provider(components: dict[str, Any]) -> None:
    if components["embedding_provider"] is None:
        raise ConfigurationError(
            message="No embedding provider configured; set OPENAI_API_KEY to embed or retrieve"
        )


# ---------------------------------------------------------------------------
# Subcommand handlers
# ---------------------------------------------------------------------------


async def _handle_ingest(args: argparse.Namespace, components: dict[str, Any]) -> int:
    """Register (or update) a document record, then ingest a text file."""
    path = Path(args.file)
    if not path.is_file():
        print(f"Error: file not found: {path}", file=sys.stderr)
        return 1
    full_text = path.read_text(encoding="utf-8")

    store = components["store"]
    await store.upsert_document(
        Document(
            document_id=args.document_id,
            tenant_id=args.tenant,
            bot_id=args.bot,
            title=args.title or path.stem,
            canonical_url=args.url,
            language_override=args.language,
        )
    )

    print(f"Ingesting {path} as document {args.document_id} (plan: {args.plan})")
    try:
        result = await components["ingestion_service"].ingest(
            document_id=args.document_id,
            tenant_id=args.tenant,
            full_text=full_text,
            plan=args.plan,
        )
    except QuotaExceededError as exc:
        print(
            f"Quota exceeded for {exc.resource}: limit {exc.limit}, would use {exc.used}",
            file=sys.stderr,
        )
        return 2

    print("\nIngestion complete:")
    print(f"  Chunks created: {result.chunk_count}")
    print(f"  Jobs queued:    {result.job_count}")
    return 0


async def _handle_work(args: argparse.Namespace, components: dict[str, Any]) -> int:
    """Process embedding jobs once, or keep polling with ``--loop``."""
    _require_embedding_provider(components)
    worker = components["worker"]
    app_settings: Settings = components["settings"]
    batch_size = args.batch_size or app_settings.worker_batch_size

    if args.loop:
        stop_event = asyncio.Event()
        try:
            await worker.run_forever(
                batch_size=batch_size,
                poll_interval=app_settings.worker_poll_interval_seconds,
                stop_event=stop_event,
            )
        except (KeyboardInterrupt, asyncio.CancelledError):
            stop_event.set()
        return 0

    result = await worker.run_batch(batch_size)
    await components["background"].drain()

    print("Batch complete:")
    print(f"  Claimed:     {result.claimed}")
    print(f"  Completed:   {result.processed}")
    print(f"  Cache hits:  {result.cache_hits}")
    print(f"  Retried:     {result.retried}")
    print(f"  Failed:      {result.failed}")
    print(f"  Lost claims: {result.lost_claims}")
    return 0


async def _handle_retrieve(args: argparse.Namespace, components: dict[str, Any]) -> int:
    """Run one retrieval turn and print the merged chunks."""
    _require_embedding_provider(components)
    result = await components["retriever"].retrieve(
        tenant_id=args.tenant,
        bot_id=args.bot,
        conversation_id=args.conversation,
        query_text=args.query,
    )

    if not result.chunks:
        print("No chunks found.")
        return 0

    for i, chunk in enumerate(result.chunks, 1):
        score = f"{chunk.similarity:.3f}" if chunk.similarity is not None else "  -  "
        preview = chunk.text[:120].replace("\n", " ")
        print(f"{i:>3}. [{chunk.source.value:<9}] {score}  doc={chunk.document_id}")
        print(f"     {preview}")
        if chunk.metadata.canonical_url:
            print(f"     {chunk.metadata.canonical_url}")
    print(f"\nPinned chunk ids: {len(result.pinned_chunk_ids)}")
    return 0


async def _handle_status(args: argparse.Namespace, components: dict[str, Any]) -> int:
    """Display the embedding queue status for a tenant."""
    stats = await components["queue_monitor"].get_queue_stats(args.tenant)

    print(f"Embedding Queue ({args.tenant})")
    print("=" * 40)
    print(f"  Status:          {stats.status.value}")
    print(f"  Pending:         {stats.pending}")
    print(f"  Processing:      {stats.processing}")
    print(f"  Completed:       {stats.completed}")
    print(f"  Failed:          {stats.failed}")
    print(f"  Stuck:           {stats.stuck_jobs}")
    print(f"  Completed/hour:  {stats.processing_rate}")
    return 0


async def _handle_document_status(args: argparse.Namespace, components: dict[str, Any]) -> int:
    status = await components["queue_monitor"].get_document_status(args.document_id)
    print(f"Document {status.document_id}")
    print(f"  Chunks:     {status.total}")
    print(f"  Pending:    {status.pending}")
    print(f"  Processing: {status.processing}")
    print(f"  Completed:  {status.completed}")
    print(f"  Failed:     {status.failed}")
    print(f"  Ready:      {'yes' if status.ready else 'no'}")
    return 0


async def _handle_retry_failed(args: argparse.Namespace, components: dict[str, Any]) -> int:
    reset = await components["queue_monitor"].retry_failed_jobs(args.tenant, limit=args.limit)
    print(f"Reset {reset} failed job(s) to pending.")
    return 0


async def _handle_stale_jobs(args: argparse.Namespace, components: dict[str, Any]) -> int:
    """List jobs whose processing lock has gone stale; optionally requeue them."""
    monitor = components["queue_monitor"]
    jobs = await monitor.list_stale_jobs(tenant_id=args.tenant)
    if not jobs:
        print("No stale jobs.")
        return 0

    for job in jobs:
        locked_at = job.locked_at.isoformat() if job.locked_at else "?"
        print(f"  {job.job_id}  tenant={job.tenant_id}  by={job.locked_by}  since={locked_at}")

    if args.requeue:
        requeued = 0
        for job in jobs:
            requeued += int(await monitor.requeue_job(job.job_id))
        print(f"\nRequeued {requeued} of {len(jobs)} job(s).")
    return 0


async def _handle_cache_stats(args: argparse.Namespace, components: dict[str, Any]) -> int:
    stats = await components["cache"].get_stats(tenant_id=args.tenant)
    print("Embedding Cache")
    print("=" * 40)
    print(f"  Entries:      {stats.total_entries}")
    print(f"  Total usage:  {stats.total_usage_count}")
    if stats.oldest_entry:
        print(f"  Oldest entry: {stats.oldest_entry.isoformat()}")
    if stats.newest_entry:
        print(f"  Newest entry: {stats.newest_entry.isoformat()}")
    return 0


_HANDLERS = {
    "ingest": _handle_ingest,
    "work": _handle_work,
    "retrieve": _handle_retrieve,
    "status": _handle_status,
    "document-status": _handle_document_status,
    "retry-failed": _handle_retry_failed,
    "stale-jobs": _handle_stale_jobs,
    "cache-stats": _handle_cache_stats,
}


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the knowledge-base CLI."""
    parser = argparse.ArgumentParser(
        prog="python -m chatiq_kb.cli",
        description="Ingest documents, run embedding workers, and inspect the queue.",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # -- ingest --
    ingest_parser = subparsers.add_parser("ingest", help="Ingest a plain-text document")
    ingest_parser.add_argument("--document-id", required=True, help="Document identifier")
    ingest_parser.add_argument("--tenant", required=True, help="Owning tenant (team) id")
    ingest_parser.add_argument("--bot", required=True, help="Bot the document belongs to")
    ingest_parser.add_argument("--file", required=True, help="Path to a UTF-8 text file")
    ingest_parser.add_argument("--plan", default="free", help="Tenant plan for the quota check")
    ingest_parser.add_argument("--title", default=None, help="Document title (default: file name)")
    ingest_parser.add_argument("--url", default=None, help="Canonical source URL")
    ingest_parser.add_argument("--language", default=None, help="Manual language override")

    # -- work --
    work_parser = subparsers.add_parser("work", help="Process pending embedding jobs")
    work_parser.add_argument("--batch-size", type=int, default=None, help="Jobs per batch")
    work_parser.add_argument("--loop", action="store_true", help="Keep polling until interrupted")

    # -- retrieve --
    retrieve_parser = subparsers.add_parser("retrieve", help="Retrieve grounding chunks")
    retrieve_parser.add_argument("--tenant", required=True)
    retrieve_parser.add_argument("--bot", required=True)
    retrieve_parser.add_argument("--conversation", default=None, help="Conversation id for pins")
    retrieve_parser.add_argument("--query", required=True)

    # -- status --
    status_parser = subparsers.add_parser("status", help="Embedding queue status for a tenant")
    status_parser.add_argument("--tenant", required=True)

    # -- document-status --
    doc_parser = subparsers.add_parser("document-status", help="Embedding progress of a document")
    doc_parser.add_argument("--document-id", required=True)

    # -- retry-failed --
    retry_parser = subparsers.add_parser("retry-failed", help="Requeue failed jobs")
    retry_parser.add_argument("--tenant", required=True)
    retry_parser.add_argument("--limit", type=int, default=50)

    # -- stale-jobs --
    stale_parser = subparsers.add_parser("stale-jobs", help="List jobs with stale locks")
    stale_parser.add_argument("--tenant", default=None)
    stale_parser.add_argument("--requeue", action="store_true", help="Return them to pending")

    # -- cache-stats --
    cache_parser = subparsers.add_parser("cache-stats", help="Embedding cache statistics")
    cache_parser.add_argument("--tenant", default=None)

    return parser


async def _run(args: argparse.Namespace, app_settings: Settings) -> int:
    from chatiq_kb.main import initialize_components

    components = _build(app_settings)
    await initialize_components(components)
    return await _HANDLERS[args.command](args, components)


def main(argv: list[str] | None = None) -> int:
    """Parse arguments and dispatch to the appropriate handler."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    app_settings = Settings()
    configure_logging(
        log_level=app_settings.log_level,
        json_output=(app_settings.app_env == "production"),
    )

    try:
        return asyncio.run(_run(args, app_settings))
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130
    except ChatIQError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
