"""Operational commands for the generation pipeline.

Usage:
    python -m swapmylook.cli <command> [OPTIONS]

Examples:
    # Run a standalone generation worker (API started with RUN_WORKER_IN_APP=false)
    python -m swapmylook.cli worker

    # Print work queue counts
    python -m swapmylook.cli queue-stats

    # Delete webhook receipts older than 60 days
    python -m swapmylook.cli prune-receipts --days 60

    # Verbose logging
    python -m swapmylook.cli -v queue-stats
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace
from datetime import timedelta

import structlog

from swapmylook.core import timezone  # noqa: F401
from swapmylook.core.config import Settings, configure_logging
from swapmylook.core.database import setup_db_session
from swapmylook.core.timezone import utc_now
from swapmylook.services.storage.s3_client import create_object_storage
from swapmylook.uow import create_uow_factory
from swapmylook.workers.generation_worker import make_worker_id, run_generation_worker

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(description="SwapMyLook generation pipeline operations")

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    worker = subparsers.add_parser("worker", help="Run a generation worker until interrupted")
    worker.add_argument("--worker-id", help="Lease owner id (default: host-pid-random)")

    subparsers.add_parser("queue-stats", help="Print work queue and job status counts")

    prune = subparsers.add_parser("prune-receipts", help="Delete old webhook receipts")
    prune.add_argument(
        "--days",
        type=int,
        default=30,
        help="Delete receipts older than this many days (default: 30)",
    )

    return parser.parse_args(argv)


async def run_worker(settings: Settings, worker_id: str | None) -> int:
    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    storage = create_object_storage(settings)
    await run_generation_worker(session_factory, settings, storage, worker_id or make_worker_id())
    return 0


async def print_queue_stats(settings: Settings) -> int:
    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    async with await uow_factory() as uow:
        stats = await uow.work_queue.stats()
        job_counts = await uow.jobs.count_by_status()

    print("\n" + "=" * 60)
    print("Work Queue")
    print("=" * 60)
    print(f"Items in queue: {stats.depth}")
    print(f"Leased (in progress): {stats.leased}")
    print(f"Waiting out retry backoff: {stats.delayed}")
    print("\nJobs by status:")
    for job_status, count in sorted(job_counts.items()):
        print(f"  {job_status}: {count}")
    print("=" * 60 + "\n")
    return 0


async def prune_receipts(settings: Settings, days: int) -> int:
    if days < 1:
        print("Error: --days must be at least 1", file=sys.stderr)
        return 1

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    cutoff = utc_now() - timedelta(days=days)
    async with await uow_factory() as uow:
        deleted = await uow.webhook_receipts.prune_older_than(cutoff)

    logger.info("cli.receipts_pruned", deleted=deleted, cutoff=cutoff.isoformat())
    print(f"Deleted {deleted} webhook receipt(s) older than {days} day(s)")
    return 0


async def async_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error), 130 (interrupted)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    logger.info("cli.started", command=args.command)

    try:
        if args.command == "worker":
            return await run_worker(settings, args.worker_id)
        if args.command == "queue-stats":
            return await print_queue_stats(settings)
        return await prune_receipts(settings, args.days)

    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("cli.interrupted", command=args.command)
        print("\nInterrupted by user", file=sys.stderr)
        return 130

    except Exception as e:
        logger.error(
            "cli.unexpected_error",
            command=args.command,
            error=str(e),
            error_type=type(e).__name__,
        )
        print(f"\nUnexpected error: {e}", file=sys.stderr)
        return 1


def main(argv: list[str] | None = None) -> int:
    """Synchronous entry point for CLI."""
    try:
        return asyncio.run(async_main(argv))
    except KeyboardInterrupt:
        return 130
