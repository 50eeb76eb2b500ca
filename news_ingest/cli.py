"""Command line entry point: ``python -m news_ingest.cli sync``."""

from __future__ import annotations

import argparse
import asyncio
import sys
import time
from typing import Optional

from news_ingest.core.cache import TTLCache
from news_ingest.core.config import Settings, get_settings, validate_env_cli
from news_ingest.core.logging import configure_logging
from news_ingest.core.scheduler import NewsSyncScheduler
from news_ingest.db.session import dispose_engine, get_sessionmaker, init_db
from news_ingest.models import BackfillResult, SyncOptions, SyncRunResult
from news_ingest.services.ingest_service import build_ingestion_service


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync configured RSS/Atom sources into the article store.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync = subparsers.add_parser("sync", help="Run one sync across the configured sources")
    sync.add_argument("--source-id", help="Only sync the source with this id")
    sync.add_argument("--max-articles", type=int, help="Override the per-source item cap")
    sync.add_argument("--max-sources", type=int, help="Only process the first N configured sources")
    sync.add_argument("--no-full-text", action="store_true", help="Skip article page hydration")
    sync.add_argument(
        "--budget-seconds",
        type=float,
        help="Wall-clock budget; sources not started before it runs out are skipped",
    )
    sync.add_argument("--schedule", default="manual", help="Schedule label stored with the run record")

    serve = subparsers.add_parser("serve", help="Run the interval scheduler until interrupted")
    serve.add_argument("--run-now", action="store_true", help="Start with one immediate run")

    backfill = subparsers.add_parser(
        "backfill-full-text", help="Fetch full text for stored articles that do not have it yet"
    )
    backfill.add_argument("--source-id", help="Only backfill articles stored for this source id")
    backfill.add_argument("--limit", type=int, help="Process at most N articles, first seen first")

    subparsers.add_parser("check-config", help="Validate environment configuration")
    return parser.parse_args(argv)


def _build_options(args: argparse.Namespace, settings: Settings) -> SyncOptions:
    overrides = {"schedule": args.schedule}
    if args.max_articles is not None:
        overrides["max_articles_per_source"] = args.max_articles
    if args.max_sources is not None:
        overrides["max_sources_per_run"] = args.max_sources
    if args.no_full_text:
        overrides["fetch_full_text"] = False
    if args.budget_seconds is not None:
        overrides["deadline_ms"] = int(time.time() * 1000 + args.budget_seconds * 1000)
    return SyncOptions.from_settings(settings, **overrides)


def _print_result(result: SyncRunResult) -> None:
    print(f"Run {result.run_id} finished in {result.duration_ms} ms")
    for source in result.source_results:
        line = (
            f"  [{source.status}] {source.source_id}: fetched={source.fetched_count} "
            f"inserted={source.inserted_count} updated={source.updated_count} "
            f"unchanged={source.unchanged_count}"
        )
        if source.error_message:
            line += f" ({source.error_message})"
        print(line)
    print(
        f"Totals: fetched={result.total_fetched_count} inserted={result.total_inserted_count} "
        f"updated={result.total_updated_count} unchanged={result.total_unchanged_count}"
    )


async def run_sync(args: argparse.Namespace) -> int:
    settings = get_settings()
    configure_logging(settings.log_level, json_format=settings.log_json)
    await init_db()
    try:
        service = build_ingestion_service(
            settings,
            session_factory=get_sessionmaker(),
            source_id=args.source_id,
        )
        result = await service.sync_all_sources(_build_options(args, settings))
    finally:
        await dispose_engine()

    _print_result(result)
    return 1 if any(source.status == "error" for source in result.source_results) else 0


def _print_backfill(result: BackfillResult) -> None:
    print(
        f"Backfill complete: candidates={result.candidate_count} ready={result.ready_count} "
        f"failed={result.failed_count} skipped={result.skipped_count}"
    )


async def run_backfill(args: argparse.Namespace) -> int:
    settings = get_settings()
    configure_logging(settings.log_level, json_format=settings.log_json)
    await init_db()
    try:
        # every configured source; the id only filters stored articles
        service = build_ingestion_service(settings, session_factory=get_sessionmaker())
        result = await service.backfill_full_text(
            SyncOptions.from_settings(settings),
            source_id=args.source_id,
            limit=args.limit,
        )
    finally:
        await dispose_engine()

    _print_backfill(result)
    return 1 if result.failed_count else 0


async def run_scheduler(args: argparse.Namespace) -> int:
    settings = get_settings()
    configure_logging(settings.log_level, json_format=settings.log_json)
    await init_db()
    scheduler = NewsSyncScheduler(settings, cache=TTLCache(settings.news_cache_ttl_seconds))
    scheduler.start()
    try:
        if args.run_now:
            await scheduler.run_sync_now()
        await asyncio.Event().wait()
    finally:
        scheduler.shutdown()
        await dispose_engine()
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    if args.command == "check-config":
        validate_env_cli()
        return 0
    try:
        if args.command == "serve":
            return asyncio.run(run_scheduler(args))
        if args.command == "backfill-full-text":
            return asyncio.run(run_backfill(args))
        return asyncio.run(run_sync(args))
    except KeyboardInterrupt:
        return 0
    except ValueError as exc:
        # Bad source id or sources file
        print(f"✗ {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
