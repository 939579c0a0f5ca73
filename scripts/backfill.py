#!/usr/bin/env python3
"""
Historical Backfill Script

Backfills Search Console or GA4 data for one tenant over an explicit range,
in the same granular + aggregate passes as the daily run.

Usage:
    python scripts/backfill.py --tenant 1 --provider gsc --start 2024-01-01 --end 2024-06-30 [--dry-run]

Examples:
    # Preview six months of Search Console data without writing
    python scripts/backfill.py --tenant 1 --provider gsc --start 2024-01-01 --end 2024-06-30 --dry-run

    # GA4 backfill with 3-day granular chunks for very busy properties
    python scripts/backfill.py --tenant 1 --provider ga4 --start 2024-01-01 --end 2024-03-31 --chunk-days 3
"""
import asyncio
import sys
import argparse
from datetime import date
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from metricsync.config import get_settings
from metricsync.models.base import init_db
from metricsync.services.backfill import BackfillRunner
from metricsync.services.metric_sync import build_sync_service
from metricsync.utils.logger import log


async def backfill(
    tenant_id: int,
    provider: str,
    start: date,
    end: date,
    dry_run: bool = False,
    chunk_days: int = None,
    aggregate_chunk_days: int = None
) -> int:
    """Run one backfill and print a summary. Returns a process exit code."""
    settings = get_settings()
    settings.require_oauth_client()
    init_db()

    runner = BackfillRunner(build_sync_service(settings), settings=settings)

    print(f"\n{'='*60}")
    print(f"Historical Backfill")
    print(f"{'='*60}")
    print(f"Tenant: {tenant_id}")
    print(f"Provider: {provider}")
    print(f"Date range: {start} to {end}")
    print(f"Granular chunk: {chunk_days or settings.granular_chunk_days} days")
    print(f"Aggregate chunk: {aggregate_chunk_days or settings.aggregate_chunk_days} days")
    if dry_run:
        print(f"MODE: DRY RUN (no data will be saved)")
    print(f"{'='*60}\n")

    result = await runner.run(
        tenant_id, provider, start, end,
        dry_run=dry_run,
        chunk_days=chunk_days,
        aggregate_chunk_days=aggregate_chunk_days,
    )

    print(f"\n{'='*60}")
    print(f"Backfill {result.status.value.upper()} ({result.state.value})")
    print(f"{'='*60}")
    if result.skip_reason:
        print(f"Skipped: {result.skip_reason.value}")
    print(f"Binding: {result.binding}")
    for name, stats in (("Granular", result.granular), ("Aggregate", result.aggregate)):
        print(f"\n{name}:")
        print(f"  Chunks: {stats.chunks} ({stats.chunks_failed} failed, {stats.chunks_truncated} truncated)")
        print(f"  Rows fetched: {stats.rows_fetched:,}")
        print(f"  Rows written: {stats.rows_written:,}")
        for sample in stats.to_dict()["samples"]:
            print(f"  Sample: {sample}")
    if result.last_error:
        print(f"\nLast error: {result.last_error}")
    print(f"\nDuration: {result.duration_seconds:.1f}s")
    print(f"{'='*60}\n")

    return 0 if result.status.value in ("success", "skipped") else 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Backfill historical metrics for one tenant",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--tenant", type=int, required=True, help="Tenant id")
    parser.add_argument("--provider", required=True, choices=["gsc", "ga4"], help="Provider to backfill")
    parser.add_argument("--start", type=date.fromisoformat, required=True, help="First day (YYYY-MM-DD)")
    parser.add_argument("--end", type=date.fromisoformat, required=True, help="Last day (YYYY-MM-DD)")
    parser.add_argument("--dry-run", action="store_true", help="Fetch and count only, write nothing")
    parser.add_argument("--chunk-days", type=int, default=None, help="Granular chunk size in days")
    parser.add_argument("--aggregate-chunk-days", type=int, default=None, help="Aggregate chunk size in days")

    args = parser.parse_args()

    try:
        exit_code = asyncio.run(backfill(
            tenant_id=args.tenant,
            provider=args.provider,
            start=args.start,
            end=args.end,
            dry_run=args.dry_run,
            chunk_days=args.chunk_days,
            aggregate_chunk_days=args.aggregate_chunk_days,
        ))
    except ValueError as e:
        log.error(f"Invalid backfill arguments: {e}")
        exit_code = 2

    sys.exit(exit_code)
