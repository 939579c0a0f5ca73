#!/usr/bin/env python3
"""
Granular vs Aggregate Totals

Prints per-date differences between summed granular rows and the stored
date-only totals for one tenant. Read-only.

Usage:
    python scripts/compare_totals.py --tenant 1 --provider gsc --start 2024-06-01 --end 2024-06-30
"""
import sys
import argparse
from datetime import date
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from metricsync.services.reconciliation import compare_totals, summarize


def main(tenant_id: int, provider: str, start: date, end: date) -> int:
    differences = compare_totals(tenant_id, provider, start, end)
    if not differences:
        print(f"No {provider} data for tenant {tenant_id} between {start} and {end}")
        return 1

    print(f"\n{'date':<12}{'metric':<14}{'granular':>14}{'aggregate':>14}{'diff':>12}{'%':>8}")
    print("-" * 74)
    for item in differences:
        print(
            f"{item.date.isoformat():<12}{item.metric:<14}{item.granular:>14,.0f}"
            f"{item.aggregate:>14,.0f}{item.difference:>12,.0f}{item.percent:>8.2f}"
        )

    print(f"\n{'='*60}")
    for metric, totals in summarize(differences).items():
        print(
            f"{metric}: granular {totals['granular']:,.0f} vs aggregate {totals['aggregate']:,.0f} "
            f"({totals['percent']:.2f}% not attributed to a dimension row)"
        )
    print(f"{'='*60}\n")
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Compare granular sums with date-only totals")
    parser.add_argument("--tenant", type=int, required=True, help="Tenant id")
    parser.add_argument("--provider", required=True, choices=["gsc", "ga4"])
    parser.add_argument("--start", type=date.fromisoformat, required=True)
    parser.add_argument("--end", type=date.fromisoformat, required=True)
    args = parser.parse_args()

    sys.exit(main(args.tenant, args.provider, args.start, args.end))
