#!/usr/bin/env python3
"""
Follow-up Progress Sync

Re-derives the status of every convert that is not Completed or Unreachable,
so that converts whose visits became overdue since their last update move to
Inactive (and back to Active once caught up). Meant to be run by cron.

Usage:
    python scripts/sync_progress.py
    python scripts/sync_progress.py --dry-run
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Add parent directory to path to import modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from services.lifecycle_service import ConvertLifecycleEngine, ReconciliationResult


def print_summary(result: ReconciliationResult) -> None:
    print("=" * 50)
    print("FOLLOW-UP SYNC" + (" (DRY RUN)" if result.dry_run else ""))
    print("=" * 50)
    print(f"Converts scanned:          {result.scanned_count}")
    label = "Would update:" if result.dry_run else "Updated:"
    print(f"{label:<27}{result.updated_count}")
    print(f"Failed:                    {len(result.failures)}")
    print("=" * 50)

    if result.failures:
        print("\nFailures:")
        print("-" * 50)
        for failure in result.failures:
            print(f"{failure.convert_id}: {failure.error}")
        print("-" * 50)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Re-derive convert statuses from visit progress.")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report how many converts would change without writing anything",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log each status change",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        engine = ConvertLifecycleEngine()
        result = engine.run_reconciliation(dry_run=args.dry_run)
    except (RuntimeError, ValueError) as e:
        print(f"Error syncing converts: {e}", file=sys.stderr)
        return 1

    print_summary(result)
    return 0 if result.succeeded else 1


if __name__ == "__main__":
    sys.exit(main())
