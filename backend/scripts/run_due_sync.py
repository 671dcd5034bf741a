#!/usr/bin/env python3
"""
Runs the daily due-account sweep once, outside the API process.

Usage:
  cd backend
  export DATABASE_URL="postgresql://..."   # or .env
  PYTHONPATH=. python scripts/run_due_sync.py

  Dry-run (list due accounts only):
  PYTHONPATH=. python scripts/run_due_sync.py --dry-run
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from datetime import timedelta

# Run from repo root or backend; ensure backend is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from billsync.core.config import get_settings
from billsync.core.dependencies import SessionLocal
from billsync.services.recurring_jobs import db_now, find_due_account_ids, sync_due_accounts_once


def main() -> None:
    parser = argparse.ArgumentParser(description="Sync every provider account whose next sync is due.")
    parser.add_argument("--dry-run", action="store_true", help="Only list the account ids that are due.")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    if SessionLocal is None:
        print("DATABASE_URL is not set.", file=sys.stderr)
        sys.exit(1)

    settings = get_settings()
    db = SessionLocal()
    try:
        if args.dry_run:
            now = db_now(settings)
            ids = find_due_account_ids(
                db,
                now=now,
                limit=settings.daily_sync_batch_size,
                stuck_before=now - timedelta(seconds=settings.sync_job_stale_after_seconds),
            )
            print(f"Due accounts: {len(ids)}")
            for account_id in ids:
                print(f"  {account_id}")
            return

        report = asyncio.run(sync_due_accounts_once(db, settings=settings))
        print(
            f"Processed {report.accounts_processed}: "
            f"{report.success_count} succeeded, {report.fail_count} failed."
        )
    finally:
        db.close()


if __name__ == "__main__":
    main()
