"""Periodic compliance sweeps: expire overdue runs, regenerate recurring runs.

Meant to be run from cron once a day, e.g.:

    python run_compliance_sweeps.py --expire --recurrence
"""
import argparse
import logging
import os
import sys
from datetime import date

# Add the app to the path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from app.core.config import settings
from app.core.compliance_runs import expire_overdue_runs
from app.core.database import SessionLocal
from app.core.recurrence import process_recurring_runs
from app.services.directory import DatabaseDirectory
from app.services.notifications import LoggingNotificationDispatcher


def main() -> int:
    parser = argparse.ArgumentParser(description="Run compliance survey sweeps.")
    parser.add_argument("--expire", action="store_true", help="Expire active runs past their due date.")
    parser.add_argument("--recurrence", action="store_true", help="Create the next instance of due recurring runs.")
    parser.add_argument("--today", type=date.fromisoformat, default=None,
                        help="Override today's date (YYYY-MM-DD).")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not (args.expire or args.recurrence):
        parser.error("choose at least one of --expire / --recurrence")

    db = SessionLocal()
    exit_code = 0
    try:
        if args.recurrence:
            # Regenerate before expiring so a lapsed period still gets its successor
            result = process_recurring_runs(
                db, DatabaseDirectory(db), LoggingNotificationDispatcher(), today=args.today
            )
            print(f"Recurrence: created {result.created_run_ids}, failed {result.failures}")
            if result.failures:
                exit_code = 1
        if args.expire:
            expired, completed = expire_overdue_runs(db, today=args.today)
            print(f"Expiry: expired {expired}, completed {completed}")
        return exit_code
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
