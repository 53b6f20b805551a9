#!/usr/bin/env python3
"""
Delete tracking events older than the retention window and expired consent
records. Meant to run weekly from cron or a scheduler.

Usage:
    python scripts/cleanup_old_data.py            # DATA_RETENTION_DAYS from settings
    python scripts/cleanup_old_data.py --days 30
"""
import argparse
import logging
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from funnel_tracker.core.config import settings
from funnel_tracker.db.session import SessionLocal
from funnel_tracker.services.retention import cleanup_old_data

logger = logging.getLogger("cleanup_old_data")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Prune old funnel tracking data")
    parser.add_argument(
        "--days",
        type=int,
        default=settings.DATA_RETENTION_DAYS,
        help="Keep events from the last N days (default: %(default)s)",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    if args.days < 1:
        parser.error("--days must be at least 1")

    db = SessionLocal()
    try:
        deleted = cleanup_old_data(db, days=args.days)
    finally:
        db.close()

    logger.info("[RETENTION] Cleanup finished, %d rows deleted", deleted)
    return 0


if __name__ == "__main__":
    sys.exit(main())
