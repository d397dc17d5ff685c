#!/usr/bin/env python3
"""
Delete normal bookings that duplicate a temporary (temp_) checkout booking.

Prerequisites:
  STORE_BACKEND=firestore and FIREBASE_CREDENTIALS set in .env

Run:
    python scripts/cleanup_duplicate_bookings.py [--dry-run]
"""

import logging
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from dotenv import load_dotenv
load_dotenv()

from teleconsult.maintenance import cleanup_duplicate_bookings


def main():
    logging.basicConfig(level=logging.INFO)
    dry_run = "--dry-run" in sys.argv
    try:
        deleted = cleanup_duplicate_bookings(dry_run=dry_run)
    except Exception as exc:
        print(f"Cleanup failed: {exc}")
        sys.exit(1)

    verb = "Would delete" if dry_run else "Deleted"
    print(f"Cleanup complete. {verb} {deleted} duplicate bookings.")


if __name__ == "__main__":
    main()
