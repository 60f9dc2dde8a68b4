#!/usr/bin/env python3
"""Send the daily expiry reminders.

Run once a day:  python -m app.scripts.check_expirations [--purge-read]
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))
load_dotenv(PROJECT_ROOT / ".env")

from app.core.config import settings as core_settings
from app.database import SessionLocal
from app.services.expirations import check_expirations
from app.services.notifications import clean_old


def main() -> None:
    parser = argparse.ArgumentParser(description="Send the daily expiry reminders.")
    parser.add_argument(
        "--purge-read",
        action="store_true",
        help="also delete read notifications older than NOTIFICATION_RETENTION_DAYS",
    )
    args = parser.parse_args()

    logging.basicConfig(level=core_settings.LOG_LEVEL.upper())
    with SessionLocal() as db:
        sent = check_expirations(db)
        print(f"Reminders sent: ads={sent['ads']} freights={sent['freights']} verifications={sent['verifications']}")
        if args.purge_read:
            purged = clean_old(db)
            print(f"Read notifications purged: {purged}")


if __name__ == "__main__":
    main()
