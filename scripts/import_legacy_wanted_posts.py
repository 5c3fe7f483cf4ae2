"""
Import wanted posts from a legacy realtime-database JSON export.

Usage:
    python scripts/import_legacy_wanted_posts.py export.json [--dry-run]

Safe to re-run: posts already imported (by legacy id) are skipped.
"""

import argparse
import json
import logging

from cardmarket.config import settings
from cardmarket.database import Database
from cardmarket.services.legacy_wanted_import import import_legacy_wanted_posts

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Import legacy wanted posts")
    parser.add_argument("export_path", help="Path to the legacy JSON export")
    parser.add_argument("--dry-run", action="store_true", help="Count posts without writing")
    args = parser.parse_args()

    with open(args.export_path, encoding="utf-8") as f:
        export = json.load(f)

    database = Database(settings.database_url)
    try:
        with database.session_scope() as db:
            result = import_legacy_wanted_posts(db, export, dry_run=args.dry_run)
    finally:
        database.dispose()

    logger.info("Done. %s", result)


if __name__ == "__main__":
    main()
