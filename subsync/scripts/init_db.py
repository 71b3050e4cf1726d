"""
Create the schema and seed the subscription plan catalog.

Usage:
    python -m subsync.scripts.init_db --plans plans.json

plans.json is a list of {"id", "name", "stripe_price_id", "role_id",
"role_name"?} objects. Safe to run repeatedly.
"""
from __future__ import annotations

import argparse
import json
import logging
from typing import List, Optional

from subsync.core.database import create_all_tables, init_engine
from subsync.core.logging import configure_logging
from subsync.features.plans.service import seed_plans

REQUIRED_PLAN_KEYS = ("id", "name", "stripe_price_id", "role_id")


def load_catalog(path: str) -> List[dict]:
    with open(path, encoding="utf-8") as fh:
        catalog = json.load(fh)
    if not isinstance(catalog, list):
        raise ValueError("plan catalog must be a JSON list")
    for entry in catalog:
        missing = [key for key in REQUIRED_PLAN_KEYS if not entry.get(key)]
        if missing:
            raise ValueError(f"plan entry {entry!r} is missing: {', '.join(missing)}")
    return catalog


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Create tables and seed subscription plans.")
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL")
    parser.add_argument("--plans", default=None, help="Path to a JSON plan catalog")
    args = parser.parse_args(argv)

    configure_logging()
    logger = logging.getLogger("subsync")

    init_engine(args.database_url)
    create_all_tables()
    logger.info("Schema ready.")

    if args.plans:
        catalog = load_catalog(args.plans)
        seed_plans(catalog)
        logger.info(f"Seeded {len(catalog)} subscription plan(s).")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
