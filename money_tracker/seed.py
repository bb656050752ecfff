"""Populate the reference tables with a starter set.

Usage:
  python -m money_tracker.seed [--database-url sqlite:///./data/money-tracker.db]

Rows are keyed by slug; running it again skips what already exists.
"""

from __future__ import annotations

import argparse
import logging
from typing import List, Optional

from sqlalchemy import Table, select
from sqlalchemy.engine import Connection, Engine

from money_tracker import config
from money_tracker.database import (
    accounts,
    create_db_engine,
    earning_sources,
    init_db,
    spending_categories,
    upsert_statement,
)
from money_tracker.logging_setup import setup_logging

logger = logging.getLogger(__name__)

INITIAL_SOURCES = [
    {"name": "Job", "slug": "job", "color": "#3b82f6", "icon": "briefcase", "display_order": 0},
    {"name": "Freelance", "slug": "freelance", "color": "#f97316", "icon": "laptop", "display_order": 1},
    {"name": "YouTube", "slug": "youtube", "color": "#8b5cf6", "icon": "youtube", "display_order": 2},
    {"name": "Affiliates", "slug": "affiliates", "color": "#ec4899", "icon": "users", "display_order": 3},
]

INITIAL_ACCOUNTS = [
    {"name": "Main Bank", "slug": "main-bank", "type": "bank", "currency": "EUR", "color": "#10b981", "icon": "landmark", "display_order": 0},
    {"name": "Savings", "slug": "savings", "type": "bank", "currency": "EUR", "color": "#06b6d4", "icon": "landmark", "display_order": 1},
    {"name": "US Bank", "slug": "us-bank", "type": "bank", "currency": "USD", "color": "#6366f1", "icon": "landmark", "display_order": 2},
    {"name": "Cash", "slug": "cash", "type": "cash", "currency": "EUR", "color": "#84cc16", "icon": "wallet", "display_order": 3},
]

INITIAL_CATEGORIES = [
    {"name": "Housing", "slug": "housing", "color": "#ef4444", "icon": "home", "display_order": 0},
    {"name": "Food", "slug": "food", "color": "#f59e0b", "icon": "utensils", "display_order": 1},
    {"name": "Transport", "slug": "transport", "color": "#0ea5e9", "icon": "car", "display_order": 2},
    {"name": "Subscriptions", "slug": "subscriptions", "color": "#a855f7", "icon": "repeat", "display_order": 3},
    {"name": "Other", "slug": "other", "color": "#6b7280", "icon": "circle", "display_order": 4},
]

# (parent slug, row)
INITIAL_SUBCATEGORIES = [
    ("food", {"name": "Groceries", "slug": "groceries", "color": "#f59e0b", "icon": "shopping-cart", "display_order": 0}),
    ("food", {"name": "Restaurants", "slug": "restaurants", "color": "#fb923c", "icon": "utensils", "display_order": 1}),
]


def insert_or_skip(conn: Connection, table: Table, row: dict) -> bool:
    stmt = upsert_statement(conn, table).values(**row)
    result = conn.execute(stmt.on_conflict_do_nothing(index_elements=[table.c.slug]))
    return result.rowcount > 0


def seed(engine: Engine) -> dict[str, int]:
    init_db(engine)
    added = {"earning_sources": 0, "accounts": 0, "spending_categories": 0}
    with engine.begin() as conn:
        for table, rows in (
            (earning_sources, INITIAL_SOURCES),
            (accounts, INITIAL_ACCOUNTS),
            (spending_categories, INITIAL_CATEGORIES),
        ):
            for row in rows:
                if insert_or_skip(conn, table, row):
                    added[table.name] += 1
                    logger.info("Added %s: %s", table.name, row["name"])
                else:
                    logger.info("Skipping %s (already exists)", row["name"])

        for parent_slug, row in INITIAL_SUBCATEGORIES:
            parent_id = conn.execute(
                select(spending_categories.c.id).where(spending_categories.c.slug == parent_slug)
            ).scalar_one()
            if insert_or_skip(conn, spending_categories, {**row, "parent_id": parent_id}):
                added["spending_categories"] += 1
                logger.info("Added spending_categories: %s", row["name"])
            else:
                logger.info("Skipping %s (already exists)", row["name"])
    return added


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Seed money-tracker reference tables")
    p.add_argument("--database-url", default=config.DATABASE_URL, help="SQLAlchemy database URL")
    return p.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(config.LOG_LEVEL)
    logger.info("Seeding database...")
    engine = create_db_engine(args.database_url)
    try:
        added = seed(engine)
    finally:
        engine.dispose()
    logger.info("Seeding complete: %s", ", ".join(f"{k}={v}" for k, v in added.items()))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
