#!/usr/bin/env python3
"""
Migration runner for SuperFarm.
Applies pending schema migrations in order when the API starts against Postgres.
"""

import logging
from contextlib import contextmanager
from typing import List, Optional

import psycopg2

from superfarm.core.config import settings

logger = logging.getLogger(__name__)


MIGRATIONS = [
    {
        "id": "001",
        "name": "player_documents",
        "module": "migrations.001_player_documents",
        "function": "run_migration"
    }
]


@contextmanager
def _connect(database_url: str):
    conn = psycopg2.connect(database_url)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _initialize_tracker(database_url: str):
    """Create the applied-migrations table."""
    with _connect(database_url) as conn, conn.cursor() as cursor:
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS _migrations (
                id SERIAL PRIMARY KEY,
                migration_id TEXT UNIQUE NOT NULL,
                migration_name TEXT NOT NULL,
                applied_at TIMESTAMPTZ DEFAULT NOW()
            )
        """)


def _applied_migration_ids(database_url: str) -> List[str]:
    with _connect(database_url) as conn, conn.cursor() as cursor:
        cursor.execute("SELECT migration_id FROM _migrations ORDER BY migration_id")
        return [row[0] for row in cursor.fetchall()]


def _record_migration(database_url: str, migration_id: str, migration_name: str):
    with _connect(database_url) as conn, conn.cursor() as cursor:
        cursor.execute(
            """
            INSERT INTO _migrations (migration_id, migration_name) VALUES (%s, %s)
            ON CONFLICT (migration_id) DO NOTHING
            """,
            (migration_id, migration_name)
        )


def apply_migration(database_url: str, migration: dict):
    """Import one migration module, run it and record it as applied."""
    migration_id = migration["id"]
    logger.info(f"[MIGRATION {migration_id}] Starting: {migration['name']}")

    try:
        module = __import__(migration["module"], fromlist=[migration["function"]])
        getattr(module, migration["function"])(database_url)
        _record_migration(database_url, migration_id, migration["name"])
    except Exception as e:
        logger.error(f"[MIGRATION {migration_id}] Failed: {e}")
        raise

    logger.info(f"[MIGRATION {migration_id}] Completed successfully")


def run_all_migrations(database_url: Optional[str] = None) -> List[str]:
    """Run all pending migrations in order. Returns the ids that were applied."""
    database_url = database_url or settings.database_url

    logger.info("=" * 60)
    logger.info("Running database migrations")
    logger.info("=" * 60)

    _initialize_tracker(database_url)
    applied = set(_applied_migration_ids(database_url))

    pending = [m for m in MIGRATIONS if m["id"] not in applied]
    if not pending:
        logger.info(f"All migrations are up to date (applied: {', '.join(sorted(applied)) or 'none'})")
        return []

    logger.info(f"Found {len(pending)} pending migration(s)")
    for migration in pending:
        apply_migration(database_url, migration)
        logger.info("-" * 60)

    logger.info("All migrations completed successfully!")
    return [m["id"] for m in pending]


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
    run_all_migrations()
