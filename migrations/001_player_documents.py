"""
Database migration 001: Player Documents
Creates the player_documents table that backs the document store.

Migration ID: 001
Migration Name: player_documents
"""

import psycopg2
import logging

logger = logging.getLogger(__name__)


def run_migration(database_url: str):
    """Apply migration 001"""
    conn = psycopg2.connect(database_url)
    cursor = conn.cursor()

    try:
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS player_documents (
                player_id TEXT PRIMARY KEY,
                data JSONB NOT NULL DEFAULT '{}'::jsonb,
                created_at TIMESTAMPTZ DEFAULT NOW(),
                updated_at TIMESTAMPTZ DEFAULT NOW()
            )
        """)
        logger.info("[MIGRATION 001] Created player_documents table")

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_player_documents_source
            ON player_documents ((data->>'identitySource'))
        """)
        logger.info("[MIGRATION 001] Created indexes")

        conn.commit()
        logger.info("[MIGRATION 001] Complete!")

    except Exception as e:
        conn.rollback()
        logger.error(f"[MIGRATION 001] Error: {e}")
        raise
    finally:
        cursor.close()
        conn.close()


if __name__ == "__main__":
    print("This migration should be run via the main.py migration system")
