import psycopg2
import psycopg2.extras
import psycopg2.pool
from contextlib import contextmanager
from functools import lru_cache
from typing import Dict, Optional, Any, Tuple
from datetime import datetime
import logging

from ..core.errors import PersistenceFailure

logger = logging.getLogger(__name__)


def _prepare_for_json(data):
    """Recursively convert datetime objects to ISO strings for JSON serialization."""
    if isinstance(data, dict):
        return {k: _prepare_for_json(v) for k, v in data.items()}
    elif isinstance(data, (list, tuple, set)):
        return [_prepare_for_json(item) for item in data]
    elif isinstance(data, datetime):
        return data.isoformat()
    return data


class DocumentStore:
    """
    Key-value document API addressed by player id.

    Documents are JSON objects. Implementations are single-document atomic
    and raise PersistenceFailure on any storage error. Driver exceptions
    must be wrapped: callers apply state changes before writing and only
    treat PersistenceFailure as a failed write.
    """

    def get(self, doc_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def set(self, doc_id: str, partial: Dict[str, Any], merge: bool = True) -> None:
        """Write a document. With merge=True top-level keys are merged into
        the stored document; otherwise the document is replaced."""
        raise NotImplementedError

    def create_if_absent(self, doc_id: str, document: Dict[str, Any]) -> Tuple[Dict[str, Any], bool]:
        """Insert the document unless one exists. Returns (stored document, created)."""
        raise NotImplementedError

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        pass


class PostgresDocumentStore(DocumentStore):
    """PostgreSQL JSONB document store with connection pooling."""

    def __init__(self, database_url: str, minconn: int = 1, maxconn: int = 10):
        self.database_url = database_url
        try:
            self._pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=minconn,
                maxconn=maxconn,
                dsn=database_url,
                cursor_factory=psycopg2.extras.RealDictCursor
            )
            logger.info("[OK] PostgreSQL connection pool initialized")
        except psycopg2.Error as e:
            logger.error(f"[ERROR] Failed to initialize connection pool: {e}")
            raise PersistenceFailure(f"Failed to initialize connection pool: {e}") from e

    @contextmanager
    def _get_connection(self):
        """Context manager for database connections from pool."""
        conn = None
        try:
            conn = self._pool.getconn()
            yield conn
            conn.commit()
        except psycopg2.Error as e:
            if conn:
                conn.rollback()
            raise PersistenceFailure(str(e)) from e
        except Exception:
            if conn:
                conn.rollback()
            raise
        finally:
            if conn:
                self._pool.putconn(conn)

    def get(self, doc_id: str) -> Optional[Dict[str, Any]]:
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT data FROM player_documents
                WHERE player_id = %s
            """, (doc_id,))

            row = cursor.fetchone()
            if not row:
                return None
            return row['data']

    def set(self, doc_id: str, partial: Dict[str, Any], merge: bool = True) -> None:
        payload = psycopg2.extras.Json(_prepare_for_json(partial))
        with self._get_connection() as conn:
            cursor = conn.cursor()
            if merge:
                cursor.execute("""
                    INSERT INTO player_documents (player_id, data)
                    VALUES (%s, %s)
                    ON CONFLICT (player_id) DO UPDATE
                    SET data = player_documents.data || EXCLUDED.data,
                        updated_at = NOW()
                """, (doc_id, payload))
            else:
                cursor.execute("""
                    INSERT INTO player_documents (player_id, data)
                    VALUES (%s, %s)
                    ON CONFLICT (player_id) DO UPDATE
                    SET data = EXCLUDED.data,
                        updated_at = NOW()
                """, (doc_id, payload))

    def create_if_absent(self, doc_id: str, document: Dict[str, Any]) -> Tuple[Dict[str, Any], bool]:
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO player_documents (player_id, data)
                VALUES (%s, %s)
                ON CONFLICT (player_id) DO NOTHING
                RETURNING data
            """, (doc_id, psycopg2.extras.Json(_prepare_for_json(document))))

            row = cursor.fetchone()
            if row:
                return row['data'], True

            # Another session created it first
            cursor.execute("""
                SELECT data FROM player_documents
                WHERE player_id = %s
            """, (doc_id,))
            return cursor.fetchone()['data'], False

    def ping(self) -> bool:
        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT 1")
                cursor.fetchone()
            return True
        except PersistenceFailure:
            return False

    def close(self) -> None:
        self._pool.closeall()


@lru_cache()
def get_document_store() -> DocumentStore:
    """Build the configured document store once per process."""
    from ..core.config import settings

    if settings.uses_memory_store:
        from .memory import InMemoryDocumentStore
        logger.info("[Store] Using in-process document store")
        return InMemoryDocumentStore()

    return PostgresDocumentStore(
        settings.database_url,
        minconn=settings.db_pool_min,
        maxconn=settings.db_pool_max,
    )
