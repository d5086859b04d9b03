"""
Database Connection Pool Manager
=================================

Thread-safe psycopg2 connection pool shared by all storage classes.

Storage methods run their queries inside ``asyncio.to_thread``, so the pool
is handed out to worker threads and must be a ThreadedConnectionPool.

Usage:
    from db.connection_pool import get_db_connection

    with get_db_connection(db_config) as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT 1")
"""

import logging
import os
import time
from threading import Lock
from typing import Optional

import psycopg2
from psycopg2 import pool
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

# Feature flag: Set to 'false' or '0' to disable connection pooling
USE_CONNECTION_POOLING = os.getenv("USE_CONNECTION_POOLING", "true").lower() in ("true", "1", "yes")

MIN_CONNECTIONS = int(os.getenv("DB_POOL_MIN_CONNECTIONS", "1"))
MAX_CONNECTIONS = int(os.getenv("DB_POOL_MAX_CONNECTIONS", "10"))
CONNECTION_TIMEOUT = int(os.getenv("DB_CONNECTION_TIMEOUT", "30"))
MAX_RETRIES = int(os.getenv("DB_MAX_RETRIES", "3"))


_pool: Optional[pool.ThreadedConnectionPool] = None
_pool_lock = Lock()


def _get_pool(db_config: dict) -> pool.ThreadedConnectionPool:
    """Create the pool on first use."""
    global _pool

    with _pool_lock:
        if _pool is None:
            _pool = pool.ThreadedConnectionPool(
                MIN_CONNECTIONS,
                MAX_CONNECTIONS,
                **{**db_config, "connect_timeout": CONNECTION_TIMEOUT},
            )
            logger.info(
                "Database connection pool initialized: min=%d, max=%d, timeout=%ds, host=%s",
                MIN_CONNECTIONS,
                MAX_CONNECTIONS,
                CONNECTION_TIMEOUT,
                db_config.get("host"),
            )
        return _pool


def _acquire(db_config: dict):
    """Get a connection, waiting briefly while the pool is exhausted."""
    last_exception: Exception | None = None

    for attempt in range(1, MAX_RETRIES + 1):
        try:
            if USE_CONNECTION_POOLING:
                return _get_pool(db_config).getconn()
            return psycopg2.connect(**{**db_config, "connect_timeout": CONNECTION_TIMEOUT})
        except (pool.PoolError, psycopg2.OperationalError) as exc:
            last_exception = exc
            if attempt < MAX_RETRIES:
                delay = min(1.0 * attempt, 5.0)
                logger.warning(
                    "Database connection failed (attempt %d/%d): %s. Retrying in %.1fs...",
                    attempt,
                    MAX_RETRIES,
                    exc,
                    delay,
                )
                time.sleep(delay)

    logger.error("Database connection failed after %d attempts: %s", MAX_RETRIES, last_exception)
    raise last_exception  # type: ignore[misc]


class DatabaseConnection:
    """
    Context manager that commits on success, rolls back on error and always
    gives the connection back.
    """

    def __init__(self, db_config: dict):
        self.db_config = db_config
        self.conn = None

    def __enter__(self):
        self.conn = _acquire(self.db_config)
        return self.conn

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.conn is None:
            return False
        try:
            if exc_type is None:
                self.conn.commit()
            else:
                self.conn.rollback()
        finally:
            if USE_CONNECTION_POOLING:
                # A connection left in a broken state is discarded, not reused
                _get_pool(self.db_config).putconn(self.conn, close=bool(self.conn.closed))
            else:
                self.conn.close()
            self.conn = None
        return False


def get_db_connection(db_config: dict) -> DatabaseConnection:
    """Get a database connection context manager (pooled or direct)."""
    return DatabaseConnection(db_config)


def close_all_connections() -> None:
    """Close all connections in the pool (for graceful shutdown)."""
    global _pool

    with _pool_lock:
        if _pool is not None:
            logger.info("Closing all database connections in pool")
            _pool.closeall()
            _pool = None
