"""
Floor Database Pool

Thread-safe psycopg2 connection pooling for the read-only floor queries.
The background refreshers share one pool; when it is missing or exhausted a
short-lived direct connection is opened instead.
"""

import threading
import time
import logging
from contextlib import contextmanager
from typing import Optional, Dict, Any

import psycopg2
from psycopg2 import pool

from utils.config import get_database_config

logger = logging.getLogger(__name__)

REQUIRED_KEYS = ("host", "port", "database", "user", "password")


class DatabasePool:
    """Shared connection pool for the floor database."""

    def __init__(self, db_config: Optional[Dict[str, Any]] = None):
        """
        Args:
            db_config: psycopg2 connection kwargs; read from the environment when omitted

        Raises:
            ValueError: If a required connection setting is empty
        """
        self.db_config = db_config if db_config is not None else get_database_config()
        missing = [key for key in REQUIRED_KEYS if not self.db_config.get(key)]
        if missing:
            raise ValueError(f"Floor database settings missing: {missing}. Check the .env file.")

        self.pool: Optional[pool.AbstractConnectionPool] = None
        self.pool_lock = threading.Lock()
        self.stats_lock = threading.Lock()
        self.stats = {
            "connections_created": 0,
            "connections_used": 0,
            "connections_returned": 0,
            "pool_exhausted": 0,
            "fallback_connections": 0,
            "errors": 0
        }

    def _count(self, key: str):
        with self.stats_lock:
            self.stats[key] += 1

    def initialize_pool(self, min_connections: int = 1, max_connections: int = 5) -> bool:
        """
        Open the threaded pool. Safe to call more than once.

        Returns:
            bool: False when the database refused the initial connections
        """
        with self.pool_lock:
            if self.pool is not None:
                return True
            try:
                self.pool = pool.ThreadedConnectionPool(
                    min_connections, max_connections, **self.db_config
                )
            except psycopg2.Error as e:
                logger.error(f"Could not open floor pool: {e}")
                self._count("errors")
                return False
            with self.stats_lock:
                self.stats["connections_created"] = min_connections

        logger.info(f"Floor pool open ({min_connections}-{max_connections} connections)")
        return True

    @contextmanager
    def get_connection(self):
        """
        Borrow a connection for one read.

        The transaction is rolled back on exit; pooled connections go back to
        the pool and direct ones are closed.

        Example:
            >>> db = DatabasePool()
            >>> with db.get_connection() as conn:
            ...     with conn.cursor() as cursor:
            ...         cursor.execute("SELECT machine_id FROM machines LIMIT 1")
        """
        connection = None
        pooled = False
        started = time.time()

        try:
            if self.pool is not None:
                try:
                    connection = self.pool.getconn()
                    pooled = True
                    self._count("connections_used")
                except pool.PoolError:
                    self._count("pool_exhausted")
                    logger.warning("Floor pool exhausted, opening a direct connection")

            if connection is None:
                self._count("fallback_connections")
                connection = psycopg2.connect(**self.db_config)

            yield connection
            connection.rollback()

        except Exception as e:
            self._count("errors")
            logger.error(f"Floor query failed after {time.time() - started:.2f}s: {e}")
            raise

        finally:
            if connection is not None:
                try:
                    if pooled and self.pool is not None:
                        self.pool.putconn(connection)
                        self._count("connections_returned")
                    else:
                        connection.close()
                except psycopg2.Error as e:
                    logger.warning(f"Could not release floor connection: {e}")
                    self._count("errors")

    def close_pool(self):
        with self.pool_lock:
            if self.pool is not None:
                self.pool.closeall()
                self.pool = None
                logger.info("Floor pool closed")

    def get_stats(self) -> Dict[str, Any]:
        """Counters plus whether the pool is open."""
        with self.stats_lock:
            stats = dict(self.stats)
        stats["pool_initialized"] = self.pool is not None
        if self.pool is not None:
            stats["pool_type"] = type(self.pool).__name__
        return stats

    def health_check(self) -> bool:
        """True when `SELECT 1` round-trips."""
        try:
            with self.get_connection() as conn:
                with conn.cursor() as cursor:
                    cursor.execute("SELECT 1")
                    return cursor.fetchone() is not None
        except psycopg2.Error as e:
            logger.error(f"Floor health check failed: {e}")
            return False


_floor_pool: Optional[DatabasePool] = None
_pool_lock = threading.Lock()


def get_pool() -> DatabasePool:
    """Process-wide floor pool, created on first use."""
    global _floor_pool

    with _pool_lock:
        if _floor_pool is None:
            _floor_pool = DatabasePool()
            _floor_pool.initialize_pool()
        return _floor_pool


@contextmanager
def get_floor_connection():
    with get_pool().get_connection() as conn:
        yield conn
