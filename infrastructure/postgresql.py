# ============================================================================
# MODULE CONTEXT - POSTGRESQL REPOSITORY
# ============================================================================
# STATUS: Core Infrastructure - PostgreSQL connection management
# PURPOSE: Per-request, read-only PostgreSQL connections for the feature server
# EXPORTS: PostgreSQLRepository, release_connection
# DEPENDENCIES: psycopg, config
# SCOPE: Read-only database operations for API serving
# PATTERNS: Repository pattern, Per-request connections, Managed identity
# ============================================================================

"""
PostgreSQL Repository - Read-Only Database Access

Every operation opens its own connection and gives it back the same way:
roll back, then close. Nothing is ever committed.

Usage:
    from infrastructure.postgresql import PostgreSQLRepository

    repo = PostgreSQLRepository()
    with repo._get_connection() as conn:
        with conn.cursor() as cursor:
            cursor.execute("SELECT 1 AS ok")
"""

import logging
from contextlib import contextmanager
from typing import Any, Callable, Optional, Tuple

import psycopg
from psycopg import sql
from psycopg.rows import dict_row

from config import get_app_config, get_postgres_connection_string

logger = logging.getLogger(__name__)

ConnectFactory = Callable[[], Any]


def release_connection(conn: Any) -> None:
    """
    Roll back and close a connection.

    Failures are logged and never raised, so they cannot mask an error that is
    already propagating.
    """
    if conn is None:
        return
    try:
        conn.rollback()
    except Exception as e:
        logger.warning(f"Rollback failed while releasing connection: {e}")
    try:
        conn.close()
        logger.debug("Connection closed")
    except Exception as e:
        logger.warning(f"Close failed while releasing connection: {e}")


class PostgreSQLRepository:
    """
    PostgreSQL repository base class with connection management.

    Connection Strategy:
    -------------------
    Each operation creates a NEW connection and releases it immediately after
    use. No pooling: suitable for serverless Azure Functions where connection
    reuse across requests is not beneficial, and it keeps managed identity
    tokens fresh.

    Tests inject `connect`, a zero-argument callable returning a
    connection-like object.
    """

    def __init__(self, connection_string: Optional[str] = None,
                 connect: Optional[ConnectFactory] = None):
        """
        Args:
            connection_string: Explicit libpq URI. If not provided it is built
                from config when connecting.
            connect: Optional connection factory replacing psycopg.connect
        """
        self._conn_string = connection_string
        self._connect_factory = connect

    @property
    def conn_string(self) -> str:
        """
        libpq URI for the next connection.

        With managed identity it is rebuilt on every call so each connection
        gets a current Azure AD token; password URIs are built once.
        """
        if self._conn_string is not None:
            return self._conn_string
        config = get_app_config()
        conn_string = get_postgres_connection_string(config)
        if not config.use_managed_identity:
            self._conn_string = conn_string
        return conn_string

    def _connect(self):
        if self._connect_factory is not None:
            return self._connect_factory()
        return psycopg.connect(self.conn_string, row_factory=dict_row)

    @contextmanager
    def _get_connection(self, read_only: bool = True):
        """
        Context manager for one connection.

        Yields:
            psycopg.Connection with dict_row factory, read-only by default.
            The transaction is always rolled back on exit.

        Raises:
            psycopg.Error: On connection or query failures
        """
        conn = None
        try:
            conn = self._connect()
            if read_only:
                conn.read_only = True
            yield conn
        except psycopg.Error as e:
            logger.error(f"PostgreSQL error ({type(e).__name__}): {e}")
            raise
        finally:
            release_connection(conn)

    def _execute_query(self, query: sql.Composable, params: Optional[Tuple] = None,
                       fetch: str = 'all') -> Optional[Any]:
        """
        Execute one read query in its own transaction.

        Args:
            query: Statement composed with psycopg.sql
            params: Values for %s placeholders
            fetch: 'one' or 'all'

        Raises:
            TypeError: If query is not composed with psycopg.sql
            ValueError: If fetch mode is invalid
            psycopg.Error: On database failures
        """
        if not isinstance(query, sql.Composable):
            raise TypeError(f"Query must be sql.Composable, got {type(query)}")
        if fetch not in ('one', 'all'):
            raise ValueError(f"Invalid fetch mode: {fetch}")

        with self._get_connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(query, params)
                return cursor.fetchone() if fetch == 'one' else cursor.fetchall()

    def ping(self) -> bool:
        """True when a trivial query succeeds."""
        row = self._execute_query(sql.SQL("SELECT 1 AS ok"), fetch='one')
        return bool(row) and row['ok'] == 1
