# ============================================================================
# MODULE CONTEXT - TABLE REPOSITORY
# ============================================================================
# STATUS: Standalone Repository - PostgreSQL table access
# PURPOSE: Schema introspection, scroll-cursor reads and distinct values
# EXPORTS: TableRepository, ReadResult, semantic_type
# DEPENDENCIES: psycopg, psycopg.sql, infrastructure.postgresql, util_logger
# SOURCE: PostgreSQL/PostGIS database (configurable schema)
# VALIDATION: SQL injection prevention via psycopg.sql composition
# PATTERNS: Repository Pattern, Server-side cursor, Explicit release
# ENTRY_POINTS: with repo.open_reader(plan) as result: for feature in result: ...
# ============================================================================

"""
Table Repository - PostgreSQL Direct Access

Reads follow a fixed protocol on a single read-only connection:

1. SET LOCAL statement_timeout
2. COUNT(*) with the plan's filter
3. Named (server-side), forward-only cursor fetching `fetch_size` rows per
   round trip over the paged, sorted select

The transaction is never committed. It is rolled back and the connection
closed exactly once: when iteration ends, on error, or when the caller closes
the result early.
"""

import uuid
from typing import Any, Dict, Iterator, List, Optional, Sequence

import psycopg
from psycopg import sql

from infrastructure.postgresql import PostgreSQLRepository, release_connection
from util_logger import LoggerFactory, ComponentType

from .config import FeatureServerConfig, get_feature_server_config
from .exceptions import DatabaseError
from .models import FeatureRecord, PropertyDescriptor, TableDescriptor
from .projector import project_row
from .query import QueryPlan

logger = LoggerFactory.create_logger(ComponentType.REPOSITORY, "TableRepository")

GEOMETRY_UDT_NAMES = frozenset({"geometry", "geography"})

UDT_TYPE_MAP = {
    "text": "string",
    "varchar": "string",
    "bpchar": "string",
    "name": "string",
    "citext": "string",
    "uuid": "string",
    "char": "byte",
    "int2": "short",
    "int4": "integer",
    "int8": "long",
    "float4": "float",
    "float8": "double",
    "numeric": "decimal",
    "bool": "boolean",
    "date": "date",
    "time": "time",
    "timetz": "time",
    "timestamp": "timestamp",
    "timestamptz": "timestamp",
    "bytea": "binary",
    "geometry": "geometry",
    "geography": "geometry",
}


def semantic_type(udt_name: str) -> str:
    """Semantic type name for a PostgreSQL udt_name."""
    return UDT_TYPE_MAP.get(udt_name, "other")


class ReadResult:
    """
    Open read over one table: total count plus a lazy, single-pass iterator.

    Usable as a context manager; leaving the block releases the read even if
    the rows were not consumed.
    """

    def __init__(self, conn, cursor, total_count: int, plan: QueryPlan):
        self._conn = conn
        self._cursor = cursor
        self._rows = iter(cursor)
        self._plan = plan
        self.total_count = total_count
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __iter__(self) -> Iterator[FeatureRecord]:
        return self

    def __next__(self) -> FeatureRecord:
        if self._closed:
            raise StopIteration
        try:
            row = next(self._rows)
        except StopIteration:
            self.close()
            raise
        except psycopg.Error as e:
            logger.error(f"Error scrolling table '{self._plan.table.name}': {e}")
            self.close()
            raise DatabaseError(f"Error reading table {self._plan.table.name}: {e}") from e
        return project_row(row, self._plan.table, self._plan.columns)

    def close(self) -> None:
        """Close the cursor, roll back and close the connection. Idempotent."""
        if self._closed:
            return
        self._closed = True
        try:
            self._cursor.close()
        except Exception as e:
            logger.warning(f"Error closing scroll cursor: {e}")
        release_connection(self._conn)
        logger.debug(f"Read of '{self._plan.table.name}' released")

    def __enter__(self) -> "ReadResult":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class TableRepository(PostgreSQLRepository):
    """
    PostgreSQL access for the table feature server.

    Example:
        repo = TableRepository()
        names = repo.list_table_names("public")
        tables = repo.describe_tables("public", names)
    """

    def __init__(self, config: Optional[FeatureServerConfig] = None,
                 connection_string: Optional[str] = None, connect=None):
        super().__init__(connection_string=connection_string, connect=connect)
        self.config = config or get_feature_server_config()

    def _set_timeout(self, cursor) -> None:
        cursor.execute(
            sql.SQL("SET LOCAL statement_timeout = {}").format(
                sql.Literal(f"{self.config.query_timeout_seconds}s")
            )
        )

    # ========================================================================
    # INTROSPECTION
    # ========================================================================

    def list_table_names(self, schema: str) -> List[str]:
        """
        Tables and views of a schema, ordered by name.

        Raises:
            DatabaseError: On database failures
        """
        query = sql.SQL("""
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = %s AND table_type IN ('BASE TABLE', 'VIEW')
            ORDER BY table_name
        """)
        try:
            rows = self._execute_query(query, (schema,), fetch='all')
        except psycopg.Error as e:
            raise DatabaseError(f"Error listing tables of schema {schema}: {e}") from e

        names = [row['table_name'] for row in rows]
        logger.info(f"Discovered {len(names)} tables in schema '{schema}'")
        return names

    def describe_tables(self, schema: str, names: Sequence[str]) -> Dict[str, TableDescriptor]:
        """
        Build descriptors for the given tables.

        The identifier is the single-column primary key (views have none); the
        geometry column is the first geometry/geography column; every other
        column is a property in ordinal order. Names that no longer exist are
        left out.

        Raises:
            DatabaseError: On database failures
        """
        if not names:
            return {}

        columns_query = sql.SQL("""
            SELECT table_name, column_name, udt_name
            FROM information_schema.columns
            WHERE table_schema = %s AND table_name = ANY(%s)
            ORDER BY table_name, ordinal_position
        """)
        primary_key_query = sql.SQL("""
            SELECT c.relname AS table_name, a.attname AS column_name
            FROM pg_index i
            JOIN pg_class c ON c.oid = i.indrelid
            JOIN pg_namespace n ON n.oid = c.relnamespace
            JOIN pg_attribute a ON a.attrelid = i.indrelid AND a.attnum = ANY(i.indkey)
            WHERE i.indisprimary AND n.nspname = %s AND c.relname = ANY(%s)
        """)

        try:
            with self._get_connection() as conn:
                with conn.cursor() as cur:
                    self._set_timeout(cur)
                    cur.execute(columns_query, (schema, list(names)))
                    column_rows = cur.fetchall()
                    cur.execute(primary_key_query, (schema, list(names)))
                    key_rows = cur.fetchall()
        except psycopg.Error as e:
            raise DatabaseError(f"Error describing tables of schema {schema}: {e}") from e

        columns: Dict[str, List[PropertyDescriptor]] = {}
        for row in column_rows:
            columns.setdefault(row['table_name'], []).append(
                PropertyDescriptor(name=row['column_name'], type=semantic_type(row['udt_name']))
            )

        primary_keys: Dict[str, List[str]] = {}
        for row in key_rows:
            primary_keys.setdefault(row['table_name'], []).append(row['column_name'])

        descriptors = {}
        for name in names:
            if name not in columns:
                logger.warning(f"Table '{name}' has no visible columns, skipped")
                continue
            keys = primary_keys.get(name, [])
            id_name = keys[0] if len(keys) == 1 else None
            descriptors[name] = self._build_descriptor(name, schema, columns[name], id_name)

        return descriptors

    @staticmethod
    def _build_descriptor(name: str, schema: str, columns: List[PropertyDescriptor],
                          id_name: Optional[str]) -> TableDescriptor:
        id_column = None
        geometry_column = None
        properties = []
        for column in columns:
            if column.name == id_name and id_column is None:
                id_column = column
            elif column.type == "geometry" and geometry_column is None:
                geometry_column = column
            else:
                properties.append(column)
        return TableDescriptor(
            name=name,
            schema=schema,
            properties=tuple(properties),
            id_column=id_column,
            geometry_column=geometry_column
        )

    # ========================================================================
    # READS
    # ========================================================================

    def open_reader(self, plan: QueryPlan) -> ReadResult:
        """
        Count, then open a server-side cursor over the plan's select.

        Returns:
            ReadResult owning the connection; the caller must exhaust or close it

        Raises:
            DatabaseError: If connecting, counting or opening the cursor fails
        """
        table = plan.table
        conn = None
        try:
            conn = self._connect()
            conn.read_only = True

            with conn.cursor() as cur:
                self._set_timeout(cur)
                count_sql, count_params = plan.count_query()
                cur.execute(count_sql, count_params)
                row = cur.fetchone()
                total_count = row['count'] if row else 0

            cursor = conn.cursor(
                name=f"scroll_{table.name[:40]}_{uuid.uuid4().hex[:12]}",
                scrollable=False,
                withhold=False
            )
            cursor.itersize = self.config.fetch_size
            select_sql, select_params = plan.select_query()
            cursor.execute(select_sql, select_params)

        except psycopg.Error as e:
            logger.error(f"Error opening read on '{table.name}': {e}")
            release_connection(conn)
            raise DatabaseError(f"Error reading table {table.name}: {e}") from e
        except Exception:
            release_connection(conn)
            raise

        logger.info(f"Reading '{table.name}': {total_count} matching rows")
        return ReadResult(conn, cursor, total_count, plan)

    def distinct_values(self, table: TableDescriptor, column: str) -> List[Any]:
        """
        Sorted distinct non-null values of one column.

        Raises:
            DatabaseError: On database failures
        """
        query = sql.SQL(
            "SELECT DISTINCT {col} AS value FROM {schema}.{table} WHERE {col} IS NOT NULL ORDER BY 1"
        ).format(
            col=sql.Identifier(column),
            schema=sql.Identifier(table.schema),
            table=sql.Identifier(table.name)
        )

        try:
            with self._get_connection() as conn:
                with conn.cursor() as cur:
                    self._set_timeout(cur)
                    cur.execute(query)
                    rows = cur.fetchall()
        except psycopg.Error as e:
            raise DatabaseError(f"Error reading values of {table.name}.{column}: {e}") from e

        return [row['value'] for row in rows]
