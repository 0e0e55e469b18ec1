"""
Shared test fixtures.

The database is replaced by small fakes that record every call, so the scroll
protocol (order of statements, fetch size, release) can be asserted without a
PostgreSQL server.
"""

import psycopg
import pytest

from feature_server.config import FeatureServerConfig
from feature_server.models import PropertyDescriptor, TableDescriptor


class FakeCursor:
    """Cursor stand-in; named cursors stream `conn.rows`."""

    def __init__(self, conn, name=None, scrollable=None, withhold=None):
        self.conn = conn
        self.name = name
        self.scrollable = scrollable
        self.withhold = withhold
        self.itersize = 100
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def execute(self, query, params=None):
        index = len(self.conn.executed)
        self.conn.executed.append((self.name, query, params, self.itersize))
        self.conn.events.append("execute_named" if self.name else "execute")
        if index in self.conn.execute_errors:
            raise self.conn.execute_errors[index]

    def fetchone(self):
        return {"count": self.conn.count, "ok": 1}

    def fetchall(self):
        return self.conn.fetchall_results.pop(0) if self.conn.fetchall_results else []

    def __iter__(self):
        for i, row in enumerate(self.conn.rows):
            if self.conn.fail_after is not None and i >= self.conn.fail_after:
                raise psycopg.OperationalError("connection lost")
            self.conn.rows_pulled += 1
            yield row

    def close(self):
        self.closed = True
        if self.name:
            self.conn.events.append("close_cursor")


class FakeConnection:
    """Connection stand-in recording transaction handling."""

    def __init__(self, count=0, rows=(), fetchall_results=None, fail_after=None,
                 execute_errors=None, rollback_error=None):
        self.count = count
        self.rows = list(rows)
        self.fetchall_results = list(fetchall_results or [])
        self.fail_after = fail_after
        self.execute_errors = dict(execute_errors or {})
        self.rollback_error = rollback_error
        self.read_only = False
        self.executed = []
        self.events = []
        self.cursors = []
        self.rows_pulled = 0
        self.rollback_calls = 0
        self.close_calls = 0

    def cursor(self, name=None, **kwargs):
        if name:
            self.events.append("open_named")
        cursor = FakeCursor(self, name=name, **kwargs)
        self.cursors.append(cursor)
        return cursor

    def rollback(self):
        self.rollback_calls += 1
        self.events.append("rollback")
        if self.rollback_error:
            raise self.rollback_error

    def close(self):
        self.close_calls += 1
        self.events.append("close")

    def commit(self):
        raise AssertionError("read-only code must never commit")


@pytest.fixture
def feature_config():
    """Configuration independent of the environment."""
    return FeatureServerConfig(
        db_schema="public",
        include_rules=["ABC_*"],
        exclude_rules=[],
        mapping_file=None,
        srid=31370,
        fetch_size=1024,
        query_timeout_seconds=30,
        default_separator="|"
    )


@pytest.fixture
def roads_table():
    """ABC_Roads: id gid, geometry geom, properties name, lanes, opened, length."""
    return TableDescriptor(
        name="ABC_Roads",
        schema="public",
        id_column=PropertyDescriptor("gid", "integer"),
        geometry_column=PropertyDescriptor("geom", "geometry"),
        properties=(
            PropertyDescriptor("name", "string"),
            PropertyDescriptor("lanes", "integer"),
            PropertyDescriptor("opened", "date"),
            PropertyDescriptor("length", "double"),
        )
    )


@pytest.fixture
def parks_view():
    """A view without primary key or geometry."""
    return TableDescriptor(
        name="ABC_ParkStats",
        schema="public",
        properties=(
            PropertyDescriptor("name", "string"),
            PropertyDescriptor("population", "integer"),
        )
    )


def road_rows(n=10):
    """Rows as returned by a dict_row cursor over ABC_Roads, sorted by name."""
    return [
        {
            "gid": i + 1,
            "geom": f'{{"type":"Point","coordinates":[{150000 + i},{170000 + i}]}}',
            "name": f"road_{i:02d}",
            "lanes": 2,
            "opened": None,
            "length": 10.5 * i,
        }
        for i in range(n)
    ]


@pytest.fixture
def make_rows():
    return road_rows


@pytest.fixture
def fake_connection_factory():
    """Returns (factory, connections): every call to factory() opens a new FakeConnection."""
    def build(**kwargs):
        connections = []

        def factory():
            conn = FakeConnection(**kwargs)
            connections.append(conn)
            return conn
        return factory, connections
    return build
