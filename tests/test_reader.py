"""Tests for the scroll-cursor read protocol and release guarantees."""

import psycopg
import pytest

from feature_server.exceptions import DatabaseError
from feature_server.models import TableQueryParameters
from feature_server.query import build_plan
from feature_server.repository import ReadResult, TableRepository, semantic_type


def _plan(table, **params):
    return build_plan(table, TableQueryParameters.model_validate(params), srid=31370)


@pytest.fixture
def reader_setup(feature_config, fake_connection_factory, make_rows):
    def setup(**kwargs):
        kwargs.setdefault("count", 10)
        kwargs.setdefault("rows", make_rows(3))
        factory, connections = fake_connection_factory(**kwargs)
        return TableRepository(feature_config, connect=factory), connections
    return setup


class TestOpenReader:

    def test_count_before_scroll(self, reader_setup, roads_table):
        repo, connections = reader_setup()
        plan = _plan(roads_table, start=2, limit=3, sortColumns="name", sortDirections="asc")

        result = repo.open_reader(plan)
        conn = connections[0]

        assert result.total_count == 10
        assert conn.read_only is True
        assert conn.events[:4] == ["execute", "execute", "open_named", "execute_named"]

        count_sql, count_params = plan.count_query()
        select_sql, select_params = plan.select_query()
        assert conn.executed[1][1] == count_sql
        assert conn.executed[1][2] == count_params
        assert conn.executed[2][1] == select_sql
        assert conn.executed[2][2] == select_params == (3, 2)
        result.close()

    def test_forward_only_cursor_with_fetch_size(self, reader_setup, roads_table):
        repo, connections = reader_setup()
        result = repo.open_reader(_plan(roads_table))

        named = [c for c in connections[0].cursors if c.name]
        assert len(named) == 1
        assert named[0].scrollable is False
        assert named[0].withhold is False
        # itersize was set before the select ran
        assert connections[0].executed[-1][3] == 1024
        result.close()

    def test_iteration_is_lazy(self, reader_setup, roads_table):
        repo, connections = reader_setup()
        result = repo.open_reader(_plan(roads_table))

        assert connections[0].rows_pulled == 0
        first = next(result)
        assert connections[0].rows_pulled == 1
        assert first.id == 1
        assert first.geometry == {"type": "Point", "coordinates": [150000, 170000]}
        assert list(first.properties) == ["name", "lanes", "opened", "length"]
        result.close()

    def test_exhaustion_releases_exactly_once(self, reader_setup, roads_table):
        repo, connections = reader_setup()
        result = repo.open_reader(_plan(roads_table, visibleColumns="name"))

        features = list(result)
        conn = connections[0]

        assert [f.properties for f in features] == [{"name": "road_00"}, {"name": "road_01"}, {"name": "road_02"}]
        assert result.closed
        assert conn.rollback_calls == 1
        assert conn.close_calls == 1

        result.close()
        assert list(result) == []
        assert conn.rollback_calls == 1
        assert conn.close_calls == 1

    def test_early_abandonment_releases(self, reader_setup, roads_table):
        repo, connections = reader_setup()

        with repo.open_reader(_plan(roads_table)) as result:
            next(result)

        conn = connections[0]
        assert conn.events[-3:] == ["close_cursor", "rollback", "close"]
        assert conn.rollback_calls == 1
        assert conn.close_calls == 1

    def test_error_while_iterating(self, reader_setup, roads_table):
        repo, connections = reader_setup(fail_after=1)
        result = repo.open_reader(_plan(roads_table))

        next(result)
        with pytest.raises(DatabaseError):
            next(result)

        assert result.closed
        assert connections[0].rollback_calls == 1
        assert connections[0].close_calls == 1

    def test_error_while_counting(self, reader_setup, roads_table):
        repo, connections = reader_setup(execute_errors={1: psycopg.OperationalError("boom")})

        with pytest.raises(DatabaseError, match="ABC_Roads"):
            repo.open_reader(_plan(roads_table))

        conn = connections[0]
        assert "open_named" not in conn.events
        assert conn.rollback_calls == 1
        assert conn.close_calls == 1

    def test_error_while_opening_cursor(self, reader_setup, roads_table):
        repo, connections = reader_setup(execute_errors={2: psycopg.errors.QueryCanceled("timeout")})

        with pytest.raises(DatabaseError):
            repo.open_reader(_plan(roads_table))

        assert connections[0].rollback_calls == 1
        assert connections[0].close_calls == 1

    def test_rollback_failure_does_not_mask_error(self, reader_setup, roads_table):
        repo, connections = reader_setup(
            fail_after=0,
            rollback_error=psycopg.InterfaceError("connection already closed")
        )
        result = repo.open_reader(_plan(roads_table))

        with pytest.raises(DatabaseError, match="connection lost"):
            next(result)

        assert connections[0].close_calls == 1

    def test_connect_failure(self, feature_config, roads_table):
        def refuse():
            raise psycopg.OperationalError("connection refused")

        repo = TableRepository(feature_config, connect=refuse)
        with pytest.raises(DatabaseError, match="connection refused"):
            repo.open_reader(_plan(roads_table))


class TestIntrospection:

    def test_describe_tables(self, feature_config, fake_connection_factory):
        columns = [
            {"table_name": "ABC_Roads", "column_name": "gid", "udt_name": "int4"},
            {"table_name": "ABC_Roads", "column_name": "name", "udt_name": "varchar"},
            {"table_name": "ABC_Roads", "column_name": "geom", "udt_name": "geometry"},
            {"table_name": "ABC_Roads", "column_name": "opened", "udt_name": "date"},
            {"table_name": "ABC_View", "column_name": "name", "udt_name": "text"},
        ]
        keys = [{"table_name": "ABC_Roads", "column_name": "gid"}]
        factory, connections = fake_connection_factory(fetchall_results=[columns, keys])
        repo = TableRepository(feature_config, connect=factory)

        tables = repo.describe_tables("public", ["ABC_Roads", "ABC_View", "ABC_Gone"])

        assert list(tables) == ["ABC_Roads", "ABC_View"]
        roads = tables["ABC_Roads"]
        assert roads.id_name == "gid"
        assert roads.geometry_name == "geom"
        assert roads.property_names == ["name", "opened"]
        assert [c.name for c in roads.all_columns()] == ["gid", "geom", "name", "opened"]
        assert tables["ABC_View"].id_column is None
        assert connections[0].rollback_calls == 1
        assert connections[0].close_calls == 1

    def test_composite_primary_key_is_not_an_id(self, feature_config, fake_connection_factory):
        columns = [
            {"table_name": "ABC_Links", "column_name": "a", "udt_name": "int4"},
            {"table_name": "ABC_Links", "column_name": "b", "udt_name": "int4"},
        ]
        keys = [
            {"table_name": "ABC_Links", "column_name": "a"},
            {"table_name": "ABC_Links", "column_name": "b"},
        ]
        factory, _ = fake_connection_factory(fetchall_results=[columns, keys])
        tables = TableRepository(feature_config, connect=factory).describe_tables("public", ["ABC_Links"])

        assert tables["ABC_Links"].id_column is None
        assert tables["ABC_Links"].property_names == ["a", "b"]

    def test_list_table_names(self, feature_config, fake_connection_factory):
        rows = [{"table_name": "ABC_Roads"}, {"table_name": "XYZ_Parks"}]
        factory, _ = fake_connection_factory(fetchall_results=[rows])
        repo = TableRepository(feature_config, connect=factory)

        assert repo.list_table_names("public") == ["ABC_Roads", "XYZ_Parks"]

    def test_distinct_values(self, feature_config, fake_connection_factory, roads_table):
        factory, connections = fake_connection_factory(fetchall_results=[[{"value": 1}, {"value": 2}]])
        repo = TableRepository(feature_config, connect=factory)

        assert repo.distinct_values(roads_table, "lanes") == [1, 2]
        assert connections[0].rollback_calls == 1
        assert connections[0].close_calls == 1

    @pytest.mark.parametrize("udt, expected", [
        ("varchar", "string"), ("int2", "short"), ("int4", "integer"), ("int8", "long"),
        ("bool", "boolean"), ("timestamptz", "timestamp"), ("geography", "geometry"),
        ("jsonb", "other"),
    ])
    def test_semantic_type(self, udt, expected):
        assert semantic_type(udt) == expected
