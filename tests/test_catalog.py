"""Tests for the include/exclude policy and catalog snapshots."""

import itertools
import threading
import time

import pytest

from feature_server.catalog import TableCatalog, glob_to_regex, resolve_servable
from feature_server.config import FeatureServerConfig
from feature_server.exceptions import ConfigurationError, DatabaseError, NotFoundError
from feature_server.models import PropertyDescriptor, TableDescriptor


class FakeRepository:
    def __init__(self, names):
        self.names = list(names)
        self.fail = None
        self.describe_calls = []

    def list_table_names(self, schema):
        if self.fail:
            raise self.fail
        return list(self.names)

    def describe_tables(self, schema, names):
        self.describe_calls.append(list(names))
        return {
            name: TableDescriptor(
                name=name,
                schema=schema,
                properties=(PropertyDescriptor("name", "string"),),
                id_column=PropertyDescriptor("gid", "integer")
            )
            for name in names
        }


def _config(include, exclude=(), **kwargs):
    return FeatureServerConfig(
        db_schema="public",
        include_rules=list(include),
        exclude_rules=list(exclude),
        mapping_file=None,
        **kwargs
    )


# ============================================================================
# GLOB MATCHING
# ============================================================================

class TestGlob:

    def test_star_matches_any_run(self):
        pattern = glob_to_regex("ABC_*")
        assert pattern.fullmatch("ABC_Roads")
        assert pattern.fullmatch("ABC_")
        assert not pattern.fullmatch("XABC_Roads")

    def test_other_characters_are_literal(self):
        pattern = glob_to_regex("a.b?[c]")
        assert pattern.fullmatch("a.b?[c]")
        assert not pattern.fullmatch("axb?[c]")
        assert not pattern.fullmatch("a.bx c")

    def test_case_sensitive(self):
        assert not glob_to_regex("abc_*").fullmatch("ABC_Roads")

    def test_inner_star(self):
        pattern = glob_to_regex("ABC_*_v*")
        assert pattern.fullmatch("ABC_roads_v2")
        assert not pattern.fullmatch("ABC_roads")

    @pytest.mark.parametrize("bad", ["", "   ", None, 42])
    def test_blank_or_non_string_rejected(self, bad):
        with pytest.raises(ValueError):
            glob_to_regex(bad)


# ============================================================================
# SERVABLE RESOLUTION
# ============================================================================

class TestResolveServable:

    def test_include_example(self):
        assert resolve_servable(["ABC_Roads", "XYZ_Parks"], ["ABC_*"], []) == ["ABC_Roads"]

    def test_exclude_uses_exclude_rules(self):
        names = ["ABC_Roads", "ABC_tmp1", "ABC_Rivers"]
        assert resolve_servable(names, ["ABC_*"], ["ABC_tmp*"]) == ["ABC_Roads", "ABC_Rivers"]

    def test_empty_include_serves_nothing(self):
        assert resolve_servable(["ABC_Roads", "XYZ_Parks"], [], []) == []
        assert resolve_servable(["ABC_Roads"], [], ["XYZ_*"]) == []

    def test_discovery_order_and_duplicates(self):
        names = ["b", "a", "b", "c"]
        assert resolve_servable(names, ["*"], []) == ["b", "a", "c"]

    @pytest.mark.parametrize("include, exclude", [
        (["ABC_*", ""], []),
        (["ABC_*"], ["  "]),
        (["ABC_*", None], []),
    ])
    def test_malformed_rules_serve_nothing(self, include, exclude):
        assert resolve_servable(["ABC_Roads"], include, exclude) == []

    def test_monotonic_in_rules(self):
        names = ["ABC_Roads", "ABC_tmp", "XYZ_Parks", "XYZ_tmp", "misc"]
        rules = ["ABC_*", "XYZ_*", "*_tmp", "misc", "*"]

        for size in range(len(rules)):
            for include in itertools.combinations(rules, size):
                for exclude in itertools.combinations(rules, 2):
                    base = set(resolve_servable(names, list(include), list(exclude[:1])))
                    more_excludes = set(resolve_servable(names, list(include), list(exclude)))
                    assert more_excludes <= base

                    more_includes = set(resolve_servable(names, list(include) + ["misc"], list(exclude[:1])))
                    assert base <= more_includes


# ============================================================================
# CATALOG
# ============================================================================

class TestTableCatalog:

    def test_builds_snapshot_on_first_use(self):
        repo = FakeRepository(["ABC_Roads", "XYZ_Parks"])
        catalog = TableCatalog(repo, _config(["ABC_*"]))

        snapshot = catalog.snapshot()

        assert snapshot.version == 1
        assert snapshot.table_names == ("ABC_Roads",)
        assert catalog.get("ABC_Roads").id_name == "gid"
        assert repo.describe_calls == [["ABC_Roads"]]

    def test_unknown_table_not_found(self):
        catalog = TableCatalog(FakeRepository(["ABC_Roads", "XYZ_Parks"]), _config(["ABC_*"]))
        with pytest.raises(NotFoundError, match="Table XYZ_Parks does not exist"):
            catalog.get("XYZ_Parks")

    def test_snapshot_is_immutable(self):
        catalog = TableCatalog(FakeRepository(["ABC_Roads"]), _config(["ABC_*"]))
        snapshot = catalog.snapshot()
        with pytest.raises(TypeError):
            snapshot.tables["ABC_Other"] = None

    def test_reconfigure_installs_new_snapshot(self):
        repo = FakeRepository(["ABC_Roads"])
        catalog = TableCatalog(repo, _config(["ABC_*"]))
        old = catalog.snapshot()

        repo.names.append("ABC_Rivers")
        new = catalog.reconfigure()

        assert new.version == old.version + 1
        assert new.table_names == ("ABC_Roads", "ABC_Rivers")
        # Readers holding the old snapshot keep a consistent view
        assert old.table_names == ("ABC_Roads",)

    def test_database_failure_keeps_previous_snapshot(self):
        repo = FakeRepository(["ABC_Roads"])
        catalog = TableCatalog(repo, _config(["ABC_*"]))
        old = catalog.snapshot()

        repo.fail = DatabaseError("connection refused")
        with pytest.raises(DatabaseError, match="connection refused"):
            catalog.reconfigure()

        assert not catalog.is_invalid
        assert catalog.snapshot() is old
        assert catalog.table_names() == ["ABC_Roads"]

    def test_database_failure_on_first_use_retries(self):
        repo = FakeRepository(["ABC_Roads"])
        catalog = TableCatalog(repo, _config(["ABC_*"]))

        repo.fail = DatabaseError("connection refused")
        with pytest.raises(DatabaseError):
            catalog.snapshot()
        with pytest.raises(DatabaseError):
            catalog.get("ABC_Roads")
        assert not catalog.is_invalid

        repo.fail = None
        assert catalog.get("ABC_Roads").name == "ABC_Roads"
        assert catalog.snapshot().version == 1

    def test_configuration_failure_until_reconfigured(self, tmp_path):
        path = tmp_path / "mapping.xml"
        path.write_text("<FeatureServerConfig><Mapping>", encoding="utf-8")
        config = FeatureServerConfig(db_schema="public", mapping_file=str(path))
        catalog = TableCatalog(FakeRepository(["ABC_Roads"]), config)

        with pytest.raises(ConfigurationError):
            catalog.snapshot()
        assert catalog.is_invalid
        with pytest.raises(ConfigurationError):
            catalog.table_names()

        path.write_text(
            "<FeatureServerConfig><Mapping><Tables><Include><Item>ABC_*</Item></Include>"
            "</Tables></Mapping></FeatureServerConfig>",
            encoding="utf-8"
        )
        # Still failed until someone reconfigures
        with pytest.raises(ConfigurationError):
            catalog.get("ABC_Roads")

        catalog.reconfigure()
        assert not catalog.is_invalid
        assert catalog.table_names() == ["ABC_Roads"]

    def test_bad_mapping_file_fails_closed(self, tmp_path):
        path = tmp_path / "mapping.xml"
        path.write_text("<FeatureServerConfig><Mapping>", encoding="utf-8")
        config = FeatureServerConfig(db_schema="public", mapping_file=str(path))
        catalog = TableCatalog(FakeRepository(["ABC_Roads"]), config)

        with pytest.raises(ConfigurationError):
            catalog.snapshot()
        assert catalog.error_message
        with pytest.raises(ConfigurationError):
            catalog.get("ABC_Roads")

    def test_no_include_rules_empty_catalog(self):
        repo = FakeRepository(["ABC_Roads"])
        catalog = TableCatalog(repo, _config([]))

        assert catalog.table_names() == []
        assert repo.describe_calls == []


# ============================================================================
# CONCURRENCY
# ============================================================================

class SlowRepository(FakeRepository):
    def __init__(self, names, delay=0.01):
        super().__init__(names)
        self.delay = delay
        self.list_calls = 0

    def list_table_names(self, schema):
        self.list_calls += 1
        time.sleep(self.delay)
        return super().list_table_names(schema)

    def describe_tables(self, schema, names):
        time.sleep(self.delay)
        return super().describe_tables(schema, names)


def _run_threads(count, target):
    errors = []

    def run():
        try:
            target()
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=run) for _ in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)
    return errors


class TestCatalogConcurrency:

    def test_concurrent_first_use_builds_once(self):
        repo = SlowRepository(["ABC_Roads", "ABC_Rivers"], delay=0.05)
        catalog = TableCatalog(repo, _config(["ABC_*"]))
        seen = []
        start = threading.Barrier(8)

        def first_use():
            start.wait()
            seen.append(catalog.snapshot())

        assert _run_threads(8, first_use) == []
        assert len(seen) == 8
        assert all(snapshot is seen[0] for snapshot in seen)
        assert repo.list_calls == 1

    def test_readers_see_complete_snapshots_during_reconfigure(self):
        repo = SlowRepository(["ABC_0"])
        catalog = TableCatalog(repo, _config(["ABC_*"]))
        catalog.snapshot()
        done = threading.Event()

        def writer():
            try:
                for i in range(1, 15):
                    repo.names.append(f"ABC_{i}")
                    catalog.reconfigure()
            finally:
                done.set()

        def reader():
            last_version = 0
            while not done.is_set():
                snapshot = catalog.snapshot()
                assert snapshot.version >= last_version
                last_version = snapshot.version
                assert set(snapshot.table_names) == set(snapshot.tables)
                assert len(snapshot.table_names) == snapshot.version
                for name in snapshot.table_names:
                    assert snapshot.get(name).name == name

        writer_thread = threading.Thread(target=writer)
        writer_thread.start()
        errors = _run_threads(4, reader)
        writer_thread.join(timeout=10)

        assert errors == []
        assert catalog.snapshot().version == 15
        assert len(catalog.table_names()) == 15
