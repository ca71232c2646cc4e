"""
End-to-end runs of both phases against in-memory nodes and destination.
"""
from collections import Counter

import pytest

from consolidate.cli import run_migration
from consolidate.config import MigrationConfig
from consolidate.errors import ConfigurationError, SourceQueryError, WriteError
from consolidate.metrics import MetricsCollector
from consolidate.models import SourceDescriptor, SourceRecord

from fakes import FakeDestination, FakeSourceCluster, make_records


def config_for(*names, **overrides):
    return MigrationConfig(
        environment="local",
        database_url="postgresql://dest.internal/app",
        sources=tuple(SourceDescriptor(name=n, dsn=f"postgresql://{n}.internal/app") for n in names),
        **overrides,
    )


def test_three_nodes_land_in_destination():
    cluster = FakeSourceCluster({
        "a": make_records("a", 10),
        "b": [],
        "c": make_records("c", 25),
    })
    dest = FakeDestination(existing=[("x", "y")])

    result = run_migration(config_for("a", "b", "c"), cluster.fetch, dest)

    assert len(dest.table) == 1 + 35
    expected = [(r.sender, r.message) for r in make_records("a", 10) + make_records("c", 25)]
    assert sorted(dest.table[1:]) == sorted(expected)
    assert result.collected.total_rows == 35
    assert result.written.rows_written == 35
    assert result.written.batches > 1
    assert len(dest.executions) == result.written.batches


def test_read_query_uses_status_filter_and_limit():
    cluster = FakeSourceCluster({"a": []})

    run_migration(config_for("a", status_value="ready", max_rows=500), cluster.fetch, FakeDestination())

    (_, query, params), = cluster.calls
    assert "WHERE status = %s" in query
    assert "ORDER BY ref" in query
    assert params == ("ready", 500)


def test_duplicate_pairs_are_not_multiplied():
    dup = SourceRecord(sender="ops", message="disk full")
    cluster = FakeSourceCluster({"a": [dup, dup], "b": [dup]})
    dest = FakeDestination()

    run_migration(config_for("a", "b"), cluster.fetch, dest)

    assert Counter(dest.table) == Counter({("ops", "disk full"): 3})


def test_write_failure_leaves_destination_unchanged():
    cluster = FakeSourceCluster({"a": make_records("a", 30), "b": make_records("b", 30)})
    dest = FakeDestination(existing=[("x", "y")], fail_on_batch=2)

    with pytest.raises(WriteError):
        run_migration(config_for("a", "b", batch_char_threshold=300), cluster.fetch, dest)

    assert dest.table == [("x", "y")]


def test_one_failing_node_means_no_write():
    cluster = FakeSourceCluster(
        {"a": make_records("a", 5), "c": make_records("c", 5)},
        failing=["b"],
    )
    dest = FakeDestination(existing=[("x", "y")])

    with pytest.raises(SourceQueryError) as ctx:
        run_migration(config_for("a", "b", "c"), cluster.fetch, dest)

    assert ctx.value.failed_sources == ["b"]
    assert dest.table == [("x", "y")]
    assert dest.connections == []


def test_single_empty_node_commits_empty_transaction():
    cluster = FakeSourceCluster({"a": []})
    dest = FakeDestination()

    result = run_migration(config_for("a"), cluster.fetch, dest)

    assert result.written.rows_written == 0
    assert result.written.batches == 0
    assert dest.executions == []
    assert dest.connections[0].commits == 1


def test_dry_run_skips_writer():
    cluster = FakeSourceCluster({"a": make_records("a", 4)})
    dest = FakeDestination()

    result = run_migration(config_for("a"), cluster.fetch, dest, dry_run=True)

    assert result.dry_run
    assert result.written is None
    assert result.collected.total_rows == 4
    assert dest.connections == []


def test_invalid_config_fails_before_any_io():
    cluster = FakeSourceCluster({})
    dest = FakeDestination()

    with pytest.raises(ConfigurationError):
        run_migration(config_for(), cluster.fetch, dest)

    assert cluster.calls == []
    assert dest.connections == []


def test_counts_come_from_this_run():
    metrics = MetricsCollector()
    first = FakeSourceCluster({"a": make_records("a", 3)})
    run_migration(config_for("a"), first.fetch, FakeDestination(), metrics=metrics, dry_run=True)

    second = FakeSourceCluster({"a": make_records("a", 5), "b": make_records("b", 1)})
    result = run_migration(config_for("a", "b"), second.fetch, FakeDestination(), metrics=metrics)

    assert result.collected.rows_by_source == {"a": 5, "b": 1}
    assert result.written.rows_written == 6
    assert metrics.get_timer_stats("collect")["count"] == 2
