"""
Test script for the upsert pipeline state machine.

This script tests:
1. A full run and its statement order
2. State transitions and single-shot runs
3. Failure handling in each phase
4. Staging cleanup and autocommit restoration
"""
import sys
from pathlib import Path
from unittest.mock import patch

# Add dags to Python path
sys.path.insert(0, str(Path(__file__).parent / 'dags'))

import psycopg2
import psycopg2.errors

from fake_postgres import FakeConnection
from tasks.upsert import (
    BuildError,
    DuplicateKeyError,
    LoadError,
    MergeError,
    PipelineState,
    QueryBuilder,
    TableDescriptor,
    UpsertPipeline,
    upsert,
)

USERS = TableDescriptor.create("users", "id", ["id", "name"], revision_tracking=True)

ROWS = [["1", "Alice2"], ["2", "Bob"]]


class AutocommitTrackingConnection(FakeConnection):
    """Records the autocommit setting at every commit."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.autocommit_at_commit = []

    def commit(self):
        self.autocommit_at_commit.append(self.autocommit)
        super().commit()


def test_full_run():
    """Test the phase order of a successful run."""
    print("=" * 60)
    print("TEST 1: Full Run")
    print("=" * 60)

    merge_sql, revision_sql = QueryBuilder().build(USERS)
    conn = FakeConnection(rowcounts={"UPDATE users": 1, "INSERT INTO users": 2})

    result = UpsertPipeline(conn, USERS).run(iter(ROWS))

    assert conn.events == [
        "CREATE TEMP TABLE users_temp (LIKE users)",
        "COPY users_temp (id, name) FROM STDIN WITH (FORMAT csv)",
        "COMMIT",
        "CREATE UNIQUE INDEX ON users_temp (id)",
        "COMMIT",
        "ANALYZE users_temp",
        "COMMIT",
        revision_sql,
        merge_sql,
        "COMMIT",
        "DROP TABLE IF EXISTS users_temp",
        "COMMIT",
    ]
    assert result.state is PipelineState.DONE
    assert result.rows_processed == 2
    assert result.revisions_updated == 1
    assert result.rows_merged == 2
    assert result.warnings == []
    assert result.duration_seconds >= 0

    summary = result.to_dict()
    assert summary["state"] == "done"
    assert summary["table"] == "users"
    print(f"✓ {summary}")


def test_state_transitions():
    """Test that states only move forward and runs are single-shot."""
    print("\n" + "=" * 60)
    print("TEST 2: State Transitions")
    print("=" * 60)

    pipeline = UpsertPipeline(FakeConnection(), USERS)
    assert pipeline.state is PipelineState.IDLE

    try:
        pipeline._transition(PipelineState.MERGING)
    except RuntimeError as e:
        print(f"✓ Skipping phases rejected: {e}")
    else:
        raise AssertionError("IDLE -> MERGING should be rejected")

    pipeline.run(ROWS)
    assert pipeline.state is PipelineState.DONE

    try:
        pipeline.run(ROWS)
    except RuntimeError:
        print("✓ Second run rejected")
    else:
        raise AssertionError("Pipeline ran twice")

    try:
        pipeline._transition(PipelineState.LOADING)
    except RuntimeError:
        print("✓ No transitions out of DONE except FAILED")
    else:
        raise AssertionError("DONE -> LOADING should be rejected")


def test_build_failure():
    """Test that a build failure happens before any I/O."""
    print("\n" + "=" * 60)
    print("TEST 3: Build Failure")
    print("=" * 60)

    conn = FakeConnection()
    pipeline = UpsertPipeline(conn, USERS)

    with patch.object(pipeline.query_builder, "build", side_effect=BuildError("boom", table="users")):
        try:
            pipeline.run(ROWS)
        except BuildError:
            pass
        else:
            raise AssertionError("BuildError not raised")

    assert pipeline.state is PipelineState.FAILED
    assert conn.events == []
    print("✓ No statements issued, state FAILED")


def test_load_failure_cleans_up():
    """Test that a load failure rolls back and drops staging."""
    print("\n" + "=" * 60)
    print("TEST 4: Load Failure")
    print("=" * 60)

    conn = FakeConnection()
    pipeline = UpsertPipeline(conn, USERS)
    try:
        pipeline.run([["1", "Alice"], ["2", "Bob", "extra"]])
    except LoadError as e:
        assert e.line_number == 2
    else:
        raise AssertionError("LoadError not raised")

    assert pipeline.state is PipelineState.FAILED
    assert conn.statements("CREATE UNIQUE INDEX") == []
    assert conn.statements("INSERT") == []
    assert conn.events[-2:] == ["DROP TABLE IF EXISTS users_temp", "COMMIT"]
    print("✓ Load rolled back, merge never attempted, staging dropped")


def test_duplicate_identifiers_abort_before_merge():
    """Test that duplicate identifiers stop the run before the merge."""
    print("\n" + "=" * 60)
    print("TEST 5: Duplicate Identifiers")
    print("=" * 60)

    conn = FakeConnection(failures={
        "CREATE UNIQUE INDEX": psycopg2.errors.UniqueViolation(
            'could not create unique index "users_temp_id_idx"'
        ),
    })
    pipeline = UpsertPipeline(conn, USERS)
    try:
        pipeline.run([["1", "Alice"], ["1", "Alice"]])
    except DuplicateKeyError:
        pass
    else:
        raise AssertionError("DuplicateKeyError not raised")

    assert pipeline.state is PipelineState.FAILED
    assert conn.statements("UPDATE") == []
    assert conn.statements("INSERT") == []
    print("✓ Target table never touched")

    conn = FakeConnection()
    try:
        upsert(conn, "users", "id", ["id", "name"], [["1", "a"], ["1", "b"]],
               early_duplicate_check=True)
    except DuplicateKeyError as e:
        assert e.line_number == 2
        print(f"✓ Early check reports line {e.line_number}")
    else:
        raise AssertionError("DuplicateKeyError not raised")


def test_merge_failure():
    """Test that a merge failure leaves the run FAILED with staging dropped."""
    print("\n" + "=" * 60)
    print("TEST 6: Merge Failure")
    print("=" * 60)

    conn = FakeConnection(failures={
        "INSERT INTO users": psycopg2.errors.CheckViolation("violates check constraint"),
    })
    pipeline = UpsertPipeline(conn, USERS)
    try:
        pipeline.run(ROWS)
    except MergeError:
        pass
    else:
        raise AssertionError("MergeError not raised")

    assert pipeline.state is PipelineState.FAILED
    merge_commit = conn.events.index("ROLLBACK")
    assert "DROP TABLE IF EXISTS users_temp" in conn.events[merge_commit:]
    print("✓ Merge rolled back and staging dropped")


def test_stats_warning():
    """Test that an ANALYZE failure is a warning, not a failure."""
    print("\n" + "=" * 60)
    print("TEST 7: Statistics Warning")
    print("=" * 60)

    conn = FakeConnection(failures={
        "ANALYZE": psycopg2.errors.InsufficientPrivilege("permission denied"),
    })
    result = UpsertPipeline(conn, USERS).run(ROWS)

    assert result.state is PipelineState.DONE
    assert len(result.warnings) == 1
    assert conn.statements("INSERT INTO users")
    print(f"✓ Completed with warning: {result.warnings[0].message}")


def test_staging_drop_failure():
    """Test that a failed staging drop does not fail the run."""
    print("\n" + "=" * 60)
    print("TEST 8: Staging Drop Failure")
    print("=" * 60)

    conn = FakeConnection(failures={
        "DROP TABLE": psycopg2.OperationalError("server closed the connection"),
    })
    result = UpsertPipeline(conn, USERS).run(ROWS)

    assert result.state is PipelineState.DONE
    assert conn.events[-1] == "ROLLBACK"
    print("✓ Run still DONE")


def test_autocommit_restored():
    """Test that autocommit is off during the run and restored afterwards."""
    print("\n" + "=" * 60)
    print("TEST 9: Autocommit Handling")
    print("=" * 60)

    conn = AutocommitTrackingConnection()
    conn.autocommit = True
    result = upsert(conn, "users", "id", ["id", "name"], ROWS)

    assert result.state is PipelineState.DONE
    assert conn.autocommit_at_commit and not any(conn.autocommit_at_commit)
    assert conn.autocommit is True
    print("✓ Every phase committed explicitly; autocommit restored")

    conn = AutocommitTrackingConnection(failures={
        "INSERT INTO users": psycopg2.errors.CheckViolation("violates check constraint"),
    })
    conn.autocommit = True
    try:
        upsert(conn, "users", "id", ["id", "name"], ROWS)
    except MergeError:
        pass
    assert conn.autocommit is True
    print("✓ Restored after a failure too")


def main():
    """Run all tests."""
    print("\n" + "=" * 60)
    print("UPSERT PIPELINE TEST SUITE")
    print("=" * 60 + "\n")

    tests = {
        "Full Run": test_full_run,
        "State Transitions": test_state_transitions,
        "Build Failure": test_build_failure,
        "Load Failure": test_load_failure_cleans_up,
        "Duplicate Identifiers": test_duplicate_identifiers_abort_before_merge,
        "Merge Failure": test_merge_failure,
        "Statistics Warning": test_stats_warning,
        "Staging Drop Failure": test_staging_drop_failure,
        "Autocommit Handling": test_autocommit_restored,
    }

    results = {}
    for test_name, test in tests.items():
        try:
            test()
            results[test_name] = True
        except AssertionError as e:
            print(f"✗ {test_name}: {e}")
            results[test_name] = False

    print("\n" + "=" * 60)
    print("TEST RESULTS SUMMARY")
    print("=" * 60)

    for test_name, passed in results.items():
        status = "✓ PASS" if passed else "✗ FAIL"
        print(f"{status}: {test_name}")

    total = len(results)
    passed = sum(results.values())

    print("\n" + "-" * 60)
    print(f"Total: {passed}/{total} tests passed")
    print("-" * 60 + "\n")

    return 0 if passed == total else 1


if __name__ == "__main__":
    sys.exit(main())
