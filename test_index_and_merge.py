"""
Test script for the staging preparer and the merge executor.

This script tests:
1. Unique index creation and statistics refresh
2. Duplicate identifiers caught by the unique index
3. Non-fatal statistics failures
4. Revision update and upsert in one transaction
5. Merge rollback on failure
"""
import sys
from pathlib import Path

# Add dags to Python path
sys.path.insert(0, str(Path(__file__).parent / 'dags'))

import psycopg2
import psycopg2.errors

from fake_postgres import FakeConnection
from tasks.upsert import (
    DuplicateKeyError,
    MergeError,
    MergeExecutor,
    QueryBuilder,
    SchemaError,
    StagingPreparer,
    StatsError,
    TableDescriptor,
)
from tasks.upsert.preparer import is_unique_violation

USERS = TableDescriptor.create("users", "id", ["id", "name"], revision_tracking=True)


class CodedError(Exception):
    """Driver-agnostic error carrying only a SQLSTATE."""

    def __init__(self, message, pgcode):
        super().__init__(message)
        self.pgcode = pgcode


def test_prepare_staging():
    """Test index creation and analyze, each committed."""
    print("=" * 60)
    print("TEST 1: Index and Analyze")
    print("=" * 60)

    conn = FakeConnection()
    assert StagingPreparer().prepare(conn, USERS) is None
    assert conn.events == [
        "CREATE UNIQUE INDEX ON users_temp (id)",
        "COMMIT",
        "ANALYZE users_temp",
        "COMMIT",
    ]
    print("✓ Index and statistics committed")


def test_duplicate_identifiers():
    """Test that the unique index reports duplicate identifiers."""
    print("\n" + "=" * 60)
    print("TEST 2: Duplicate Identifiers")
    print("=" * 60)

    violation = psycopg2.errors.UniqueViolation(
        'could not create unique index "users_temp_id_idx"\n'
        'DETAIL:  Key (id)=(1) is duplicated.'
    )
    assert is_unique_violation(violation)
    assert is_unique_violation(CodedError("duplicate key", "23505"))
    assert not is_unique_violation(CodedError("out of memory", "53200"))
    print("✓ Unique violations recognised by class and by SQLSTATE")

    conn = FakeConnection(failures={"CREATE UNIQUE INDEX": violation})
    try:
        StagingPreparer().prepare(conn, USERS)
    except DuplicateKeyError as e:
        assert e.cause is violation
        assert e.table == "users"
        assert conn.events[-1] == "ROLLBACK"
        assert conn.statements("ANALYZE") == []
        print(f"✓ {e.message}")
    else:
        raise AssertionError("DuplicateKeyError not raised")

    conn = FakeConnection(failures={
        "CREATE UNIQUE INDEX": psycopg2.errors.DiskFull("could not extend file"),
    })
    try:
        StagingPreparer().prepare(conn, USERS)
    except SchemaError as e:
        assert not isinstance(e, DuplicateKeyError)
        print(f"✓ Other index failures: {e.message}")
        return
    raise AssertionError("SchemaError not raised")


def test_analyze_failure_is_not_fatal():
    """Test that a failed ANALYZE is returned as a warning."""
    print("\n" + "=" * 60)
    print("TEST 3: Statistics Failure")
    print("=" * 60)

    conn = FakeConnection(failures={
        "ANALYZE": psycopg2.errors.InsufficientPrivilege("permission denied"),
    })
    warning = StagingPreparer().prepare(conn, USERS)

    assert isinstance(warning, StatsError)
    assert conn.events == [
        "CREATE UNIQUE INDEX ON users_temp (id)",
        "COMMIT",
        "ANALYZE users_temp",
        "ROLLBACK",
    ]
    print(f"✓ Returned warning: {warning.message}")


def test_merge_with_revisions():
    """Test revision update followed by upsert and a single commit."""
    print("\n" + "=" * 60)
    print("TEST 4: Merge With Revisions")
    print("=" * 60)

    merge_sql, revision_sql = QueryBuilder().build(USERS)
    conn = FakeConnection(rowcounts={"UPDATE users": 1, "INSERT INTO users": 3})

    counts = MergeExecutor().merge(conn, USERS, merge_sql, revision_sql)

    assert counts == {"revisions_updated": 1, "rows_merged": 3}
    assert conn.events == [revision_sql, merge_sql, "COMMIT"]
    print(f"✓ {counts}")

    conn = FakeConnection(rowcounts={"INSERT INTO users": 2})
    counts = MergeExecutor().merge(conn, USERS, merge_sql)
    assert counts == {"revisions_updated": 0, "rows_merged": 2}
    assert conn.events == [merge_sql, "COMMIT"]
    print("✓ Revision statement skipped when empty")


def test_merge_rollback():
    """Test that a failing upsert rolls back the revision update too."""
    print("\n" + "=" * 60)
    print("TEST 5: Merge Rollback")
    print("=" * 60)

    merge_sql, revision_sql = QueryBuilder().build(USERS)
    conn = FakeConnection(failures={
        "INSERT INTO users": psycopg2.errors.NotNullViolation(
            'null value in column "name" violates not-null constraint'
        ),
    })

    try:
        MergeExecutor().merge(conn, USERS, merge_sql, revision_sql)
    except MergeError as e:
        assert e.message == "Merge failed, transaction rolled back"
        assert conn.events == [revision_sql, merge_sql, "ROLLBACK"]
        assert "COMMIT" not in conn.events
        print(f"✓ {e.message}")
        return
    raise AssertionError("MergeError not raised")


def main():
    """Run all tests."""
    print("\n" + "=" * 60)
    print("INDEX AND MERGE TEST SUITE")
    print("=" * 60 + "\n")

    tests = {
        "Index and Analyze": test_prepare_staging,
        "Duplicate Identifiers": test_duplicate_identifiers,
        "Statistics Failure": test_analyze_failure_is_not_fatal,
        "Merge With Revisions": test_merge_with_revisions,
        "Merge Rollback": test_merge_rollback,
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
