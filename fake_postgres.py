"""In-memory stand-ins for a psycopg2 connection and cursor, used by the tests."""

from typing import Dict, List, Optional

import psycopg2.errors


class FakeCursor:
    """Records statements on its connection and drains COPY readers like psycopg2 does."""

    def __init__(self, conn: "FakeConnection"):
        self.conn = conn
        self.rowcount = -1
        self.closed = False

    def execute(self, sql: str) -> None:
        self.conn.events.append(sql)
        for fragment, error in self.conn.failures.items():
            if fragment in sql:
                raise error
        self.rowcount = -1
        for fragment, count in self.conn.rowcounts.items():
            if fragment in sql:
                self.rowcount = count

    def copy_expert(self, sql: str, file, size: int = 8192) -> None:
        self.conn.events.append(sql)
        try:
            while True:
                chunk = file.read(size)
                if not chunk:
                    break
                self.conn.copied.append(chunk)
        except Exception as e:
            # psycopg2 replaces errors raised by read() with its own
            raise psycopg2.errors.QueryCanceled(
                f"COPY from stdin failed: error in .read() call: {type(e).__name__} {e}"
            )
        if self.conn.copy_error is not None:
            raise self.conn.copy_error

    def close(self) -> None:
        self.closed = True


class FakeConnection:
    """
    Connection double with scripted failures.

    Args:
        failures: Maps a SQL fragment to the exception execute() raises for it
        rowcounts: Maps a SQL fragment to the rowcount execute() reports
        copy_error: Exception raised once a COPY has drained its reader
        commit_error: Exception raised by the next commit()
    """

    def __init__(
        self,
        failures: Optional[Dict[str, Exception]] = None,
        rowcounts: Optional[Dict[str, int]] = None,
        copy_error: Optional[Exception] = None,
        commit_error: Optional[Exception] = None,
    ):
        self.failures = failures or {}
        self.rowcounts = rowcounts or {}
        self.copy_error = copy_error
        self.commit_error = commit_error
        self.events: List[str] = []
        self.copied: List[str] = []
        self.autocommit = False
        self.closed = False

    def cursor(self) -> FakeCursor:
        return FakeCursor(self)

    def commit(self) -> None:
        if self.commit_error is not None:
            error, self.commit_error = self.commit_error, None
            raise error
        self.events.append("COMMIT")

    def rollback(self) -> None:
        self.events.append("ROLLBACK")

    def close(self) -> None:
        self.closed = True

    @property
    def copied_text(self) -> str:
        return "".join(self.copied)

    def statements(self, prefix: str) -> List[str]:
        return [event for event in self.events if event.startswith(prefix)]
