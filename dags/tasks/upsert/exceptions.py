"""Exception hierarchy for the bulk upsert pipeline."""
from typing import Any, Dict, Optional, Sequence


class UpsertError(Exception):
    """
    Base exception for all upsert pipeline failures.

    Carries the target table, the offending row (when one is known), the
    COPY line number (when the server reported one) and the underlying
    driver error, and renders them into the message for log output.
    """

    def __init__(
        self,
        message: str,
        *,
        table: Optional[str] = None,
        row: Optional[Sequence[Any]] = None,
        line_number: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        self.table = table
        self.row = list(row) if row is not None else None
        self.line_number = line_number
        self.cause = cause

        parts = [message]
        if table:
            parts.append(f"  table: {table}")
        if line_number is not None:
            parts.append(f"  line: {line_number}")
        if self.row is not None:
            parts.append(f"  row: {self.row}")
        if cause is not None:
            parts.append(f"  cause: {type(cause).__name__}: {str(cause).strip()}")

        super().__init__("\n".join(parts))
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "table": self.table,
            "row": self.row,
            "line_number": self.line_number,
            "cause": str(self.cause) if self.cause is not None else None,
        }


class BuildError(UpsertError):
    """Statement rendering failed; no I/O has happened yet."""


class InvalidDescriptorError(BuildError, ValueError):
    """The table descriptor violates one of its invariants."""


class SchemaError(UpsertError):
    """The staging table could not be created from the target table."""


class LoadError(UpsertError):
    """
    A row could not be appended to the staging table.

    line_number is always set when the server reported one. The row itself
    is only attached when it was among the last recent_rows_window rows
    sent (default 1000): the driver streams the whole input before the
    server answers, so an earlier bad row is identified by line only.
    Raise recent_rows_window to keep more rows for error reports.
    """


class DuplicateKeyError(UpsertError):
    """The row stream contained the same identifier more than once."""


class StatsError(UpsertError):
    """Refreshing planner statistics failed. Never fatal."""


class MergeError(UpsertError):
    """The revision or upsert statement failed; the merge was rolled back."""
