"""Staging loader: bulk-copies a row stream into a session-local temp table."""
import logging
import re
import time
from collections import deque
from typing import Any, Deque, Iterable, List, Optional, Sequence, Set, Tuple

try:
    from .descriptor import TableDescriptor
    from .exceptions import DuplicateKeyError, LoadError, SchemaError, UpsertError
except ImportError:
    from descriptor import TableDescriptor
    from exceptions import DuplicateKeyError, LoadError, SchemaError, UpsertError


DEFAULT_PROGRESS_INTERVAL = 100000
DEFAULT_RECENT_ROWS_WINDOW = 1000

# e.g. 'COPY users_temp, line 3, column id: "abc"'
COPY_LINE_RE = re.compile(r"\bline (\d+)")


def encode_field(value: Any) -> str:
    """
    Encode one field for COPY ... WITH (FORMAT csv).

    An empty string (or None) becomes an unquoted empty value, which COPY
    reads as NULL. Everything else is quoted, so it is stored literally.
    """
    if value is None or (isinstance(value, str) and value == ""):
        return ""
    text = value if isinstance(value, str) else str(value)
    return '"' + text.replace('"', '""') + '"'


def encode_row(row: Sequence[Any]) -> str:
    return ",".join(encode_field(value) for value in row) + "\n"


def copy_line_number(error: BaseException) -> Optional[int]:
    """Extract the failing COPY line number from a driver error, if reported."""
    diag = getattr(error, "diag", None)
    context = getattr(diag, "context", None) or str(error)
    match = COPY_LINE_RE.search(context)
    return int(match.group(1)) if match else None


class CopyRowReader:
    """
    File-like object that feeds a row stream to ``cursor.copy_expert``.

    Rows are pulled from the stream and encoded only when the driver asks
    for more data, so the stream is never held in memory. The reader
    counts rows, logs progress, checks field counts, optionally rejects
    repeated identifiers, and remembers the last few rows so a server-side
    COPY failure can be traced back to its row.

    The driver replaces exceptions raised inside read() with its own
    error, so the original is kept in ``self.error``.
    """

    def __init__(
        self,
        rows: Iterable[Sequence[Any]],
        descriptor: TableDescriptor,
        progress_interval: int = DEFAULT_PROGRESS_INTERVAL,
        recent_rows_window: int = DEFAULT_RECENT_ROWS_WINDOW,
        early_duplicate_check: bool = False,
        log: Optional[logging.Logger] = None,
    ):
        self.descriptor = descriptor
        self.progress_interval = progress_interval
        self.early_duplicate_check = early_duplicate_check
        self.log = log or logging.getLogger(self.__class__.__name__)

        self.rows_processed = 0
        self.error: Optional[UpsertError] = None

        self._iterator = iter(rows)
        self._exhausted = False
        self._width = len(descriptor.columns)
        self._id_index = descriptor.columns.index(descriptor.id_column)
        self._seen_ids: Set[str] = set()
        self._recent: Deque[Tuple[int, List[Any]]] = deque(maxlen=max(recent_rows_window, 0))

    def read(self, size: int = -1) -> str:
        if self._exhausted:
            return ""

        chunks = []
        length = 0
        try:
            while size is None or size < 0 or length < size:
                line = self._next_line()
                if line is None:
                    self._exhausted = True
                    break
                chunks.append(line)
                length += len(line)
        except UpsertError as e:
            self.error = e
            raise

        return "".join(chunks)

    def close(self) -> None:
        """Close the row stream iterator, releasing its producer and source."""
        close = getattr(self._iterator, "close", None)
        if close is not None:
            close()
        self._exhausted = True

    def row_at(self, line_number: Optional[int]) -> Optional[List[Any]]:
        """Return the row sent as COPY line ``line_number`` if it is still remembered."""
        if line_number is None:
            return None
        for number, row in self._recent:
            if number == line_number:
                return row
        return None

    def _next_line(self) -> Optional[str]:
        table = self.descriptor.target_table
        line_number = self.rows_processed + 1

        try:
            row = next(self._iterator)
        except StopIteration:
            return None
        except Exception as e:
            raise LoadError(
                "Row stream failed", table=table, line_number=line_number, cause=e
            ) from e

        row = list(row)
        if len(row) != self._width:
            raise LoadError(
                f"Row has {len(row)} fields, expected {self._width}",
                table=table,
                row=row,
                line_number=line_number,
            )

        if self.early_duplicate_check:
            self._check_duplicate(row, line_number)

        line = encode_row(row)
        self._recent.append((line_number, row))
        self.rows_processed = line_number

        if self.progress_interval and self.rows_processed % self.progress_interval == 0:
            self.log.info(f"Processed {self.rows_processed} rows...")

        return line

    def _check_duplicate(self, row: List[Any], line_number: int) -> None:
        value = row[self._id_index]
        # NULL identifiers never conflict with each other
        if value is None or value == "":
            return
        key = str(value)
        if key in self._seen_ids:
            raise DuplicateKeyError(
                f"Duplicate identifier {self.descriptor.id_column}={key!r} in input rows",
                table=self.descriptor.target_table,
                row=row,
                line_number=line_number,
            )
        self._seen_ids.add(key)


class StagingLoader:
    """
    Load a row stream into the staging table in its own transaction.

    Creates ``<staging> (LIKE <target>)`` as a temporary table, streams
    every row into it with COPY and commits. Any failure rolls the whole
    phase back, so a partial staging load is never committed.

    Example:
        >>> loader = StagingLoader()
        >>> rows_processed = loader.load(conn, descriptor, [["1", "Alice"]])
    """

    def __init__(
        self,
        progress_interval: int = DEFAULT_PROGRESS_INTERVAL,
        recent_rows_window: int = DEFAULT_RECENT_ROWS_WINDOW,
        early_duplicate_check: bool = False,
    ):
        self.progress_interval = progress_interval
        self.recent_rows_window = recent_rows_window
        self.early_duplicate_check = early_duplicate_check
        self.log = logging.getLogger(self.__class__.__name__)

    def create_staging_table_sql(self, descriptor: TableDescriptor) -> str:
        return f"CREATE TEMP TABLE {descriptor.staging_table} (LIKE {descriptor.target_table})"

    def copy_sql(self, descriptor: TableDescriptor) -> str:
        column_list = ", ".join(descriptor.columns)
        return f"COPY {descriptor.staging_table} ({column_list}) FROM STDIN WITH (FORMAT csv)"

    def load(self, conn, descriptor: TableDescriptor, rows: Iterable[Sequence[Any]]) -> int:
        """
        Create the staging table and bulk-copy rows into it.

        Args:
            conn: psycopg2 connection with autocommit disabled
            descriptor: Table descriptor for this run
            rows: Row stream; each row's fields line up with descriptor.columns

        Returns:
            int: Number of rows copied

        Raises:
            SchemaError: If the staging table can't be created
            LoadError: If a row or the stream itself fails
            DuplicateKeyError: If early duplicate checking finds a repeat
        """
        table = descriptor.target_table
        start_time = time.time()
        self.log.info("Starting database write...")

        reader = None
        cursor = conn.cursor()
        try:
            try:
                cursor.execute(self.create_staging_table_sql(descriptor))
            except Exception as e:
                raise SchemaError(
                    f"Failed to create staging table {descriptor.staging_table}",
                    table=table,
                    cause=e,
                ) from e

            reader = CopyRowReader(
                rows,
                descriptor,
                progress_interval=self.progress_interval,
                recent_rows_window=self.recent_rows_window,
                early_duplicate_check=self.early_duplicate_check,
                log=self.log,
            )

            try:
                cursor.copy_expert(self.copy_sql(descriptor), reader)
            except UpsertError:
                raise
            except Exception as e:
                if reader.error is not None:
                    raise reader.error from e
                line_number = copy_line_number(e)
                raise LoadError(
                    "Failed to copy rows into staging table",
                    table=table,
                    row=reader.row_at(line_number),
                    line_number=line_number,
                    cause=e,
                ) from e

            # This transaction only covers the copy; the merge gets its own
            try:
                conn.commit()
            except Exception as e:
                raise LoadError("Failed to commit staging load", table=table, cause=e) from e

        except Exception:
            self._rollback(conn)
            raise
        finally:
            if reader is not None:
                reader.close()
            cursor.close()

        duration = int(time.time() - start_time)
        self.log.info(
            f"Processed {reader.rows_processed} rows total, took "
            f"{duration // 60}:{duration % 60:02d}"
        )
        return reader.rows_processed

    def _rollback(self, conn) -> None:
        try:
            conn.rollback()
        except Exception as e:
            self.log.warning(f"Rollback of staging load failed: {e}")
