"""
Two-phase bulk upsert pipeline.

Build statements -> copy rows into a temp staging table (transaction 1)
-> index and analyze staging -> revision update + upsert (transaction 2).
"""
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Sequence

try:
    from .descriptor import TableDescriptor
    from .exceptions import StatsError
    from .merge_executor import MergeExecutor
    from .preparer import StagingPreparer
    from .query_builder import QueryBuilder
    from .row_stream import QueueRowStream
    from .staging_loader import (
        DEFAULT_PROGRESS_INTERVAL,
        DEFAULT_RECENT_ROWS_WINDOW,
        StagingLoader,
    )
except ImportError:
    from descriptor import TableDescriptor
    from exceptions import StatsError
    from merge_executor import MergeExecutor
    from preparer import StagingPreparer
    from query_builder import QueryBuilder
    from row_stream import QueueRowStream
    from staging_loader import (
        DEFAULT_PROGRESS_INTERVAL,
        DEFAULT_RECENT_ROWS_WINDOW,
        StagingLoader,
    )


class PipelineState(Enum):
    IDLE = "idle"
    BUILDING = "building"
    LOADING = "loading"
    INDEXING = "indexing"
    MERGING = "merging"
    DONE = "done"
    FAILED = "failed"


_ORDER = [
    PipelineState.IDLE,
    PipelineState.BUILDING,
    PipelineState.LOADING,
    PipelineState.INDEXING,
    PipelineState.MERGING,
    PipelineState.DONE,
]


@dataclass
class UpsertResult:
    table: str
    rows_processed: int = 0
    revisions_updated: int = 0
    rows_merged: int = 0
    duration_seconds: float = 0.0
    state: PipelineState = PipelineState.IDLE
    warnings: List[StatsError] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.table,
            "rows_processed": self.rows_processed,
            "revisions_updated": self.revisions_updated,
            "rows_merged": self.rows_merged,
            "duration_seconds": round(self.duration_seconds, 2),
            "state": self.state.value,
            "warnings": [str(w) for w in self.warnings],
        }


class UpsertPipeline:
    """
    Single-shot bulk upsert of a row stream into one target table.

    States move strictly forward through
    IDLE -> BUILDING -> LOADING -> INDEXING -> MERGING -> DONE, and any
    unrecoverable error ends in FAILED. A pipeline instance runs once;
    retry by creating a new one with a fresh row stream.

    All phases share one connection so the temp staging table stays
    visible between the load and merge transactions. The staging table
    is dropped when the run ends, whatever the outcome.

    Two pipelines must not run against the same target table at the same
    time; that exclusion is up to the caller.

    Example:
        >>> descriptor = TableDescriptor.create("users", "id", ["id", "name"], True)
        >>> result = UpsertPipeline(conn, descriptor).run([["1", "Alice2"]])
        >>> result.state
        <PipelineState.DONE: 'done'>
    """

    def __init__(
        self,
        conn,
        descriptor: TableDescriptor,
        progress_interval: int = DEFAULT_PROGRESS_INTERVAL,
        early_duplicate_check: bool = False,
        recent_rows_window: int = DEFAULT_RECENT_ROWS_WINDOW,
    ):
        self.conn = conn
        self.descriptor = descriptor
        self.state = PipelineState.IDLE
        self.log = logging.getLogger(self.__class__.__name__)

        self.query_builder = QueryBuilder()
        self.staging_loader = StagingLoader(
            progress_interval=progress_interval,
            recent_rows_window=recent_rows_window,
            early_duplicate_check=early_duplicate_check,
        )
        self.preparer = StagingPreparer()
        self.merge_executor = MergeExecutor()

    def _transition(self, new_state: PipelineState) -> None:
        if new_state is not PipelineState.FAILED:
            if _ORDER.index(new_state) != _ORDER.index(self.state) + 1:
                raise RuntimeError(
                    f"Invalid pipeline transition {self.state.value} -> {new_state.value}"
                )
        self.log.debug(f"{self.descriptor.target_table}: {self.state.value} -> {new_state.value}")
        self.state = new_state

    def run(self, rows: Iterable[Sequence[Any]]) -> UpsertResult:
        """
        Run the pipeline to completion.

        Args:
            rows: Row stream, consumed exactly once

        Returns:
            UpsertResult: Row counts, duration and final state

        Raises:
            UpsertError: Any fatal pipeline error (BuildError, SchemaError,
                         LoadError, DuplicateKeyError, MergeError)
            RuntimeError: If this pipeline has already run
        """
        if self.state is not PipelineState.IDLE:
            raise RuntimeError("UpsertPipeline is single-shot; create a new pipeline to retry")

        descriptor = self.descriptor
        result = UpsertResult(table=descriptor.target_table)
        start_time = time.time()

        previous_autocommit = self.conn.autocommit
        staging_created = False
        try:
            self._transition(PipelineState.BUILDING)
            merge_sql, revision_sql = self.query_builder.build(descriptor)

            if previous_autocommit:
                self.conn.autocommit = False

            self._transition(PipelineState.LOADING)
            staging_created = True
            result.rows_processed = self.staging_loader.load(self.conn, descriptor, rows)

            self._transition(PipelineState.INDEXING)
            stats_error = self.preparer.prepare(self.conn, descriptor)
            if stats_error is not None:
                result.warnings.append(stats_error)

            self._transition(PipelineState.MERGING)
            counts = self.merge_executor.merge(self.conn, descriptor, merge_sql, revision_sql)
            result.revisions_updated = counts["revisions_updated"]
            result.rows_merged = counts["rows_merged"]

            self._transition(PipelineState.DONE)
        except Exception as e:
            self._transition(PipelineState.FAILED)
            self.log.error(f"Upsert into {descriptor.target_table} failed: {e}")
            raise
        finally:
            if staging_created:
                self._drop_staging_table()
            if isinstance(rows, QueueRowStream):
                # Releases a producer still waiting on a full queue
                rows.stop()
            if previous_autocommit:
                self.conn.autocommit = previous_autocommit
            result.duration_seconds = time.time() - start_time
            result.state = self.state

        return result

    def _drop_staging_table(self) -> None:
        cursor = self.conn.cursor()
        try:
            cursor.execute(f"DROP TABLE IF EXISTS {self.descriptor.staging_table}")
            self.conn.commit()
        except Exception as e:
            # The temp table still goes away with the session
            self.log.warning(f"Could not drop staging table {self.descriptor.staging_table}: {e}")
            try:
                self.conn.rollback()
            except Exception as rollback_error:
                self.log.warning(f"Rollback failed: {rollback_error}")
        finally:
            cursor.close()


def upsert(
    conn,
    table: str,
    id_column: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    revision_tracking: bool = False,
    revision_column: str = "revision",
    progress_interval: int = DEFAULT_PROGRESS_INTERVAL,
    early_duplicate_check: bool = False,
    recent_rows_window: int = DEFAULT_RECENT_ROWS_WINDOW,
) -> UpsertResult:
    """
    Upsert a row stream into ``table`` keyed by ``id_column``.

    Args:
        conn: psycopg2 connection; used for every phase of the run
        table: Target table, optionally schema-qualified
        id_column: Identifier column (must be in columns)
        columns: Column names in the order of each row's fields
        rows: Row stream of string fields; '' is loaded as NULL
        revision_tracking: Increment revision_column on rows that changed
        revision_column: Revision counter column on the target table
        progress_interval: Log progress every this many rows
        early_duplicate_check: Reject repeated identifiers while streaming
        recent_rows_window: Rows kept to report the row behind a COPY error

    Returns:
        UpsertResult: Row counts, duration and final state

    Raises:
        UpsertError: On any fatal failure; the open transaction is rolled back

    Example:
        >>> upsert(conn, "users", "id", ["id", "name"], [["1", "Alice2"]], True)
    """
    descriptor = TableDescriptor.create(
        target_table=table,
        id_column=id_column,
        columns=columns,
        revision_tracking=revision_tracking,
        revision_column=revision_column,
    )
    pipeline = UpsertPipeline(
        conn,
        descriptor,
        progress_interval=progress_interval,
        early_duplicate_check=early_duplicate_check,
        recent_rows_window=recent_rows_window,
    )
    return pipeline.run(rows)
