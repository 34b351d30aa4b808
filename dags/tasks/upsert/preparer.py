"""Index and statistics preparation for the staging table."""
import logging
from typing import Optional

from psycopg2 import errorcodes, errors

try:
    from .descriptor import TableDescriptor
    from .exceptions import DuplicateKeyError, SchemaError, StatsError
except ImportError:
    from descriptor import TableDescriptor
    from exceptions import DuplicateKeyError, SchemaError, StatsError


def is_unique_violation(error: BaseException) -> bool:
    if isinstance(error, errors.UniqueViolation):
        return True
    return getattr(error, "pgcode", None) == errorcodes.UNIQUE_VIOLATION


class StagingPreparer:
    """
    Index and analyze the committed staging table before the merge.

    The unique index on the identifier column makes the merge join cheap
    and is the check that the input had at most one row per identifier.
    Refreshing statistics only affects the query plan, so its failure is
    logged and the run carries on.
    """

    def __init__(self):
        self.log = logging.getLogger(self.__class__.__name__)

    def prepare(self, conn, descriptor: TableDescriptor) -> Optional[StatsError]:
        """
        Create the unique identifier index and refresh planner statistics.

        Args:
            conn: psycopg2 connection holding the staging table
            descriptor: Table descriptor for this run

        Returns:
            Optional[StatsError]: The non-fatal statistics failure, if any

        Raises:
            DuplicateKeyError: If the staging table holds a repeated identifier
            SchemaError: If the index can't be built for another reason
        """
        table = descriptor.target_table
        cursor = conn.cursor()
        try:
            self.log.info("Creating table index")
            try:
                cursor.execute(
                    f"CREATE UNIQUE INDEX ON {descriptor.staging_table} ({descriptor.id_column})"
                )
                conn.commit()
            except Exception as e:
                self._rollback(conn)
                if is_unique_violation(e):
                    raise DuplicateKeyError(
                        f"Input rows contain duplicate values for {descriptor.id_column}",
                        table=table,
                        cause=e,
                    ) from e
                raise SchemaError(
                    f"Failed to index staging table {descriptor.staging_table}",
                    table=table,
                    cause=e,
                ) from e

            self.log.info("Analyzing table")
            try:
                cursor.execute(f"ANALYZE {descriptor.staging_table}")
                conn.commit()
            except Exception as e:
                self._rollback(conn)
                stats_error = StatsError(
                    f"Failed to analyze staging table {descriptor.staging_table}",
                    table=table,
                    cause=e,
                )
                self.log.warning(str(stats_error))
                return stats_error
        finally:
            cursor.close()

        return None

    def _rollback(self, conn) -> None:
        try:
            conn.rollback()
        except Exception as e:
            self.log.warning(f"Rollback failed: {e}")
