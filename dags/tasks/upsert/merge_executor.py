"""Merge executor: applies revision and upsert statements in one transaction."""
import logging
from typing import Dict

try:
    from .descriptor import TableDescriptor
    from .exceptions import MergeError
except ImportError:
    from descriptor import TableDescriptor
    from exceptions import MergeError


class MergeExecutor:
    """
    Merge the indexed staging table into the target table.

    Runs the revision statement (if any) and then the upsert statement in
    a single transaction. If either fails, both are rolled back: a revision
    bump is never recorded without its upsert.
    """

    def __init__(self):
        self.log = logging.getLogger(self.__class__.__name__)

    def merge(
        self, conn, descriptor: TableDescriptor, merge_sql: str, revision_sql: str = ""
    ) -> Dict[str, int]:
        """
        Apply the merge.

        Args:
            conn: psycopg2 connection holding the staging table
            descriptor: Table descriptor for this run
            merge_sql: Upsert statement from QueryBuilder
            revision_sql: Revision statement from QueryBuilder, '' to skip

        Returns:
            Dict[str, int]: revisions_updated and rows_merged counts

        Raises:
            MergeError: If any statement or the commit fails
        """
        revisions_updated = 0
        rows_merged = 0

        cursor = conn.cursor()
        try:
            if revision_sql:
                self.log.info("Calculating revisions...")
                cursor.execute(revision_sql)
                revisions_updated = max(cursor.rowcount, 0)
                self.log.info(f"Updated revision on {revisions_updated} rows")

            self.log.info("Performing upsert...")
            cursor.execute(merge_sql)
            rows_merged = max(cursor.rowcount, 0)

            self.log.info("Committing transaction...")
            conn.commit()
        except Exception as e:
            self.log.error(f"Merge into {descriptor.target_table} failed: {e}")
            try:
                conn.rollback()
            except Exception as rollback_error:
                self.log.warning(f"Rollback failed: {rollback_error}")
            raise MergeError(
                "Merge failed, transaction rolled back",
                table=descriptor.target_table,
                cause=e,
            ) from e
        finally:
            cursor.close()

        self.log.info("Done")
        return {"revisions_updated": revisions_updated, "rows_merged": rows_merged}
