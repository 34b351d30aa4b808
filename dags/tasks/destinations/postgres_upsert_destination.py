"""PostgreSQL destination that bulk-loads a row stream and merges it by identifier."""

import logging
import time
from typing import Any, Dict, Iterable, Sequence

from airflow.providers.postgres.hooks.postgres import PostgresHook

from tasks.upsert import TableDescriptor, UpsertPipeline
from tasks.upsert.staging_loader import DEFAULT_PROGRESS_INTERVAL, DEFAULT_RECENT_ROWS_WINDOW

try:
    from .base_destination import BaseDestination
except ImportError:
    from base_destination import BaseDestination


class PostgresUpsertDestination(BaseDestination):
    """
    Upsert a row stream into PostgreSQL using Airflow's Postgres provider.

    Features:
    - COPY into a session-local temp staging table (one transaction)
    - Unique index on the staging identifier column (duplicate detection)
    - INSERT ... ON CONFLICT merge into the target (second transaction)
    - Optional revision counter bumped only on rows that actually changed
    - Empty string fields are stored as NULL

    Configuration:
        postgres_conn_id (str): Airflow connection ID for PostgreSQL (default: 'postgres_default')
        table_name (str): Target table, optionally schema-qualified (required)
        id_column (str): Identifier column used for conflict resolution (required)
        columns (list): Column names in row field order (required)
        revision_tracking (bool): Track changed rows with a revision counter (default: False)
        revision_column (str): Revision counter column (default: 'revision')
        progress_interval (int): Log progress every N rows (default: 100000)
        early_duplicate_check (bool): Reject repeated identifiers while streaming (default: False)
        recent_rows_window (int): Rows remembered for COPY error reports (default: 1000).
            A value the server rejects is reported with its line number; the
            row itself is attached only if it was among the last N rows sent.
            Raise this for inputs whose bad rows must be echoed in full.

    Example config:
        {
            "type": "postgres_upsert",
            "postgres_conn_id": "postgres_default",
            "table_name": "public.users",
            "id_column": "id",
            "columns": ["id", "name", "email"],
            "revision_tracking": true
        }
    """

    def __init__(self, config: Dict[str, Any]):
        """Initialize PostgreSQL upsert destination with configuration."""
        super().__init__(config)
        self.validate_config()

        self.log = logging.getLogger(self.__class__.__name__)

        # Get configuration with defaults
        self.postgres_conn_id = config.get("postgres_conn_id", "postgres_default")
        self.table_name = config["table_name"]
        self.id_column = config["id_column"]
        self.columns = list(config["columns"])
        self.revision_tracking = config.get("revision_tracking", False)
        self.revision_column = config.get("revision_column", "revision")
        self.progress_interval = config.get("progress_interval", DEFAULT_PROGRESS_INTERVAL)
        self.early_duplicate_check = config.get("early_duplicate_check", False)
        self.recent_rows_window = config.get("recent_rows_window", DEFAULT_RECENT_ROWS_WINDOW)

        # Raises InvalidDescriptorError (a ValueError) on bad names
        self.descriptor = TableDescriptor.create(
            target_table=self.table_name,
            id_column=self.id_column,
            columns=self.columns,
            revision_tracking=self.revision_tracking,
            revision_column=self.revision_column,
        )

    def validate_config(self) -> None:
        """
        Validate required configuration parameters.

        Raises:
            ValueError: If required parameters are missing or invalid
        """
        required_fields = ["table_name", "id_column", "columns"]
        missing_fields = [
            field for field in required_fields if not self.config.get(field)
        ]
        if missing_fields:
            raise ValueError(
                f"Missing required configuration fields: {', '.join(missing_fields)}"
            )

        if not isinstance(self.config["columns"], list):
            raise ValueError("Configuration field 'columns' must be a list")

        progress_interval = self.config.get("progress_interval", DEFAULT_PROGRESS_INTERVAL)
        if not isinstance(progress_interval, int) or progress_interval < 0:
            raise ValueError(
                f"Invalid progress_interval '{progress_interval}'. Must be a non-negative integer"
            )

        recent_rows_window = self.config.get("recent_rows_window", DEFAULT_RECENT_ROWS_WINDOW)
        if not isinstance(recent_rows_window, int) or recent_rows_window < 0:
            raise ValueError(
                f"Invalid recent_rows_window '{recent_rows_window}'. Must be a non-negative integer"
            )

    def pre_load_hook(self) -> None:
        self.log.info(
            f"Upserting into {self.table_name} on {self.id_column} "
            f"({len(self.columns)} columns, revision tracking "
            f"{'on' if self.revision_tracking else 'off'})"
        )

    def load(self, rows: Iterable[Sequence[str]]) -> Dict[str, Any]:
        """
        Bulk upsert a row stream into the target table.

        Args:
            rows: Single-pass iterable of rows lined up with 'columns'

        Returns:
            Dict with load metadata including rows_loaded, status and duration_seconds

        Raises:
            UpsertError: If any pipeline phase fails; the target table is
                         left unchanged
        """
        start_time = time.time()

        hook = PostgresHook(postgres_conn_id=self.postgres_conn_id)

        # One connection for the whole run: the staging table is session-local
        conn = hook.get_conn()
        try:
            pipeline = UpsertPipeline(
                conn,
                self.descriptor,
                progress_interval=self.progress_interval,
                early_duplicate_check=self.early_duplicate_check,
                recent_rows_window=self.recent_rows_window,
            )
            result = pipeline.run(rows)
        finally:
            conn.close()

        duration = time.time() - start_time

        return {
            "rows_loaded": result.rows_processed,
            "status": "success",
            "duration_seconds": round(duration, 2),
            "table": self.table_name,
            "revisions_updated": result.revisions_updated,
            "rows_merged": result.rows_merged,
            "warnings": [str(w) for w in result.warnings],
        }

    def post_load_hook(self, result: Dict[str, Any]) -> None:
        self.log.info(
            f"Upsert into {self.table_name} complete: {result.get('rows_loaded', 0)} rows, "
            f"{result.get('revisions_updated', 0)} revisions, "
            f"{result.get('duration_seconds', 0)}s"
        )
        for warning in result.get("warnings", []):
            self.log.warning(warning)
