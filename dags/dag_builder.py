"""Core DAG builder for bulk upsert pipelines using Airflow TaskFlow API."""

from typing import Any, Dict

from airflow.sdk.definitions.decorators import task

from factories.destination_factory import DestinationFactory
from factories.source_factory import SourceFactory
from tasks.upsert import QueueRowStream

# Seconds to wait for the row producer thread once the load has ended
PRODUCER_JOIN_TIMEOUT = 30


class DAGBuilder:
    """
    Core upsert orchestration builder using Airflow TaskFlow API.

    A row stream can't be handed between tasks through XCom, so reading
    the source and upserting into the destination happen in one task:
    1. Open the source as a lazy row iterator
    2. Optionally move reading onto a producer thread with a bounded queue
    3. Stream the rows into the destination
    """

    @staticmethod
    def run_upsert(
        source_config: Dict[str, Any], destination_config: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Stream rows from the configured source into the configured destination.

        Args:
            source_config: Source configuration dictionary with 'type' field
            destination_config: Destination configuration dictionary with 'type' field

        Returns:
            Dict[str, Any]: Load result metadata (rows_loaded, status, duration, etc.)

        Example:
            >>> source_config = {"type": "delimited_file", "path": "/data/users.csv"}
            >>> destination_config = {
            ...     "type": "postgres_upsert",
            ...     "table_name": "users",
            ...     "id_column": "id",
            ...     "columns": ["id", "name"]
            ... }
            >>> result = DAGBuilder.run_upsert(source_config, destination_config)
        """
        source = SourceFactory.create(source_config)
        destination = DestinationFactory.create(destination_config)

        rows = source.iter_rows()
        queue_size = source_config.get("queue_size", 0)
        if queue_size:
            rows = QueueRowStream.from_iterable(rows, maxsize=queue_size)

        try:
            # Execute pre-load hook
            destination.pre_load_hook()

            # Load data
            result = destination.load(rows)

            # Execute post-load hook
            destination.post_load_hook(result)
        finally:
            if isinstance(rows, QueueRowStream):
                rows.stop()
                if not rows.join(timeout=PRODUCER_JOIN_TIMEOUT):
                    print(f"Row producer still running after {PRODUCER_JOIN_TIMEOUT}s")

        print(
            f"Loaded {result.get('rows_loaded', 0)} rows from {source_config['type']} source to "
            f"{destination_config['type']} destination - Status: {result.get('status')}"
        )

        return result

    @staticmethod
    @task
    def upsert_rows(
        source_config: Dict[str, Any], destination_config: Dict[str, Any]
    ) -> Dict[str, Any]:
        """TaskFlow task wrapping run_upsert()."""
        return DAGBuilder.run_upsert(source_config, destination_config)

    @classmethod
    def build_upsert_pipeline(
        cls,
        source_config: Dict[str, Any],
        destination_config: Dict[str, Any],
    ) -> Dict[str, Any]:
        """
        Build the upsert pipeline task inside the current DAG context.

        Args:
            source_config: Source configuration
            destination_config: Destination configuration

        Returns:
            Dict[str, Any]: The load result from the upsert_rows task

        Example usage in a DAG:
            with DAG(...) as dag:
                result = DAGBuilder.build_upsert_pipeline(
                    source_config={"type": "delimited_file", ...},
                    destination_config={"type": "postgres_upsert", ...}
                )
        """
        return cls.upsert_rows(source_config, destination_config)
