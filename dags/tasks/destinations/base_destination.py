"""Base abstract class for all data destinations."""
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Sequence


class BaseDestination(ABC):
    """
    Abstract base class for data destinations in the ETL framework.

    All destination implementations must inherit from this class and implement
    the load() method to write a row stream to their respective target systems.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize the destination with configuration.

        Args:
            config: Dictionary containing destination-specific configuration
                    (e.g., connection IDs, table names, key columns)
        """
        self.config = config

    @abstractmethod
    def load(self, rows: Iterable[Sequence[str]]) -> Dict[str, Any]:
        """
        Load a row stream into the destination system.

        Rows are consumed exactly once, in order. Each row is a sequence of
        string fields lined up with the destination's configured columns.

        Args:
            rows: Single-pass iterable of rows

        Returns:
            Dict[str, Any]: Metadata about the load operation including:
                - rows_loaded: Number of rows read from the stream
                - status: 'success'
                - duration_seconds: Time taken for the load

        Raises:
            Exception: Implementation-specific exceptions; a failed load
                      must raise so the task is marked failed and retried.

        Example:
            >>> destination = PostgresUpsertDestination(config)
            >>> result = destination.load([["1", "John"], ["2", "Jane"]])
            >>> print(result["rows_loaded"])
            2
        """
        pass

    def validate_config(self) -> None:
        """
        Validate the destination configuration.

        Override this method in concrete implementations to add custom
        validation logic for required configuration parameters.

        Raises:
            ValueError: If required configuration parameters are missing
                       or invalid.
        """
        pass

    def pre_load_hook(self) -> None:
        """Execute operations before loading data. No-op by default."""
        pass

    def post_load_hook(self, result: Dict[str, Any]) -> None:
        """
        Execute operations after loading data.

        Args:
            result: The result dictionary from the load() method
        """
        pass
