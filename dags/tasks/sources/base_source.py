"""Base abstract class for all row sources."""
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List


class BaseSource(ABC):
    """
    Abstract base class for row sources in the ETL framework.

    All source implementations must inherit from this class and implement
    the iter_rows() method to stream rows from their respective systems.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize the source with configuration.

        Args:
            config: Dictionary containing source-specific configuration
                    (e.g., file paths, delimiters, encodings)
        """
        self.config = config

    @abstractmethod
    def iter_rows(self) -> Iterator[List[str]]:
        """
        Stream rows from the source system.

        This method must be implemented by all concrete source classes.
        Rows are produced lazily, in source order, as lists of string
        fields. The caller consumes the iterator exactly once.

        Returns:
            Iterator[List[str]]: Iterator of rows

        Raises:
            Exception: Implementation-specific exceptions for missing
                      files, decoding errors, or data retrieval issues.

        Example:
            >>> source = DelimitedFileSource(config)
            >>> next(source.iter_rows())
            ['1', 'Alice']
        """
        pass

    def validate_config(self) -> None:
        """
        Validate the source configuration.

        Override this method in concrete implementations to add custom
        validation logic for required configuration parameters.

        Raises:
            ValueError: If required configuration parameters are missing
                       or invalid.
        """
        pass
