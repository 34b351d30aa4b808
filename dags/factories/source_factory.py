"""Factory for creating row source instances."""
from typing import Any, Dict

from tasks.sources.base_source import BaseSource
from tasks.sources.delimited_file_source import DelimitedFileSource


class SourceFactory:
    """
    Factory class for creating row source instances based on configuration.

    This factory implements the Factory Pattern to instantiate the appropriate
    source class based on the 'type' field in the configuration.

    Supported source types:
        - 'delimited_file' (alias 'csv'): Delimited text file source

    Example usage:
        config = {
            "type": "delimited_file",
            "path": "/data/users.csv",
            "has_header": True
        }
        source = SourceFactory.create(config)
        rows = source.iter_rows()
    """

    # Registry mapping source type strings to implementation classes
    _registry = {
        'delimited_file': DelimitedFileSource,
        'csv': DelimitedFileSource,
    }

    @classmethod
    def create(cls, config: Dict[str, Any]) -> BaseSource:
        """
        Create a source instance based on configuration.

        Args:
            config: Dictionary containing source configuration with 'type' field

        Returns:
            BaseSource: Instance of the appropriate source implementation

        Raises:
            ValueError: If 'type' field is missing or unsupported
        """
        if 'type' not in config:
            raise ValueError("Source configuration must include 'type' field")

        source_type = config['type'].lower()

        if source_type not in cls._registry:
            available_types = ', '.join(cls._registry.keys())
            raise ValueError(
                f"Unknown source type '{source_type}'. "
                f"Available types: {available_types}"
            )

        source_class = cls._registry[source_type]
        return source_class(config)

    @classmethod
    def register(cls, source_type: str, source_class: type) -> None:
        """
        Register a new source type in the factory.

        Args:
            source_type: String identifier for the source type
            source_class: Class implementing BaseSource interface
        """
        if not issubclass(source_class, BaseSource):
            raise ValueError(
                f"Source class must inherit from BaseSource, got {source_class.__name__}"
            )

        cls._registry[source_type.lower()] = source_class

    @classmethod
    def get_supported_types(cls) -> list:
        """
        Get list of supported source types.

        Example:
            >>> SourceFactory.get_supported_types()
            ['delimited_file', 'csv']
        """
        return list(cls._registry.keys())
