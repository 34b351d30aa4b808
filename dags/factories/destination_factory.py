"""Factory for creating data destination instances."""
from typing import Any, Dict

from tasks.destinations.base_destination import BaseDestination
from tasks.destinations.postgres_upsert_destination import PostgresUpsertDestination


class DestinationFactory:
    """
    Factory class for creating data destination instances based on configuration.

    This factory implements the Factory Pattern to instantiate the appropriate
    destination class based on the 'type' field in the configuration.

    Supported destination types:
        - 'postgres_upsert' (aliases 'postgres', 'postgresql', 'pg'):
          PostgreSQL bulk upsert destination

    Example usage:
        config = {
            "type": "postgres_upsert",
            "postgres_conn_id": "postgres_default",
            "table_name": "public.users",
            "id_column": "id",
            "columns": ["id", "name"]
        }
        destination = DestinationFactory.create(config)
        result = destination.load(rows)
    """

    # Registry mapping destination type strings to implementation classes
    _registry = {
        'postgres_upsert': PostgresUpsertDestination,
        'postgres': PostgresUpsertDestination,
        'postgresql': PostgresUpsertDestination,
        'pg': PostgresUpsertDestination,
    }

    @classmethod
    def create(cls, config: Dict[str, Any]) -> BaseDestination:
        """
        Create a destination instance based on configuration.

        Args:
            config: Dictionary containing destination configuration with 'type' field

        Returns:
            BaseDestination: Instance of the appropriate destination implementation

        Raises:
            ValueError: If 'type' field is missing or unsupported
        """
        if 'type' not in config:
            raise ValueError("Destination configuration must include 'type' field")

        destination_type = config['type'].lower()

        if destination_type not in cls._registry:
            available_types = ', '.join(cls._registry.keys())
            raise ValueError(
                f"Unknown destination type '{destination_type}'. "
                f"Available types: {available_types}"
            )

        # Get the appropriate destination class and instantiate it
        destination_class = cls._registry[destination_type]
        return destination_class(config)

    @classmethod
    def register(cls, destination_type: str, destination_class: type) -> None:
        """
        Register a new destination type in the factory.

        Args:
            destination_type: String identifier for the destination type
            destination_class: Class implementing BaseDestination interface
        """
        if not issubclass(destination_class, BaseDestination):
            raise ValueError(
                f"Destination class must inherit from BaseDestination, got {destination_class.__name__}"
            )

        cls._registry[destination_type.lower()] = destination_class

    @classmethod
    def get_supported_types(cls) -> list:
        """
        Get list of supported destination types.

        Example:
            >>> DestinationFactory.get_supported_types()
            ['postgres_upsert', 'postgres', 'postgresql', 'pg']
        """
        return list(cls._registry.keys())
