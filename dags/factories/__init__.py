"""Factory pattern implementations for ETL framework components."""

from factories.source_factory import SourceFactory
from factories.destination_factory import DestinationFactory

__all__ = ['SourceFactory', 'DestinationFactory']
