"""Bulk-load-then-merge upsert pipeline for PostgreSQL."""

from .descriptor import TableDescriptor, derive_staging_table
from .exceptions import (
    BuildError,
    DuplicateKeyError,
    InvalidDescriptorError,
    LoadError,
    MergeError,
    SchemaError,
    StatsError,
    UpsertError,
)
from .merge_executor import MergeExecutor
from .pipeline import PipelineState, UpsertPipeline, UpsertResult, upsert
from .preparer import StagingPreparer
from .query_builder import QueryBuilder
from .row_stream import QueueRowStream
from .staging_loader import CopyRowReader, StagingLoader

__all__ = [
    "TableDescriptor",
    "derive_staging_table",
    "BuildError",
    "DuplicateKeyError",
    "InvalidDescriptorError",
    "LoadError",
    "MergeError",
    "SchemaError",
    "StatsError",
    "UpsertError",
    "MergeExecutor",
    "PipelineState",
    "UpsertPipeline",
    "UpsertResult",
    "upsert",
    "StagingPreparer",
    "QueryBuilder",
    "QueueRowStream",
    "CopyRowReader",
    "StagingLoader",
]
