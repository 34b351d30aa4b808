"""Renders the merge and revision statements for a table descriptor."""
import logging
from typing import Any, Callable, List, Sequence, Tuple

try:
    from .descriptor import TableDescriptor
    from .exceptions import BuildError, UpsertError
except ImportError:
    from descriptor import TableDescriptor
    from exceptions import BuildError, UpsertError


def _eq(x: Any, y: Any) -> bool:
    return x == y


def _sub(y: int, x: int) -> int:
    """Return x - y (argument order matches the pipeline form ``len | sub 1``)."""
    return x - y


def _render_list(
    items: Sequence[str],
    render: Callable[[str], str],
    separator: str = ", ",
    skip: Callable[[str], bool] = lambda item: False,
) -> str:
    """
    Render a separated clause list, leaving no trailing separator.

    Args:
        items: Column names to render
        render: Turns one column name into its clause text
        separator: Text placed between clauses
        skip: Columns for which this returns True are left out

    Returns:
        str: The joined clause list
    """
    kept = [item for item in items if not skip(item)]
    last = _sub(1, len(kept))
    parts = []
    for i, item in enumerate(kept):
        parts.append(render(item))
        if not _eq(i, last):
            parts.append(separator)
    return "".join(parts)


class QueryBuilder:
    """
    Build the SQL statements used by the merge phase.

    The merge statement upserts every staging row into the target with a
    single INSERT ... ON CONFLICT, so concurrent merges on the same key
    can't race. The revision statement, when revision tracking is on,
    bumps the revision counter of target rows whose tracked columns
    differ from staging; it must run before the merge.

    Statements are pure functions of the descriptor.

    Example:
        >>> descriptor = TableDescriptor.create("users", "id", ["id", "name"])
        >>> merge_sql, revision_sql = QueryBuilder().build(descriptor)
        >>> revision_sql
        ''
    """

    def __init__(self):
        self.log = logging.getLogger(self.__class__.__name__)

    def build(self, descriptor: TableDescriptor) -> Tuple[str, str]:
        """
        Render the merge and revision statements.

        Args:
            descriptor: Table descriptor for this run

        Returns:
            Tuple[str, str]: (merge_sql, revision_sql); revision_sql is ''
                             when revision tracking is off

        Raises:
            BuildError: If the descriptor is invalid or rendering fails
        """
        try:
            descriptor.validate()
            merge_sql = self.build_merge(descriptor)
            revision_sql = self.build_revision(descriptor) if descriptor.revision_tracking else ""
        except UpsertError:
            raise
        except Exception as e:
            raise BuildError(
                "Failed to render upsert statements",
                table=descriptor.target_table,
                cause=e,
            ) from e

        self.log.debug(f"Merge statement for {descriptor.target_table}: {merge_sql}")
        if revision_sql:
            self.log.debug(f"Revision statement for {descriptor.target_table}: {revision_sql}")
        return merge_sql, revision_sql

    def build_merge(self, descriptor: TableDescriptor) -> str:
        columns: List[str] = descriptor.merge_columns
        column_list = _render_list(columns, lambda col: col)

        update_set = _render_list(
            columns,
            lambda col: f"{col} = EXCLUDED.{col}",
            skip=lambda col: _eq(col, descriptor.id_column),
        )
        if update_set:
            conflict_action = f"DO UPDATE SET {update_set}"
        else:
            conflict_action = "DO NOTHING"

        return (
            f"INSERT INTO {descriptor.target_table} ({column_list}) "
            f"SELECT {column_list} FROM {descriptor.staging_table} "
            f"ON CONFLICT ({descriptor.id_column}) {conflict_action}"
        )

    def build_revision(self, descriptor: TableDescriptor) -> str:
        """
        Render the revision statement.

        Returns '' when there is no tracked column to compare (the column
        list is just the identifier), since no row can differ.
        """
        revision = descriptor.revision_column
        differs = _render_list(
            descriptor.merge_columns,
            lambda col: f"t.{col} IS DISTINCT FROM s.{col}",
            separator=" OR ",
            skip=lambda col: _eq(col, descriptor.id_column),
        )
        if not differs:
            return ""

        return (
            f"UPDATE {descriptor.target_table} AS t "
            f"SET {revision} = COALESCE(t.{revision}, 0) + 1 "
            f"FROM {descriptor.staging_table} AS s "
            f"WHERE t.{descriptor.id_column} = s.{descriptor.id_column} "
            f"AND ({differs})"
        )
