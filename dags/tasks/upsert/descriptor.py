"""Table descriptor for the bulk upsert pipeline."""
import hashlib
import re
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

try:
    from .exceptions import InvalidDescriptorError
except ImportError:
    from exceptions import InvalidDescriptorError


# PostgreSQL truncates identifiers longer than this
PG_MAX_IDENTIFIER_LENGTH = 63

STAGING_SUFFIX = "_temp"

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*$")

# PostgreSQL keywords that can't be used as bare table or column names
# (the "reserved" and "reserved (can be function or type)" categories)
RESERVED_KEYWORDS = frozenset("""
    all analyse analyze and any array as asc asymmetric authorization binary
    both case cast check collate collation column concurrently constraint
    create cross current_catalog current_date current_role current_schema
    current_time current_timestamp current_user default deferrable desc
    distinct do else end except false fetch for foreign freeze from full
    grant group having ilike in initially inner intersect into is isnull
    join lateral leading left like limit localtime localtimestamp natural
    not notnull null offset on only or order outer overlaps placing primary
    references returning right select session_user similar some symmetric
    system_user table tablesample then to trailing true union unique user
    using variadic verbose when where window with
""".split())


def derive_staging_table(target_table: str) -> str:
    """
    Derive the session-local staging table name for a target table.

    Temporary tables can't live in a non-temporary schema, so schema
    separators are replaced with underscores. Names that would exceed
    the identifier limit are cut short and suffixed with a hash of the
    full target name so two long targets never share a staging table.

    Args:
        target_table: Target table name, optionally schema-qualified

    Returns:
        str: Staging table name, at most 63 characters

    Example:
        >>> derive_staging_table("public.users")
        'public_users_temp'
    """
    base = target_table.replace(".", "_")
    name = base + STAGING_SUFFIX
    if len(name) <= PG_MAX_IDENTIFIER_LENGTH:
        return name

    hash_str = hashlib.md5(target_table.encode()).hexdigest()[:8]
    keep = PG_MAX_IDENTIFIER_LENGTH - len(STAGING_SUFFIX) - len(hash_str) - 1
    return f"{base[:keep]}_{hash_str}{STAGING_SUFFIX}"


@dataclass(frozen=True)
class TableDescriptor:
    """
    Describes one upsert: where rows go and how they line up.

    Attributes:
        target_table: Table to merge into (may be schema-qualified)
        id_column: Identifier column used for conflict resolution
        columns: Column names, in the same order as every row's fields
        revision_tracking: Advance a revision counter on changed rows
        revision_column: Name of the revision counter column
        staging_table: Derived from target_table unless given explicitly
    """

    target_table: str
    id_column: str
    columns: Tuple[str, ...]
    revision_tracking: bool = False
    revision_column: str = "revision"
    staging_table: str = field(default="")

    def __post_init__(self):
        # Frozen dataclass: normalize through object.__setattr__
        object.__setattr__(self, "columns", tuple(self.columns))
        if not self.staging_table:
            object.__setattr__(
                self, "staging_table", derive_staging_table(self.target_table)
            )
        self.validate()

    @classmethod
    def create(
        cls,
        target_table: str,
        id_column: str,
        columns: Sequence[str],
        revision_tracking: bool = False,
        revision_column: str = "revision",
    ) -> "TableDescriptor":
        return cls(
            target_table=target_table,
            id_column=id_column,
            columns=tuple(columns),
            revision_tracking=revision_tracking,
            revision_column=revision_column,
        )

    def validate(self) -> None:
        """
        Check the descriptor invariants.

        Raises:
            InvalidDescriptorError: If any invariant is violated
        """
        if not self.target_table:
            raise InvalidDescriptorError("Target table name is required")

        for part in self.target_table.split("."):
            if not IDENTIFIER_RE.match(part):
                raise InvalidDescriptorError(
                    f"Invalid table name '{self.target_table}'",
                    table=self.target_table,
                )

        if not self.columns:
            raise InvalidDescriptorError(
                "Column list cannot be empty", table=self.target_table
            )

        invalid = [col for col in self.columns if not IDENTIFIER_RE.match(col)]
        if invalid:
            raise InvalidDescriptorError(
                f"Invalid column names: {', '.join(invalid)}",
                table=self.target_table,
            )

        names = self.target_table.split(".") + list(self.columns)
        if self.revision_tracking:
            names.append(self.revision_column or "")
        reserved = [name for name in names if name.lower() in RESERVED_KEYWORDS]
        if reserved:
            raise InvalidDescriptorError(
                f"Reserved words can't be used as identifiers: {', '.join(reserved)}",
                table=self.target_table,
            )

        seen = set()
        duplicates = []
        for col in self.columns:
            if col in seen:
                duplicates.append(col)
            seen.add(col)
        if duplicates:
            raise InvalidDescriptorError(
                f"Duplicate columns: {', '.join(duplicates)}",
                table=self.target_table,
            )

        if self.id_column not in self.columns:
            raise InvalidDescriptorError(
                f"Identifier column '{self.id_column}' is not in the column list",
                table=self.target_table,
            )

        if self.revision_tracking:
            if not IDENTIFIER_RE.match(self.revision_column or ""):
                raise InvalidDescriptorError(
                    f"Invalid revision column '{self.revision_column}'",
                    table=self.target_table,
                )
            if self.revision_column == self.id_column:
                raise InvalidDescriptorError(
                    "Revision column cannot be the identifier column",
                    table=self.target_table,
                )

    @property
    def merge_columns(self) -> List[str]:
        """Columns written by the merge; the revision column is never echoed from staging."""
        if not self.revision_tracking:
            return list(self.columns)
        return [col for col in self.columns if col != self.revision_column]
