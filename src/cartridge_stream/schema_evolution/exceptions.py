"""Exceptions raised by the schema evolution engine."""

from typing import Any, Optional, Sequence


class SchemaEvolutionError(Exception):
    """Base class for all schema evolution errors."""


class UnsupportedValueKind(SchemaEvolutionError):
    """A value or declared schema kind has no column type mapping."""

    def __init__(self, field_path: str, kind: Any, reason: str = ""):
        self.field_path = field_path
        self.kind = kind
        message = f"Unsupported value kind {kind!r} for field '{field_path}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class TypeConflict(SchemaEvolutionError):
    """An incoming type cannot be reconciled with the committed column type."""

    def __init__(self, field_path: str, existing: Any, incoming: Any):
        self.field_path = field_path
        self.existing = existing
        self.incoming = incoming
        super().__init__(
            f"Type conflict for field '{field_path}': "
            f"existing {existing} cannot accept {incoming}"
        )


class EvolutionNotPermitted(SchemaEvolutionError):
    """A record needs a schema change but evolution is disabled for the table."""

    def __init__(self, table: str, field_path: str):
        self.table = table
        self.field_path = field_path
        super().__init__(
            f"Schema evolution is disabled for table '{table}', "
            f"cannot add or widen column '{field_path}'"
        )


class DescribeTableError(SchemaEvolutionError):
    """The table description could not be loaded."""

    def __init__(self, table: str, cause: Optional[BaseException] = None):
        self.table = table
        message = f"Failed to describe table '{table}'"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class SchemaCacheError(SchemaEvolutionError):
    """A snapshot replacement would break the cache invariants."""


class SchemaEvolutionFailed(SchemaEvolutionError):
    """Schema evolution failed for a table; the whole batch must be retried."""

    def __init__(self, table: str, columns: Sequence[str], reason: str):
        self.table = table
        self.columns = list(columns)
        super().__init__(
            f"Schema evolution failed for table '{table}' "
            f"(columns: {', '.join(self.columns) or '-'}): {reason}"
        )


class EvolutionTimeout(SchemaEvolutionFailed):
    """The batch exceeded its overall timeout."""

    def __init__(self, table: str, timeout_seconds: float, columns: Sequence[str] = ()):
        self.timeout_seconds = timeout_seconds
        super().__init__(table, columns, f"batch timed out after {timeout_seconds}s")


class ClientCreationError(SchemaEvolutionError):
    """The streaming ingestion client could not be created."""


__all__ = [
    "SchemaEvolutionError",
    "UnsupportedValueKind",
    "TypeConflict",
    "EvolutionNotPermitted",
    "DescribeTableError",
    "SchemaCacheError",
    "SchemaEvolutionFailed",
    "EvolutionTimeout",
    "ClientCreationError",
]
