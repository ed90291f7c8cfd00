"""In-memory DDL connector.

Keeps table definitions as SQL type text, the way a warehouse reports them
from ``DESCRIBE TABLE``, and records every ALTER statement it executes.
Used by the CLI and as the reference store in tests.
"""

import asyncio
from typing import Optional

import structlog

from ..schema_evolution.exceptions import TypeConflict, UnsupportedValueKind
from ..schema_evolution.merger import SchemaMerger
from ..schema_evolution.type_converter import TypeConverter
from .base import (
    RECORD_METADATA_COLUMN,
    RECORD_METADATA_TYPE,
    BaseDdlConnector,
    ColumnDefinition,
    DdlAlreadyExistsError,
    DdlError,
    DdlFatalError,
)
from .factory import register_ddl_connector

logger = structlog.get_logger(__name__)


@register_ddl_connector("memory")
class InMemoryDdlConnector(BaseDdlConnector):
    """DDL connector backed by a dictionary of tables."""

    def __init__(
        self,
        connection_string: str = "",
        name: Optional[str] = None,
        tables: Optional[dict[str, dict[str, str]]] = None,
        auto_create: bool = True,
        ddl_delay_seconds: float = 0.0,
        **kwargs,
    ):
        """Initialize the in-memory connector.

        Args:
            connection_string: Unused, accepted for factory compatibility
            name: Connector name used in log context
            tables: Seed tables, mapping table name to column name and SQL type
            auto_create: Create unknown tables with only the metadata column
            ddl_delay_seconds: Artificial latency of every ALTER request
        """
        super().__init__(connection_string, **kwargs)
        self.name = name
        self.auto_create = auto_create
        self.ddl_delay_seconds = ddl_delay_seconds
        self.converter = TypeConverter()
        self.merger = SchemaMerger()
        self.statements: list[str] = []
        self.alter_requests = 0
        self._tables: dict[str, dict[str, str]] = {}
        self._failures: list[DdlError] = []
        self.logger = logger.bind(component="memory_connector", connector=name)

        for table, columns in (tables or {}).items():
            self.create_table(table, columns)

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    def create_table(self, table: str, columns: Optional[dict[str, str]] = None) -> None:
        """Create a table; the metadata column is always present."""
        definition = {RECORD_METADATA_COLUMN: self.converter.to_sql(RECORD_METADATA_TYPE)}
        for column, sql_type in (columns or {}).items():
            # Validates the SQL text up front
            self.converter.parse(sql_type, column)
            definition[column] = sql_type
        self._tables[table] = definition
        self.statements.append(self._render_create(table, definition))
        self.logger.debug("Created table", table=table, columns=list(definition))

    def has_table(self, table: str) -> bool:
        return table in self._tables

    def column_sql(self, table: str) -> dict[str, str]:
        """Get the SQL type text of every column of a table."""
        return dict(self._tables[table])

    def inject_failure(self, error: DdlError, times: int = 1) -> None:
        """Make the next ``times`` ALTER requests fail with ``error``."""
        self._failures.extend([error] * times)

    async def describe_table(self, table: str) -> list[ColumnDefinition]:
        if table not in self._tables:
            if not self.auto_create:
                raise DdlFatalError(table, message=f"Table '{table}' does not exist")
            self.create_table(table)

        return [
            ColumnDefinition(name=column, type=self.converter.parse(sql_type, column))
            for column, sql_type in self._tables[table].items()
        ]

    async def alter_table_add_or_widen_columns(
        self, table: str, columns: list[ColumnDefinition]
    ) -> None:
        """Add or widen columns; the whole request is applied or nothing is.

        Raises:
            DdlAlreadyExistsError: A column is already present with the requested type
            DdlFatalError: The table is unknown, or a change would narrow or
                change the kind of a column
            DdlThrottledError: Injected transient failure
        """
        self.alter_requests += 1
        if self.ddl_delay_seconds:
            await asyncio.sleep(self.ddl_delay_seconds)

        if self._failures:
            raise self._failures.pop(0)

        names = [column.name for column in columns]
        if table not in self._tables:
            raise DdlFatalError(table, names, f"Table '{table}' does not exist")

        definition = self._tables[table]
        statements = []
        for column in columns:
            sql_type = self.converter.to_sql(column.type)
            current = definition.get(column.name)
            if current is None:
                statements.append(
                    f"ALTER TABLE {table} ADD COLUMN {column.name} {sql_type}"
                )
                continue
            if current == sql_type:
                raise DdlAlreadyExistsError(
                    table, names, f"Column '{column.name}' already exists as {current}"
                )
            self._check_widening(table, names, column, current)
            statements.append(
                f"ALTER TABLE {table} ALTER COLUMN {column.name} SET DATA TYPE {sql_type}"
            )

        for column in columns:
            definition[column.name] = self.converter.to_sql(column.type)
        self.statements.extend(statements)
        self.logger.info("Altered table", table=table, columns=names)

    def _check_widening(
        self, table: str, names: list[str], column: ColumnDefinition, current: str
    ) -> None:
        try:
            existing = self.converter.parse(current, column.name)
            result = self.merger.merge(existing, column.type, column.name)
        except (TypeConflict, UnsupportedValueKind) as e:
            raise DdlFatalError(
                table, names, f"Cannot change column '{column.name}': {e}"
            ) from e
        if not result.requires_ddl:
            raise DdlFatalError(
                table,
                names,
                f"Cannot narrow column '{column.name}' from {current} "
                f"to {self.converter.to_sql(column.type)}",
            )

    def _render_create(self, table: str, definition: dict[str, str]) -> str:
        columns = ", ".join(f"{name} {sql_type}" for name, sql_type in definition.items())
        return f"CREATE TABLE {table} ({columns})"


__all__ = ["InMemoryDdlConnector"]
