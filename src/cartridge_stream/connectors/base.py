"""Base connector interfaces and column type model for cartridge-stream."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Optional, Protocol, Sequence, runtime_checkable

# Largest VARCHAR the sink accepts; also the placeholder width for untyped values
MAX_STRING_LENGTH = 16777216

INTEGER_WIDTHS = (10, 19)

# Column holding per-record ingestion metadata, present on every managed table
RECORD_METADATA_COLUMN = "RECORD_METADATA"


class TypeKind(Enum):
    """Kinds of column types the sink can represent."""

    BOOLEAN = "boolean"
    INTEGER = "integer"
    FLOAT = "float"
    STRING = "string"
    STRUCT = "struct"
    ARRAY = "array"
    MAP = "map"


class TypeDescriptor:
    """Base class for column type descriptors.

    Descriptors are immutable. ``committed()`` strips the null placeholder
    marker so a descriptor can be stored as a table column.
    """

    kind: ClassVar[TypeKind]

    @property
    def is_placeholder(self) -> bool:
        """Whether this type was only derived from null observations."""
        return False

    @property
    def is_primitive(self) -> bool:
        return self.kind not in (TypeKind.STRUCT, TypeKind.ARRAY, TypeKind.MAP)

    def committed(self) -> "TypeDescriptor":
        return self


@dataclass(frozen=True)
class BooleanType(TypeDescriptor):
    kind: ClassVar[TypeKind] = TypeKind.BOOLEAN

    def __str__(self) -> str:
        return "BOOLEAN"


@dataclass(frozen=True)
class IntegerType(TypeDescriptor):
    """Fixed-point integer with the given number of decimal digits."""

    kind: ClassVar[TypeKind] = TypeKind.INTEGER

    width: int = 19

    def __post_init__(self):
        if self.width not in INTEGER_WIDTHS:
            raise ValueError(
                f"Integer width must be one of {INTEGER_WIDTHS}, got {self.width}"
            )

    def __str__(self) -> str:
        return f"INTEGER({self.width})"


@dataclass(frozen=True)
class FloatType(TypeDescriptor):
    kind: ClassVar[TypeKind] = TypeKind.FLOAT

    def __str__(self) -> str:
        return "FLOAT"


@dataclass(frozen=True)
class StringType(TypeDescriptor):
    """Variable length string.

    ``from_null`` marks the placeholder inferred for a null value; it does not
    take part in equality.
    """

    kind: ClassVar[TypeKind] = TypeKind.STRING

    max_length: int = MAX_STRING_LENGTH
    from_null: bool = field(default=False, compare=False)

    def __post_init__(self):
        if self.max_length <= 0:
            raise ValueError(f"String length must be positive, got {self.max_length}")

    @property
    def is_placeholder(self) -> bool:
        return self.from_null

    def committed(self) -> "StringType":
        if self.from_null:
            return StringType(self.max_length)
        return self

    def __str__(self) -> str:
        return f"STRING({self.max_length})"


@dataclass(frozen=True, eq=False)
class StructType(TypeDescriptor):
    """Nested object; fields keep first-seen order, equality ignores order."""

    kind: ClassVar[TypeKind] = TypeKind.STRUCT

    fields: tuple[tuple[str, TypeDescriptor], ...] = ()

    def __post_init__(self):
        fields = tuple((name, descriptor) for name, descriptor in self.fields)
        names = [name for name, _ in fields]
        if len(names) != len(set(names)):
            raise ValueError(f"Struct field names must be unique: {names}")
        object.__setattr__(self, "fields", fields)

    @property
    def field_names(self) -> list[str]:
        return [name for name, _ in self.fields]

    def get(self, name: str) -> Optional[TypeDescriptor]:
        for field_name, descriptor in self.fields:
            if field_name == name:
                return descriptor
        return None

    def committed(self) -> "StructType":
        return StructType(tuple((name, t.committed()) for name, t in self.fields))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, StructType):
            return NotImplemented
        return dict(self.fields) == dict(other.fields)

    def __hash__(self) -> int:
        return hash(frozenset(self.fields))

    def __str__(self) -> str:
        inner = ", ".join(f"{name}: {descriptor}" for name, descriptor in self.fields)
        return f"STRUCT<{inner}>"


@dataclass(frozen=True)
class ArrayType(TypeDescriptor):
    kind: ClassVar[TypeKind] = TypeKind.ARRAY

    element: TypeDescriptor

    def committed(self) -> "ArrayType":
        return ArrayType(self.element.committed())

    def __str__(self) -> str:
        return f"ARRAY<{self.element}>"


@dataclass(frozen=True)
class MapType(TypeDescriptor):
    """String-keyed map."""

    kind: ClassVar[TypeKind] = TypeKind.MAP

    value: TypeDescriptor

    @property
    def key(self) -> StringType:
        return StringType()

    def committed(self) -> "MapType":
        return MapType(self.value.committed())

    def __str__(self) -> str:
        return f"MAP<{self.key}, {self.value}>"


# Type of the RECORD_METADATA column; member names keep their source case
RECORD_METADATA_TYPE = StructType(
    (
        ("offset", IntegerType(10)),
        ("topic", StringType()),
        ("partition", IntegerType(10)),
        ("key", StringType()),
        ("schema_id", IntegerType(10)),
        ("key_schema_id", IntegerType(10)),
        ("CreateTime", IntegerType(19)),
        ("LogAppendTime", IntegerType(19)),
        ("SnowflakeConnectorPushTime", IntegerType(19)),
        ("headers", MapType(StringType())),
    )
)


def normalize_column_name(name: str) -> str:
    """Normalize a top-level field name to its column name."""
    return name.upper()


@dataclass(frozen=True)
class ColumnDefinition:
    """Definition of a table column."""

    name: str
    type: TypeDescriptor
    nullable: bool = True


@dataclass
class Record:
    """A semi-structured record delivered by the streaming source.

    ``schema`` is the declared Kafka Connect style schema attached to the
    record, if any.
    """

    value: Any
    schema: Optional[dict[str, Any]] = None
    topic: Optional[str] = None
    partition: Optional[int] = None
    offset: Optional[int] = None
    key: Optional[str] = None
    headers: Optional[dict[str, str]] = None

    def metadata(self) -> dict[str, Any]:
        """Get the known members of the record's RECORD_METADATA value."""
        metadata = {
            "offset": self.offset,
            "topic": self.topic,
            "partition": self.partition,
            "key": self.key,
            "headers": self.headers,
        }
        return {name: value for name, value in metadata.items() if value is not None}

    @classmethod
    def from_json(
        cls,
        text: str,
        topic: Optional[str] = None,
        partition: Optional[int] = None,
        offset: Optional[int] = None,
        key: Optional[str] = None,
    ) -> "Record":
        """Build a record from JSON text.

        Accepts either a bare object or a ``{"schema": ..., "payload": ...}``
        envelope as produced by a JSON converter with schemas enabled.
        """
        data = json.loads(text)
        schema = None
        if isinstance(data, dict) and set(data) == {"schema", "payload"}:
            schema = data["schema"]
            data = data["payload"]
        return cls(
            value=data,
            schema=schema,
            topic=topic,
            partition=partition,
            offset=offset,
            key=key,
        )


class DdlError(Exception):
    """Error reported by the DDL collaborator."""

    def __init__(self, table: str, columns: Sequence[str] = (), message: str = ""):
        self.table = table
        self.columns = list(columns)
        super().__init__(message or f"DDL failed for table '{table}'")


class DdlAlreadyExistsError(DdlError):
    """A column in the request already exists (another evolution won the race)."""


class DdlThrottledError(DdlError):
    """Transient failure: timeout or throttling. Safe to retry."""


class DdlFatalError(DdlError):
    """Non-retryable DDL failure."""


@runtime_checkable
class DdlConnector(Protocol):
    """Protocol for the store that owns table definitions.

    The evolution engine decides which columns to add or widen; the connector
    executes the DDL.
    """

    async def describe_table(self, table: str) -> list[ColumnDefinition]:
        """Get the current column definitions of a table.

        Args:
            table: Name of the table

        Returns:
            Columns in table order
        """
        ...

    async def alter_table_add_or_widen_columns(
        self, table: str, columns: list[ColumnDefinition]
    ) -> None:
        """Add new columns or widen existing ones in a single request.

        Args:
            table: Name of the table
            columns: Target definitions for every column to add or widen

        Raises:
            DdlAlreadyExistsError: A column to add already exists
            DdlThrottledError: Transient failure, the request may be retried
            DdlFatalError: Any other failure
        """
        ...


class BaseDdlConnector(ABC):
    """Abstract base class for DDL connectors."""

    def __init__(self, connection_string: str = "", **kwargs):
        """Initialize the base DDL connector.

        Args:
            connection_string: Store connection string
            **kwargs: Additional connector-specific configuration
        """
        self.connection_string = connection_string
        self.config = kwargs
        self.connected = False

    async def __aenter__(self):
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.disconnect()

    @abstractmethod
    async def describe_table(self, table: str) -> list[ColumnDefinition]:
        """Get the current column definitions of a table."""
        pass

    @abstractmethod
    async def alter_table_add_or_widen_columns(
        self, table: str, columns: list[ColumnDefinition]
    ) -> None:
        """Add or widen columns in a single request."""
        pass

    @abstractmethod
    async def connect(self) -> None:
        """Establish connection to the store."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection to the store."""
        pass

    async def test_connection(self) -> bool:
        """Default implementation of connection test."""
        try:
            await self.connect()
            await self.disconnect()
            return True
        except Exception:
            return False


__all__ = [
    "MAX_STRING_LENGTH",
    "INTEGER_WIDTHS",
    "RECORD_METADATA_COLUMN",
    "RECORD_METADATA_TYPE",
    "TypeKind",
    "TypeDescriptor",
    "BooleanType",
    "IntegerType",
    "FloatType",
    "StringType",
    "StructType",
    "ArrayType",
    "MapType",
    "normalize_column_name",
    "ColumnDefinition",
    "Record",
    "DdlError",
    "DdlAlreadyExistsError",
    "DdlThrottledError",
    "DdlFatalError",
    "DdlConnector",
    "BaseDdlConnector",
]
