"""Type inference for semi-structured record values."""

from typing import Any, Optional

from pydantic import ValidationError

from ..connectors.base import (
    ArrayType,
    BooleanType,
    FloatType,
    IntegerType,
    MapType,
    Record,
    StringType,
    StructType,
    TypeDescriptor,
    normalize_column_name,
)
from .exceptions import UnsupportedValueKind
from .merger import SchemaMerger
from .types import SchemaHint


class TypeInferencer:
    """Maps record values to column type descriptors.

    With a declared schema the declared type always wins, even for null
    values. Without one, types are derived from the JSON value itself: every
    integer becomes ``INTEGER(19)`` and maps are never inferred.
    """

    # Declared primitive kinds with a fixed mapping
    DECLARED_PRIMITIVES: dict[str, TypeDescriptor] = {
        "int8": IntegerType(10),
        "int16": IntegerType(10),
        "int32": IntegerType(10),
        "int64": IntegerType(19),
        "float32": FloatType(),
        "float64": FloatType(),
        "boolean": BooleanType(),
        "string": StringType(),
    }

    def __init__(self, merger: Optional[SchemaMerger] = None):
        self.merger = merger or SchemaMerger()

    def infer(
        self,
        value: Any,
        declared_schema: Optional[SchemaHint] = None,
        path: str = "",
    ) -> TypeDescriptor:
        """Infer the type of a single value.

        Args:
            value: JSON-compatible value
            declared_schema: Declared schema for the value, if any
            path: Field path used in error reports

        Returns:
            The inferred type descriptor

        Raises:
            UnsupportedValueKind: The value or declared kind has no column type
        """
        if declared_schema is not None:
            return self._from_schema(declared_schema, value, path)
        return self._from_value(value, path)

    def infer_record(self, record: Record) -> dict[str, TypeDescriptor]:
        """Infer one descriptor per top-level column of a record.

        Returns:
            Column name to descriptor, in declared order followed by the order
            fields appear in the value
        """
        if not isinstance(record.value, dict):
            raise UnsupportedValueKind(
                "", type(record.value).__name__, "record value must be an object"
            )

        hint = self._parse_hint(record.schema)
        columns: dict[str, TypeDescriptor] = {}

        if hint is not None:
            for member in hint.members:
                name = member.field_name or ""
                column = normalize_column_name(name)
                descriptor = self._from_schema(member, record.value.get(name), column)
                self._add_column(columns, column, descriptor)

        for name, value in record.value.items():
            if not isinstance(name, str):
                raise UnsupportedValueKind(
                    "", type(name).__name__, "object keys must be strings"
                )
            if hint is not None and hint.member(name) is not None:
                continue
            column = normalize_column_name(name)
            self._add_column(columns, column, self._from_value(value, column))

        return columns

    def _add_column(
        self, columns: dict[str, TypeDescriptor], column: str, descriptor: TypeDescriptor
    ) -> None:
        # Two source fields can normalize to the same column name
        if column in columns:
            descriptor = self.merger.merge_observations(columns[column], descriptor, column)
        columns[column] = descriptor

    def _parse_hint(self, schema: Optional[dict[str, Any]]) -> Optional[SchemaHint]:
        if not schema:
            return None
        try:
            hint = SchemaHint.model_validate(schema)
        except ValidationError as e:
            raise UnsupportedValueKind("", "schema", f"invalid declared schema: {e}") from e
        if hint.type != "struct":
            raise UnsupportedValueKind("", hint.type, "record schema must be a struct")
        return hint

    def _from_schema(self, hint: SchemaHint, value: Any, path: str) -> TypeDescriptor:
        kind = hint.type.lower()

        if kind in self.DECLARED_PRIMITIVES:
            return self.DECLARED_PRIMITIVES[kind]

        if kind == "struct":
            source = value if isinstance(value, dict) else {}
            fields: list[tuple[str, TypeDescriptor]] = []
            for member in hint.members:
                name = member.field_name or ""
                fields.append(
                    (name, self._from_schema(member, source.get(name), _join(path, name)))
                )
            for name, member_value in source.items():
                if hint.member(name) is None:
                    fields.append((name, self._from_value(member_value, _join(path, name))))
            return StructType(tuple(fields))

        if kind == "array":
            if hint.items is None:
                return self._from_value(value if isinstance(value, list) else [], path)
            return ArrayType(self._from_schema(hint.items, None, f"{path}[]"))

        if kind == "map":
            if hint.keys is not None and hint.keys.type.lower() != "string":
                raise UnsupportedValueKind(path, f"map<{hint.keys.type}>", "map keys must be strings")
            if hint.values is None:
                raise UnsupportedValueKind(path, "map", "map schema has no value type")
            return MapType(self._from_schema(hint.values, None, f"{path}{{}}"))

        raise UnsupportedValueKind(path, hint.type)

    def _from_value(self, value: Any, path: str) -> TypeDescriptor:
        if value is None:
            return StringType(from_null=True)

        # bool is a subclass of int
        if isinstance(value, bool):
            return BooleanType()
        if isinstance(value, int):
            return IntegerType(19)
        if isinstance(value, float):
            return FloatType()
        if isinstance(value, str):
            return StringType()

        if isinstance(value, dict):
            fields = []
            for name, member_value in value.items():
                if not isinstance(name, str):
                    raise UnsupportedValueKind(
                        path, type(name).__name__, "object keys must be strings"
                    )
                fields.append((name, self._from_value(member_value, _join(path, name))))
            return StructType(tuple(fields))

        if isinstance(value, (list, tuple)):
            element: Optional[TypeDescriptor] = None
            for item in value:
                if item is None:
                    continue
                observed = self._from_value(item, f"{path}[]")
                if element is None:
                    element = observed
                else:
                    element = self.merger.merge_observations(element, observed, f"{path}[]")
            if element is None:
                element = StringType(from_null=True)
            return ArrayType(element)

        raise UnsupportedValueKind(path, type(value).__name__)


def _join(path: str, name: str) -> str:
    return f"{path}.{name}" if path else name


__all__ = ["TypeInferencer"]
