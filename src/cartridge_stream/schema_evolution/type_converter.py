"""Conversion between type descriptors and warehouse SQL type strings."""

import re

from ..connectors.base import (
    MAX_STRING_LENGTH,
    ArrayType,
    BooleanType,
    FloatType,
    IntegerType,
    MapType,
    StringType,
    StructType,
    TypeDescriptor,
)
from .exceptions import UnsupportedValueKind

_SIMPLE_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*$")


class TypeConverter:
    """Renders descriptors as SQL types and parses SQL types back.

    The SQL dialect is the one reported by ``DESCRIBE TABLE`` on the sink,
    e.g. ``NUMBER(19,0)``, ``VARCHAR(16777216)`` or
    ``OBJECT(k1 NUMBER(19,0), k2 ARRAY(FLOAT))``.
    """

    INTEGER_NAMES = {"INT", "INTEGER", "BIGINT", "SMALLINT", "TINYINT", "BYTEINT"}
    NUMBER_NAMES = {"NUMBER", "DECIMAL", "NUMERIC"}
    FLOAT_NAMES = {"FLOAT", "FLOAT4", "FLOAT8", "DOUBLE", "DOUBLE PRECISION", "REAL"}
    STRING_NAMES = {"VARCHAR", "STRING", "TEXT", "CHAR", "CHARACTER"}

    def to_sql(self, descriptor: TypeDescriptor) -> str:
        """Render a descriptor as a SQL type string."""
        if isinstance(descriptor, BooleanType):
            return "BOOLEAN"
        if isinstance(descriptor, IntegerType):
            return f"NUMBER({descriptor.width},0)"
        if isinstance(descriptor, FloatType):
            return "FLOAT"
        if isinstance(descriptor, StringType):
            return f"VARCHAR({descriptor.max_length})"
        if isinstance(descriptor, StructType):
            members = ", ".join(
                f"{_quote(name)} {self.to_sql(member)}" for name, member in descriptor.fields
            )
            return f"OBJECT({members})"
        if isinstance(descriptor, ArrayType):
            return f"ARRAY({self.to_sql(descriptor.element)})"
        if isinstance(descriptor, MapType):
            return f"MAP({self.to_sql(descriptor.key)}, {self.to_sql(descriptor.value)})"
        raise UnsupportedValueKind("", type(descriptor).__name__, "no SQL rendering")

    def parse(self, sql_type: str, path: str = "") -> TypeDescriptor:
        """Parse a SQL type string into a descriptor.

        Args:
            sql_type: Type as reported by the store
            path: Column path used in error reports

        Raises:
            UnsupportedValueKind: The SQL type has no descriptor equivalent
        """
        text = sql_type.strip()
        name, args = _split_type(text)

        if name == "BOOLEAN":
            return BooleanType()

        if name in self.INTEGER_NAMES and not args:
            return IntegerType(19)

        if name in self.NUMBER_NAMES:
            precision, scale = 38, 0
            try:
                if args:
                    precision = int(args[0])
                    scale = int(args[1]) if len(args) > 1 else 0
            except ValueError:
                raise UnsupportedValueKind(path, sql_type, "malformed precision") from None
            if scale != 0:
                raise UnsupportedValueKind(path, sql_type, "only integral numbers are supported")
            return IntegerType(10 if precision <= 10 else 19)

        if name in self.FLOAT_NAMES and not args:
            return FloatType()

        if name in self.STRING_NAMES:
            if not args:
                return StringType(MAX_STRING_LENGTH)
            if not args[0].isdigit():
                raise UnsupportedValueKind(path, sql_type, "malformed length")
            return StringType(int(args[0]))

        if name == "OBJECT":
            fields = []
            for member in args:
                member_name, member_type = _split_member(member)
                fields.append(
                    (member_name, self.parse(member_type, _join(path, member_name)))
                )
            return StructType(tuple(fields))

        if name == "ARRAY" and len(args) == 1:
            return ArrayType(self.parse(args[0], f"{path}[]"))

        if name == "MAP" and len(args) == 2:
            key = self.parse(args[0], path)
            if not isinstance(key, StringType):
                raise UnsupportedValueKind(path, sql_type, "map keys must be strings")
            return MapType(self.parse(args[1], f"{path}{{}}"))

        raise UnsupportedValueKind(path, sql_type, "unknown SQL type")


def _split_type(text: str) -> tuple[str, list[str]]:
    """Split ``NAME(arg, arg)`` into the upper-cased name and its top-level arguments."""
    open_index = text.find("(")
    if open_index == -1:
        return " ".join(text.upper().split()), []
    if not text.endswith(")"):
        raise UnsupportedValueKind("", text, "unbalanced parentheses")

    name = " ".join(text[:open_index].upper().split())
    inner = text[open_index + 1:-1]

    args, depth, quoted, current = [], 0, False, []
    for char in inner:
        if char == '"':
            quoted = not quoted
        elif not quoted and char == "(":
            depth += 1
        elif not quoted and char == ")":
            depth -= 1
        elif not quoted and char == "," and depth == 0:
            args.append("".join(current).strip())
            current = []
            continue
        current.append(char)
    if depth != 0 or quoted:
        raise UnsupportedValueKind("", text, "unbalanced parentheses")
    if "".join(current).strip():
        args.append("".join(current).strip())
    return name, args


def _split_member(member: str) -> tuple[str, str]:
    """Split ``name TYPE`` where the name may be double-quoted."""
    member = member.strip()
    if member.startswith('"'):
        index = 1
        while index < len(member):
            if member[index] == '"':
                if member[index + 1:index + 2] == '"':
                    index += 2
                    continue
                break
            index += 1
        return _unquote(member[:index + 1]), member[index + 1:].strip()
    name, _, member_type = member.partition(" ")
    return name, member_type.strip()


def _quote(name: str) -> str:
    if _SIMPLE_IDENTIFIER.match(name):
        return name
    escaped = name.replace('"', '""')
    return f'"{escaped}"'


def _unquote(name: str) -> str:
    if len(name) >= 2 and name.startswith('"') and name.endswith('"'):
        return name[1:-1].replace('""', '"')
    return name


def _join(path: str, name: str) -> str:
    return f"{path}.{name}" if path else name


__all__ = ["TypeConverter"]
