"""Unit tests for SQL type conversion."""

import pytest

from cartridge_stream.connectors.base import (
    ArrayType,
    BooleanType,
    FloatType,
    IntegerType,
    MapType,
    StringType,
    StructType,
)
from cartridge_stream.schema_evolution.exceptions import UnsupportedValueKind
from cartridge_stream.schema_evolution.type_converter import TypeConverter


class TestTypeConverter:
    """Test rendering and parsing of warehouse SQL types."""

    def setup_method(self):
        self.converter = TypeConverter()

    def test_render_primitives(self):
        assert self.converter.to_sql(BooleanType()) == "BOOLEAN"
        assert self.converter.to_sql(IntegerType(10)) == "NUMBER(10,0)"
        assert self.converter.to_sql(IntegerType(19)) == "NUMBER(19,0)"
        assert self.converter.to_sql(FloatType()) == "FLOAT"
        assert self.converter.to_sql(StringType()) == "VARCHAR(16777216)"

    def test_render_nested(self):
        descriptor = StructType(
            (
                ("k1", IntegerType(19)),
                ("k2", ArrayType(FloatType())),
                ("k3", MapType(BooleanType())),
            )
        )

        assert self.converter.to_sql(descriptor) == (
            "OBJECT(k1 NUMBER(19,0), k2 ARRAY(FLOAT), "
            "k3 MAP(VARCHAR(16777216), BOOLEAN))"
        )

    def test_render_quotes_unusual_names(self):
        descriptor = StructType((("my field", IntegerType(10)),))

        assert self.converter.to_sql(descriptor) == 'OBJECT("my field" NUMBER(10,0))'

    @pytest.mark.parametrize(
        "sql,expected",
        [
            ("NUMBER(10,0)", IntegerType(10)),
            ("NUMBER(5, 0)", IntegerType(10)),
            ("NUMBER(38,0)", IntegerType(19)),
            ("NUMBER", IntegerType(19)),
            ("BIGINT", IntegerType(19)),
            ("float", FloatType()),
            ("DOUBLE PRECISION", FloatType()),
            ("VARCHAR(100)", StringType(100)),
            ("TEXT", StringType()),
            ("BOOLEAN", BooleanType()),
            ("OBJECT()", StructType()),
        ],
    )
    def test_parse(self, sql, expected):
        assert self.converter.parse(sql) == expected

    def test_parse_nested_round_trip(self):
        sql = 'OBJECT(a ARRAY(NUMBER(10,0)), "b c" MAP(VARCHAR(16777216), OBJECT(x FLOAT)))'

        descriptor = self.converter.parse(sql)

        assert descriptor.field_names == ["a", "b c"]
        assert self.converter.to_sql(descriptor) == sql

    def test_parse_decimal_scale_unsupported(self):
        with pytest.raises(UnsupportedValueKind, match="only integral numbers"):
            self.converter.parse("NUMBER(10,2)", "PRICE")

    def test_parse_unknown_type(self):
        with pytest.raises(UnsupportedValueKind) as exc_info:
            self.converter.parse("GEOGRAPHY", "LOCATION")

        assert exc_info.value.field_path == "LOCATION"

    def test_parse_map_requires_string_keys(self):
        with pytest.raises(UnsupportedValueKind, match="map keys must be strings"):
            self.converter.parse("MAP(NUMBER(10,0), BOOLEAN)")

    def test_parse_unbalanced(self):
        with pytest.raises(UnsupportedValueKind):
            self.converter.parse("ARRAY(NUMBER(10,0)")
