"""Unit tests for core.type_convert: conversion matrix and driver type mapping."""

from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

import pytest
from pymysql.constants import FIELD_TYPE

from dbquery.core.exceptions import ConversionError
from dbquery.core.type_convert import (
    convert,
    data_type_for_sql_type,
    dummy_value_for,
    extract_value,
    python_type_for,
    sql_type_for_code,
)
from dbquery.models_query import DataTypeEnum, ProductTypeEnum, SqlTypeEnum


class TestConvertStrings:
    def test_numbers(self):
        assert convert("42", DataTypeEnum.INTEGER) == 42
        assert convert(" 3.5 ", DataTypeEnum.DOUBLE) == 3.5
        assert convert("1.10", DataTypeEnum.DECIMAL) == Decimal("1.10")

    def test_booleans_strict(self):
        assert convert("TRUE", DataTypeEnum.BOOLEAN) is True
        assert convert("0", DataTypeEnum.BOOLEAN) is False
        with pytest.raises(ConversionError):
            convert("yes", DataTypeEnum.BOOLEAN)

    def test_dates(self):
        assert convert("2024-02-29", DataTypeEnum.DATE) == date(2024, 2, 29)
        assert convert("2024-02-29T10:30:00", DataTypeEnum.DATETIME) == datetime(2024, 2, 29, 10, 30)
        assert convert("2024-02-29 10:30:00.500", DataTypeEnum.DATETIME) == datetime(
            2024, 2, 29, 10, 30, 0, 500000
        )
        with pytest.raises(ConversionError):
            convert("29/02/2024", DataTypeEnum.DATE)

    def test_empty_string_is_none_except_for_strings(self):
        assert convert("", DataTypeEnum.INTEGER) is None
        assert convert("", DataTypeEnum.STRING) == ""

    def test_invalid_integer(self):
        with pytest.raises(ConversionError, match="Invalid integer"):
            convert("abc", "integer")


class TestConvertNumbersAndTemporal:
    def test_widening_and_narrowing(self):
        assert convert(7, DataTypeEnum.DECIMAL) == Decimal(7)
        assert convert(Decimal("7.9"), DataTypeEnum.INTEGER) == 7
        assert convert(2.5, DataTypeEnum.DECIMAL) == Decimal("2.5")
        assert isinstance(convert(Decimal("2.5"), DataTypeEnum.DOUBLE), float)

    def test_bool_is_not_a_number(self):
        with pytest.raises(ConversionError):
            convert(True, DataTypeEnum.INTEGER)

    def test_temporal(self):
        assert convert(datetime(2024, 1, 2, 3, 4), DataTypeEnum.DATE) == date(2024, 1, 2)
        assert convert(date(2024, 1, 2), DataTypeEnum.DATETIME) == datetime(2024, 1, 2)

    def test_anything_to_string(self):
        assert convert(12, DataTypeEnum.STRING) == "12"
        assert convert(date(2024, 1, 2), DataTypeEnum.STRING) == "2024-01-02"

    def test_none_passthrough(self):
        for dtype in DataTypeEnum:
            assert convert(None, dtype) is None

    def test_unknown_target(self):
        with pytest.raises(ConversionError, match="Unsupported data type"):
            convert(1, "money")


def test_python_type_for() -> None:
    assert python_type_for("decimal") is Decimal
    assert python_type_for(DataTypeEnum.DATETIME) is datetime


class TestSqlTypeForCode:
    def test_postgres_oids(self):
        assert sql_type_for_code(23, ProductTypeEnum.POSTGRES) is SqlTypeEnum.INTEGER
        assert sql_type_for_code(1700, "postgres") is SqlTypeEnum.NUMERIC
        assert sql_type_for_code(99999, ProductTypeEnum.POSTGRES) is SqlTypeEnum.OTHER

    def test_mysql_field_types(self):
        assert sql_type_for_code(FIELD_TYPE.NEWDECIMAL, ProductTypeEnum.MYSQL) is SqlTypeEnum.NUMERIC
        assert sql_type_for_code(FIELD_TYPE.VAR_STRING, ProductTypeEnum.MYSQL) is SqlTypeEnum.VARCHAR

    def test_type_names(self):
        assert sql_type_for_code("varchar(20)", ProductTypeEnum.TRINO) is SqlTypeEnum.VARCHAR
        assert sql_type_for_code("decimal(10,2)") is SqlTypeEnum.NUMERIC
        assert sql_type_for_code("timestamp(3) with time zone") is SqlTypeEnum.TIMESTAMP

    def test_sqlite_reports_nothing(self):
        assert sql_type_for_code(None, ProductTypeEnum.SQLITE) is SqlTypeEnum.OTHER

    def test_data_type_for_sql_type(self):
        assert data_type_for_sql_type(SqlTypeEnum.BIGINT) is DataTypeEnum.LONG
        assert data_type_for_sql_type(SqlTypeEnum.ARRAY) is DataTypeEnum.OBJECT


def test_dummy_values() -> None:
    assert dummy_value_for("string") == "DUMMY"
    assert dummy_value_for(DataTypeEnum.INTEGER) == 0
    assert dummy_value_for(DataTypeEnum.DECIMAL) == Decimal(0)
    assert dummy_value_for(DataTypeEnum.BOOLEAN) is False
    assert isinstance(dummy_value_for(DataTypeEnum.DATE), date)


class TestExtractValue:
    def test_integral_decimal_in_integer_column(self):
        assert extract_value(Decimal("5"), SqlTypeEnum.INTEGER) == 5
        assert isinstance(extract_value(Decimal("5"), SqlTypeEnum.INTEGER), int)

    def test_numeric_widening(self):
        assert extract_value(1.5, SqlTypeEnum.NUMERIC) == Decimal("1.5")
        assert extract_value(Decimal("1.5"), SqlTypeEnum.DOUBLE) == 1.5

    def test_aware_timestamp_becomes_naive(self):
        value = extract_value(datetime(2024, 1, 1, 12, tzinfo=timezone.utc), SqlTypeEnum.TIMESTAMP)
        assert value.tzinfo is None

    def test_mysql_time_interval(self):
        assert extract_value(timedelta(hours=1, minutes=2), SqlTypeEnum.TIME) == time(1, 2)

    def test_lobs_read_eagerly(self):
        class _Lob:
            def read(self):
                return b"text"

        assert extract_value(_Lob(), SqlTypeEnum.CLOB) == "text"
        assert extract_value(memoryview(b"ab"), SqlTypeEnum.BLOB) == b"ab"

    def test_unknown_type_passthrough(self):
        assert extract_value("x", SqlTypeEnum.OTHER) == "x"
        assert extract_value(None, SqlTypeEnum.INTEGER) is None
