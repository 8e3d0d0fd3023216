"""
Type conversion between driver values and declared attribute/parameter types.

``convert`` is the single entry point used by the row mapper and by request
validation. Coercers live in a dispatch dict keyed by ``DataTypeEnum``; each
raises ``ConversionError`` on failure. The row mapper catches it and keeps
the raw value, everything else reports it as a validation failure.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

from pymysql.constants import FIELD_TYPE

from dbquery.core.exceptions import ConversionError
from dbquery.models_query import DataTypeEnum, ProductTypeEnum, SqlTypeEnum

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DATETIME_RE = re.compile(r"^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}(:\d{2}(\.\d{1,6})?)?$")
_TIME_RE = re.compile(r"^\d{2}:\d{2}(:\d{2}(\.\d{1,6})?)?$")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _coerce_string(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        try:
            return bytes(value).decode("utf-8")
        except UnicodeDecodeError as e:
            raise ConversionError(f"Bytes are not valid UTF-8: {e}") from e
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return str(value)


def _coerce_integer(value: Any) -> int:
    if isinstance(value, bool):
        raise ConversionError("Boolean not allowed for integer")
    if isinstance(value, int):
        return value
    if isinstance(value, (float, Decimal)):
        try:
            return int(value)
        except (OverflowError, ValueError, InvalidOperation) as e:
            raise ConversionError(f"Cannot convert {value!r} to integer") from e
    if isinstance(value, str):
        s = value.strip()
        try:
            return int(s)
        except ValueError as e:
            raise ConversionError(f"Invalid integer: {s!r}") from e
    raise ConversionError(f"Cannot convert {type(value).__name__} to integer")


def _coerce_float(value: Any) -> float:
    if _is_number(value):
        return float(value)
    if isinstance(value, str):
        s = value.strip()
        try:
            return float(s)
        except ValueError as e:
            raise ConversionError(f"Invalid number: {s!r}") from e
    raise ConversionError(f"Cannot convert {type(value).__name__} to float")


def _coerce_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, str):
        s = value.strip()
        try:
            return Decimal(s)
        except InvalidOperation as e:
            raise ConversionError(f"Invalid decimal: {s!r}") from e
    raise ConversionError(f"Cannot convert {type(value).__name__} to decimal")


def _coerce_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value in (0, 1):
            return bool(value)
        raise ConversionError(f"Expected boolean, got integer: {value}")
    if isinstance(value, str):
        s = value.strip().lower()
        if s in ("true", "1"):
            return True
        if s in ("false", "0"):
            return False
    raise ConversionError(f"Expected boolean (true/false, 1/0), got: {value!r}")


def _coerce_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        s = value.strip()
        if _DATE_RE.match(s):
            try:
                return date.fromisoformat(s)
            except ValueError as e:
                raise ConversionError(f"Invalid date: {s!r}") from e
        raise ConversionError(f"Expected date YYYY-MM-DD, got: {s!r}")
    raise ConversionError(f"Cannot convert {type(value).__name__} to date")


def _coerce_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if isinstance(value, str):
        s = value.strip()
        if _DATETIME_RE.match(s):
            try:
                return datetime.fromisoformat(s.replace(" ", "T", 1))
            except ValueError as e:
                raise ConversionError(f"Invalid datetime: {s!r}") from e
        raise ConversionError(f"Expected datetime YYYY-MM-DDTHH:MM:SS, got: {s!r}")
    raise ConversionError(f"Cannot convert {type(value).__name__} to datetime")


def _coerce_time(value: Any) -> time:
    if isinstance(value, datetime):
        return value.time()
    if isinstance(value, time):
        return value
    if isinstance(value, timedelta):
        return _timedelta_to_time(value)
    if isinstance(value, str):
        s = value.strip()
        if _TIME_RE.match(s):
            try:
                return time.fromisoformat(s)
            except ValueError as e:
                raise ConversionError(f"Invalid time: {s!r}") from e
        raise ConversionError(f"Expected time HH:MM:SS, got: {s!r}")
    raise ConversionError(f"Cannot convert {type(value).__name__} to time")


def _coerce_bytes(value: Any) -> bytes:
    if isinstance(value, bytes):
        return value
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode("utf-8")
    raise ConversionError(f"Cannot convert {type(value).__name__} to bytes")


def _coerce_object(value: Any) -> Any:
    return value


_COERCERS: dict[DataTypeEnum, Any] = {
    DataTypeEnum.STRING: _coerce_string,
    DataTypeEnum.INTEGER: _coerce_integer,
    DataTypeEnum.LONG: _coerce_integer,
    DataTypeEnum.FLOAT: _coerce_float,
    DataTypeEnum.DOUBLE: _coerce_float,
    DataTypeEnum.DECIMAL: _coerce_decimal,
    DataTypeEnum.BOOLEAN: _coerce_boolean,
    DataTypeEnum.DATE: _coerce_date,
    DataTypeEnum.DATETIME: _coerce_datetime,
    DataTypeEnum.TIME: _coerce_time,
    DataTypeEnum.BYTES: _coerce_bytes,
    DataTypeEnum.OBJECT: _coerce_object,
}


def _timedelta_to_time(value: timedelta) -> time:
    seconds = int(value.total_seconds())
    if seconds < 0 or seconds >= 86400:
        raise ConversionError(f"Interval {value} is not a time of day")
    return time(seconds // 3600, (seconds % 3600) // 60, seconds % 60, value.microseconds)


def _resolve_type(target: DataTypeEnum | str) -> DataTypeEnum:
    if isinstance(target, DataTypeEnum):
        return target
    try:
        return DataTypeEnum(str(target).strip().lower())
    except ValueError as e:
        raise ConversionError(f"Unsupported data type: {target!r}") from e


def convert(value: Any, target: DataTypeEnum | str) -> Any:
    """Coerce *value* to *target*.

    ``None`` stays ``None``; an empty string becomes ``None`` for every
    non-string target. Raises ``ConversionError`` when no rule applies.
    """
    dtype = _resolve_type(target)
    if value is None:
        return None
    if dtype is not DataTypeEnum.STRING and isinstance(value, str) and value == "":
        return None
    return _COERCERS[dtype](value)


_PYTHON_TYPES: dict[DataTypeEnum, type] = {
    DataTypeEnum.STRING: str,
    DataTypeEnum.INTEGER: int,
    DataTypeEnum.LONG: int,
    DataTypeEnum.FLOAT: float,
    DataTypeEnum.DOUBLE: float,
    DataTypeEnum.DECIMAL: Decimal,
    DataTypeEnum.BOOLEAN: bool,
    DataTypeEnum.DATE: date,
    DataTypeEnum.DATETIME: datetime,
    DataTypeEnum.TIME: time,
    DataTypeEnum.BYTES: bytes,
    DataTypeEnum.OBJECT: object,
}


def python_type_for(data_type: DataTypeEnum | str) -> type:
    return _PYTHON_TYPES[_resolve_type(data_type)]


# ---------------------------------------------------------------------------
# Driver type codes
# ---------------------------------------------------------------------------

# psycopg reports pg_type OIDs in cursor.description
_PG_OIDS: dict[int, SqlTypeEnum] = {
    16: SqlTypeEnum.BOOLEAN,
    17: SqlTypeEnum.BINARY,
    18: SqlTypeEnum.CHAR,
    19: SqlTypeEnum.VARCHAR,
    20: SqlTypeEnum.BIGINT,
    21: SqlTypeEnum.SMALLINT,
    23: SqlTypeEnum.INTEGER,
    25: SqlTypeEnum.VARCHAR,
    26: SqlTypeEnum.INTEGER,
    114: SqlTypeEnum.JSON,
    700: SqlTypeEnum.FLOAT,
    701: SqlTypeEnum.DOUBLE,
    1000: SqlTypeEnum.ARRAY,
    1005: SqlTypeEnum.ARRAY,
    1007: SqlTypeEnum.ARRAY,
    1009: SqlTypeEnum.ARRAY,
    1016: SqlTypeEnum.ARRAY,
    1042: SqlTypeEnum.CHAR,
    1043: SqlTypeEnum.VARCHAR,
    1082: SqlTypeEnum.DATE,
    1083: SqlTypeEnum.TIME,
    1114: SqlTypeEnum.TIMESTAMP,
    1184: SqlTypeEnum.TIMESTAMP,
    1266: SqlTypeEnum.TIME,
    1700: SqlTypeEnum.NUMERIC,
    3802: SqlTypeEnum.JSON,
}

_MYSQL_FIELD_TYPES: dict[int, SqlTypeEnum] = {
    FIELD_TYPE.DECIMAL: SqlTypeEnum.NUMERIC,
    FIELD_TYPE.NEWDECIMAL: SqlTypeEnum.NUMERIC,
    FIELD_TYPE.TINY: SqlTypeEnum.SMALLINT,
    FIELD_TYPE.SHORT: SqlTypeEnum.SMALLINT,
    FIELD_TYPE.LONG: SqlTypeEnum.INTEGER,
    FIELD_TYPE.INT24: SqlTypeEnum.INTEGER,
    FIELD_TYPE.YEAR: SqlTypeEnum.INTEGER,
    FIELD_TYPE.LONGLONG: SqlTypeEnum.BIGINT,
    FIELD_TYPE.FLOAT: SqlTypeEnum.FLOAT,
    FIELD_TYPE.DOUBLE: SqlTypeEnum.DOUBLE,
    FIELD_TYPE.BIT: SqlTypeEnum.BOOLEAN,
    FIELD_TYPE.DATE: SqlTypeEnum.DATE,
    FIELD_TYPE.NEWDATE: SqlTypeEnum.DATE,
    FIELD_TYPE.TIME: SqlTypeEnum.TIME,
    FIELD_TYPE.DATETIME: SqlTypeEnum.TIMESTAMP,
    FIELD_TYPE.TIMESTAMP: SqlTypeEnum.TIMESTAMP,
    FIELD_TYPE.VARCHAR: SqlTypeEnum.VARCHAR,
    FIELD_TYPE.VAR_STRING: SqlTypeEnum.VARCHAR,
    FIELD_TYPE.STRING: SqlTypeEnum.CHAR,
    FIELD_TYPE.ENUM: SqlTypeEnum.VARCHAR,
    FIELD_TYPE.SET: SqlTypeEnum.VARCHAR,
    FIELD_TYPE.TINY_BLOB: SqlTypeEnum.BLOB,
    FIELD_TYPE.MEDIUM_BLOB: SqlTypeEnum.BLOB,
    FIELD_TYPE.LONG_BLOB: SqlTypeEnum.BLOB,
    FIELD_TYPE.BLOB: SqlTypeEnum.BLOB,
    FIELD_TYPE.JSON: SqlTypeEnum.JSON,
}

# Type names as reported by Trino or declared in SQLite DDL
_TYPE_NAMES: dict[str, SqlTypeEnum] = {
    "varchar": SqlTypeEnum.VARCHAR,
    "character varying": SqlTypeEnum.VARCHAR,
    "text": SqlTypeEnum.VARCHAR,
    "char": SqlTypeEnum.CHAR,
    "character": SqlTypeEnum.CHAR,
    "clob": SqlTypeEnum.CLOB,
    "tinyint": SqlTypeEnum.SMALLINT,
    "smallint": SqlTypeEnum.SMALLINT,
    "integer": SqlTypeEnum.INTEGER,
    "int": SqlTypeEnum.INTEGER,
    "bigint": SqlTypeEnum.BIGINT,
    "decimal": SqlTypeEnum.NUMERIC,
    "numeric": SqlTypeEnum.NUMERIC,
    "real": SqlTypeEnum.FLOAT,
    "float": SqlTypeEnum.FLOAT,
    "double": SqlTypeEnum.DOUBLE,
    "double precision": SqlTypeEnum.DOUBLE,
    "boolean": SqlTypeEnum.BOOLEAN,
    "date": SqlTypeEnum.DATE,
    "time": SqlTypeEnum.TIME,
    "time with time zone": SqlTypeEnum.TIME,
    "timestamp": SqlTypeEnum.TIMESTAMP,
    "timestamp with time zone": SqlTypeEnum.TIMESTAMP,
    "datetime": SqlTypeEnum.TIMESTAMP,
    "varbinary": SqlTypeEnum.BINARY,
    "blob": SqlTypeEnum.BLOB,
    "array": SqlTypeEnum.ARRAY,
    "json": SqlTypeEnum.JSON,
}


def _sql_type_for_name(name: str) -> SqlTypeEnum:
    base = re.sub(r"\(.*\)", "", name).strip().lower()
    if base in _TYPE_NAMES:
        return _TYPE_NAMES[base]
    head = base.split(" ", 1)[0]
    return _TYPE_NAMES.get(head, SqlTypeEnum.OTHER)


def sql_type_for_code(
    type_code: Any, product_type: ProductTypeEnum | str | None = None
) -> SqlTypeEnum:
    """Map a ``cursor.description`` type code to ``SqlTypeEnum``.

    Numeric codes are ambiguous across drivers (pg OIDs and MySQL field types
    overlap), so *product_type* decides which table applies.
    """
    if type_code is None:
        return SqlTypeEnum.OTHER
    if isinstance(type_code, SqlTypeEnum):
        return type_code
    if isinstance(type_code, str):
        return _sql_type_for_name(type_code)
    pt = ProductTypeEnum(product_type) if isinstance(product_type, str) else product_type
    if isinstance(type_code, int):
        if pt == ProductTypeEnum.POSTGRES:
            return _PG_OIDS.get(type_code, SqlTypeEnum.OTHER)
        if pt == ProductTypeEnum.MYSQL:
            return _MYSQL_FIELD_TYPES.get(type_code, SqlTypeEnum.OTHER)
    return SqlTypeEnum.OTHER


_DATA_TYPES: dict[SqlTypeEnum, DataTypeEnum] = {
    SqlTypeEnum.VARCHAR: DataTypeEnum.STRING,
    SqlTypeEnum.CHAR: DataTypeEnum.STRING,
    SqlTypeEnum.CLOB: DataTypeEnum.STRING,
    SqlTypeEnum.INTEGER: DataTypeEnum.INTEGER,
    SqlTypeEnum.SMALLINT: DataTypeEnum.INTEGER,
    SqlTypeEnum.BIGINT: DataTypeEnum.LONG,
    SqlTypeEnum.NUMERIC: DataTypeEnum.DECIMAL,
    SqlTypeEnum.FLOAT: DataTypeEnum.FLOAT,
    SqlTypeEnum.DOUBLE: DataTypeEnum.DOUBLE,
    SqlTypeEnum.BOOLEAN: DataTypeEnum.BOOLEAN,
    SqlTypeEnum.DATE: DataTypeEnum.DATE,
    SqlTypeEnum.TIME: DataTypeEnum.TIME,
    SqlTypeEnum.TIMESTAMP: DataTypeEnum.DATETIME,
    SqlTypeEnum.BLOB: DataTypeEnum.BYTES,
    SqlTypeEnum.BINARY: DataTypeEnum.BYTES,
}


def data_type_for_sql_type(sql_type: SqlTypeEnum) -> DataTypeEnum:
    return _DATA_TYPES.get(sql_type, DataTypeEnum.OBJECT)


def dummy_value_for(data_type: DataTypeEnum | str) -> Any:
    """Type-appropriate placeholder bound when introspecting a statement."""
    dtype = _resolve_type(data_type)
    if dtype in (DataTypeEnum.INTEGER, DataTypeEnum.LONG):
        return 0
    if dtype in (DataTypeEnum.FLOAT, DataTypeEnum.DOUBLE):
        return 0.0
    if dtype is DataTypeEnum.DECIMAL:
        return Decimal(0)
    if dtype is DataTypeEnum.BOOLEAN:
        return False
    if dtype is DataTypeEnum.DATE:
        return date.today()
    if dtype is DataTypeEnum.DATETIME:
        return datetime.now()
    if dtype is DataTypeEnum.TIME:
        return datetime.now().time()
    if dtype is DataTypeEnum.BYTES:
        return b""
    return "DUMMY"


def extract_value(raw: Any, sql_type: SqlTypeEnum | None) -> Any:
    """Normalise a raw driver value for its column type.

    LOB handles are read eagerly, integral decimals in integer columns become
    ``int``, timezone-aware timestamps become naive local time, and MySQL
    ``TIME`` intervals become ``time``.
    """
    if raw is None:
        return None
    if hasattr(raw, "read") and callable(raw.read):
        raw = raw.read()
    if isinstance(raw, (bytearray, memoryview)):
        raw = bytes(raw)
    if sql_type is None or sql_type is SqlTypeEnum.OTHER:
        return raw

    if sql_type in (SqlTypeEnum.INTEGER, SqlTypeEnum.SMALLINT, SqlTypeEnum.BIGINT):
        if isinstance(raw, Decimal) and raw == raw.to_integral_value():
            return int(raw)
        return raw
    if sql_type in (SqlTypeEnum.FLOAT, SqlTypeEnum.DOUBLE):
        if isinstance(raw, Decimal):
            return float(raw)
        return raw
    if sql_type is SqlTypeEnum.NUMERIC:
        if isinstance(raw, float):
            return Decimal(str(raw))
        if isinstance(raw, int) and not isinstance(raw, bool):
            return Decimal(raw)
        return raw
    if sql_type is SqlTypeEnum.TIMESTAMP:
        if isinstance(raw, datetime) and raw.tzinfo is not None:
            return raw.astimezone().replace(tzinfo=None)
        return raw
    if sql_type is SqlTypeEnum.DATE:
        if isinstance(raw, datetime):
            return raw.date()
        return raw
    if sql_type is SqlTypeEnum.TIME:
        if isinstance(raw, timedelta):
            return _timedelta_to_time(raw)
        if isinstance(raw, time) and raw.tzinfo is not None:
            return raw.replace(tzinfo=None)
        return raw
    if sql_type is SqlTypeEnum.CLOB and isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return raw
