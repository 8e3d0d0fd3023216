"""
Row: ordered attribute bag produced by the row mapper.

Calculators, formatters and row processors read it through typed accessors;
only the mapper writes to it.
"""

from collections.abc import Iterator, Mapping
from datetime import date, datetime
from decimal import Decimal
from types import MappingProxyType
from typing import Any

from dbquery.core.type_convert import convert
from dbquery.models_query import DataTypeEnum


class Row(Mapping):
    """Attribute name -> value, in mapping order, plus the raw column values."""

    __slots__ = ("_values", "_raw", "_index")

    def __init__(self, raw: dict[str, Any] | None = None, index: int = 0) -> None:
        self._values: dict[str, Any] = {}
        self._raw: dict[str, Any] = dict(raw or {})
        self._index = index

    # Mapping protocol
    def __getitem__(self, name: str) -> Any:
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"Row({self._values!r})"

    @property
    def index(self) -> int:
        return self._index

    @property
    def raw(self) -> Mapping[str, Any]:
        return MappingProxyType(self._raw)

    def get_raw(self, column: str, default: Any = None) -> Any:
        """Raw column value; the name matches as given, upper- or lower-cased."""
        for key in (column, column.upper(), column.lower()):
            if key in self._raw:
                return self._raw[key]
        return default

    def _typed(self, name: str, dtype: DataTypeEnum, default: Any) -> Any:
        value = self._values.get(name)
        if value is None:
            return default
        return convert(value, dtype)

    def get_str(self, name: str, default: str | None = None) -> str | None:
        return self._typed(name, DataTypeEnum.STRING, default)

    def get_int(self, name: str, default: int | None = None) -> int | None:
        return self._typed(name, DataTypeEnum.INTEGER, default)

    def get_float(self, name: str, default: float | None = None) -> float | None:
        return self._typed(name, DataTypeEnum.DOUBLE, default)

    def get_decimal(self, name: str, default: Decimal | None = None) -> Decimal | None:
        return self._typed(name, DataTypeEnum.DECIMAL, default)

    def get_bool(self, name: str, default: bool | None = None) -> bool | None:
        return self._typed(name, DataTypeEnum.BOOLEAN, default)

    def get_date(self, name: str, default: date | None = None) -> date | None:
        return self._typed(name, DataTypeEnum.DATE, default)

    def get_datetime(self, name: str, default: datetime | None = None) -> datetime | None:
        return self._typed(name, DataTypeEnum.DATETIME, default)

    def to_dict(self) -> dict[str, Any]:
        return dict(self._values)

    # mapper-only writes
    def _put(self, name: str, value: Any) -> None:
        self._values[name] = value

    def _put_raw(self, column: str, value: Any) -> None:
        self._raw[column] = value
