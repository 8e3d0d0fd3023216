"""
RowMapper: turns one driver row tuple into a ``Row``.

Passes, in order:

1. raw extraction of every column (cached types, else live cursor types)
2. regular attributes: security, value by cached index or alias, conversion
3. formatters of regular attributes
4. calculators of virtual attributes, in declaration order
5. formatters of virtual attributes

then, when the definition asks for it, dynamic attributes for unmapped
columns. Row-level failures are logged and recovered; they never abort the
query.
"""

import logging
from collections.abc import Iterable, Sequence
from typing import Any

from dbquery.core.exceptions import ConversionError
from dbquery.core.pool import ColumnInfo
from dbquery.core.type_convert import convert, extract_value, sql_type_for_code
from dbquery.engines.context import QueryContext
from dbquery.engines.metadata.cache import MetadataCache
from dbquery.engines.row import Row
from dbquery.models_query import AttributeDef, ProductTypeEnum, SqlTypeEnum

_log = logging.getLogger(__name__)


class RowMapper:
    """
    Maps rows of one result set for one execution.

    Column layout is resolved once, from *cache* when present, else from the
    live *columns* of the cursor.
    """

    def __init__(
        self,
        context: QueryContext,
        *,
        cache: MetadataCache | None = None,
        columns: Sequence[ColumnInfo] | None = None,
        product_type: ProductTypeEnum | str | None = None,
        hidden_columns: Iterable[str] = (),
    ) -> None:
        self.context = context
        self.definition = context.definition
        self.cache = cache
        self._hidden = {h.upper() for h in hidden_columns}
        # dialect helper columns follow the query's own columns
        live_count = (
            None if columns is None else sum(1 for c in columns if c.name.upper() not in self._hidden)
        )
        if cache is not None and (live_count is None or live_count == cache.column_count):
            self.column_names: tuple[str, ...] = cache.column_names
            self.column_types: tuple[SqlTypeEnum, ...] = cache.column_types
        else:
            # live metadata: no cache, or a cache that no longer matches the result
            if cache is not None:
                _log.warning(
                    "Query '%s': cached column count %d differs from result (%d); using live metadata",
                    self.definition.name,
                    cache.column_count,
                    live_count or 0,
                )
                self.cache = None
            cols = list(columns or ())
            self.column_names = tuple(c.name for c in cols)
            self.column_types = tuple(sql_type_for_code(c.type_code, product_type) for c in cols)

        self._by_name: dict[str, int] = {}
        for i, name in enumerate(self.column_names):
            for key in (name, name.upper(), name.lower()):
                self._by_name.setdefault(key, i)

        self._regular = [
            a for a in self.definition.regular_attributes() if context.is_attribute_included(a)
        ]
        self._virtual = [
            a for a in self.definition.virtual_attributes() if context.is_attribute_included(a)
        ]
        # every declared column, included or not, is not "dynamic"
        self._mapped_columns: set[int] = set()
        for attr in self.definition.regular_attributes():
            i = self._attribute_column(attr)
            if i is not None:
                self._mapped_columns.add(i)

    def _attribute_column(self, attr: AttributeDef) -> int | None:
        if self.cache is not None:
            i = self.cache.attribute_column(attr.name)
            if i is not None:
                return i
        alias = attr.alias or attr.name
        for key in (alias, alias.upper(), alias.lower()):
            i = self._by_name.get(key)
            if i is not None:
                return i
        return None

    def _allowed(self, attr: AttributeDef) -> bool:
        try:
            return attr.is_allowed(self.context.principal)
        except Exception as e:
            _log.warning(
                "Query '%s': security rule of '%s' failed, value hidden: %s",
                self.definition.name,
                attr.name,
                e,
            )
            return False

    def _convert(self, attr: AttributeDef, value: Any) -> Any:
        try:
            return convert(value, attr.data_type)
        except ConversionError as e:
            _log.warning(
                "Query '%s': could not convert %r for attribute '%s' to %s: %s",
                self.definition.name,
                value,
                attr.name,
                attr.data_type.value,
                e,
            )
            return value

    def _format(self, row: Row, attrs: list[AttributeDef]) -> None:
        for attr in attrs:
            if attr.formatter is None or attr.name not in row:
                continue
            value = row[attr.name]
            if value is None:
                continue
            try:
                row._put(attr.name, attr.formatter(value))
            except Exception as e:
                _log.warning(
                    "Query '%s': formatter of '%s' failed: %s", self.definition.name, attr.name, e
                )

    def map_row(self, values: Sequence[Any], index: int = 0) -> Row:
        row = Row(index=index)

        # 1. raw
        extracted: list[Any] = []
        for i, name in enumerate(self.column_names):
            raw = values[i] if i < len(values) else None
            try:
                value = extract_value(raw, self.column_types[i])
            except Exception as e:
                _log.warning(
                    "Query '%s': could not extract column '%s': %s", self.definition.name, name, e
                )
                value = raw
            extracted.append(value)
            row._put_raw(name, value)

        # 2. regular attributes
        for attr in self._regular:
            if not self._allowed(attr):
                row._put(attr.name, None)
                continue
            i = self._attribute_column(attr)
            value = extracted[i] if i is not None else None
            row._put(attr.name, self._convert(attr, value))

        # 3.
        self._format(row, self._regular)

        # 4. calculators see everything materialised so far
        for attr in self._virtual:
            if not self._allowed(attr):
                row._put(attr.name, None)
                continue
            try:
                value = attr.calculator(row, self.context)
            except Exception as e:
                _log.warning(
                    "Query '%s': calculator of '%s' failed: %s", self.definition.name, attr.name, e
                )
                value = None
            row._put(attr.name, self._convert(attr, value))

        # 5.
        self._format(row, self._virtual)

        if self.definition.include_dynamic_attributes:
            self._add_dynamic(row, extracted)
        return row

    def _add_dynamic(self, row: Row, extracted: list[Any]) -> None:
        selected = self.context.selected_fields
        strategy = self.definition.naming_strategy
        for i, column in enumerate(self.column_names):
            if i in self._mapped_columns or column.upper() in self._hidden:
                continue
            name = strategy.convert(column)
            if name in row or self.definition.get_attribute(name) is not None:
                continue
            if selected and name not in selected:
                continue
            row._put(name, extracted[i])

    def map_rows(self, rows: Iterable[Sequence[Any]]) -> list[Row]:
        return [self.map_row(values, i) for i, values in enumerate(rows)]
