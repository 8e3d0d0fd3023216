"""
Filter composition: the request's attribute filters become a ``WHERE``
clause over the criteria-resolved query, wrapped as a derived table so
filters always see the attribute columns by alias.
"""

import logging
import re
from typing import Any

from dbquery.core.exceptions import QueryValidationError
from dbquery.engines.context import QueryContext
from dbquery.models_query import AttributeDef, Filter, FilterOpEnum, QueryDefinition

_log = logging.getLogger(__name__)

FILTER_ALIAS = "q"

_COMPARISONS: dict[FilterOpEnum, str] = {
    FilterOpEnum.EQUALS: "=",
    FilterOpEnum.NOT_EQUALS: "<>",
    FilterOpEnum.GREATER_THAN: ">",
    FilterOpEnum.GREATER_THAN_OR_EQUAL: ">=",
    FilterOpEnum.LESS_THAN: "<",
    FilterOpEnum.LESS_THAN_OR_EQUAL: "<=",
}


def bind_name(attribute: str, index: int) -> str:
    """``filter_<attr>_<index>``.

    Each run of non-alphanumeric characters becomes one ``_`` and edge
    underscores are dropped, so the attribute part never holds ``__``. Per-item
    binds append ``__<n>`` and cannot meet another filter's name.
    """
    safe = re.sub(r"[^A-Za-z0-9]+", "_", attribute).strip("_") or "attr"
    return f"filter_{safe}_{index}"


def build_condition(
    f: Filter, attr: AttributeDef, params: dict[str, Any], index: int
) -> str:
    """SQL condition for one filter; binds are added to *params*.

    Returns an empty string for ``IN``/``NOT_IN`` with an empty list.
    """
    column = attr.alias
    op = f.op
    name = bind_name(attr.name, index)

    if op in _COMPARISONS:
        params[name] = f.value
        return f"{column} {_COMPARISONS[op]} :{name}"
    if op is FilterOpEnum.LIKE:
        params[name] = f.value
        return f"UPPER({column}) LIKE UPPER(:{name})"
    if op is FilterOpEnum.NOT_LIKE:
        params[name] = f.value
        return f"UPPER({column}) NOT LIKE UPPER(:{name})"
    if op is FilterOpEnum.CONTAINS:
        params[name] = f"%{f.value}%"
        return f"{column} LIKE :{name}"
    if op is FilterOpEnum.STARTS_WITH:
        params[name] = f"{f.value}%"
        return f"{column} LIKE :{name}"
    if op is FilterOpEnum.ENDS_WITH:
        params[name] = f"%{f.value}"
        return f"{column} LIKE :{name}"
    if op in (FilterOpEnum.IN, FilterOpEnum.NOT_IN):
        values = list(f.values or ())
        if not values:
            return ""
        names = []
        for n, v in enumerate(values):
            item = f"{name}__{n}"
            params[item] = v
            names.append(f":{item}")
        keyword = "IN" if op is FilterOpEnum.IN else "NOT IN"
        return f"{column} {keyword} ({', '.join(names)})"
    if op is FilterOpEnum.BETWEEN:
        params[f"{name}__1"] = f.value
        params[f"{name}__2"] = f.value2
        return f"{column} BETWEEN :{name}__1 AND :{name}__2"
    if op is FilterOpEnum.IS_NULL:
        return f"{column} IS NULL"
    if op is FilterOpEnum.IS_NOT_NULL:
        return f"{column} IS NOT NULL"
    raise QueryValidationError(f"Unsupported filter operator: {op}")


def build_filter_clause(
    definition: QueryDefinition, context: QueryContext, params: dict[str, Any]
) -> str:
    """Conditions for every usable filter joined with ``AND`` (no ``WHERE``).

    Filters on unknown or non-filterable attributes are logged and skipped;
    an operator the attribute does not allow raises ``QueryValidationError``.
    """
    conditions: list[str] = []
    index = 0
    for f in context.filters.values():
        attr = definition.get_attribute(f.attribute)
        if attr is None:
            _log.warning(
                "Query '%s': skipping filter on unknown attribute '%s'",
                definition.name,
                f.attribute,
            )
            continue
        if attr.virtual or not attr.filterable:
            _log.warning(
                "Query '%s': skipping filter on non-filterable attribute '%s'",
                definition.name,
                f.attribute,
            )
            continue
        if not attr.allows_operator(f.op):
            raise QueryValidationError(
                f"Operator {f.op.value} is not allowed for attribute '{attr.name}'",
                query_name=definition.name,
            )
        condition = build_condition(f, attr, params, index)
        index += 1
        if condition:
            conditions.append(condition)
    return " AND ".join(conditions)


def wrap_with_filters(sql: str, clause: str) -> str:
    return f"SELECT * FROM (\n{sql}\n) {FILTER_ALIAS}\nWHERE {clause}"
