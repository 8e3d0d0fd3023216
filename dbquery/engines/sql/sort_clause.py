"""
Sort composition: ``ORDER BY`` in the order the caller listed the sorts.
"""

import logging

from dbquery.core import sqltext
from dbquery.engines.context import QueryContext
from dbquery.engines.sql.criteria import ORDER_BY_PLACEHOLDER
from dbquery.models_query import AttributeDef, QueryDefinition

_log = logging.getLogger(__name__)

SORT_ALIAS = "sorted_q"


def sort_column(definition: QueryDefinition, attr: AttributeDef) -> str | None:
    """Physical column to sort *attr* by; virtual attributes use their sort_property."""
    if not attr.virtual:
        return attr.alias
    if not attr.sort_property:
        return None
    delegate = definition.get_attribute(attr.sort_property)
    if delegate is not None:
        return delegate.alias
    return attr.sort_property


def build_order_by(definition: QueryDefinition, context: QueryContext) -> str:
    """``ORDER BY col dir, ...`` or an empty string when no sort is usable."""
    parts: list[str] = []
    for s in context.sorts:
        attr = definition.get_attribute(s.attribute)
        if attr is None:
            _log.warning(
                "Query '%s': skipping sort on unknown attribute '%s'",
                definition.name,
                s.attribute,
            )
            continue
        column = sort_column(definition, attr) if attr.sortable else None
        if column is None:
            _log.warning(
                "Query '%s': skipping sort on non-sortable attribute '%s'",
                definition.name,
                s.attribute,
            )
            continue
        parts.append(f"{column} {s.direction.value}")
    if not parts:
        return ""
    return "ORDER BY " + ", ".join(parts)


def strip_order_by_placeholder(sql: str) -> str:
    out, _ = sqltext.replace_placeholder(sql, ORDER_BY_PLACEHOLDER, "")
    return out.rstrip()


def apply_order_by(sql: str, order_by: str, *, wrapped: bool) -> str:
    """Place *order_by* in *sql*.

    An unwrapped query with an ``--orderBy`` placeholder gets the clause in
    its place; a query already ending in a top-level ``ORDER BY`` is wrapped
    first; otherwise the clause is appended.
    """
    if not order_by:
        return strip_order_by_placeholder(sql)
    if not wrapped:
        replaced, found = sqltext.replace_placeholder(sql, ORDER_BY_PLACEHOLDER, order_by)
        if found:
            return replaced.rstrip()
    if sqltext.has_top_level_order_by(sql):
        return f"SELECT * FROM (\n{sql}\n) {SORT_ALIAS}\n{order_by}"
    return f"{sql}\n{order_by}"
