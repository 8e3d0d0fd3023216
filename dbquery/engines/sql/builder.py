"""
SqlBuilder: final SQL text and bind map for one execution.

Steps, strictly in this order:

1. criteria injection (``criteria.apply_criteria``)
2. placeholder cleanup (``criteria.cleanup_sql``)
3. filters, as a derived-table ``WHERE`` (``filter_clause``)
4. ``ORDER BY`` (``sort_clause``)
5. pagination for the configured dialect (``dialect``)

The returned params hold exactly the binds the final SQL references.
"""

import logging
from typing import Any, NamedTuple

from dbquery.core import sqltext
from dbquery.core.config import settings
from dbquery.core.exceptions import ErrorCode, QueryExecutionError
from dbquery.engines.context import QueryContext
from dbquery.engines.sql import dialect as pagination
from dbquery.engines.sql.criteria import apply_criteria, cleanup_sql
from dbquery.engines.sql.filter_clause import build_filter_clause, wrap_with_filters
from dbquery.engines.sql.sort_clause import apply_order_by, build_order_by, strip_order_by_placeholder
from dbquery.models_query import DialectEnum, QueryDefinition

_log = logging.getLogger(__name__)

COUNT_ALIAS = "count_query"
METADATA_ALIAS = "meta_q"


class SqlResult(NamedTuple):
    sql: str
    params: dict[str, Any]


def _bound_params(definition: QueryDefinition, sql: str, params: dict[str, Any]) -> dict[str, Any]:
    names = sqltext.unique_bind_names(sql)
    missing = [n for n in names if n not in params]
    if missing:
        raise QueryExecutionError(
            f"Missing value for bind parameter(s): {', '.join(missing)}",
            query_name=definition.name,
            code=ErrorCode.PARAMETER_ERROR,
        )
    return {n: params[n] for n in names}


class SqlBuilder:
    """Composes SQL for a definition and a context; holds no per-query state."""

    def __init__(self, dialect: DialectEnum | str | None = None) -> None:
        self.dialect = DialectEnum.parse(dialect or settings.DEFAULT_DIALECT)

    def _resolve_base(
        self,
        definition: QueryDefinition,
        context: QueryContext,
        params: dict[str, Any],
        *,
        audit: bool,
        keep_order_by: bool,
    ) -> str:
        sql = apply_criteria(definition.sql, definition, context, params, audit=audit)
        return cleanup_sql(sql, keep_order_by=keep_order_by)

    def build(self, definition: QueryDefinition, context: QueryContext) -> SqlResult:
        """Final SQL and binds. Building twice from an unchanged context gives the same result."""
        context.clear_applied_criteria()
        params: dict[str, Any] = dict(context.params)

        sql = self._resolve_base(definition, context, params, audit=True, keep_order_by=True)

        wrapped = False
        if context.has_filters():
            clause = build_filter_clause(definition, context, params)
            if clause:
                sql = wrap_with_filters(strip_order_by_placeholder(sql), clause)
                wrapped = True

        sql = apply_order_by(sql, build_order_by(definition, context), wrapped=wrapped)

        if context.has_pagination():
            sql = pagination.paginate(sql, context.pagination, params, self.dialect)

        result = SqlResult(sql=sql, params=_bound_params(definition, sql, params))
        _log.debug("Built SQL for query '%s': %s", definition.name, result.sql)
        _log.debug("Parameters: %s", result.params)
        return result

    def build_count_query(self, definition: QueryDefinition, context: QueryContext) -> SqlResult:
        """``SELECT COUNT(*)`` over the criteria- and filter-resolved query.

        Sorts and pagination do not change the count and are left out;
        criteria applied here are not recorded in the audit trail.
        """
        params: dict[str, Any] = dict(context.params)
        sql = self._resolve_base(definition, context, params, audit=False, keep_order_by=False)
        if context.has_filters():
            clause = build_filter_clause(definition, context, params)
            if clause:
                sql = wrap_with_filters(sql, clause)
        sql = f"SELECT COUNT(*) FROM (\n{sql}\n) {COUNT_ALIAS}"
        return SqlResult(sql=sql, params=_bound_params(definition, sql, params))

    def build_metadata_query(
        self, definition: QueryDefinition, context: QueryContext, *, zero_rows: bool = True
    ) -> SqlResult:
        """Criteria-resolved SQL for column discovery.

        With *zero_rows* the query is wrapped as ``SELECT * ... WHERE 1=0`` so
        executing it returns a description and no rows.
        """
        params: dict[str, Any] = dict(context.params)
        sql = self._resolve_base(definition, context, params, audit=False, keep_order_by=False)
        if zero_rows:
            sql = f"SELECT * FROM (\n{sql}\n) {METADATA_ALIAS} WHERE 1=0"
        return SqlResult(sql=sql, params=_bound_params(definition, sql, params))
