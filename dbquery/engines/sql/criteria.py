"""
Criteria injection and placeholder cleanup.

A criteria replaces its ``--name`` placeholder in the base SQL when its
condition holds (or, without a condition, when every bind parameter it
references has a value); otherwise the placeholder is dropped. Cleanup then
strips leftover placeholders and repairs the ``WHERE`` clause the removals
leave behind.
"""

import logging
import re
from typing import Any

from dbquery.core import sqltext
from dbquery.engines.context import QueryContext
from dbquery.engines.sql.template_engine import SQLTemplateEngine
from dbquery.models_query import AppliedCriteria, CriteriaDef, QueryDefinition

_log = logging.getLogger(__name__)

ORDER_BY_PLACEHOLDER = "orderBy"

_WHERE_BOOL_OP = re.compile(r"\bWHERE(\s+)(?:AND|OR)\b\s*", re.IGNORECASE)
_DANGLING_WHERE = re.compile(
    r"\bWHERE\s*(?=ORDER\s+BY\b|GROUP\s+BY\b|HAVING\b|UNION\b|LIMIT\b|--orderBy\b|\)|$)",
    re.IGNORECASE,
)
_DOUBLE_BOOL_OP = re.compile(r"\b(AND|OR)\s+(?:AND|OR)\b", re.IGNORECASE)
_TRAILING_SPACE = re.compile(r"[ \t]+$", re.MULTILINE)
_BLANK_LINES = re.compile(r"\n\s*\n")


def should_apply(criteria: CriteriaDef, context: QueryContext) -> bool:
    """Evaluate the criteria's condition, or require all its binds to be set."""
    if criteria.condition is not None:
        return bool(criteria.condition(context))
    return all(context.has_param(name) for name in criteria.bind_params)


def resolve_sql(criteria: CriteriaDef, context: QueryContext) -> str:
    if criteria.generator is not None:
        return criteria.generator(context) or ""
    if criteria.template is not None:
        return SQLTemplateEngine().render(criteria.template, context.params, name=criteria.name)
    return criteria.sql or ""


def apply_criteria(
    sql: str,
    definition: QueryDefinition,
    context: QueryContext,
    params: dict[str, Any],
    *,
    audit: bool = True,
) -> str:
    """Inject or drop each criteria placeholder, lowest priority first.

    Bind values of applied criteria are merged into *params*; with *audit*
    each application is recorded on the context.
    """
    present = set(sqltext.placeholder_names(sql))
    for criteria in definition.ordered_criteria():
        if criteria.name not in present:
            continue
        if should_apply(criteria, context):
            fragment = resolve_sql(criteria, context)
            sql, _ = sqltext.replace_placeholder(sql, criteria.name, fragment)
            used = {n: context.params.get(n) for n in sorted(criteria.bind_params) if n in context.params}
            params.update(used)
            if audit:
                context.record_applied_criteria(
                    AppliedCriteria(
                        name=criteria.name,
                        sql=fragment,
                        params=used,
                        security_related=criteria.security_related,
                    )
                )
            _log.debug("Criteria '%s' applied to query '%s'", criteria.name, definition.name)
        else:
            sql, _ = sqltext.replace_placeholder(sql, criteria.name, "")
    return sql


def cleanup_sql(sql: str, *, keep_order_by: bool = True) -> str:
    """Remove unused ``--word`` placeholders and repair the SQL around them.

    ``WHERE AND``/``WHERE OR`` lose the operator, a ``WHERE`` left with no
    condition is dropped, blank lines and trailing blanks go away. Quoted
    literals are never rewritten. The ``--orderBy`` placeholder survives
    when *keep_order_by* is set, for the sort step.
    """
    keep = {ORDER_BY_PLACEHOLDER} if keep_order_by else None
    sql = sqltext.strip_line_comments(sql, keep=keep)
    masked, literals = sqltext.mask_literals(sql)
    masked = _WHERE_BOOL_OP.sub(r"WHERE\1", masked)
    masked = _DOUBLE_BOOL_OP.sub(r"\1", masked)
    masked = _DANGLING_WHERE.sub("", masked)
    masked = _TRAILING_SPACE.sub("", masked)
    masked = _BLANK_LINES.sub("\n", masked)
    return sqltext.unmask_literals(masked, literals).strip()
