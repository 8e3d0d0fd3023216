"""
SQL composition: criteria injection, filters, sorts, pagination dialects,
and the Jinja2 engine behind criteria templates.

Exports: SqlBuilder, SqlResult, SQLTemplateEngine.
"""

from dbquery.engines.sql.builder import SqlBuilder, SqlResult
from dbquery.engines.sql.template_engine import SQLTemplateEngine

__all__ = [
    "SqlBuilder",
    "SqlResult",
    "SQLTemplateEngine",
]
