"""
Engines: SQL composition, metadata cache, row mapping and the executor.
"""

from dbquery.engines.context import QueryContext
from dbquery.engines.executor import QueryExecution, QueryExecutor
from dbquery.engines.metadata import MetadataCache, MetadataCacheBuilder
from dbquery.engines.result import AttributeSchema, ErrorInfo, PaginationInfo, QueryMetadata, QueryResult
from dbquery.engines.row import Row
from dbquery.engines.row_mapper import RowMapper
from dbquery.engines.sql import SqlBuilder, SqlResult, SQLTemplateEngine

__all__ = [
    "QueryContext",
    "QueryExecution",
    "QueryExecutor",
    "MetadataCache",
    "MetadataCacheBuilder",
    "QueryResult",
    "QueryMetadata",
    "ErrorInfo",
    "PaginationInfo",
    "AttributeSchema",
    "Row",
    "RowMapper",
    "SqlBuilder",
    "SqlResult",
    "SQLTemplateEngine",
]
