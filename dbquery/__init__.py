"""
dbquery: named SQL query definitions executed with request-time criteria,
filters, sorting and pagination, mapped into typed rows.
"""

from dbquery.core.exceptions import (
    ConversionError,
    ErrorCode,
    MetadataCacheError,
    QueryDefinitionError,
    QueryError,
    QueryExecutionError,
    QueryNotFoundError,
    QueryTimeoutError,
    QueryValidationError,
)
from dbquery.engines import (
    MetadataCacheBuilder,
    QueryContext,
    QueryExecution,
    QueryExecutor,
    QueryResult,
    Row,
    SqlBuilder,
)
from dbquery.models_query import (
    AttributeDef,
    CriteriaDef,
    DataSource,
    DataTypeEnum,
    DialectEnum,
    Filter,
    FilterOpEnum,
    ParamDef,
    ProductTypeEnum,
    QueryDefinition,
    SortDirEnum,
    SortSpec,
    ValidationRule,
)
from dbquery.registry import QueryRegistry

__all__ = [
    "AttributeDef",
    "ConversionError",
    "CriteriaDef",
    "DataSource",
    "DataTypeEnum",
    "DialectEnum",
    "ErrorCode",
    "Filter",
    "FilterOpEnum",
    "MetadataCacheBuilder",
    "MetadataCacheError",
    "ParamDef",
    "ProductTypeEnum",
    "QueryContext",
    "QueryDefinition",
    "QueryDefinitionError",
    "QueryError",
    "QueryExecution",
    "QueryExecutionError",
    "QueryExecutor",
    "QueryNotFoundError",
    "QueryRegistry",
    "QueryResult",
    "QueryTimeoutError",
    "QueryValidationError",
    "Row",
    "SortDirEnum",
    "SortSpec",
    "SqlBuilder",
    "ValidationRule",
]
