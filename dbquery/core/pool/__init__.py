"""
DB connections and connection pool for query execution.

Drivers are plain pip dependencies (psycopg, pymysql, trino; sqlite3 from the
stdlib); a DataSource (product_type, host, ...) is all a caller provides.
"""

from .connect import (
    ColumnInfo,
    connect,
    cursor_columns,
    describe,
    execute,
    is_timeout_error,
    paramstyle_for,
)
from .health import health_check
from .manager import PoolManager, get_pool_manager

__all__ = [
    "ColumnInfo",
    "connect",
    "execute",
    "describe",
    "cursor_columns",
    "is_timeout_error",
    "paramstyle_for",
    "health_check",
    "PoolManager",
    "get_pool_manager",
]
