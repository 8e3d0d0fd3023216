"""
DB connection helpers for the query engine.

Uses psycopg (PostgreSQL), pymysql (MySQL), trino (Trino) or the stdlib
sqlite3 module based on product_type. Query SQL uses ``:name`` binds
everywhere; ``execute`` rewrites them to each driver's paramstyle.
"""

import logging
import sqlite3
from datetime import date, datetime
from decimal import Decimal
from typing import Any, NamedTuple

import psycopg
import pymysql
from psycopg import pq
from trino.auth import BasicAuthentication
from trino.dbapi import connect as trino_connect

from dbquery.core import sqltext
from dbquery.core.config import settings
from dbquery.models_query import ProductTypeEnum

_log = logging.getLogger(__name__)

_PARAMSTYLES: dict[ProductTypeEnum, str] = {
    ProductTypeEnum.POSTGRES: "pyformat",
    ProductTypeEnum.MYSQL: "pyformat",
    ProductTypeEnum.TRINO: "qmark",
    ProductTypeEnum.SQLITE: "named",
}

_MYSQL_TIMEOUT_ERRNO = 3024  # ER_QUERY_TIMEOUT

# pg_type OIDs used to type dummy parameters for statement description
_PG_PARAM_OIDS: list[tuple[type, int]] = [
    (bool, 16),
    (int, 20),
    (float, 701),
    (Decimal, 1700),
    (datetime, 1114),
    (date, 1082),
    (str, 25),
]


class ColumnInfo(NamedTuple):
    name: str
    type_code: Any


def _get(datasource: Any, key: str) -> Any:
    """Get attribute or dict key from DataSource, dict, or Pydantic model."""
    if isinstance(datasource, dict):
        return datasource.get(key)
    return getattr(datasource, key, None)


def _resolve_product_type(
    datasource: Any, product_type: ProductTypeEnum | None
) -> ProductTypeEnum:
    pt = product_type or _get(datasource, "product_type")
    if pt is None:
        raise ValueError("product_type is required (from datasource or argument)")
    if isinstance(pt, str):
        return ProductTypeEnum(pt)
    return pt


def connect(
    datasource: Any,
    *,
    product_type: ProductTypeEnum | None = None,
) -> Any:
    """
    Open a connection from a DataSource or connection dict.

    - datasource: DataSource model or dict with product_type, host, port,
      database, username, password (SQLite only needs database, a file path).
    - product_type: override when datasource is a dict without product_type.
    """
    pt = _resolve_product_type(datasource, product_type)
    database = _get(datasource, "database")
    if database is None:
        raise ValueError("datasource must provide database")

    timeout = settings.EXTERNAL_DB_CONNECT_TIMEOUT

    if pt == ProductTypeEnum.SQLITE:
        return sqlite3.connect(database, timeout=timeout, check_same_thread=False)

    host = _get(datasource, "host")
    username = _get(datasource, "username")
    password = _get(datasource, "password")
    for name, val in [("host", host), ("username", username)]:
        if val is None:
            raise ValueError(f"datasource must provide {name}")
    password = password if password is not None else ""

    if pt == ProductTypeEnum.POSTGRES:
        return psycopg.connect(
            host=host,
            port=int(_get(datasource, "port") or 5432),
            dbname=database,
            user=username,
            password=password,
            connect_timeout=timeout,
        )
    if pt == ProductTypeEnum.MYSQL:
        return pymysql.connect(
            host=host,
            port=int(_get(datasource, "port") or 3306),
            database=database,
            user=username,
            password=password,
            connect_timeout=timeout,
        )
    if pt == ProductTypeEnum.TRINO:
        use_ssl = _get(datasource, "use_ssl") in (True, "true", "1")
        if use_ssl and not (password and password.strip()):
            raise ValueError("Password is required for Trino when using SSL/HTTPS.")
        return trino_connect(
            host=host,
            port=int(_get(datasource, "port") or 8080),
            user=username,
            auth=BasicAuthentication(username, password) if use_ssl else None,
            catalog=database,
            schema="default",
            source="dbquery",
            http_scheme="https" if use_ssl else "http",
            request_timeout=timeout,
        )
    raise ValueError(f"Unsupported product_type: {pt}")


def _sqlite_value(value: Any) -> Any:
    # sqlite3 binds neither Decimal nor, without deprecated adapters, dates
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return value.isoformat(sep=" ")
    if isinstance(value, date):
        return value.isoformat()
    return value


def paramstyle_for(product_type: ProductTypeEnum | None) -> str:
    if product_type is None:
        return "named"
    return _PARAMSTYLES[ProductTypeEnum(product_type)]


def _set_timeout(conn: Any, product_type: ProductTypeEnum, timeout_sec: float) -> None:
    timeout_ms = int(timeout_sec * 1000)
    cur = conn.cursor()
    try:
        if product_type == ProductTypeEnum.POSTGRES:
            cur.execute(f"SET statement_timeout = {timeout_ms}")
        elif product_type == ProductTypeEnum.MYSQL:
            cur.execute(f"SET SESSION max_execution_time = {timeout_ms}")
        elif product_type == ProductTypeEnum.TRINO:
            cur.execute(f"SET SESSION query_max_execution_time = '{int(timeout_sec)}s'")
    finally:
        try:
            cur.close()
        except Exception:
            pass


def _reset_timeout(conn: Any, product_type: ProductTypeEnum) -> None:
    try:
        cur = conn.cursor()
        if product_type == ProductTypeEnum.POSTGRES:
            cur.execute("SET statement_timeout = 0")
        elif product_type == ProductTypeEnum.MYSQL:
            cur.execute("SET SESSION max_execution_time = 0")
        elif product_type == ProductTypeEnum.TRINO:
            cur.execute("RESET SESSION query_max_execution_time")
        cur.close()
    except Exception:
        _log.debug("Statement timeout reset failed", exc_info=True)


def execute(
    conn: Any,
    sql: str,
    params: dict[str, Any] | None = None,
    *,
    product_type: ProductTypeEnum | None = None,
    timeout: float | None = None,
) -> Any:
    """
    Execute SQL with ``:name`` binds and return the cursor.

    - params: bind values by name; names referenced in *sql* must be present.
    - product_type: picks the driver paramstyle and the statement-timeout
      command (Postgres: statement_timeout, MySQL: max_execution_time, Trino:
      query_max_execution_time). SQLite has no per-statement timeout.
    - timeout: seconds; falls back to ``EXTERNAL_DB_STATEMENT_TIMEOUT``.
      Applied before the query and reset after.
    """
    pt = ProductTypeEnum(product_type) if product_type is not None else None
    compiled, args = sqltext.compile_named(
        sql, params, paramstyle_for(pt), backslash_escapes=pt == ProductTypeEnum.MYSQL
    )
    if pt in (None, ProductTypeEnum.SQLITE) and args:
        args = {k: _sqlite_value(v) for k, v in args.items()}

    timeout_sec = timeout if timeout is not None else settings.EXTERNAL_DB_STATEMENT_TIMEOUT
    use_timeout = (
        timeout_sec is not None
        and timeout_sec > 0
        and pt is not None
        and pt != ProductTypeEnum.SQLITE
    )

    if use_timeout:
        _set_timeout(conn, pt, timeout_sec)

    cur = conn.cursor()
    try:
        if args:
            cur.execute(compiled, args)
        elif pt in (ProductTypeEnum.POSTGRES, ProductTypeEnum.MYSQL):
            # pyformat SQL has doubled %; the driver only collapses them with params
            cur.execute(compiled, {})
        else:
            cur.execute(compiled)
    except Exception:
        try:
            cur.close()
        except Exception:
            _log.debug("Closing cursor after failed execute raised", exc_info=True)
        raise
    finally:
        if use_timeout:
            _reset_timeout(conn, pt)

    return cur


def is_timeout_error(exc: BaseException) -> bool:
    """True when a driver error means the statement timeout fired."""
    if isinstance(exc, psycopg.errors.QueryCanceled):
        return True
    if isinstance(exc, pymysql.err.OperationalError):
        return bool(exc.args) and exc.args[0] == _MYSQL_TIMEOUT_ERRNO
    return False


def cursor_columns(cursor: Any) -> list[ColumnInfo]:
    """Column names and driver type codes from ``cursor.description``."""
    desc = cursor.description
    if not desc:
        return []
    return [ColumnInfo(name=d[0], type_code=d[1]) for d in desc]


def _pg_param_oid(value: Any) -> int:
    for typ, oid in _PG_PARAM_OIDS:
        if isinstance(value, typ):
            return oid
    # unknown: let the server infer from context
    return 0


def describe(
    conn: Any,
    sql: str,
    *,
    product_type: ProductTypeEnum | None,
    sample_params: dict[str, Any] | None = None,
) -> list[ColumnInfo] | None:
    """
    Result columns of *sql* without executing it, or None when unavailable.

    Only PostgreSQL exposes statement description at the protocol level
    (``pgconn.prepare`` + ``describe_prepared``). With *sample_params* the
    parameters are declared with types taken from the sample values.
    Other drivers return None and callers fall back to a zero-row query.
    """
    if product_type is None or ProductTypeEnum(product_type) != ProductTypeEnum.POSTGRES:
        return None

    numbered, order = sqltext.to_numbered(sql)
    param_types = None
    if sample_params is not None:
        param_types = [_pg_param_oid(sample_params.get(name)) for name in order]

    pgconn = conn.pgconn
    encoding = conn.info.encoding
    res = pgconn.prepare(b"", numbered.encode(encoding), param_types)
    if res.status != pq.ExecStatus.COMMAND_OK:
        _log.debug(
            "Statement prepare failed: %s",
            (res.error_message or b"").decode(encoding, "replace"),
        )
        _rollback_quiet(conn)
        return None
    res = pgconn.describe_prepared(b"")
    if res.status != pq.ExecStatus.COMMAND_OK or res.nfields == 0:
        _rollback_quiet(conn)
        return None
    return [
        ColumnInfo(name=res.fname(i).decode(encoding), type_code=res.ftype(i))
        for i in range(res.nfields)
    ]


def _rollback_quiet(conn: Any) -> None:
    try:
        conn.rollback()
    except Exception:
        _log.debug("Rollback after failed describe raised", exc_info=True)
