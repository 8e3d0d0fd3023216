"""
Tests for core.pool: connect, execute, describe, health_check, PoolManager.

SQLite cases run against a temporary file; server drivers are mocked.
"""

from datetime import date, datetime
from decimal import Decimal
from unittest.mock import MagicMock, patch

import psycopg
import pymysql
import pytest
from psycopg import pq

from dbquery.core.pool import (
    ColumnInfo,
    PoolManager,
    connect,
    cursor_columns,
    describe,
    execute,
    health_check,
    is_timeout_error,
    paramstyle_for,
)
from dbquery.models_query import ProductTypeEnum
from tests.utils.sqlite_db import create_employees_db, sqlite_datasource


@pytest.fixture
def db_path(tmp_path):
    return create_employees_db(tmp_path / "employees.db")


# --- connect ---


def test_connect_sqlite_from_dict(db_path) -> None:
    conn = connect({"product_type": "sqlite", "database": str(db_path)})
    try:
        assert conn.execute("SELECT COUNT(*) FROM employees").fetchone()[0] == 37
    finally:
        conn.close()


def test_connect_requires_product_type_and_database() -> None:
    with pytest.raises(ValueError, match="product_type"):
        connect({"database": "x"})
    with pytest.raises(ValueError, match="database"):
        connect({"product_type": "postgres"})


def test_connect_requires_host_for_servers() -> None:
    with pytest.raises(ValueError, match="host"):
        connect({"product_type": "mysql", "database": "app", "username": "u"})


def test_connect_postgres_passes_options() -> None:
    with patch("psycopg.connect") as pg_connect:
        connect(
            {
                "product_type": ProductTypeEnum.POSTGRES,
                "host": "db",
                "database": "app",
                "username": "u",
            }
        )
    kwargs = pg_connect.call_args.kwargs
    assert kwargs["port"] == 5432
    assert kwargs["dbname"] == "app"
    assert kwargs["password"] == ""


def test_connect_trino_ssl_needs_password() -> None:
    with pytest.raises(ValueError, match="Password is required"):
        connect(
            {
                "product_type": "trino",
                "host": "trino",
                "database": "hive",
                "username": "u",
                "use_ssl": True,
            }
        )


# --- execute ---


def test_paramstyles() -> None:
    assert paramstyle_for(ProductTypeEnum.POSTGRES) == "pyformat"
    assert paramstyle_for(ProductTypeEnum.MYSQL) == "pyformat"
    assert paramstyle_for(ProductTypeEnum.TRINO) == "qmark"
    assert paramstyle_for(ProductTypeEnum.SQLITE) == "named"
    assert paramstyle_for(None) == "named"


def test_execute_sqlite_named_binds(db_path) -> None:
    conn = connect(sqlite_datasource(db_path))
    try:
        cur = execute(
            conn,
            "SELECT employee_id, last_name FROM employees WHERE department_id = :dept "
            "AND salary >= :minSalary ORDER BY employee_id",
            {"dept": 20, "minSalary": Decimal("50000"), "unused": 1},
            product_type=ProductTypeEnum.SQLITE,
        )
        rows = cur.fetchall()
        assert rows
        assert [c.name for c in cursor_columns(cur)] == ["employee_id", "last_name"]
    finally:
        conn.close()


def test_execute_sqlite_binds_dates_as_text(db_path) -> None:
    conn = connect(sqlite_datasource(db_path))
    try:
        cur = execute(
            conn,
            "SELECT COUNT(*) FROM employees WHERE hire_date >= :since AND hire_date < :until",
            {"since": date(2020, 1, 1), "until": datetime(2020, 1, 3, 0, 0)},
            product_type=ProductTypeEnum.SQLITE,
        )
        assert cur.fetchone()[0] > 0
    finally:
        conn.close()


def test_execute_postgres_pyformat_with_timeout() -> None:
    conn = MagicMock()
    main_cursor = MagicMock()
    setup_cursor = MagicMock()
    reset_cursor = MagicMock()
    conn.cursor.side_effect = [setup_cursor, main_cursor, reset_cursor]

    cur = execute(
        conn,
        "SELECT * FROM t WHERE name LIKE 'a%' AND id = :id",
        {"id": 7},
        product_type=ProductTypeEnum.POSTGRES,
        timeout=2,
    )

    assert cur is main_cursor
    setup_cursor.execute.assert_called_once_with("SET statement_timeout = 2000")
    main_cursor.execute.assert_called_once_with(
        "SELECT * FROM t WHERE name LIKE 'a%%' AND id = %(id)s", {"id": 7}
    )
    reset_cursor.execute.assert_called_once_with("SET statement_timeout = 0")


def test_execute_pyformat_without_params_passes_empty_dict() -> None:
    conn = MagicMock()
    execute(conn, "SELECT '100%'", product_type=ProductTypeEnum.MYSQL, timeout=0)
    conn.cursor.return_value.execute.assert_called_once_with("SELECT '100%%'", {})


def test_execute_trino_qmark() -> None:
    conn = MagicMock()
    execute(
        conn,
        "SELECT * FROM t WHERE a = :a AND b = :b",
        {"a": 1, "b": "x"},
        product_type=ProductTypeEnum.TRINO,
        timeout=0,
    )
    conn.cursor.return_value.execute.assert_called_once_with(
        "SELECT * FROM t WHERE a = ? AND b = ?", [1, "x"]
    )


def test_execute_missing_bind_raises() -> None:
    with pytest.raises(ValueError, match="Missing value for bind parameter ':x'"):
        execute(MagicMock(), "SELECT :x", {}, product_type=ProductTypeEnum.SQLITE)


def test_execute_closes_cursor_when_statement_fails() -> None:
    conn = MagicMock()
    conn.cursor.return_value.execute.side_effect = pymysql.err.ProgrammingError(1064, "syntax")
    with pytest.raises(pymysql.err.ProgrammingError):
        execute(conn, "SELEC 1", product_type=ProductTypeEnum.MYSQL, timeout=0)
    conn.cursor.return_value.close.assert_called_once()


def test_execute_mysql_backslash_escape_keeps_later_binds() -> None:
    conn = MagicMock()
    execute(
        conn,
        "SELECT * FROM t WHERE p = 'it\\'s' AND x = :x",
        {"x": 1},
        product_type=ProductTypeEnum.MYSQL,
        timeout=0,
    )
    conn.cursor.return_value.execute.assert_called_once_with(
        "SELECT * FROM t WHERE p = 'it\\'s' AND x = %(x)s", {"x": 1}
    )


def test_is_timeout_error() -> None:
    assert is_timeout_error(psycopg.errors.QueryCanceled("canceling statement"))
    assert is_timeout_error(pymysql.err.OperationalError(3024, "Query execution was interrupted"))
    assert not is_timeout_error(pymysql.err.OperationalError(2013, "Lost connection"))
    assert not is_timeout_error(RuntimeError("boom"))


# --- describe ---


def test_describe_unavailable_outside_postgres(db_path) -> None:
    conn = connect(sqlite_datasource(db_path))
    try:
        assert describe(conn, "SELECT * FROM employees", product_type=ProductTypeEnum.SQLITE) is None
    finally:
        conn.close()


def test_describe_postgres_prepared_statement() -> None:
    conn = MagicMock()
    conn.info.encoding = "utf-8"
    prepared = MagicMock(status=pq.ExecStatus.COMMAND_OK)
    described = MagicMock(status=pq.ExecStatus.COMMAND_OK, nfields=2)
    described.fname.side_effect = [b"id", b"name"]
    described.ftype.side_effect = [23, 25]
    conn.pgconn.prepare.return_value = prepared
    conn.pgconn.describe_prepared.return_value = described

    cols = describe(
        conn,
        "SELECT id, name FROM t WHERE id = :id",
        product_type=ProductTypeEnum.POSTGRES,
        sample_params={"id": 0},
    )

    assert cols == [ColumnInfo("id", 23), ColumnInfo("name", 25)]
    conn.pgconn.prepare.assert_called_once_with(
        b"", b"SELECT id, name FROM t WHERE id = $1", [20]
    )


def test_describe_postgres_prepare_failure_rolls_back() -> None:
    conn = MagicMock()
    conn.info.encoding = "utf-8"
    conn.pgconn.prepare.return_value = MagicMock(
        status=pq.ExecStatus.FATAL_ERROR, error_message=b"syntax error"
    )
    assert describe(conn, "SELEC 1", product_type=ProductTypeEnum.POSTGRES) is None
    conn.rollback.assert_called_once()


# --- health_check ---


def test_health_check(db_path) -> None:
    conn = connect(sqlite_datasource(db_path))
    assert health_check(conn, ProductTypeEnum.SQLITE) is True
    conn.close()
    assert health_check(conn, ProductTypeEnum.SQLITE) is False


# --- PoolManager ---


class TestPoolManager:
    def test_reuses_released_connection(self, db_path):
        ds = sqlite_datasource(db_path)
        pm = PoolManager(pool_size=2)
        conn = pm.get_connection(ds)
        assert pm.stats()["checked_out"] == 1
        pm.release(conn, ds)
        assert pm.stats() == {"datasources": 1, "idle_connections": 1, "checked_out": 0}
        assert pm.get_connection(ds) is conn
        pm.release(conn, ds)
        pm.dispose()
        assert pm.stats()["idle_connections"] == 0

    def test_context_manager_returns_connection(self, db_path):
        ds = sqlite_datasource(db_path)
        pm = PoolManager(pool_size=1)
        with pm.connection(ds) as conn:
            assert conn.execute("SELECT 1").fetchone() == (1,)
        assert pm.stats()["idle_connections"] == 1
        pm.dispose(ds.id)
        assert pm.stats()["datasources"] == 0

    def test_full_pool_closes_extra(self, db_path):
        ds = sqlite_datasource(db_path)
        pm = PoolManager(pool_size=1)
        first = pm.get_connection(ds)
        second = pm.get_connection(ds)
        pm.release(first, ds)
        pm.release(second, ds)
        assert pm.stats()["idle_connections"] == 1
        assert health_check(second, ProductTypeEnum.SQLITE) is False
        pm.dispose()

    def test_expired_connection_replaced(self, db_path):
        ds = sqlite_datasource(db_path)
        pm = PoolManager(pool_size=1, max_age=-1)
        conn = pm.get_connection(ds)
        pm.release(conn, ds)
        fresh = pm.get_connection(ds)
        assert fresh is not conn
        pm.release(fresh, ds)
        pm.dispose()

    def test_opens_through_connect(self):
        ds = MagicMock(id="ds-1", product_type=ProductTypeEnum.POSTGRES)
        with patch("dbquery.core.pool.manager.connect") as mock_connect:
            pm = PoolManager()
            conn = pm.get_connection(ds)
        assert conn is mock_connect.return_value
        mock_connect.assert_called_once_with(ds)
