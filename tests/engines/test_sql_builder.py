"""Unit tests for engines.sql.builder: criteria, filters, sorts, pagination, count."""

import pytest

from dbquery.core.exceptions import ErrorCode, QueryExecutionError, QueryValidationError
from dbquery.engines.context import QueryContext
from dbquery.engines.sql import SqlBuilder
from dbquery.models_query import (
    AttributeDef,
    DialectEnum,
    Filter,
    FilterOpEnum,
    QueryDefinition,
    SortSpec,
)
from tests.utils.sqlite_db import employees_definition


@pytest.fixture
def definition() -> QueryDefinition:
    return employees_definition()


def _ctx(definition, **params) -> QueryContext:
    return QueryContext(definition, params)


def test_plain_build_removes_placeholders(definition) -> None:
    result = SqlBuilder().build(definition, _ctx(definition))
    assert "--" not in result.sql
    assert result.sql.endswith("WHERE active = 1")
    assert "LIMIT" not in result.sql
    assert result.params == {}


def test_criteria_applied_when_binds_present(definition) -> None:
    ctx = _ctx(definition, deptId=20)
    result = SqlBuilder().build(definition, ctx)
    assert "AND department_id = :deptId" in result.sql
    assert "employee_id = :employeeId" not in result.sql
    assert result.params == {"deptId": 20}
    assert [c.name for c in ctx.applied_criteria] == ["deptFilter"]
    assert ctx.applied_criteria[0].params == {"deptId": 20}


def test_null_param_drops_criteria(definition) -> None:
    result = SqlBuilder().build(definition, _ctx(definition, deptId=None))
    assert "department_id" not in result.sql.split("FROM employees")[1]


def test_build_is_idempotent(definition) -> None:
    ctx = _ctx(definition, deptId=10)
    ctx.add_filter(Filter(attribute="salary", op="gte", value=50000))
    ctx.add_sort(SortSpec(attribute="lastName"))
    ctx.set_pagination(0, 10)
    builder = SqlBuilder()
    first = builder.build(definition, ctx)
    second = builder.build(definition, ctx)
    assert first == second
    assert len(ctx.applied_criteria) == 1


class TestFilters:
    def test_filter_wraps_query(self, definition):
        ctx = _ctx(definition)
        ctx.add_filter(Filter(attribute="salary", op=FilterOpEnum.GREATER_THAN_OR_EQUAL, value=50000))
        result = SqlBuilder().build(definition, ctx)
        assert result.sql.startswith("SELECT * FROM (")
        assert result.sql.endswith("WHERE salary >= :filter_salary_0")
        assert result.params == {"filter_salary_0": 50000}

    def test_filter_uses_alias_and_ands_conditions(self, definition):
        ctx = _ctx(definition)
        ctx.add_filter(Filter(attribute="lastName", op="like", value="b%"))
        ctx.add_filter(Filter(attribute="departmentId", op="in", values=[10, 20]))
        result = SqlBuilder().build(definition, ctx)
        assert (
            "UPPER(last_name) LIKE UPPER(:filter_lastName_0) AND "
            "department_id IN (:filter_departmentId_1__0, :filter_departmentId_1__1)"
        ) in result.sql
        assert result.params["filter_departmentId_1__1"] == 20

    def test_between_and_null_ops(self, definition):
        ctx = _ctx(definition)
        ctx.add_filter(Filter(attribute="salary", op="between", value=1, value2=2))
        ctx.add_filter(Filter(attribute="commissionPct", op="is null"))
        result = SqlBuilder().build(definition, ctx)
        assert "salary BETWEEN :filter_salary_0__1 AND :filter_salary_0__2" in result.sql
        assert "commission_pct IS NULL" in result.sql

    def test_item_binds_never_meet_a_scalar_bind(self):
        definition = QueryDefinition(
            name="t",
            sql="SELECT x, x_1 FROM t",
            attributes=[AttributeDef(name="x_1"), AttributeDef(name="x")],
        )
        ctx = _ctx(definition)
        ctx.add_filter(Filter(attribute="x_1", value=5))
        ctx.add_filter(Filter(attribute="x", op="in", values=[1, 2]))
        result = SqlBuilder().build(definition, ctx)
        assert result.params == {"filter_x_1_0": 5, "filter_x_1__0": 1, "filter_x_1__1": 2}
        assert result.sql.endswith("WHERE x_1 = :filter_x_1_0 AND x IN (:filter_x_1__0, :filter_x_1__1)")

    def test_contains_wraps_value(self, definition):
        ctx = _ctx(definition)
        ctx.add_filter(Filter(attribute="firstName", op="contains", value="rst"))
        result = SqlBuilder().build(definition, ctx)
        assert result.params == {"filter_firstName_0": "%rst%"}

    def test_empty_in_list_adds_no_condition(self, definition):
        ctx = _ctx(definition)
        ctx.add_filter(Filter(attribute="departmentId", op="in", values=[]))
        result = SqlBuilder().build(definition, ctx)
        assert not result.sql.startswith("SELECT * FROM (")

    def test_unknown_and_virtual_filters_skipped(self, definition):
        ctx = _ctx(definition)
        ctx.add_filter(Filter(attribute="nope", value=1))
        ctx.add_filter(Filter(attribute="fullName", value="x"))
        result = SqlBuilder().build(definition, ctx)
        assert not result.sql.startswith("SELECT * FROM (")

    def test_disallowed_operator_raises(self):
        definition = QueryDefinition(
            name="t",
            sql="SELECT id FROM t",
            attributes=[AttributeDef(name="id", allowed_operators=["eq"])],
        )
        ctx = _ctx(definition)
        ctx.add_filter(Filter(attribute="id", op="gt", value=1))
        with pytest.raises(QueryValidationError, match="not allowed"):
            SqlBuilder().build(definition, ctx)


class TestSorts:
    def test_sort_replaces_placeholder(self, definition):
        ctx = _ctx(definition)
        ctx.add_sort(SortSpec(attribute="lastName", direction="desc"))
        ctx.add_sort(SortSpec(attribute="employeeId"))
        result = SqlBuilder().build(definition, ctx)
        assert result.sql.endswith("WHERE active = 1\nORDER BY last_name DESC, employee_id ASC")

    def test_virtual_sort_uses_sort_property(self, definition):
        ctx = _ctx(definition)
        ctx.add_sort(SortSpec(attribute="fullName"))
        result = SqlBuilder().build(definition, ctx)
        assert result.sql.endswith("ORDER BY last_name ASC")

    def test_sort_after_filter_wrap(self, definition):
        ctx = _ctx(definition)
        ctx.add_filter(Filter(attribute="salary", op="gt", value=0))
        ctx.add_sort(SortSpec(attribute="lastName"))
        result = SqlBuilder().build(definition, ctx)
        assert result.sql.endswith("WHERE salary > :filter_salary_0\nORDER BY last_name ASC")

    def test_base_order_by_gets_wrapped(self):
        definition = QueryDefinition(
            name="t",
            sql="SELECT id FROM t ORDER BY id",
            attributes=[AttributeDef(name="id")],
        )
        ctx = _ctx(definition)
        ctx.add_sort(SortSpec(attribute="id", direction="DESC"))
        result = SqlBuilder().build(definition, ctx)
        assert result.sql == "SELECT * FROM (\nSELECT id FROM t ORDER BY id\n) sorted_q\nORDER BY id DESC"

    def test_unsortable_skipped(self, definition):
        ctx = _ctx(definition)
        ctx.add_sort(SortSpec(attribute="totalCompensation"))
        result = SqlBuilder().build(definition, ctx)
        assert "ORDER BY" not in result.sql


class TestPagination:
    def test_standard(self, definition):
        ctx = _ctx(definition)
        ctx.set_pagination(20, 30)
        result = SqlBuilder(DialectEnum.STANDARD).build(definition, ctx)
        assert result.sql.endswith("LIMIT :limit OFFSET :offset")
        assert result.params == {"limit": 10, "offset": 20}

    def test_offset_fetch(self, definition):
        ctx = _ctx(definition)
        ctx.set_pagination(0, 5)
        result = SqlBuilder("trino").build(definition, ctx)
        assert result.sql.endswith("OFFSET :offset ROWS FETCH NEXT :limit ROWS ONLY")
        assert result.params == {"offset": 0, "limit": 5}

    def test_row_number(self, definition):
        ctx = _ctx(definition)
        ctx.set_pagination(10, 20)
        result = SqlBuilder("oracle 11g").build(definition, ctx)
        assert "ROWNUM <= :max_row" in result.sql
        assert result.sql.endswith("WHERE rnum > :offset")
        assert result.params == {"offset": 10, "max_row": 20}

    def test_disabled_on_definition(self):
        definition = employees_definition(pagination_enabled=False)
        ctx = _ctx(definition)
        ctx.set_pagination(0, 10)
        assert "LIMIT" not in SqlBuilder().build(definition, ctx).sql


def test_count_query_keeps_criteria_and_filters(definition) -> None:
    ctx = _ctx(definition, deptId=30)
    ctx.add_filter(Filter(attribute="salary", op="gte", value=50000))
    ctx.add_sort(SortSpec(attribute="lastName"))
    ctx.set_pagination(0, 10)
    result = SqlBuilder().build_count_query(definition, ctx)
    assert result.sql.startswith("SELECT COUNT(*) FROM (")
    assert result.sql.endswith(") count_query")
    assert "ORDER BY" not in result.sql
    assert "LIMIT" not in result.sql
    assert result.params == {"deptId": 30, "filter_salary_0": 50000}
    assert ctx.applied_criteria == []


def test_metadata_query(definition) -> None:
    builder = SqlBuilder()
    zero = builder.build_metadata_query(definition, _ctx(definition))
    assert zero.sql.startswith("SELECT * FROM (")
    assert zero.sql.endswith(") meta_q WHERE 1=0")
    plain = builder.build_metadata_query(definition, _ctx(definition), zero_rows=False)
    assert plain.sql.endswith("WHERE active = 1")


def test_missing_bind_is_parameter_error() -> None:
    definition = QueryDefinition(name="t", sql="SELECT * FROM t WHERE a = :a")
    with pytest.raises(QueryExecutionError) as exc_info:
        SqlBuilder().build(definition, _ctx(definition))
    assert exc_info.value.code is ErrorCode.PARAMETER_ERROR
    assert "a" in exc_info.value.raw_message
