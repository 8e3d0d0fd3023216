"""Unit tests for models_query: definition invariants and request objects."""

import pytest
from pydantic import ValidationError

from dbquery.engines.context import QueryContext
from dbquery.engines.metadata import MetadataCache
from dbquery.models_query import (
    AttributeDef,
    CriteriaDef,
    DataSource,
    DialectEnum,
    Filter,
    FilterOpEnum,
    Pagination,
    ParamDef,
    QueryDefinition,
    SortDirEnum,
    SortSpec,
)
from tests.utils.sqlite_db import employees_definition


class TestAttributeDef:
    def test_alias_defaults_to_name(self):
        attr = AttributeDef(name="salary")
        assert attr.alias == "salary"
        assert attr.filterable and attr.sortable and not attr.virtual

    def test_calculator_makes_virtual(self):
        attr = AttributeDef(name="full", calculator=lambda r, c: "x")
        assert attr.virtual
        assert attr.alias is None
        assert not attr.filterable
        assert not attr.sortable

    def test_virtual_sortable_through_sort_property(self):
        attr = AttributeDef(name="full", calculator=lambda r, c: "x", sort_property="lastName")
        assert attr.sortable

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"virtual": True},
            {"calculator": lambda r, c: 1, "alias": "col"},
            {"calculator": lambda r, c: 1, "primary_key": True},
            {"calculator": lambda r, c: 1, "filterable": True},
            {"calculator": lambda r, c: 1, "virtual": False},
            {"name": " "},
        ],
    )
    def test_invalid_combinations(self, kwargs):
        fields = {"name": "x", **kwargs}
        with pytest.raises(ValidationError):
            AttributeDef(**fields)

    def test_allowed_operators_parsed(self):
        attr = AttributeDef(name="a", allowed_operators=["eq", ">="])
        assert attr.allowed_operators == frozenset(
            {FilterOpEnum.EQUALS, FilterOpEnum.GREATER_THAN_OR_EQUAL}
        )
        assert attr.allows_operator(FilterOpEnum.EQUALS)
        assert not attr.allows_operator(FilterOpEnum.LIKE)

    def test_inclusion(self):
        hidden = AttributeDef(name="email", selected=False)
        shown = AttributeDef(name="name")
        assert not hidden.is_included(None)
        assert hidden.is_included({"email"})
        assert shown.is_included(set())
        assert not shown.is_included({"email"})

    def test_frozen(self):
        attr = AttributeDef(name="a")
        with pytest.raises(ValidationError):
            attr.name = "b"


class TestCriteriaDef:
    def test_exactly_one_source(self):
        with pytest.raises(ValidationError, match="exactly one"):
            CriteriaDef(name="c")
        with pytest.raises(ValidationError, match="exactly one"):
            CriteriaDef(name="c", sql="AND 1=1", template="AND 1=1")

    def test_explicit_bind_params_kept(self):
        c = CriteriaDef(name="c", generator=lambda ctx: "AND a = :a", bind_params=frozenset({"a"}))
        assert c.bind_params == frozenset({"a"})


class TestQueryDefinition:
    def test_lists_keyed_by_name(self):
        definition = employees_definition()
        assert list(definition.attributes)[:2] == ["employeeId", "firstName"]
        assert set(definition.params) == {"deptId", "employeeId"}
        assert definition.find_by_key_criteria().name == "byId"
        assert definition.has_placeholder("deptFilter")
        assert [a.name for a in definition.virtual_attributes()] == ["fullName", "totalCompensation"]

    def test_duplicate_names_rejected(self):
        with pytest.raises(ValidationError, match="Duplicate attribute name"):
            QueryDefinition(name="q", sql="SELECT 1", attributes=[AttributeDef(name="a"), AttributeDef(name="a")])
        with pytest.raises(ValidationError, match="Duplicate parameter name"):
            QueryDefinition(name="q", sql="SELECT 1", params=[ParamDef(name="p"), ParamDef(name="p")])

    def test_page_sizes_checked(self):
        with pytest.raises(ValidationError):
            QueryDefinition(name="q", sql="SELECT 1", default_page_size=0)
        with pytest.raises(ValidationError):
            QueryDefinition(name="q", sql="SELECT 1", default_page_size=50, max_page_size=10)

    def test_ordered_criteria_stable(self):
        definition = QueryDefinition(
            name="q",
            sql="SELECT 1",
            criteria=[
                CriteriaDef(name="b", sql="AND 1=1", priority=1),
                CriteriaDef(name="a", sql="AND 1=1", priority=1),
                CriteriaDef(name="c", sql="AND 1=1", priority=0),
            ],
        )
        assert [c.name for c in definition.ordered_criteria()] == ["c", "b", "a"]

    def test_metadata_cache_attached_once(self):
        definition = QueryDefinition(name="q", sql="SELECT 1")
        first = MetadataCache(query_name="q", column_names=("a",), column_labels=("a",), column_types=())
        second = MetadataCache(query_name="q", column_names=("b",), column_labels=("b",), column_types=())
        assert not definition.has_metadata_cache()
        assert definition.attach_metadata_cache(first) is first
        assert definition.attach_metadata_cache(second) is first
        assert definition.has_metadata_cache()


class TestRequestObjects:
    def test_filter_operand_checks(self):
        with pytest.raises(ValidationError):
            Filter(attribute="a", op="gt")
        with pytest.raises(ValidationError):
            Filter(attribute="a", op="between", value=1)
        assert Filter(attribute="a", op="is null").value is None

    def test_filter_in_accepts_scalar_or_list(self):
        assert Filter(attribute="a", op="in", value=[1, 2]).values == (1, 2)
        assert Filter(attribute="a", op="in", value=3).values == (3,)

    @pytest.mark.parametrize(
        ("text", "op"),
        [("eq", FilterOpEnum.EQUALS), ("<>", FilterOpEnum.NOT_EQUALS), ("starts with", FilterOpEnum.STARTS_WITH)],
    )
    def test_operator_aliases(self, text, op):
        assert FilterOpEnum.parse(text) is op

    def test_unknown_operator(self):
        with pytest.raises(ValueError, match="Unknown filter operator"):
            FilterOpEnum.parse("approximately")

    def test_sort_direction_parse(self):
        assert SortSpec(attribute="a", direction="descending").direction is SortDirEnum.DESC
        assert SortDirEnum.parse(None) is SortDirEnum.ASC
        with pytest.raises(ValidationError):
            SortSpec(attribute="a", direction="sideways")

    def test_pagination(self):
        page = Pagination.from_offset_limit(20, 10)
        assert (page.start, page.end, page.page_size) == (20, 30, 10)
        with pytest.raises(ValidationError):
            Pagination(start=5, end=1)

    @pytest.mark.parametrize(
        ("value", "dialect"),
        [
            ("postgres", DialectEnum.STANDARD),
            ("sqlite", DialectEnum.STANDARD),
            ("trino", DialectEnum.OFFSET_FETCH),
            ("Oracle 19c", DialectEnum.OFFSET_FETCH),
            ("oracle11g", DialectEnum.ROW_NUMBER),
            ("row_number", DialectEnum.ROW_NUMBER),
        ],
    )
    def test_dialect_parse(self, value, dialect):
        assert DialectEnum.parse(value) is dialect

    def test_dialect_unknown(self):
        with pytest.raises(ValueError):
            DialectEnum.parse("dbase")


def test_context_filters_replace_per_attribute() -> None:
    ctx = QueryContext(employees_definition(), {"deptId": 1})
    ctx.add_filter(Filter(attribute="salary", op="gt", value=1))
    ctx.add_filter(Filter(attribute="salary", op="lt", value=2))
    assert list(ctx.filters) == ["salary"]
    assert ctx.filters["salary"].op is FilterOpEnum.LESS_THAN
    assert ctx.has_param("deptId")
    assert not ctx.has_param("employeeId")
    assert ctx.execution_time_ms == 0.0


def test_datasource_requires_product_type() -> None:
    with pytest.raises(ValidationError):
        DataSource(database="x")
