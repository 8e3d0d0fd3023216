"""Unit tests for engines.sql.criteria: injection order, conditions, cleanup."""

from dbquery.engines.context import QueryContext
from dbquery.engines.sql.criteria import apply_criteria, cleanup_sql, should_apply
from dbquery.models_query import CriteriaDef, QueryDefinition


def _definition(sql: str, *criteria: CriteriaDef) -> QueryDefinition:
    return QueryDefinition(name="q", sql=sql, criteria=list(criteria))


class TestApplyCriteria:
    def test_bind_params_derived_from_sql(self):
        c = CriteriaDef(name="f", sql="AND a = :a AND b = :b")
        assert c.bind_params == frozenset({"a", "b"})

    def test_all_binds_required_without_condition(self):
        c = CriteriaDef(name="f", sql="AND a = :a AND b = :b")
        d = _definition("SELECT 1 --f", c)
        assert should_apply(c, QueryContext(d, {"a": 1, "b": 2}))
        assert not should_apply(c, QueryContext(d, {"a": 1}))
        assert not should_apply(c, QueryContext(d, {"a": 1, "b": None}))

    def test_condition_overrides_bind_check(self):
        c = CriteriaDef(name="active", sql="AND active = 1", condition=lambda ctx: ctx.get_param("onlyActive"))
        d = _definition("SELECT * FROM t WHERE 1=1\n--active", c)
        params: dict = {}
        on = apply_criteria(d.sql, d, QueryContext(d, {"onlyActive": True}), params)
        off = apply_criteria(d.sql, d, QueryContext(d, {}), params)
        assert "AND active = 1" in on
        assert "active" not in off.replace("--", "")
        assert params == {}

    def test_priority_order(self):
        calls: list[str] = []

        def gen(name):
            def _g(ctx):
                calls.append(name)
                return f"AND {name} = 1"

            return _g

        d = _definition(
            "SELECT * FROM t WHERE 1=1\n--late\n--early",
            CriteriaDef(name="late", generator=gen("late"), priority=5, condition=lambda ctx: True),
            CriteriaDef(name="early", generator=gen("early"), priority=1, condition=lambda ctx: True),
        )
        ctx = QueryContext(d)
        apply_criteria(d.sql, d, ctx, {})
        assert calls == ["early", "late"]
        assert [c.name for c in ctx.applied_criteria] == ["early", "late"]

    def test_placeholder_match_is_whole_word(self):
        d = _definition(
            "SELECT * FROM t WHERE 1=1\n--dept\n--deptId",
            CriteriaDef(name="dept", sql="AND dept = :dept"),
        )
        out = apply_criteria(d.sql, d, QueryContext(d, {"dept": 3}), {})
        assert "AND dept = :dept" in out
        assert "--deptId" in out

    def test_template_criteria(self):
        c = CriteriaDef(name="region", template="AND region IN {{ regions | in_list }}")
        assert c.bind_params == frozenset({"regions"})
        d = _definition("SELECT * FROM t WHERE 1=1\n--region", c)
        ctx = QueryContext(d, {"regions": ["EU", "US"]})
        out = apply_criteria(d.sql, d, ctx, {})
        assert "AND region IN ('EU', 'US')" in out

    def test_security_criteria_audited(self):
        d = _definition(
            "SELECT * FROM t WHERE 1=1\n--tenant",
            CriteriaDef(name="tenant", sql="AND tenant_id = :tenantId", security_related=True),
        )
        ctx = QueryContext(d, {"tenantId": 7})
        params: dict = {}
        apply_criteria(d.sql, d, ctx, params)
        assert params == {"tenantId": 7}
        assert ctx.applied_criteria[0].security_related is True

    def test_audit_can_be_disabled(self):
        d = _definition("SELECT 1 FROM t WHERE 1=1\n--f", CriteriaDef(name="f", sql="AND x = :x"))
        ctx = QueryContext(d, {"x": 1})
        ctx.audit_enabled = False
        apply_criteria(d.sql, d, ctx, {})
        assert ctx.applied_criteria == []


class TestCleanup:
    def test_where_followed_by_and(self):
        out = cleanup_sql("SELECT * FROM t WHERE --gone\nAND x = 1")
        assert "WHERE AND" not in out.replace("\n", " ")
        assert out.replace("\n", " ") == "SELECT * FROM t WHERE x = 1"

    def test_dangling_where_removed(self):
        out = cleanup_sql("SELECT * FROM t WHERE --gone\nORDER BY x", keep_order_by=False)
        assert out == "SELECT * FROM t ORDER BY x"

    def test_dangling_where_at_end(self):
        assert cleanup_sql("SELECT * FROM t\nWHERE\n--gone") == "SELECT * FROM t"

    def test_double_operator_collapsed(self):
        out = cleanup_sql("SELECT * FROM t WHERE a = 1 AND AND b = 2")
        assert out == "SELECT * FROM t WHERE a = 1 AND b = 2"

    def test_literals_untouched(self):
        sql = "SELECT 'WHERE AND' AS x FROM t"
        assert cleanup_sql(sql) == sql

    def test_prose_comment_kept_order_by_optional(self):
        sql = "SELECT * FROM t -- all rows\n--orderBy"
        assert "-- all rows" in cleanup_sql(sql)
        assert cleanup_sql(sql).endswith("--orderBy")
        assert "--orderBy" not in cleanup_sql(sql, keep_order_by=False)
