"""
Query executor: runs registered definitions against one datasource.

``QueryExecutor.execute(name)`` returns a ``QueryExecution`` that collects
params, filters, sorts and pagination fluently, then runs:

defaults -> validate -> pre-processors -> build SQL -> count (paginated and
metadata enabled) -> main query -> row mapping -> row processors ->
post-processors -> metadata.

Validation and execution failures come back as a failed ``QueryResult``;
driver errors are wrapped into ``QueryExecutionError`` / ``QueryTimeoutError``.
"""

import logging
import sqlite3
import threading
import time
from collections.abc import Iterable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Protocol

import psycopg
import pymysql
from trino.exceptions import TrinoExternalError, TrinoQueryError, TrinoUserError

from dbquery.core.config import settings
from dbquery.core.exceptions import (
    ConversionError,
    ErrorCode,
    QueryError,
    QueryExecutionError,
    QueryTimeoutError,
    QueryValidationError,
)
from dbquery.core.pool import (
    PoolManager,
    cursor_columns,
    execute,
    get_pool_manager,
    is_timeout_error,
)
from dbquery.core.type_convert import convert
from dbquery.engines.context import QueryContext
from dbquery.engines.metadata import MetadataCache, MetadataCacheBuilder
from dbquery.engines.result import QueryMetadata, QueryResult
from dbquery.engines.row import Row
from dbquery.engines.row_mapper import RowMapper
from dbquery.engines.sql import SqlBuilder
from dbquery.engines.sql.dialect import hidden_columns
from dbquery.models_query import (
    DataSource,
    DialectEnum,
    Filter,
    FilterOpEnum,
    Pagination,
    ProductTypeEnum,
    QueryDefinition,
    SortDirEnum,
    SortSpec,
)

_log = logging.getLogger(__name__)

_async_pool = ThreadPoolExecutor(max_workers=settings.ASYNC_MAX_WORKERS, thread_name_prefix="dbquery")


class DefinitionSource(Protocol):
    def require(self, name: str) -> QueryDefinition: ...


def wrap_driver_error(exc: BaseException, query_name: str, sql: str | None = None) -> QueryError:
    """Map a driver exception onto the engine's error taxonomy."""
    if isinstance(exc, QueryError):
        return exc
    if is_timeout_error(exc):
        _log.warning("Query '%s' timed out: %s", query_name, exc)
        return QueryTimeoutError(
            "Query timed out (statement timeout)", query_name=query_name
        )
    if isinstance(exc, psycopg.Error):
        _log.error("PostgreSQL error: %s. SQL: %s", exc, sql, exc_info=True)
        return QueryExecutionError(
            f"SQL execution failed: {exc}", query_name=query_name, code=ErrorCode.SQL_ERROR
        )
    if isinstance(exc, pymysql.err.ProgrammingError):
        _log.warning("MySQL programming error: %s", exc)
        return QueryExecutionError(
            f"SQL error: {exc}", query_name=query_name, code=ErrorCode.SQL_ERROR
        )
    if isinstance(exc, pymysql.Error):
        _log.error("MySQL error: %s. SQL: %s", exc, sql, exc_info=True)
        return QueryExecutionError(f"SQL execution failed: {exc}", query_name=query_name)
    if isinstance(exc, (TrinoUserError, TrinoExternalError, TrinoQueryError)):
        _log.error("Trino error: %s. SQL: %s", exc, sql, exc_info=True)
        return QueryExecutionError(
            f"SQL execution failed: {exc}", query_name=query_name, code=ErrorCode.SQL_ERROR
        )
    if isinstance(exc, sqlite3.Error):
        _log.error("SQLite error: %s. SQL: %s", exc, sql, exc_info=True)
        return QueryExecutionError(
            f"SQL execution failed: {exc}", query_name=query_name, code=ErrorCode.SQL_ERROR
        )
    if isinstance(exc, ConnectionError):
        _log.error("Connection error: %s", exc, exc_info=True)
        return QueryExecutionError(f"Database connection failed: {exc}", query_name=query_name)
    _log.error("SQL execution failed: %s. SQL: %s", exc, sql, exc_info=True)
    return QueryExecutionError(f"SQL execution failed: {exc}", query_name=query_name)


class QueryExecution:
    """Fluent request builder for one execution of a definition."""

    def __init__(self, executor: "QueryExecutor", definition: QueryDefinition) -> None:
        self._executor = executor
        self.definition = definition
        self.context = QueryContext(definition)
        self._request_errors: list[str] = []

    # -- params --------------------------------------------------------------

    def with_param(self, name: str, value: Any) -> "QueryExecution":
        self.context.set_param(name, value)
        return self

    def with_params(self, params: Mapping[str, Any] | None) -> "QueryExecution":
        for name, value in (params or {}).items():
            self.context.set_param(name, value)
        return self

    # -- filters -------------------------------------------------------------

    def with_filter(
        self,
        attribute: str | Filter,
        op: FilterOpEnum | str = FilterOpEnum.EQUALS,
        value: Any = None,
        value2: Any = None,
        *,
        values: Iterable[Any] | None = None,
    ) -> "QueryExecution":
        if isinstance(attribute, Filter):
            self.context.add_filter(attribute)
            return self
        try:
            f = Filter(
                attribute=attribute,
                op=op,
                value=value,
                value2=value2,
                values=tuple(values) if values is not None else None,
            )
        except ValueError as e:
            # reported by validate() together with everything else
            self._request_errors.append(f"Invalid filter on '{attribute}': {e}")
            return self
        self.context.add_filter(f)
        return self

    def with_filters(self, filters: Iterable[Filter | Mapping[str, Any]]) -> "QueryExecution":
        for f in filters:
            if isinstance(f, Filter):
                self.with_filter(f)
            else:
                self.with_filter(**f)
        return self

    def filter_if(self, condition: Any, attribute: str, *args: Any, **kwargs: Any) -> "QueryExecution":
        """``with_filter`` only when *condition* is truthy."""
        if condition:
            self.with_filter(attribute, *args, **kwargs)
        return self

    # -- sorts ---------------------------------------------------------------

    def with_sort(
        self, attribute: str, direction: SortDirEnum | str | None = SortDirEnum.ASC
    ) -> "QueryExecution":
        try:
            self.context.add_sort(SortSpec(attribute=attribute, direction=direction))
        except ValueError as e:
            self._request_errors.append(f"Invalid sort on '{attribute}': {e}")
        return self

    def with_sorts(self, sorts: Iterable[SortSpec | tuple[str, str] | str]) -> "QueryExecution":
        """Sorts as ``SortSpec``, ``(attribute, direction)`` or ``"attribute[.direction]"``."""
        for s in sorts:
            if isinstance(s, SortSpec):
                self.context.add_sort(s)
            elif isinstance(s, tuple):
                self.with_sort(*s)
            else:
                attribute, _, direction = s.partition(".")
                self.with_sort(attribute, direction or None)
        return self

    # -- pagination ----------------------------------------------------------

    def with_pagination(self, start: int, end: int) -> "QueryExecution":
        """Row window ``[start, end)``; negative or inverted windows are clamped."""
        start = max(0, start)
        end = max(start, end)
        if end - start > settings.MAX_PAGE_SIZE:
            end = start + settings.MAX_PAGE_SIZE
        self.context.set_pagination(start, end)
        return self

    def with_offset_limit(self, offset: int, limit: int) -> "QueryExecution":
        offset = max(0, offset)
        if limit <= 0:
            limit = self.definition.default_page_size
        limit = min(limit, settings.MAX_PAGE_SIZE)
        self.context.pagination = Pagination.from_offset_limit(offset, limit)
        return self

    # -- toggles -------------------------------------------------------------

    def with_security_context(self, principal: Any) -> "QueryExecution":
        self.context.principal = principal
        return self

    def select_fields(self, *names: str | Iterable[str]) -> "QueryExecution":
        for n in names:
            self.context.select_fields([n] if isinstance(n, str) else n)
        return self

    def include_metadata(self, include: bool = True) -> "QueryExecution":
        self.context.include_metadata = include
        return self

    def with_caching(self, enabled: bool = True) -> "QueryExecution":
        self.context.cache_enabled = enabled
        return self

    # -- validation ----------------------------------------------------------

    def _apply_param_defaults(self) -> None:
        for name, p in self.definition.params.items():
            if not self.context.has_param(name) and p.has_default:
                self.context.set_param(name, p.default)
            elif name not in self.context.params:
                self.context.set_param(name, None)

    def _check_params(self, violations: list[str]) -> None:
        for name, p in self.definition.params.items():
            if not self.context.has_param(name):
                if p.required:
                    violations.append(f"Required parameter missing: {name}")
                continue
            value = self.context.get_param(name)
            try:
                value = convert(value, p.data_type)
            except ConversionError as e:
                violations.append(f"Parameter '{name}' is not a valid {p.data_type.value}: {e}")
                continue
            if p.processor is not None:
                try:
                    value = p.processor(value, self.context)
                except Exception as e:
                    violations.append(f"Parameter validation/processing failed for {name}: {e}")
                    continue
            elif p.validator is not None:
                try:
                    ok = bool(p.validator(value))
                except Exception as e:
                    violations.append(f"Parameter validation failed for {name}: {e}")
                    continue
                if not ok:
                    violations.append(f"Parameter validation failed: {name}")
                    continue
            self.context.set_param(name, value)

    def _coerce_filter(self, f: Filter, violations: list[str]) -> None:
        attr = self.definition.get_attribute(f.attribute)
        if f.op in (FilterOpEnum.CONTAINS, FilterOpEnum.STARTS_WITH, FilterOpEnum.ENDS_WITH,
                    FilterOpEnum.LIKE, FilterOpEnum.NOT_LIKE):
            return
        try:
            update = {
                "value": convert(f.value, attr.data_type),
                "value2": convert(f.value2, attr.data_type),
            }
            if f.values is not None:
                update["values"] = tuple(convert(v, attr.data_type) for v in f.values)
        except ConversionError as e:
            violations.append(
                f"Filter value for '{f.attribute}' is not a valid {attr.data_type.value}: {e}"
            )
            return
        self.context.add_filter(f.model_copy(update=update))

    def _check_filters(self, violations: list[str]) -> None:
        for f in list(self.context.filters.values()):
            attr = self.definition.get_attribute(f.attribute)
            if attr is None:
                violations.append(f"Unknown attribute for filter: {f.attribute}")
            elif attr.virtual or not attr.filterable:
                violations.append(f"Attribute not filterable: {f.attribute}")
            elif not attr.allows_operator(f.op):
                violations.append(
                    f"Operator {f.op.value} is not allowed for attribute '{f.attribute}'"
                )
            else:
                self._coerce_filter(f, violations)

    def _check_sorts(self, violations: list[str]) -> None:
        for s in self.context.sorts:
            attr = self.definition.get_attribute(s.attribute)
            if attr is None:
                violations.append(f"Unknown attribute for sort: {s.attribute}")
            elif not attr.sortable or (attr.virtual and not attr.sort_property):
                violations.append(f"Attribute not sortable: {s.attribute}")

    def violations(self) -> list[str]:
        """Every problem with the request; also applies defaults and coerces values."""
        self._apply_param_defaults()
        violations = list(self._request_errors)
        self._check_params(violations)
        self._check_filters(violations)
        self._check_sorts(violations)
        if self.context.has_pagination():
            size = self.context.pagination.page_size
            if size > self.definition.max_page_size:
                violations.append(
                    f"Page size {size} exceeds maximum {self.definition.max_page_size}"
                )
        for rule in self.definition.validation_rules:
            try:
                ok = bool(rule.rule(self.context))
            except Exception as e:
                _log.warning("Validation rule '%s' failed: %s", rule.name, e)
                ok = False
            if not ok:
                violations.append(rule.message or f"Validation rule failed: {rule.name}")
        return violations

    def validate(self) -> "QueryExecution":
        """Raise ``QueryValidationError`` listing every violation."""
        found = self.violations()
        if found:
            raise QueryValidationError(found, query_name=self.definition.name)
        return self

    # -- execution -----------------------------------------------------------

    def execute(self) -> QueryResult:
        try:
            self.validate()
        except QueryValidationError as e:
            _log.info("Validation failed for query '%s': %s", self.definition.name, e.raw_message)
            return QueryResult.failure(self.definition.name, e)
        return self._executor.run(self.context)

    def execute_single(self) -> Row | None:
        """The one row a find-by-key lookup returns, or None.

        Raises ``QueryValidationError`` when the definition has no find-by-key
        criteria or the lookup matched more than one row, and the wrapped
        error of a failed execution.
        """
        name = self.definition.name
        if self.definition.find_by_key_criteria() is None:
            raise QueryValidationError(
                "Query does not support single object retrieval. Use execute() for list results.",
                query_name=name,
            )
        self.validate()
        result = self._executor.run(self.context)
        if not result.success:
            error = result.error
            raise QueryExecutionError(
                error.message if error else "Query failed",
                query_name=name,
                code=error.code if error else None,
            )
        if result.is_empty():
            return None
        if result.size > 1:
            raise QueryValidationError(
                f"FindByKey query returned {result.size} results, expected 1", query_name=name
            )
        return result.first()

    def execute_async(self) -> "Future[QueryResult]":
        return _async_pool.submit(self.execute)


class QueryExecutor:
    """Runs definitions from *registry* against *datasource*."""

    def __init__(
        self,
        registry: DefinitionSource,
        datasource: DataSource,
        *,
        dialect: DialectEnum | str | None = None,
        pool_manager: PoolManager | None = None,
    ) -> None:
        self.registry = registry
        self.datasource = datasource
        self.pool_manager = pool_manager or get_pool_manager()
        self.sql_builder = SqlBuilder(dialect or DialectEnum.parse(self.product_type.value))
        self.cache_builder = MetadataCacheBuilder(datasource, self.sql_builder, self.pool_manager)
        # id(definition) -> (definition, monotonic time of the failed build)
        self._cache_failures: dict[int, tuple[QueryDefinition, float]] = {}
        self._cache_failures_lock = threading.Lock()

    @property
    def product_type(self) -> ProductTypeEnum:
        return ProductTypeEnum(self.datasource.product_type)

    def execute(self, name: str) -> QueryExecution:
        """Start an execution of the registered definition *name*."""
        return QueryExecution(self, self.registry.require(name))

    def prepare(self, definition: QueryDefinition) -> QueryExecution:
        """Start an execution of an unregistered *definition*."""
        return QueryExecution(self, definition)

    def _cache_for(self, definition: QueryDefinition) -> MetadataCache | None:
        if not definition.metadata_cache_enabled:
            return None
        if definition.has_metadata_cache():
            return definition.metadata_cache
        key = id(definition)
        with self._cache_failures_lock:
            failed = self._cache_failures.get(key)
        if failed is not None and failed[0] is definition:
            if time.monotonic() - failed[1] < settings.METADATA_RETRY_INTERVAL_SEC:
                return None
        try:
            cache = self.cache_builder.ensure_cache(definition)
        except QueryError as e:
            _log.warning(
                "Query '%s': no metadata cache, using live column metadata: %s",
                definition.name,
                e,
            )
            with self._cache_failures_lock:
                self._cache_failures[key] = (definition, time.monotonic())
            return None
        with self._cache_failures_lock:
            self._cache_failures.pop(key, None)
        return cache

    def _fetch(self, cursor: Any, fetch_size: int | None) -> list[tuple]:
        if not fetch_size:
            return list(cursor.fetchall())
        rows: list[tuple] = []
        while True:
            batch = cursor.fetchmany(fetch_size)
            if not batch:
                return rows
            rows.extend(batch)

    def _count(self, conn: Any, context: QueryContext, timeout: float | None) -> int:
        count_sql = self.sql_builder.build_count_query(context.definition, context)
        _log.debug("Count SQL for query '%s': %s", context.definition.name, count_sql.sql)
        cur = execute(conn, count_sql.sql, count_sql.params, product_type=self.product_type, timeout=timeout)
        try:
            row = cur.fetchone()
        finally:
            cur.close()
        return int(row[0]) if row else 0

    def run(self, context: QueryContext) -> QueryResult:
        """Execute a validated *context*."""
        definition = context.definition
        name = definition.name
        context.start_execution()
        sql: str | None = None
        try:
            for processor in definition.pre_processors:
                processor(context)

            cache = self._cache_for(definition)
            built = self.sql_builder.build(definition, context)
            sql = built.sql
            timeout = definition.query_timeout
            if timeout is None:
                timeout = settings.EXTERNAL_DB_STATEMENT_TIMEOUT

            with self.pool_manager.connection(self.datasource) as conn:
                if context.has_pagination() and context.include_metadata:
                    context.total_count = self._count(conn, context, timeout)
                cur = execute(conn, built.sql, built.params, product_type=self.product_type, timeout=timeout)
                try:
                    columns = cursor_columns(cur)
                    raw_rows = self._fetch(cur, definition.fetch_size)
                finally:
                    cur.close()

            mapper = RowMapper(
                context,
                cache=cache,
                columns=columns,
                product_type=self.product_type,
                hidden_columns=hidden_columns(self.sql_builder.dialect),
            )
            rows = mapper.map_rows(raw_rows)
            for processor in definition.row_processors:
                processed = []
                for row in rows:
                    out = processor(row, context)
                    processed.append(row if out is None else out)
                rows = processed

            context.end_execution()
            result = QueryResult(
                query_name=name,
                rows=rows,
                execution_time_ms=context.execution_time_ms,
                count=context.total_count if context.total_count is not None else len(rows),
            )
            for processor in definition.post_processors:
                result = processor(result, context) or result

            if context.include_metadata:
                result.metadata = QueryMetadata.from_context(context, len(result.rows))
            _log.info(
                "Query '%s' returned %d rows in %.1f ms", name, result.size, result.execution_time_ms
            )
            return result
        except Exception as e:
            context.end_execution()
            error = wrap_driver_error(e, name, sql)
            return QueryResult.failure(name, error, context.execution_time_ms)
