"""
MetadataCacheBuilder: discovers the result columns of a definition's SQL.

Strategies, first success wins:

1. statement description without execution (``describe``), retried once
   with typed dummy parameters;
2. ``SELECT * FROM (<sql>) meta_q WHERE 1=0`` executed, columns read from
   the empty result;
3. ``MetadataCacheError``. There is no partial cache.
"""

import dataclasses
import logging
import threading
from collections.abc import Iterable
from typing import Any

from dbquery.core import sqltext
from dbquery.core.definition_validate import SYSTEM_PARAMS
from dbquery.core.exceptions import MetadataCacheError
from dbquery.core.pool import ColumnInfo, PoolManager, cursor_columns, describe, execute, get_pool_manager
from dbquery.core.type_convert import dummy_value_for, sql_type_for_code
from dbquery.engines.context import QueryContext
from dbquery.engines.metadata.cache import MetadataCache
from dbquery.engines.sql.builder import SqlBuilder
from dbquery.models_query import DataSource, ProductTypeEnum, QueryDefinition

_log = logging.getLogger(__name__)


def metadata_params(definition: QueryDefinition) -> dict[str, Any]:
    """Param values for column discovery: declared defaults, else typed dummies."""
    params: dict[str, Any] = {}
    for p in definition.params.values():
        params[p.name] = p.default if p.has_default else dummy_value_for(p.data_type)
    referenced = sqltext.unique_bind_names(definition.sql)
    for c in definition.criteria.values():
        referenced.extend(c.bind_params)
    for name in referenced:
        if name not in params:
            params[name] = 0 if name in SYSTEM_PARAMS else dummy_value_for("string")
    return params


def cache_from_columns(
    definition: QueryDefinition,
    columns: list[ColumnInfo],
    product_type: ProductTypeEnum | str | None = None,
) -> MetadataCache:
    """Build the cache for *definition* from driver column info.

    Non-virtual attributes are resolved by alias; an alias with no matching
    column is logged and left unmapped (it maps to None at row time).
    """
    names = tuple(c.name for c in columns)
    base = MetadataCache(
        query_name=definition.name,
        column_names=names,
        column_labels=names,
        column_types=tuple(sql_type_for_code(c.type_code, product_type) for c in columns),
    )
    attribute_index: dict[str, int] = {}
    attribute_type: dict[str, Any] = {}
    unmapped: list[str] = []
    for attr in definition.regular_attributes():
        i = base.column_index(attr.alias or attr.name)
        if i is None:
            _log.warning(
                "Query '%s': no column found for attribute '%s' (alias '%s')",
                definition.name,
                attr.name,
                attr.alias,
            )
            unmapped.append(attr.name)
            continue
        attribute_index[attr.name] = i
        attribute_type[attr.name] = base.column_type(i)
    return dataclasses.replace(
        base,
        attribute_index=attribute_index,
        attribute_type=attribute_type,
        unmapped_attributes=tuple(unmapped),
    )


class MetadataCacheBuilder:
    """Builds and attaches metadata caches for definitions run against *datasource*."""

    def __init__(
        self,
        datasource: DataSource,
        sql_builder: SqlBuilder | None = None,
        pool_manager: PoolManager | None = None,
    ) -> None:
        self.datasource = datasource
        self.sql_builder = sql_builder or SqlBuilder()
        self.pool_manager = pool_manager or get_pool_manager()
        self._lock = threading.Lock()

    @property
    def product_type(self) -> ProductTypeEnum:
        return ProductTypeEnum(self.datasource.product_type)

    def build_cache(self, definition: QueryDefinition) -> MetadataCache:
        name = definition.name
        context = QueryContext(definition, metadata_params(definition))
        try:
            plain = self.sql_builder.build_metadata_query(definition, context, zero_rows=False)
            zero_rows = self.sql_builder.build_metadata_query(definition, context, zero_rows=True)
        except Exception as e:
            raise MetadataCacheError(
                f"Could not compose SQL for column discovery: {e}",
                query_name=name,
                failed={name: str(e)},
            ) from e

        with self.pool_manager.connection(self.datasource) as conn:
            columns = self._try_describe(conn, plain.sql, plain.params, name)
            strategy = "describe"
            if not columns:
                columns, error = self._try_zero_rows(conn, zero_rows.sql, zero_rows.params, name)
                strategy = "zero_rows"
                if not columns:
                    reason = error or "query returned no column description"
                    raise MetadataCacheError(
                        f"Failed to discover result columns: {reason}",
                        query_name=name,
                        failed={name: reason},
                    )

        cache = cache_from_columns(definition, columns, self.product_type)
        _log.info(
            "Built metadata cache for query '%s' via %s: %d columns, %d attribute mappings",
            name,
            strategy,
            cache.column_count,
            len(cache.attribute_index),
        )
        return cache

    def _try_describe(
        self, conn: Any, sql: str, params: dict[str, Any], name: str
    ) -> list[ColumnInfo] | None:
        try:
            columns = describe(conn, sql, product_type=self.product_type)
            if not columns and params:
                _log.debug("Query '%s': describe retried with dummy parameters", name)
                columns = describe(conn, sql, product_type=self.product_type, sample_params=params)
            return columns or None
        except Exception as e:
            _log.debug("Query '%s': statement describe failed: %s", name, e)
            return None

    def _try_zero_rows(
        self, conn: Any, sql: str, params: dict[str, Any], name: str
    ) -> tuple[list[ColumnInfo] | None, str | None]:
        cur = None
        try:
            cur = execute(conn, sql, params, product_type=self.product_type)
            columns = cursor_columns(cur)
            cur.fetchall()
            return columns or None, None
        except Exception as e:
            _log.debug("Query '%s': zero-row metadata query failed: %s", name, e)
            try:
                conn.rollback()
            except Exception:
                pass
            return None, str(e)
        finally:
            if cur is not None:
                try:
                    cur.close()
                except Exception:
                    pass

    def ensure_cache(self, definition: QueryDefinition) -> MetadataCache:
        """The definition's cache, building and attaching it on first use."""
        if definition.has_metadata_cache():
            return definition.metadata_cache
        with self._lock:
            if definition.has_metadata_cache():
                return definition.metadata_cache
            return definition.attach_metadata_cache(self.build_cache(definition))

    def prewarm_caches(self, definitions: Iterable[QueryDefinition]) -> dict[str, MetadataCache]:
        """Build and attach caches for all *definitions*, reporting every failure at once."""
        caches: dict[str, MetadataCache] = {}
        failures: dict[str, str] = {}
        for definition in definitions:
            if not definition.metadata_cache_enabled:
                continue
            try:
                caches[definition.name] = self.ensure_cache(definition)
            except Exception as e:
                _log.error("Failed to pre-warm cache for query '%s': %s", definition.name, e)
                failures[definition.name] = str(e)
        if failures:
            raise MetadataCacheError(
                f"Failed to pre-warm metadata caches for {len(failures)} queries: "
                f"{', '.join(sorted(failures))}",
                failed=failures,
            )
        _log.info("Pre-warmed %d metadata caches", len(caches))
        return caches
