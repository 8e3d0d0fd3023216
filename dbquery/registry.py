"""
QueryRegistry: named, validated query definitions for one application.

Definitions are validated and (with a cache builder) get their metadata
cache at registration, under a write lock; executions read them afterwards
without locking.
"""

import logging
import threading
from collections.abc import Iterator

from dbquery.core.config import settings
from dbquery.core.definition_validate import unused_params, validate_definition
from dbquery.core.exceptions import MetadataCacheError, QueryDefinitionError, QueryNotFoundError
from dbquery.engines.metadata import MetadataCache, MetadataCacheBuilder
from dbquery.models_query import QueryDefinition

_log = logging.getLogger(__name__)


class QueryRegistry:
    def __init__(
        self,
        cache_builder: MetadataCacheBuilder | None = None,
        *,
        tolerate_missing_cache: bool | None = None,
        build_cache_on_register: bool | None = None,
    ) -> None:
        self.cache_builder = cache_builder
        self.tolerate_missing_cache = (
            settings.ALLOW_MISSING_METADATA_CACHE
            if tolerate_missing_cache is None
            else tolerate_missing_cache
        )
        self.build_cache_on_register = (
            settings.METADATA_PREWARM if build_cache_on_register is None else build_cache_on_register
        )
        self._definitions: dict[str, QueryDefinition] = {}
        self._lock = threading.RLock()

    def register(self, definition: QueryDefinition) -> QueryDefinition:
        """
        Validate and add *definition*.

        Registering the same object again is a no-op; another definition under
        a taken name raises ``QueryDefinitionError``. A metadata cache failure
        is fatal unless missing caches are tolerated.
        """
        name = definition.name
        with self._lock:
            existing = self._definitions.get(name)
            if existing is definition:
                return definition
            if existing is not None:
                raise QueryDefinitionError(
                    "Duplicate query definition: a query with this name is already registered",
                    query_name=name,
                )
            validate_definition(definition)
            if self.cache_builder is not None and self.build_cache_on_register:
                self._build_cache(definition)
            self._definitions[name] = definition
        self._log_summary(definition)
        return definition

    def _build_cache(self, definition: QueryDefinition) -> None:
        if not definition.metadata_cache_enabled:
            return
        try:
            self.cache_builder.ensure_cache(definition)
        except MetadataCacheError as e:
            if not self.tolerate_missing_cache:
                raise
            _log.warning(
                "Registering query '%s' without metadata cache: %s", definition.name, e
            )

    def _log_summary(self, definition: QueryDefinition) -> None:
        cache = definition.metadata_cache
        _log.info(
            "Registered query '%s': %d attributes, %d params, %d criteria, %s",
            definition.name,
            len(definition.attributes),
            len(definition.params),
            len(definition.criteria),
            f"{cache.column_count} cached columns" if cache is not None else "no metadata cache",
        )
        unused = unused_params(definition)
        if unused:
            _log.info("Query '%s' declares unused params: %s", definition.name, ", ".join(unused))

    def get(self, name: str) -> QueryDefinition | None:
        return self._definitions.get(name)

    def require(self, name: str) -> QueryDefinition:
        definition = self._definitions.get(name)
        if definition is None:
            raise QueryNotFoundError("Query not found", query_name=name)
        return definition

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._definitions)

    def definitions(self) -> list[QueryDefinition]:
        with self._lock:
            return list(self._definitions.values())

    def unregister(self, name: str) -> QueryDefinition | None:
        with self._lock:
            return self._definitions.pop(name, None)

    def clear(self) -> None:
        with self._lock:
            self._definitions.clear()

    def prewarm(self) -> dict[str, MetadataCache]:
        """Build missing caches for every registered definition."""
        if self.cache_builder is None:
            return {}
        return self.cache_builder.prewarm_caches(self.definitions())

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, name: object) -> bool:
        return name in self._definitions

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())
