"""
QueryContext: per-execution state (params, filters, sorts, pagination,
principal) plus the bookkeeping an execution produces (applied criteria,
timing, total count). Owned by one thread; never shared.
"""

import time
from collections.abc import Iterable
from typing import Any

from dbquery.models_query import (
    AppliedCriteria,
    AttributeDef,
    Filter,
    Pagination,
    QueryDefinition,
    SortSpec,
)


class QueryContext:
    """
    Mutable request state for one execution of *definition*.

    Filters are keyed by attribute, so adding a second filter on the same
    attribute replaces the first. Sorts keep insertion order and duplicates.
    """

    def __init__(
        self,
        definition: QueryDefinition,
        params: dict[str, Any] | None = None,
        *,
        principal: Any = None,
    ) -> None:
        self.definition = definition
        self.params: dict[str, Any] = dict(params or {})
        self.filters: dict[str, Filter] = {}
        self.sorts: list[SortSpec] = []
        self.pagination: Pagination | None = None
        self.principal = principal
        self.selected_fields: set[str] = set()
        self.include_metadata = False
        self.cache_enabled = False
        self.audit_enabled = True
        # free-form scratch space for processors and calculators
        self.attributes: dict[str, Any] = {}
        self.metadata: dict[str, Any] = {}

        self.applied_criteria: list[AppliedCriteria] = []
        self.total_count: int | None = None
        self.start_time: float | None = None
        self.end_time: float | None = None

    # -- params --------------------------------------------------------------

    def set_param(self, name: str, value: Any) -> None:
        self.params[name] = value

    def get_param(self, name: str, default: Any = None) -> Any:
        return self.params.get(name, default)

    def has_param(self, name: str) -> bool:
        """True when *name* is bound to a non-null value."""
        return self.params.get(name) is not None

    # -- filters / sorts / pagination ----------------------------------------

    def add_filter(self, f: Filter) -> None:
        self.filters[f.attribute] = f

    def has_filters(self) -> bool:
        return bool(self.filters)

    def add_sort(self, s: SortSpec) -> None:
        self.sorts.append(s)

    def has_sorts(self) -> bool:
        return bool(self.sorts)

    def set_pagination(self, start: int, end: int) -> None:
        self.pagination = Pagination(start=start, end=end)

    def has_pagination(self) -> bool:
        return self.pagination is not None and self.definition.pagination_enabled

    # -- field selection -----------------------------------------------------

    def select_fields(self, names: Iterable[str]) -> None:
        self.selected_fields.update(names)

    def is_attribute_included(self, attr: AttributeDef | str) -> bool:
        if isinstance(attr, str):
            found = self.definition.get_attribute(attr)
            if found is None:
                return False
            attr = found
        return attr.is_included(self.selected_fields)

    # -- bookkeeping ---------------------------------------------------------

    def record_applied_criteria(self, entry: AppliedCriteria) -> None:
        if self.audit_enabled:
            self.applied_criteria.append(entry)

    def clear_applied_criteria(self) -> None:
        self.applied_criteria.clear()

    def start_execution(self) -> None:
        self.start_time = time.perf_counter()
        self.end_time = None

    def end_execution(self) -> None:
        self.end_time = time.perf_counter()

    @property
    def execution_time_ms(self) -> float:
        if self.start_time is None:
            return 0.0
        end = self.end_time if self.end_time is not None else time.perf_counter()
        return (end - self.start_time) * 1000.0

    def __repr__(self) -> str:
        return (
            f"QueryContext(query={self.definition.name!r}, params={sorted(self.params)}, "
            f"filters={list(self.filters)}, sorts={len(self.sorts)}, "
            f"pagination={self.pagination!r})"
        )
