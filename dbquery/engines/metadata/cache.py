"""Column metadata snapshot for one query definition."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any

from dbquery.models_query import SqlTypeEnum


def _case_variants(name: str) -> tuple[str, ...]:
    return tuple(dict.fromkeys((name, name.upper(), name.lower())))


@dataclass(frozen=True)
class MetadataCache:
    """
    Column names, labels and types of a compiled query, plus where each
    declared attribute lives in the result row.

    Indexes are 0-based positions in the driver's row tuple. Name lookups try
    the name as given, upper-cased and lower-cased. Built once, never mutated,
    read without locking.
    """

    query_name: str
    column_names: tuple[str, ...]
    column_labels: tuple[str, ...]
    column_types: tuple[SqlTypeEnum, ...]
    attribute_index: Mapping[str, int] = field(default_factory=dict)
    attribute_type: Mapping[str, SqlTypeEnum] = field(default_factory=dict)
    unmapped_attributes: tuple[str, ...] = ()
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    initialized: bool = True
    column_index_map: Mapping[str, int] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        index: dict[str, int] = {}
        for i, label in enumerate(self.column_labels):
            for key in _case_variants(label):
                index.setdefault(key, i)
        for i, name in enumerate(self.column_names):
            for key in _case_variants(name):
                index.setdefault(key, i)
        object.__setattr__(self, "column_index_map", MappingProxyType(index))
        object.__setattr__(self, "attribute_index", MappingProxyType(dict(self.attribute_index)))
        object.__setattr__(self, "attribute_type", MappingProxyType(dict(self.attribute_type)))

    @property
    def column_count(self) -> int:
        return len(self.column_names)

    def column_index(self, name: str) -> int | None:
        for key in _case_variants(name):
            i = self.column_index_map.get(key)
            if i is not None:
                return i
        return None

    def column_type(self, index: int) -> SqlTypeEnum:
        if 0 <= index < len(self.column_types):
            return self.column_types[index]
        return SqlTypeEnum.OTHER

    def attribute_column(self, attribute: str) -> int | None:
        return self.attribute_index.get(attribute)

    def summary(self) -> dict[str, Any]:
        return {
            "query": self.query_name,
            "columns": self.column_count,
            "mapped_attributes": len(self.attribute_index),
            "unmapped_attributes": list(self.unmapped_attributes),
            "created_at": self.created_at.isoformat(),
        }
