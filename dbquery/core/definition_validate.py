"""
Definition validation, run once at registration.

Structural problems are collected and raised together as a
``QueryDefinitionError``; name clashes between attributes, params and
criteria are only logged.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from dbquery.core import sqltext
from dbquery.core.exceptions import QueryDefinitionError

if TYPE_CHECKING:
    from dbquery.models_query import QueryDefinition

_log = logging.getLogger(__name__)

# binds the engine supplies itself (pagination windows)
SYSTEM_PARAMS = frozenset({"offset", "limit", "max_row", "_start", "_end"})


def _check_aliases(definition: QueryDefinition, problems: list[str]) -> None:
    seen: dict[str, str] = {}
    for attr in definition.regular_attributes():
        alias = (attr.alias or attr.name).upper()
        other = seen.get(alias)
        if other is not None:
            problems.append(
                f"attributes '{other}' and '{attr.name}' map to the same column '{attr.alias}'"
            )
        else:
            seen[alias] = attr.name
    for attr in definition.virtual_attributes():
        if attr.sort_property and definition.get_attribute(attr.sort_property) is None:
            problems.append(
                f"virtual attribute '{attr.name}' sorts by unknown attribute '{attr.sort_property}'"
            )


def _check_bind_params(definition: QueryDefinition, problems: list[str]) -> None:
    declared = set(definition.params) | SYSTEM_PARAMS
    for name in sqltext.unique_bind_names(definition.sql):
        if name not in declared:
            problems.append(f"SQL references undefined bind parameter ':{name}'")
    for c in definition.ordered_criteria():
        for name in sorted(c.bind_params):
            if name not in declared:
                problems.append(
                    f"criteria '{c.name}' references undefined bind parameter ':{name}'"
                )


def _check_criteria(definition: QueryDefinition, problems: list[str]) -> None:
    placeholders = set(sqltext.placeholder_names(definition.sql))
    for c in definition.criteria.values():
        if c.name not in placeholders:
            problems.append(f"criteria '{c.name}' has no '--{c.name}' placeholder in SQL")
    keys = [c.name for c in definition.criteria.values() if c.find_by_key]
    if len(keys) > 1:
        problems.append(f"more than one find-by-key criteria: {', '.join(keys)}")


def _warn_name_clashes(definition: QueryDefinition) -> None:
    kinds = (
        ("attribute", definition.attributes),
        ("parameter", definition.params),
        ("criteria", definition.criteria),
    )
    owner: dict[str, str] = {}
    for kind, names in kinds:
        for name in names:
            if name in owner:
                _log.warning(
                    "Query '%s': '%s' is used as both %s and %s",
                    definition.name,
                    name,
                    owner[name],
                    kind,
                )
            else:
                owner[name] = kind


def validate_definition(definition: QueryDefinition) -> None:
    """Raise ``QueryDefinitionError`` listing every structural problem in *definition*."""
    if not definition.name or not definition.name.strip():
        raise QueryDefinitionError("Query definition has no name")
    if not definition.sql or not definition.sql.strip():
        raise QueryDefinitionError("SQL is required", query_name=definition.name)

    problems: list[str] = []
    _check_aliases(definition, problems)
    _check_criteria(definition, problems)
    _check_bind_params(definition, problems)
    if problems:
        raise QueryDefinitionError("; ".join(problems), query_name=definition.name)
    _warn_name_clashes(definition)


def unused_params(definition: QueryDefinition) -> list[str]:
    """Declared params that neither the SQL nor any criteria references."""
    used = set(sqltext.bind_names(definition.sql))
    for c in definition.criteria.values():
        used.update(c.bind_params)
    return [name for name in definition.params if name not in used]
