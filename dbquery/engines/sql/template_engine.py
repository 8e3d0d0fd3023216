"""
Jinja2 rendering for criteria templates.

A ``CriteriaDef.template`` is rendered with the execution's parameters to the
SQL fragment that replaces the criteria placeholder. Bare ``{{ value }}``
output is escaped by ``sql_finalize``; type-specific filters (``| sql_int``,
``| in_list`` ...) give explicit control.

Compiled templates are kept in an LRU dict keyed by source hash, so a
criteria template is parsed once no matter how often it runs.
"""

import hashlib
import threading
from collections import OrderedDict
from typing import Any

from jinja2 import Environment, Template, TemplateError, TemplateSyntaxError, UndefinedError, meta

from dbquery.engines.sql.extensions import SQL_EXTENSIONS
from dbquery.engines.sql.filters import SQL_FILTERS, sql_finalize

_CACHE_MAX_SIZE = 512
_PREVIEW_LEN = 300

_env: Environment | None = None
_env_lock = threading.Lock()


def _get_env() -> Environment:
    global _env
    if _env is None:
        with _env_lock:
            if _env is None:
                env = Environment(
                    autoescape=False,
                    extensions=SQL_EXTENSIONS,
                    finalize=sql_finalize,
                )
                env.filters.update(SQL_FILTERS)
                _env = env
    return _env


class _CompiledTemplates:
    """Bounded LRU of compiled templates keyed by source digest."""

    def __init__(self, max_size: int) -> None:
        self.max_size = max_size
        self._items: OrderedDict[str, Template] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, source: str) -> Template:
        key = hashlib.sha1(source.encode(), usedforsecurity=False).hexdigest()
        with self._lock:
            if key in self._items:
                self._items.move_to_end(key)
                return self._items[key]
        compiled = _get_env().from_string(source)
        with self._lock:
            self._items[key] = compiled
            while len(self._items) > self.max_size:
                self._items.popitem(last=False)
        return compiled


_compiled = _CompiledTemplates(_CACHE_MAX_SIZE)


def _preview(template: str) -> str:
    return template[:_PREVIEW_LEN] + "..." if len(template) > _PREVIEW_LEN else template


class SQLTemplateEngine:
    """Renders criteria templates and lists the variables they read."""

    def render(self, template: str, params: dict[str, Any], *, name: str | None = None) -> str:
        """Render *template* with *params*; errors become ``ValueError``."""
        label = f"Criteria '{name}' template" if name else "SQL template"
        try:
            return _compiled.get(template).render(**params).strip()
        except TemplateSyntaxError as e:
            raise ValueError(
                f"{label} syntax error: {e}. Template preview:\n{_preview(template)}"
            ) from e
        except UndefinedError as e:
            raise ValueError(
                f"{label} variable not found: {e}. Available params: {sorted(params)}."
            ) from e
        except TemplateError as e:
            raise ValueError(
                f"{label} render error: {e}. Template preview:\n{_preview(template)}"
            ) from e

    def parse_parameters(self, template: str) -> list[str]:
        """Undeclared variable names referenced by *template*, sorted."""
        try:
            ast = _get_env().parse(template)
        except TemplateSyntaxError as e:
            raise ValueError(f"SQL template syntax error: {e}") from e
        return sorted(meta.find_undeclared_variables(ast))
