"""
Jinja2 filters for criteria templates.

Every filter returns ``SqlSafe`` so the ``finalize`` callback knows the value
is already a SQL literal and does not escape it twice. Bare ``{{ value }}``
output goes through ``sql_finalize`` and becomes a literal of its own type.
"""

import functools
import json
from collections.abc import Callable
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any

_QUOTE_ESCAPE = str.maketrans({"'": "''"})

_EMPTY_SET = "(SELECT 1 WHERE 1=0)"


class SqlSafe(str):
    """String already rendered as SQL; ``finalize`` passes it through."""


_NULL = SqlSafe("NULL")


def _quote(s: str) -> str:
    return "'" + s.translate(_QUOTE_ESCAPE) + "'"


def _literal(value: Any) -> str:
    """SQL literal for a Python value, chosen by the value's own type."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date, time)):
        return _quote(value.isoformat())
    if isinstance(value, dict):
        return _quote(json.dumps(value, default=str))
    return _quote(str(value))


def _escape_like(s: str) -> str:
    return s.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _null_safe(render: Callable[[Any], str | None]) -> Callable[[Any], SqlSafe]:
    """None in, or None out of *render*, gives ``NULL``."""

    @functools.wraps(render)
    def wrapper(value: Any) -> SqlSafe:
        if value is None:
            return _NULL
        text = render(value)
        return _NULL if text is None else SqlSafe(text)

    return wrapper


@_null_safe
def sql_string(value: Any) -> str:
    return _quote(str(value))


@_null_safe
def sql_int(value: Any) -> str | None:
    """Integer literal; anything that does not parse renders NULL."""
    try:
        return str(int(value))
    except (TypeError, ValueError):
        return None


@_null_safe
def sql_float(value: Any) -> str | None:
    try:
        return str(float(value))
    except (TypeError, ValueError):
        return None


@_null_safe
def sql_bool(value: Any) -> str:
    return "TRUE" if bool(value) else "FALSE"


@_null_safe
def sql_date(value: Any) -> str | None:
    """``'YYYY-MM-DD'``; datetimes are truncated, malformed strings render NULL."""
    if isinstance(value, datetime):
        value = value.date()
    if isinstance(value, date):
        return _quote(value.isoformat())
    if isinstance(value, str) and len(value) >= 10 and value[4] == "-" and value[7] == "-":
        return _quote(value[:10])
    return None


@_null_safe
def sql_datetime(value: Any) -> str | None:
    if isinstance(value, datetime):
        return _quote(value.isoformat())
    if isinstance(value, date):
        return _quote(datetime.combine(value, time.min).isoformat())
    if isinstance(value, str) and value:
        return _quote(value)
    return None


def in_list(value: Any) -> SqlSafe:
    """``(1, 'a', NULL)``; an empty or missing list renders a set matching nothing."""
    if value is None or isinstance(value, (str, bytes)):
        items = [] if value is None else [value]
    else:
        try:
            items = list(value)
        except TypeError:
            items = [value]
    if not items:
        return SqlSafe(_EMPTY_SET)
    return SqlSafe("(" + ", ".join(_literal(v) for v in items) + ")")


@_null_safe
def sql_like(value: Any) -> str:
    """``'%value%'`` with wildcard characters in *value* escaped."""
    return _quote(f"%{_escape_like(str(value))}%")


@_null_safe
def sql_like_start(value: Any) -> str:
    return _quote(f"{_escape_like(str(value))}%")


@_null_safe
def sql_like_end(value: Any) -> str:
    return _quote(f"%{_escape_like(str(value))}")


@_null_safe
def sql_raw(value: Any) -> str:
    """Trusted SQL text (identifiers chosen by the definition author), never user input."""
    return str(value)


def sql_finalize(value: Any) -> str:
    """Jinja2 ``finalize`` callback: escape any ``{{ }}`` output no filter handled."""
    if isinstance(value, SqlSafe):
        return str(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        return in_list(value)
    return _literal(value)


SQL_FILTERS: dict[str, Any] = {
    f.__name__: f
    for f in (
        sql_string,
        sql_int,
        sql_float,
        sql_bool,
        sql_date,
        sql_datetime,
        in_list,
        sql_like,
        sql_like_start,
        sql_like_end,
        sql_raw,
    )
}
SQL_FILTERS["safe"] = sql_raw
