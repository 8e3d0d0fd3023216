"""
Pagination dialects. The window is always bound as parameters, never inlined.

| dialect       | SQL                                                        |
|---------------|------------------------------------------------------------|
| row_number    | ``ROWNUM`` window nested twice (Oracle 11g)                |
| offset_fetch  | ``OFFSET :offset ROWS FETCH NEXT :limit ROWS ONLY``       |
| standard      | ``LIMIT :limit OFFSET :offset``                            |
"""

from collections.abc import Callable
from typing import Any

from dbquery.models_query import DialectEnum, Pagination

# Helper column the row_number wrap adds to every row
ROWNUM_COLUMN = "rnum"


def _row_number(sql: str, page: Pagination, params: dict[str, Any]) -> str:
    params["offset"] = page.offset
    params["max_row"] = page.offset + page.limit
    return (
        "SELECT * FROM (\n"
        f"SELECT q.*, ROWNUM {ROWNUM_COLUMN} FROM (\n{sql}\n) q\n"
        "WHERE ROWNUM <= :max_row\n"
        f") WHERE {ROWNUM_COLUMN} > :offset"
    )


def _offset_fetch(sql: str, page: Pagination, params: dict[str, Any]) -> str:
    params["offset"] = page.offset
    params["limit"] = page.limit
    return f"{sql}\nOFFSET :offset ROWS FETCH NEXT :limit ROWS ONLY"


def _standard(sql: str, page: Pagination, params: dict[str, Any]) -> str:
    params["limit"] = page.limit
    params["offset"] = page.offset
    return f"{sql}\nLIMIT :limit OFFSET :offset"


_PAGINATORS: dict[DialectEnum, Callable[[str, Pagination, dict[str, Any]], str]] = {
    DialectEnum.ROW_NUMBER: _row_number,
    DialectEnum.OFFSET_FETCH: _offset_fetch,
    DialectEnum.STANDARD: _standard,
}


def paginate(
    sql: str, page: Pagination, params: dict[str, Any], dialect: DialectEnum | str | None
) -> str:
    """Wrap *sql* for the window *page*; the bind values are added to *params*."""
    return _PAGINATORS[DialectEnum.parse(dialect)](sql, page, params)


def hidden_columns(dialect: DialectEnum | str | None) -> frozenset[str]:
    """Upper-cased helper columns a dialect adds to the result set."""
    if DialectEnum.parse(dialect) is DialectEnum.ROW_NUMBER:
        return frozenset({ROWNUM_COLUMN.upper()})
    return frozenset()
