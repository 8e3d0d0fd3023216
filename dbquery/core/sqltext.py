"""
Lexical helpers for SQL text with ``:name`` bind parameters.

The scanner splits SQL into code, quoted literals and comments so that bind
references, ``--name`` placeholders and paramstyle rewriting only ever touch
code. Quoted identifiers (``"..."``) are treated like literals.
"""

import re
from collections.abc import Iterator
from typing import Any

CODE = "code"
LITERAL = "literal"
COMMENT = "comment"

_BIND_RE = re.compile(r"(?<![:\w]):([A-Za-z_][A-Za-z0-9_]*)")
_PLACEHOLDER_RE = re.compile(r"--(\w+)\s*")


def _is_escape_prefix(sql: str, quote_pos: int) -> bool:
    """True when the quote at *quote_pos* opens an ``E'...'`` literal."""
    if quote_pos == 0 or sql[quote_pos - 1] not in "Ee":
        return False
    return quote_pos == 1 or not (sql[quote_pos - 2].isalnum() or sql[quote_pos - 2] == "_")


def segments(sql: str, *, backslash_escapes: bool = False) -> Iterator[tuple[str, str]]:
    """Yield ``(kind, text)`` pieces of *sql* in order; joining them gives *sql* back.

    Backslash is an ordinary character inside standard SQL literals. It escapes
    the next character only in PostgreSQL ``E'...'`` literals, or in every
    quoted literal when *backslash_escapes* is set (MySQL).
    """
    i = 0
    length = len(sql)
    start = 0

    while i < length:
        ch = sql[i]

        if ch in ("'", '"'):
            if i > start:
                yield CODE, sql[start:i]
            quote = ch
            escapes = backslash_escapes or (quote == "'" and _is_escape_prefix(sql, i))
            j = i + 1
            while j < length:
                c = sql[j]
                if c == quote:
                    if j + 1 < length and sql[j + 1] == quote:
                        j += 2
                        continue
                    j += 1
                    break
                if escapes and c == "\\" and j + 1 < length:
                    j += 2
                    continue
                j += 1
            yield LITERAL, sql[i:j]
            i = start = j
            continue

        if ch == "$" and i + 1 < length and sql[i + 1] == "$":
            if i > start:
                yield CODE, sql[start:i]
            end = sql.find("$$", i + 2)
            j = length if end == -1 else end + 2
            yield LITERAL, sql[i:j]
            i = start = j
            continue

        if ch == "-" and i + 1 < length and sql[i + 1] == "-":
            if i > start:
                yield CODE, sql[start:i]
            end = sql.find("\n", i)
            j = length if end == -1 else end
            yield COMMENT, sql[i:j]
            i = start = j
            continue

        if ch == "/" and i + 1 < length and sql[i + 1] == "*":
            if i > start:
                yield CODE, sql[start:i]
            end = sql.find("*/", i + 2)
            j = length if end == -1 else end + 2
            yield COMMENT, sql[i:j]
            i = start = j
            continue

        i += 1

    if start < length:
        yield CODE, sql[start:]


def bind_names(sql: str | None) -> list[str]:
    """Every ``:name`` reference in code, in order of appearance (repeats kept)."""
    if not sql:
        return []
    names: list[str] = []
    for kind, text in segments(sql):
        if kind == CODE:
            names.extend(_BIND_RE.findall(text))
    return names


def unique_bind_names(sql: str | None) -> list[str]:
    return list(dict.fromkeys(bind_names(sql)))


def strip_line_comments(sql: str, keep: "set[str] | None" = None) -> str:
    """Remove ``--word`` placeholder comments (whole comment text must be one word).

    Regular prose comments (``-- note``) are left alone; placeholders listed in
    *keep* survive.
    """
    out: list[str] = []
    for kind, text in segments(sql):
        if kind == COMMENT and _PLACEHOLDER_RE.fullmatch(text):
            name = text[2:].strip()
            if keep and name in keep:
                out.append(text)
            continue
        out.append(text)
    return "".join(out)


def compile_named(
    sql: str, params: dict[str, Any] | None, style: str, *, backslash_escapes: bool = False
) -> tuple[str, Any]:
    """Rewrite ``:name`` binds for a DB-API paramstyle.

    - ``named``: SQL unchanged, dict restricted to referenced names (sqlite3).
    - ``pyformat``: ``%(name)s`` with literal ``%`` doubled (psycopg, pymysql).
    - ``qmark``: ``?`` with a positional list (trino).

    Raises ``ValueError`` when a referenced name has no value in *params*.
    """
    _params = params or {}
    used: dict[str, Any] = {}
    positional: list[Any] = []
    out: list[str] = []

    def _value(name: str) -> Any:
        if name not in _params:
            raise ValueError(f"Missing value for bind parameter ':{name}'")
        return _params[name]

    def _replace(match: re.Match) -> str:
        name = match.group(1)
        value = _value(name)
        used[name] = value
        if style == "pyformat":
            return f"%({name})s"
        if style == "qmark":
            positional.append(value)
            return "?"
        return match.group(0)

    for kind, text in segments(sql, backslash_escapes=backslash_escapes):
        if kind == CODE:
            if style == "pyformat":
                text = text.replace("%", "%%")
            out.append(_BIND_RE.sub(_replace, text))
        elif style == "pyformat":
            out.append(text.replace("%", "%%"))
        else:
            out.append(text)

    compiled = "".join(out)
    if style == "qmark":
        return compiled, positional
    return compiled, used


def to_numbered(sql: str) -> tuple[str, list[str]]:
    """Rewrite ``:name`` binds as ``$1, $2 ...`` (PostgreSQL protocol level).

    Returns the SQL and the bind names in ``$n`` order; a name used twice
    keeps its first number.
    """
    order: list[str] = []

    def _replace(match: re.Match) -> str:
        name = match.group(1)
        if name not in order:
            order.append(name)
        return f"${order.index(name) + 1}"

    out: list[str] = []
    for kind, text in segments(sql):
        out.append(_BIND_RE.sub(_replace, text) if kind == CODE else text)
    return "".join(out), order


def placeholder_names(sql: str | None) -> list[str]:
    """Names of ``--name`` placeholders: line comments consisting of a single word."""
    if not sql:
        return []
    names: list[str] = []
    for kind, text in segments(sql):
        if kind == COMMENT:
            m = _PLACEHOLDER_RE.fullmatch(text)
            if m:
                names.append(m.group(1))
    return names


def replace_placeholder(sql: str, name: str, replacement: str) -> tuple[str, bool]:
    """Substitute every ``--name`` placeholder with *replacement*.

    Matches the whole word only (``--dept`` never matches ``--deptId``).
    Returns the new SQL and whether anything was replaced.
    """
    out: list[str] = []
    found = False
    for kind, text in segments(sql):
        if kind == COMMENT:
            m = _PLACEHOLDER_RE.fullmatch(text)
            if m and m.group(1) == name:
                out.append(replacement)
                found = True
                continue
        out.append(text)
    return "".join(out), found


_MASK = "\x00{}\x00"
_MASK_RE = re.compile("\x00(\\d+)\x00")


def mask_literals(sql: str) -> tuple[str, list[str]]:
    """Swap quoted literals for numbered markers so regex rewrites cannot touch them."""
    literals: list[str] = []
    out: list[str] = []
    for kind, text in segments(sql):
        if kind == LITERAL:
            out.append(_MASK.format(len(literals)))
            literals.append(text)
        else:
            out.append(text)
    return "".join(out), literals


def unmask_literals(sql: str, literals: list[str]) -> str:
    return _MASK_RE.sub(lambda m: literals[int(m.group(1))], sql)


_ORDER_BY_RE = re.compile(r"\bORDER\s+BY\b", re.IGNORECASE)


def has_top_level_order_by(sql: str) -> bool:
    """True when *sql* has an ``ORDER BY`` outside any parentheses."""
    depth = 0
    for kind, text in segments(sql):
        if kind != CODE:
            continue
        pos = 0
        for m in _ORDER_BY_RE.finditer(text):
            chunk = text[pos:m.start()]
            depth += chunk.count("(") - chunk.count(")")
            pos = m.start()
            if depth == 0:
                return True
        tail = text[pos:]
        depth += tail.count("(") - tail.count(")")
    return False
