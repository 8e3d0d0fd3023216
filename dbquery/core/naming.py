"""
Naming strategies for dynamic attributes (result columns without a declared
attribute). ``USER_NAME`` becomes ``userName`` under CAMEL, ``UserName``
under PASCAL, and so on.
"""

import re
from enum import Enum

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


class NamingStrategyEnum(str, Enum):
    """How a raw column name is turned into an attribute name."""

    AS_IS = "as_is"
    CAMEL = "camel"
    PASCAL = "pascal"
    SNAKE = "snake"
    UPPER = "upper"
    LOWER = "lower"

    def convert(self, column_name: str) -> str:
        if not column_name:
            return column_name
        if self is NamingStrategyEnum.CAMEL:
            return to_camel(column_name)
        if self is NamingStrategyEnum.PASCAL:
            return to_pascal(column_name)
        if self is NamingStrategyEnum.SNAKE:
            return to_snake(column_name)
        if self is NamingStrategyEnum.UPPER:
            return column_name.upper()
        if self is NamingStrategyEnum.LOWER:
            return column_name.lower()
        return column_name


def _words(name: str) -> list[str]:
    if "_" in name or " " in name or "-" in name:
        return [w for w in re.split(r"[_\s\-]+", name) if w]
    if name.isupper():
        return [name]
    return [w for w in _CAMEL_BOUNDARY.split(name) if w]


def to_camel(name: str) -> str:
    """``FIRST_NAME`` -> ``firstName``; ``SALARY`` -> ``salary``."""
    words = _words(name)
    if not words:
        return name
    head = words[0].lower()
    return head + "".join(w[:1].upper() + w[1:].lower() for w in words[1:])


def to_pascal(name: str) -> str:
    words = _words(name)
    return "".join(w[:1].upper() + w[1:].lower() for w in words) or name


def to_snake(name: str) -> str:
    """``firstName`` -> ``first_name``; ``FIRST_NAME`` -> ``first_name``."""
    words = _words(name)
    return "_".join(w.lower() for w in words) or name
