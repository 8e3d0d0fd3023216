"""
Custom Jinja2 tags for criteria templates.

{% where %}: combine conditions into a ``WHERE`` clause.
{% conditions %}: combine conditions into an ``AND ...`` tail, the usual
shape of a fragment that replaces a placeholder after ``WHERE 1=1``.
"""

import re

from jinja2 import nodes
from jinja2.ext import Extension

_LEADING_BOOL_OP = re.compile(r"^\s*(AND|OR)\s+", re.IGNORECASE)


def _strip_leading_op(inner: object) -> str:
    if not inner or not isinstance(inner, str):
        return ""
    return _LEADING_BOOL_OP.sub("", inner.strip()).strip()


class _ConditionBlock(Extension):
    """Block tag whose rendered body is reduced to a bare boolean expression."""

    prefix = ""

    def parse(self, parser) -> nodes.CallBlock:
        token = next(parser.stream)
        end_tag = f"name:end{token.value}"
        body = parser.parse_statements((end_tag,), drop_needle=True)
        return nodes.CallBlock(
            self.call_method("_render_block", [], [], []),
            [],
            [],
            body,
        ).set_lineno(token.lineno)

    def _render_block(self, caller: object) -> str:
        s = _strip_leading_op(caller())
        return f"{self.prefix}{s}" if s else ""


class WhereExtension(_ConditionBlock):
    """{% where %} ... {% endwhere %} renders ``WHERE <conditions>`` or nothing."""

    tags = {"where"}
    prefix = "WHERE "


class ConditionsExtension(_ConditionBlock):
    """{% conditions %} ... {% endconditions %} renders ``AND <conditions>`` or nothing."""

    tags = {"conditions"}
    prefix = "AND "


SQL_EXTENSIONS: list[type[Extension]] = [WhereExtension, ConditionsExtension]
