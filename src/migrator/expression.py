"""Evaluation of block ``enable_if`` conditions.

Supported forms::

    migrate_db
    migrate_db == true
    ejb_count > 50 and environment != 'dev'
    (ejb_count > 100 || complexity >= 7) && !skip_tests
    'spring' in target.frameworks

``${var}`` placeholders are substituted before parsing. The expression is
parsed with :mod:`ast` and walked against an allow-list of node types, so
no arbitrary Python can run.
"""

from __future__ import annotations

import ast
import logging
import operator
import re
from collections.abc import Mapping
from typing import Any

from migrator.context import MigrationContext
from migrator.errors import ExpressionError

logger = logging.getLogger(__name__)

# String literals are matched first so operators inside quotes are left alone.
_TOKENS = re.compile(
    r"""(?P<str>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")"""
    r"""|(?P<and>&&)|(?P<or>\|\|)|(?P<not>!(?!=))"""
    r"""|(?P<word>\b(?:true|false|null)\b)"""
)
_WORDS = {"true": "True", "false": "False", "null": "None"}

_COMPARE = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}


class _UnknownVariable(Exception):
    pass


def _translate(expression: str) -> str:
    """Rewrite JEXL-style operators and literals into Python syntax."""

    def _replacer(m: re.Match) -> str:
        kind = m.lastgroup
        if kind == "str":
            return m.group(0)
        if kind == "and":
            return " and "
        if kind == "or":
            return " or "
        if kind == "not":
            return " not "
        return _WORDS[m.group(0)]

    return _TOKENS.sub(_replacer, expression)


def to_bool(value: Any) -> bool:
    """Truthiness used for conditions: ``"false"`` and ``""`` are false."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, int | float):
        return value != 0
    if isinstance(value, str):
        return bool(value) and value.lower() != "false"
    if isinstance(value, Mapping | list | tuple | set):
        return len(value) > 0
    return True


def _dotted_name(node: ast.AST) -> str | None:
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        base = _dotted_name(node.value)
        return f"{base}.{node.attr}" if base else None
    return None


def _eval(node: ast.AST, context: MigrationContext) -> Any:
    if isinstance(node, ast.Expression):
        return _eval(node.body, context)

    if isinstance(node, ast.Constant):
        return node.value

    if isinstance(node, ast.Name | ast.Attribute):
        name = _dotted_name(node)
        if name is None:
            raise ExpressionError("Unsupported attribute access")
        try:
            return context.lookup(name)
        except KeyError:
            raise _UnknownVariable(name) from None

    if isinstance(node, ast.BoolOp):
        if isinstance(node.op, ast.And):
            for value in node.values:
                if not to_bool(_eval(value, context)):
                    return False
            return True
        for value in node.values:
            if to_bool(_eval(value, context)):
                return True
        return False

    if isinstance(node, ast.UnaryOp):
        operand = _eval(node.operand, context)
        if isinstance(node.op, ast.Not):
            return not to_bool(operand)
        if isinstance(node.op, ast.USub):
            return -operand
        raise ExpressionError(f"Unsupported operator: {type(node.op).__name__}")

    if isinstance(node, ast.Compare):
        left = _eval(node.left, context)
        for op, comparator in zip(node.ops, node.comparators, strict=True):
            fn = _COMPARE.get(type(op))
            if fn is None:
                raise ExpressionError(f"Unsupported comparison: {type(op).__name__}")
            right = _eval(comparator, context)
            try:
                if not fn(left, right):
                    return False
            except TypeError as exc:
                raise ExpressionError(f"Cannot compare {left!r} and {right!r}: {exc}") from exc
            left = right
        return True

    if isinstance(node, ast.List | ast.Tuple):
        return [_eval(elt, context) for elt in node.elts]

    raise ExpressionError(f"Unsupported expression element: {type(node).__name__}")


def _parse(expression: str) -> ast.Expression:
    try:
        return ast.parse(_translate(expression).strip(), mode="eval")
    except SyntaxError as exc:
        raise ExpressionError(f"Invalid expression {expression!r}: {exc.msg}") from exc


def evaluate(expression: str | None, context: MigrationContext, default_on_error: bool = False) -> bool:
    """Evaluate ``expression`` against ``context``.

    An unknown variable yields ``default_on_error``; malformed expressions
    raise :class:`ExpressionError`.
    """
    if not expression or not expression.strip():
        return True

    resolved = context.substitute(expression) if "${" in expression else expression
    tree = _parse(resolved)
    try:
        result = to_bool(_eval(tree, context))
    except _UnknownVariable as exc:
        logger.warning("Variable not found in expression %r: %s", expression, exc)
        logger.debug("Available variables: %s", sorted(context.all_variables()))
        return default_on_error

    logger.debug("Expression %r (resolved %r) evaluated to %s", expression, resolved, result)
    return result


def is_valid(expression: str | None) -> bool:
    """True if ``expression`` parses and only uses supported constructs."""
    if not expression or not expression.strip():
        return True
    try:
        tree = _parse(expression)
    except ExpressionError:
        return False
    allowed = (
        ast.Expression, ast.Constant, ast.Name, ast.Attribute, ast.Load, ast.BoolOp,
        ast.And, ast.Or, ast.UnaryOp, ast.Not, ast.USub, ast.Compare, ast.List, ast.Tuple,
        *_COMPARE,
    )  # fmt: skip
    return all(isinstance(node, allowed) for node in ast.walk(tree))
