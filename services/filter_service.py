"""
Filter expression evaluation, referenced-field extraction and
human-readable formatting.

All three walk the same expression tree and never raise on a shape they
do not understand: evaluation degrades to "no match", extraction to "no
fields" and formatting to a JSON dump of the raw filter.
"""
from __future__ import annotations

import json
import operator
from typing import Any, Callable, Mapping, Optional

from models.filter_models import (
    TAG_TO_SYMBOL,
    Comparison,
    EmptyFilter,
    FilterExpr,
    Logical,
    Negation,
    UnsupportedFilter,
)

LabelLookup = Callable[[str], Optional[str]]

_EQUALITY = {
    "eq": operator.eq,
    "neq": operator.ne,
}

_ORDERING = {
    "gt": operator.gt,
    "gte": operator.ge,
    "lt": operator.lt,
    "lte": operator.le,
}


# ── Evaluation ────────────────────────────────────────────────────────────────

def evaluate(expr: FilterExpr, record: Mapping[str, Any]) -> bool:
    """Return True if the record satisfies the filter."""
    if isinstance(expr, EmptyFilter):
        return True
    if isinstance(expr, Comparison):
        return _compare(expr, record)
    if isinstance(expr, Logical):
        if expr.operator == "and":
            return all(evaluate(op, record) for op in expr.operands)
        if expr.operator == "or":
            return any(evaluate(op, record) for op in expr.operands)
        return False
    if isinstance(expr, Negation):
        return not evaluate(expr.operand, record)
    return False


def _compare(expr: Comparison, record: Mapping[str, Any]) -> bool:
    actual = record.get(expr.field)
    if expr.operator in _EQUALITY:
        return bool(_EQUALITY[expr.operator](actual, expr.value))
    fn = _ORDERING.get(expr.operator)
    if fn is None:
        return False
    try:
        return bool(fn(actual, expr.value))
    except TypeError:
        # None or mixed types are not orderable
        return False


# ── Field extraction ──────────────────────────────────────────────────────────

def extract_fields(expr: FilterExpr) -> frozenset[str]:
    """Attribute names referenced anywhere in the filter."""
    if isinstance(expr, Comparison):
        return frozenset((expr.field,))
    if isinstance(expr, Logical):
        fields: set[str] = set()
        for op in expr.operands:
            fields |= extract_fields(op)
        return frozenset(fields)
    if isinstance(expr, Negation):
        return extract_fields(expr.operand)
    return frozenset()


# ── Formatting ────────────────────────────────────────────────────────────────

def format_filter(expr: FilterExpr, labels: LabelLookup) -> str:
    """
    Render a filter for display, e.g. ``type equals road and lanes > 2``.

    Nested logical groups are joined without parentheses.
    """
    if isinstance(expr, EmptyFilter):
        return ""
    if isinstance(expr, Comparison):
        return f"{expr.field} {_label(expr.operator, labels)} {_format_value(expr.value)}"
    if isinstance(expr, Logical):
        joiner = f" {_label(expr.operator, labels)} "
        return joiner.join(format_filter(op, labels) for op in expr.operands)
    if isinstance(expr, Negation):
        return f"{_label('not', labels)} ({format_filter(expr.operand, labels)})"
    if isinstance(expr, UnsupportedFilter):
        return json.dumps(expr.raw, default=str)
    return repr(expr)


def _label(tag: str, labels: LabelLookup) -> str:
    return labels(tag) or TAG_TO_SYMBOL.get(tag, tag)


def _format_value(value: Any) -> str:
    # true / false / null, not Python reprs
    if value is None or isinstance(value, bool):
        return json.dumps(value)
    return str(value)
