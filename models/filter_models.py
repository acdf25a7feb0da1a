"""
Style rule data model: filter expressions, scale ranges, rules and the
active-rule selection used when projecting a style for rendering.

Filter expressions are a closed set of frozen dataclasses. The geostyler
array form (``["==", "type", "road"]``) is only an interchange format and
is converted at the edges with parse_filter() / to_geostyler().
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Union


# ── Operators ─────────────────────────────────────────────────────────────────

COMPARISON_OPERATORS = ("eq", "neq", "gt", "gte", "lt", "lte")
LOGICAL_OPERATORS = ("and", "or")

# geostyler symbol -> operator tag
SYMBOL_TO_TAG = {
    "==": "eq",
    "!=": "neq",
    ">": "gt",
    ">=": "gte",
    "<": "lt",
    "<=": "lte",
    "&&": "and",
    "||": "or",
    "!": "not",
}
TAG_TO_SYMBOL = {tag: symbol for symbol, tag in SYMBOL_TO_TAG.items()}


# ── Literal values ────────────────────────────────────────────────────────────

_LEADING_ZERO = re.compile(r"^[-+]?0\d")


def parse_number(text: str) -> int | float | None:
    """
    Numeric value of a literal or attribute string, or None when it should
    stay a string.

    Codes with leading zeros ("08001") and non-finite spellings ("NaN",
    "inf") are not numbers. Integers must print back to the same text.
    """
    s = text.strip()
    try:
        n = int(s)
    except ValueError:
        pass
    else:
        return n if str(n) == s else None
    try:
        f = float(s)
    except ValueError:
        return None
    if not math.isfinite(f) or _LEADING_ZERO.match(s):
        return None
    return f


# ── Filter expressions ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Comparison:
    operator: str
    field: str
    value: Any

    def __post_init__(self) -> None:
        if not isinstance(self.field, str) or not self.field:
            raise ValueError("Comparison field must be a non-empty string")


@dataclass(frozen=True)
class Logical:
    operator: str
    operands: tuple["FilterExpr", ...]

    def __post_init__(self) -> None:
        if not self.operands:
            raise ValueError("Logical filter needs at least one operand")


@dataclass(frozen=True)
class Negation:
    operand: "FilterExpr"


@dataclass(frozen=True)
class EmptyFilter:
    """No filter: matches every record."""


@dataclass(frozen=True)
class UnsupportedFilter:
    """A filter shape the engine does not understand; matches nothing."""
    raw: Any


EMPTY = EmptyFilter()

FilterExpr = Union[Comparison, Logical, Negation, EmptyFilter, UnsupportedFilter]


def parse_filter(raw: Any) -> FilterExpr:
    """Convert a geostyler filter array into a FilterExpr. Never raises."""
    if raw is None:
        return EMPTY
    if not isinstance(raw, (list, tuple)) or not raw:
        return UnsupportedFilter(raw)

    tag = SYMBOL_TO_TAG.get(raw[0]) if isinstance(raw[0], str) else None
    if tag in COMPARISON_OPERATORS:
        if len(raw) != 3 or not isinstance(raw[1], str) or not raw[1]:
            return UnsupportedFilter(raw)
        return Comparison(tag, raw[1], raw[2])
    if tag in LOGICAL_OPERATORS:
        if len(raw) < 2:
            return UnsupportedFilter(raw)
        return Logical(tag, tuple(parse_filter(child) for child in raw[1:]))
    if tag == "not":
        if len(raw) != 2:
            return UnsupportedFilter(raw)
        return Negation(parse_filter(raw[1]))
    return UnsupportedFilter(raw)


def to_geostyler(expr: FilterExpr) -> Any:
    """Inverse of parse_filter(); used for API payloads and the renderer."""
    if isinstance(expr, Comparison):
        return [TAG_TO_SYMBOL.get(expr.operator, expr.operator), expr.field, expr.value]
    if isinstance(expr, Logical):
        return [TAG_TO_SYMBOL.get(expr.operator, expr.operator)] + [
            to_geostyler(op) for op in expr.operands
        ]
    if isinstance(expr, Negation):
        return ["!", to_geostyler(expr.operand)]
    if isinstance(expr, UnsupportedFilter):
        return expr.raw
    return None


# ── Scale ranges ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ScaleRange:
    """Scale-denominator validity range; both bounds optional."""
    min: float | None = None
    max: float | None = None

    @property
    def is_general(self) -> bool:
        return self.min is None and self.max is None


GENERAL = ScaleRange()


# ── Style rules ───────────────────────────────────────────────────────────────

DEFAULT_RULE_NAME = "Untitled Rule"


@dataclass(frozen=True)
class StyleRule:
    name: str = DEFAULT_RULE_NAME
    filter: FilterExpr = EMPTY
    symbolizers: tuple[dict[str, Any], ...] = field(default_factory=tuple)
    scale_range: ScaleRange | None = None


# ── Active rule selection ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class AllActive:
    """Every rule is shown."""


@dataclass(frozen=True)
class OnlyIndices:
    indices: frozenset[int]


ALL_ACTIVE = AllActive()

ActiveSet = Union[AllActive, OnlyIndices]


def active_set_from_indices(indices: Iterable[int] | None) -> ActiveSet:
    """The client sends a plain list where empty means "no restriction"."""
    indices = frozenset(indices or ())
    return OnlyIndices(indices) if indices else ALL_ACTIVE


def active_indices(active: ActiveSet) -> list[int]:
    """Inverse of active_set_from_indices(), sorted for storage."""
    if isinstance(active, OnlyIndices):
        return sorted(active.indices)
    return []
