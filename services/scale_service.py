"""
Scale-denominator bucketing for the legend.

Buckets are keyed by their ScaleRange; the "1:1000 - 1:5000" style label
is only built for display and never parsed back.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from models.filter_models import GENERAL, ScaleRange, StyleRule

# OGC standardized rendering pixel (0.28 mm) expressed as DPI
OGC_DPI = 90.714
INCHES_PER_METRE = 39.3701


@dataclass
class ScaleBucket:
    range: ScaleRange
    rule_indices: list[int] = field(default_factory=list)


def bucket_key(rule: StyleRule) -> ScaleRange:
    if rule.scale_range is None or rule.scale_range.is_general:
        return GENERAL
    return rule.scale_range


def group_by_scale(rules: Sequence[StyleRule]) -> dict[ScaleRange, ScaleBucket]:
    """Group rule indices by scale range, in order of first occurrence."""
    buckets: dict[ScaleRange, ScaleBucket] = {}
    for index, rule in enumerate(rules):
        key = bucket_key(rule)
        if key not in buckets:
            buckets[key] = ScaleBucket(range=key)
        buckets[key].rule_indices.append(index)
    return buckets


def is_active(key: ScaleRange, current_scale: float | None) -> bool:
    if key.is_general:
        return True
    if current_scale is None:
        return False
    if key.min is not None and key.max is not None:
        return key.min <= current_scale <= key.max
    if key.min is not None:
        return current_scale > key.min
    return current_scale < key.max


def bucket_label(key: ScaleRange) -> str:
    if key.is_general:
        return "General"
    if key.min is not None and key.max is not None:
        return f"1:{_fmt(key.min)} - 1:{_fmt(key.max)}"
    if key.min is not None:
        return f"> 1:{_fmt(key.min)}"
    return f"< 1:{_fmt(key.max)}"


def _fmt(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return str(value)


def scale_from_resolution(resolution: float) -> float:
    """Scale denominator for a view resolution given in metres per pixel."""
    return resolution * INCHES_PER_METRE * OGC_DPI
