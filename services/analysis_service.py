"""
Rule statistics, click resolution and active-subset projection.

analyze() recomputes everything on each call and returns a new classified
copy of the feature records; the caller's records are never modified, so
concurrent readers never see a half-classified collection.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from models.filter_models import (
    ALL_ACTIVE,
    ActiveSet,
    AllActive,
    Comparison,
    OnlyIndices,
    StyleRule,
)
from services.filter_service import evaluate, extract_fields

logger = logging.getLogger(__name__)

UNMATCHED_FIELD = "_unmatched"

UNMATCHED_RULE = StyleRule(
    name="Unmatched",
    filter=Comparison("eq", UNMATCHED_FIELD, True),
    symbolizers=(
        {"kind": "Mark", "wellKnownName": "circle", "color": "#FF0000", "radius": 5},
        {"kind": "Line", "color": "#FF0000", "width": 2},
        {"kind": "Fill", "color": "#FF0000", "outlineColor": "#FF0000"},
    ),
)


@dataclass(frozen=True)
class RuleStats:
    index: int
    rule: StyleRule
    count: int


@dataclass(frozen=True)
class AnalysisResult:
    stats: tuple[RuleStats, ...]
    unmatched_count: int
    total_features: int
    referenced_fields: frozenset[str]
    features: tuple[dict[str, Any], ...]

    @property
    def all_matched(self) -> bool:
        return self.unmatched_count == 0

    @property
    def matched_count(self) -> int:
        return self.total_features - self.unmatched_count


# ── Statistics ────────────────────────────────────────────────────────────────

def referenced_fields(rules: Sequence[StyleRule]) -> frozenset[str]:
    fields: set[str] = set()
    for rule in rules:
        fields |= extract_fields(rule.filter)
    return frozenset(fields)


def analyze(
    rules: Sequence[StyleRule],
    features: Sequence[Mapping[str, Any]],
) -> AnalysisResult:
    """
    Count, per rule, how many features its filter matches.

    A feature may match several rules; it is counted once per matching rule.
    Features matched by no rule are counted in unmatched_count and flagged
    with ``_unmatched = True`` in the returned copy.
    """
    counts = [0] * len(rules)
    unmatched = 0
    classified: list[dict[str, Any]] = []

    for props in features:
        record = dict(props)
        matched = False
        for i, rule in enumerate(rules):
            if evaluate(rule.filter, props):
                counts[i] += 1
                matched = True
        if matched:
            record.pop(UNMATCHED_FIELD, None)
        else:
            unmatched += 1
            record[UNMATCHED_FIELD] = True
        classified.append(record)

    result = AnalysisResult(
        stats=tuple(RuleStats(i, rule, counts[i]) for i, rule in enumerate(rules)),
        unmatched_count=unmatched,
        total_features=len(classified),
        referenced_fields=referenced_fields(rules),
        features=tuple(classified),
    )
    logger.debug(
        "Analyzed %d features against %d rules: %d unmatched",
        result.total_features, len(rules), unmatched,
    )
    return result


# ── Point resolution ──────────────────────────────────────────────────────────

def resolve_rule(rules: Sequence[StyleRule], record: Mapping[str, Any]) -> int | None:
    """Index of the first rule whose filter matches the record, or None."""
    for i, rule in enumerate(rules):
        if evaluate(rule.filter, record):
            return i
    return None


# ── Active subset ─────────────────────────────────────────────────────────────

def project(
    rules: Sequence[StyleRule],
    active: ActiveSet,
    include_unmatched: bool,
) -> list[StyleRule]:
    """Rules to hand to the renderer for the current legend selection."""
    if isinstance(active, OnlyIndices):
        projected = [rule for i, rule in enumerate(rules) if i in active.indices]
    else:
        projected = list(rules)
    if include_unmatched:
        projected.append(UNMATCHED_RULE)
    return projected


def toggle_rule(active: ActiveSet, index: int) -> ActiveSet:
    """
    Flip one rule in the legend selection.

    From ALL_ACTIVE the toggled rule becomes the only selected one;
    deselecting the last selected rule goes back to ALL_ACTIVE.
    """
    if isinstance(active, AllActive):
        return OnlyIndices(frozenset((index,)))
    if index in active.indices:
        remaining = active.indices - {index}
        return OnlyIndices(remaining) if remaining else ALL_ACTIVE
    return OnlyIndices(active.indices | {index})


def is_rule_visible(active: ActiveSet, index: int) -> bool:
    return isinstance(active, AllActive) or index in active.indices
