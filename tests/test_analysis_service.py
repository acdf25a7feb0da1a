from models.filter_models import (
    ALL_ACTIVE,
    OnlyIndices,
    StyleRule,
    active_set_from_indices,
    parse_filter,
)
from services.analysis_service import (
    UNMATCHED_RULE,
    analyze,
    is_rule_visible,
    project,
    resolve_rule,
    toggle_rule,
)
from services.filter_service import evaluate


def _rule(name, raw_filter):
    return StyleRule(name=name, filter=parse_filter(raw_filter))


ROAD = _rule("Roads", ["==", "type", "road"])
RIVER = _rule("Rivers", ["==", "type", "river"])
WIDE = _rule("Wide", [">=", "lanes", 2])

FEATURES = [{"type": "road"}, {"type": "river"}, {"type": "lake"}]


def test_analyze_counts_and_flags_unmatched():
    result = analyze([ROAD, RIVER], FEATURES)
    assert [s.count for s in result.stats] == [1, 1]
    assert result.unmatched_count == 1
    assert result.total_features == 3
    assert result.features[2]["_unmatched"] is True
    assert "_unmatched" not in result.features[0]
    assert result.referenced_fields == {"type"}


def test_analyze_does_not_touch_input_records():
    features = [{"type": "lake"}, {"type": "road", "_unmatched": True}]
    result = analyze([ROAD], features)
    assert features == [{"type": "lake"}, {"type": "road", "_unmatched": True}]
    assert result.features[0]["_unmatched"] is True
    assert "_unmatched" not in result.features[1]


def test_feature_matching_several_rules_is_counted_per_rule():
    features = [{"type": "road", "lanes": 4}, {"type": "path", "lanes": 1}]
    result = analyze([ROAD, WIDE], features)
    assert [s.count for s in result.stats] == [1, 1]
    assert result.unmatched_count == 1
    assert result.matched_count == 1


def test_every_feature_is_either_matched_or_unmatched():
    rules = [ROAD, WIDE, RIVER]
    features = [
        {"type": "road", "lanes": 3},
        {"type": "river"},
        {"type": "lake", "lanes": 5},
        {"type": "lake"},
        {},
    ]
    result = analyze(rules, features)
    matched = sum(
        1 for f in features if any(evaluate(r.filter, f) for r in rules)
    )
    assert matched + result.unmatched_count == result.total_features == 5


def test_analyze_is_idempotent():
    first = analyze([ROAD, RIVER], FEATURES)
    second = analyze([ROAD, RIVER], FEATURES)
    assert first == second


def test_analyze_empty_inputs():
    result = analyze([], [])
    assert result.stats == ()
    assert result.total_features == 0
    assert result.unmatched_count == 0
    assert result.all_matched

    no_rules = analyze([], [{"type": "road"}])
    assert no_rules.unmatched_count == 1


def test_rules_without_filter_match_all():
    result = analyze([StyleRule()], FEATURES)
    assert result.stats[0].count == 3
    assert result.stats[0].rule.name == "Untitled Rule"
    assert result.all_matched


def test_resolve_rule_returns_first_match():
    rules = [RIVER, WIDE, ROAD]
    assert resolve_rule(rules, {"type": "road", "lanes": 2}) == 1
    assert resolve_rule(rules, {"type": "road"}) == 2
    assert resolve_rule(rules, {"type": "lake"}) is None
    assert resolve_rule([], {"type": "road"}) is None


def test_project_all_active_returns_rules_unchanged():
    rules = [ROAD, RIVER, WIDE]
    assert project(rules, ALL_ACTIVE, False) == rules


def test_project_only_indices_keeps_order():
    rules = [ROAD, RIVER, WIDE]
    assert project(rules, OnlyIndices(frozenset({2, 0})), False) == [ROAD, WIDE]


def test_project_appends_single_unmatched_rule():
    rules = [ROAD, RIVER]
    for active in (ALL_ACTIVE, OnlyIndices(frozenset({1}))):
        projected = project(rules, active, True)
        assert projected[-1] is UNMATCHED_RULE
        assert projected.count(UNMATCHED_RULE) == 1
    assert evaluate(UNMATCHED_RULE.filter, {"_unmatched": True}) is True
    assert evaluate(UNMATCHED_RULE.filter, {}) is False


def test_empty_index_list_means_all_active():
    assert active_set_from_indices([]) is ALL_ACTIVE
    assert active_set_from_indices(None) is ALL_ACTIVE
    assert active_set_from_indices([1, 1, 3]) == OnlyIndices(frozenset({1, 3}))


def test_toggle_rule():
    active = toggle_rule(ALL_ACTIVE, 1)
    assert active == OnlyIndices(frozenset({1}))
    active = toggle_rule(active, 3)
    assert active == OnlyIndices(frozenset({1, 3}))
    assert is_rule_visible(active, 3)
    assert not is_rule_visible(active, 0)
    active = toggle_rule(toggle_rule(active, 1), 3)
    assert active is ALL_ACTIVE
    assert is_rule_visible(active, 0)
