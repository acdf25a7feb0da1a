import pytest

from models.filter_models import GENERAL, ScaleRange, StyleRule
from services.scale_service import (
    bucket_label,
    group_by_scale,
    is_active,
    scale_from_resolution,
)


def _rule(name, **bounds):
    return StyleRule(name=name, scale_range=ScaleRange(**bounds) if bounds else None)


def test_closed_range_is_inclusive():
    key = ScaleRange(1000, 5000)
    assert is_active(key, 3000)
    assert is_active(key, 1000)
    assert is_active(key, 5000)
    assert not is_active(key, 6000)
    assert not is_active(key, 999)


def test_open_ranges():
    assert is_active(ScaleRange(min=1000), 1001)
    assert not is_active(ScaleRange(min=1000), 1000)
    assert is_active(ScaleRange(max=5000), 4999)
    assert not is_active(ScaleRange(max=5000), 5000)


def test_general_bucket_is_always_active():
    assert is_active(GENERAL, None)
    assert is_active(GENERAL, 1e9)
    assert not is_active(ScaleRange(1000, 5000), None)


def test_group_by_scale_follows_first_occurrence():
    rules = [
        _rule("a", min=1000, max=5000),
        _rule("b"),
        _rule("c", min=1000, max=5000),
        _rule("d", max=500),
        _rule("e"),
        StyleRule(name="f", scale_range=ScaleRange()),
    ]
    buckets = group_by_scale(rules)
    assert list(buckets) == [ScaleRange(1000, 5000), GENERAL, ScaleRange(max=500)]
    assert buckets[ScaleRange(1000, 5000)].rule_indices == [0, 2]
    assert buckets[GENERAL].rule_indices == [1, 4, 5]
    assert buckets[ScaleRange(max=500)].rule_indices == [3]


def test_bucket_keys_compare_structurally():
    assert ScaleRange(1000.0, 5000.0) == ScaleRange(1000, 5000)
    assert len(group_by_scale([_rule("a", min=1000.0), _rule("b", min=1000)])) == 1


@pytest.mark.parametrize(
    "key, label",
    [
        (GENERAL, "General"),
        (ScaleRange(1000, 5000), "1:1000 - 1:5000"),
        (ScaleRange(min=2500.0), "> 1:2500"),
        (ScaleRange(max=1500.5), "< 1:1500.5"),
    ],
)
def test_bucket_label(key, label):
    assert bucket_label(key) == label


def test_scale_from_resolution():
    assert scale_from_resolution(1.0) == pytest.approx(3571.42, rel=1e-5)
