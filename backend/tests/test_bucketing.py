"""Tests for traffic allocation and variant bucketing."""
from collections import Counter

import pytest

from splitlab.schemas.experiment import Variant
from splitlab.services.bucketing import (
    bucket_for,
    hash32,
    in_allocation,
    select_variant,
)

POPULATION = 100_000


def make_variants(*weights):
    return [
        Variant(id=f"v{i}", name=f"Variant {i}", weight=w, is_control=(i == 0))
        for i, w in enumerate(weights)
    ]


def test_hash_is_first_32_bits_of_sha256():
    """Changing the hash would re-bucket every visitor, so pin it."""
    # sha256("abc") = ba7816bf8f01cfea...
    assert hash32("abc") == 0xBA7816BF
    assert bucket_for("abc") == 0xBA7816BF % 100


def test_allocation_is_deterministic():
    decisions = [in_allocation("visitor_123", 37) for _ in range(10)]

    assert len(set(decisions)) == 1


def test_allocation_bounds():
    visitors = [f"visitor_{i}" for i in range(1000)]

    assert not any(in_allocation(v, 0) for v in visitors)
    assert all(in_allocation(v, 100) for v in visitors)


def test_allocation_matches_percentage():
    included = sum(in_allocation(f"visitor_{i}", 30) for i in range(POPULATION))

    assert abs(included / POPULATION * 100 - 30) <= 2


def test_variant_selection_is_deterministic():
    variants = make_variants(34, 33, 33)

    selected = {select_variant("visitor_123", variants).id for _ in range(10)}

    assert len(selected) == 1


@pytest.mark.parametrize("weights", [(50, 50), (50, 30, 20), (10, 90), (25, 25, 25, 25)])
def test_variant_distribution_matches_weights(weights):
    """Empirical split over many visitors is within 2 points of the weights."""
    variants = make_variants(*weights)

    counts = Counter(select_variant(f"visitor_{i}", variants).id for i in range(POPULATION))

    for variant in variants:
        share = counts[variant.id] / POPULATION * 100
        assert abs(share - variant.weight) <= 2, f"{variant.id}: {share:.2f}% vs {variant.weight}%"


def test_zero_weight_variant_is_never_selected():
    variants = make_variants(50, 0, 50)

    selected = {select_variant(f"visitor_{i}", variants).id for i in range(5000)}

    assert "v1" not in selected


def test_falls_back_to_last_variant_when_weights_fall_short():
    variants = make_variants(0, 0)

    assert select_variant("visitor_123", variants).id == "v1"


def test_empty_variant_list_raises():
    with pytest.raises(ValueError):
        select_variant("visitor_123", [])


def test_allocation_and_variant_buckets_are_independent():
    """Visitors admitted by a 50% allocation still split evenly across variants."""
    variants = make_variants(50, 50)

    admitted = [f"visitor_{i}" for i in range(POPULATION) if in_allocation(f"visitor_{i}", 50)]
    counts = Counter(select_variant(v, variants).id for v in admitted)

    share = counts["v0"] / len(admitted) * 100
    assert abs(share - 50) <= 2


def test_variant_order_defines_bucket_boundaries():
    """Reordering variants moves visitors between them."""
    a = Variant(id="a", name="A", weight=50, is_control=True)
    b = Variant(id="b", name="B", weight=50)
    visitors = [f"visitor_{i}" for i in range(100)]

    forward = [select_variant(v, [a, b]).id for v in visitors]
    reversed_order = [select_variant(v, [b, a]).id for v in visitors]

    assert forward != reversed_order
