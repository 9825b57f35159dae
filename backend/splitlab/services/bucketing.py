"""Deterministic traffic allocation and variant bucketing.

Both decisions are a pure function of the visitor id, so a visitor lands in
the same bucket on every call and every process without a lookup.

The hash is the first 32 bits of SHA-256 over the UTF-8 input. Changing it
re-buckets every visitor of every running experiment.
"""
import hashlib
from typing import Sequence

from splitlab.schemas.experiment import Variant

BUCKET_COUNT = 100

# Appended to the visitor id for variant selection so that the allocation
# bucket and the variant bucket of a visitor are independent.
VARIANT_SALT = "variant"


def hash32(value: str) -> int:
    """Stable, well-distributed unsigned 32-bit hash of a string."""
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()
    return int(digest[:8], 16)


def bucket_for(value: str) -> int:
    """Map a string to a bucket in [0, 100)."""
    return hash32(value) % BUCKET_COUNT


def in_allocation(visitor_id: str, percentage: int) -> bool:
    """
    Decide whether a visitor is part of an experiment's traffic at all.

    Args:
        visitor_id: Stable visitor identifier
        percentage: Share of traffic included in the experiment (0-100)

    Returns:
        True if the visitor's allocation bucket is below the percentage
    """
    return bucket_for(visitor_id) < percentage


def select_variant(visitor_id: str, variants: Sequence[Variant]) -> Variant:
    """
    Deterministically pick a variant for a visitor by weight.

    Walks the variants in declared order, accumulating weights, and returns
    the first one whose running total exceeds the visitor's bucket. The
    declared order is authoritative: reordering the variants of a running
    experiment moves the bucket boundaries, so new visitors may be split
    differently (existing assignments are stored and unaffected).

    Args:
        visitor_id: Stable visitor identifier
        variants: Variants with integer weights summing to 100

    Returns:
        The selected variant

    Example:
        >>> variants = [Variant(id="a", name="A", weight=50, is_control=True),
        ...             Variant(id="b", name="B", weight=50)]
        >>> select_variant("visitor_123", variants).id in ("a", "b")
        True
    """
    if not variants:
        raise ValueError("Cannot select a variant from an empty list")

    bucket = bucket_for(f"{visitor_id}{VARIANT_SALT}")

    cumulative = 0
    for variant in variants:
        cumulative += variant.weight
        if bucket < cumulative:
            return variant

    # Only reachable if weights sum to less than 100
    return variants[-1]
