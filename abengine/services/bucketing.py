"""Deterministic bucketing and weighted variant selection.

A subject's bucket for an experiment is a pure function of the two ids, so
the same subject lands in the same bucket in every process and after every
restart. The bucket drives both the traffic allocation gate and the choice of
variant.
"""

from typing import Sequence

from abengine.models.schemas.experiment import VariantConfig

BUCKET_COUNT = 100

_FNV_OFFSET_BASIS = 0x811C9DC5
_FNV_PRIME = 0x01000193
_UINT32 = 2**32


def fnv1a32(value: str) -> int:
    """32-bit FNV-1a over the characters of `value`."""
    hval = _FNV_OFFSET_BASIS
    for ch in value:
        hval ^= ord(ch)
        hval = (hval * _FNV_PRIME) % _UINT32
    return hval


def bucket(subject_id: str, experiment_id: str) -> int:
    """Map a (subject, experiment) pair to a stable integer in [0, 100).

    Hashing the decimal rendering of the first hash a second time spreads
    sequential ids ("user_1", "user_2", ...) across buckets.
    """
    n = fnv1a32(str(fnv1a32(f"{subject_id}_{experiment_id}")))
    return abs(n) % BUCKET_COUNT


def rescale_to_allocation(bucket_value: int, traffic_allocation: float) -> float:
    """Spread the buckets that passed the allocation gate back over [0, 100).

    Only buckets below `traffic_allocation` reach variant selection; without
    rescaling they would all fall into the first variants' ranges.
    """
    return bucket_value * BUCKET_COUNT / traffic_allocation


def select_variant(variants: Sequence[VariantConfig], bucket_value: float) -> VariantConfig:
    """Pick the variant whose cumulative weight range contains the bucket.

    Variants are walked in declaration order and weights are normalized over
    their sum, so they need not total 100.
    """
    if not variants:
        raise ValueError("Cannot select a variant from an empty variant list.")

    total_weight = sum(v.weight for v in variants)
    point = bucket_value / BUCKET_COUNT * total_weight

    cumulative_weight = 0.0
    for variant in variants:
        cumulative_weight += variant.weight
        if point < cumulative_weight:
            return variant

    # Boundaries did not cover the point (all-zero weights, float edge)
    return variants[0]
