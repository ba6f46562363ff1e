"""Stability classification: metric value -> StabilityTier.

Bands are half-open and checked in ascending order; first match wins.
Anything at or above the last lower bound is RELEASE, anything below the
first band (negative values) is ALPHA, so every real number maps to
exactly one tier.
"""
from __future__ import annotations

from numbers import Real
from typing import Union

from sinphase.models import SinphaseMetric, StabilityTier

# (upper bound, tier) for [lower, upper) bands; RELEASE is open-ended.
TIER_BANDS = (
    (0.2, StabilityTier.ALPHA),
    (0.4, StabilityTier.BETA),
    (0.6, StabilityTier.RC),
    (0.8, StabilityTier.STABLE),
)


def classify(metric: Union[Real, SinphaseMetric]) -> StabilityTier:
    """Map a sinphase value to its stability tier."""
    value = metric.value if isinstance(metric, SinphaseMetric) else float(metric)
    for upper, tier in TIER_BANDS:
        if value < upper:
            return tier
    return StabilityTier.RELEASE
