"""Charging efficiency ratio and health tier."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

HEALTHY_THRESHOLD = 0.85
DEGRADED_THRESHOLD = 0.75


class HealthTier(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"


@dataclass(frozen=True)
class TierThresholds:
    """Lower bounds (inclusive) of the healthy and degraded tiers."""

    healthy: float = HEALTHY_THRESHOLD
    degraded: float = DEGRADED_THRESHOLD

    def __post_init__(self) -> None:
        if self.degraded > self.healthy:
            raise ValueError("degraded threshold must not exceed healthy threshold")


DEFAULT_THRESHOLDS = TierThresholds()


def efficiency_ratio(source_energy: float, delivered_energy: float) -> float:
    """Delivered (DC) over source (AC) energy; 0 when there is no source energy."""
    if source_energy > 0:
        return delivered_energy / source_energy
    return 0.0


def tier_for_ratio(ratio: float, thresholds: TierThresholds = DEFAULT_THRESHOLDS) -> HealthTier:
    if ratio >= thresholds.healthy:
        return HealthTier.HEALTHY
    if ratio >= thresholds.degraded:
        return HealthTier.DEGRADED
    return HealthTier.CRITICAL


def classify(
    source_energy: float,
    delivered_energy: float,
    thresholds: TierThresholds = DEFAULT_THRESHOLDS,
) -> tuple[float, HealthTier]:
    """Return the unrounded ratio and its tier.

    Zero source energy is a reportable state (ratio 0, critical), not an error.
    """
    ratio = efficiency_ratio(source_energy, delivered_energy)
    return ratio, tier_for_ratio(ratio, thresholds)
