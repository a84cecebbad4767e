"""Tests for the efficiency classifier."""

from __future__ import annotations

import pytest

from fleet_energy.analytics.classifier import (
    DEGRADED_THRESHOLD,
    HEALTHY_THRESHOLD,
    HealthTier,
    TierThresholds,
    classify,
    efficiency_ratio,
    tier_for_ratio,
)


class TestEfficiencyRatio:
    def test_ratio(self) -> None:
        assert efficiency_ratio(100.0, 90.0) == pytest.approx(0.9)

    def test_zero_source_is_zero(self) -> None:
        assert efficiency_ratio(0.0, 50.0) == 0.0

    def test_delivered_above_source(self) -> None:
        assert efficiency_ratio(10.0, 12.0) == pytest.approx(1.2)


class TestTiers:
    def test_default_thresholds(self) -> None:
        assert HEALTHY_THRESHOLD == 0.85
        assert DEGRADED_THRESHOLD == 0.75

    @pytest.mark.parametrize(
        ("source", "delivered", "tier"),
        [
            (100.0, 85.0, HealthTier.HEALTHY),
            (10000.0, 8499.0, HealthTier.DEGRADED),
            (100.0, 75.0, HealthTier.DEGRADED),
            (10000.0, 7499.0, HealthTier.CRITICAL),
            (100.0, 100.0, HealthTier.HEALTHY),
            (0.0, 40.0, HealthTier.CRITICAL),
        ],
    )
    def test_boundaries(self, source: float, delivered: float, tier: HealthTier) -> None:
        _, result = classify(source, delivered)
        assert result is tier

    def test_zero_source_reports_zero_ratio(self) -> None:
        assert classify(0.0, 0.0) == (0.0, HealthTier.CRITICAL)

    def test_ratio_is_not_rounded(self) -> None:
        ratio, _ = classify(3.0, 1.0)
        assert ratio == 1.0 / 3.0

    def test_custom_thresholds(self) -> None:
        thresholds = TierThresholds(healthy=0.9, degraded=0.8)
        assert tier_for_ratio(0.85, thresholds) is HealthTier.DEGRADED
        assert tier_for_ratio(0.9, thresholds) is HealthTier.HEALTHY
        assert tier_for_ratio(0.79, thresholds) is HealthTier.CRITICAL

    def test_inverted_thresholds_rejected(self) -> None:
        with pytest.raises(ValueError):
            TierThresholds(healthy=0.7, degraded=0.8)
