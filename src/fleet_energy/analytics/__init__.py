"""Windowed aggregation, efficiency classification and performance reports."""

from fleet_energy.analytics.aggregator import DailySummary, TimeWindowAggregate, WindowAggregator
from fleet_energy.analytics.classifier import HealthTier, TierThresholds, classify
from fleet_energy.analytics.correlation import MeterCorrelation, NoCorrelation, StaticCorrelation
from fleet_energy.analytics.performance import PerformanceReport, PerformanceService

__all__ = [
    "DailySummary",
    "HealthTier",
    "MeterCorrelation",
    "NoCorrelation",
    "PerformanceReport",
    "PerformanceService",
    "StaticCorrelation",
    "TierThresholds",
    "TimeWindowAggregate",
    "WindowAggregator",
    "classify",
]
