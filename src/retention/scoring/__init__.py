"""
Risk scoring for retention.

Usage:
    from retention.scoring import RiskScoreCalculator

    calculator = RiskScoreCalculator(store)
    summary = calculator.recalculate_box("box-1")
"""

from .calculator import RiskScore, RiskScoreCalculator
from .signals import (
    MemberSignals,
    SignalAggregator,
    WindowAggregates,
    attendance_score,
    compute_trends,
    engagement_score,
    percent_change,
    performance_score,
    wellness_composite,
)

__all__ = [
    "RiskScore",
    "RiskScoreCalculator",
    "MemberSignals",
    "SignalAggregator",
    "WindowAggregates",
    "attendance_score",
    "compute_trends",
    "engagement_score",
    "percent_change",
    "performance_score",
    "wellness_composite",
]
