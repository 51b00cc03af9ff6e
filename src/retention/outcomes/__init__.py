"""
Intervention outcome measurement.
"""

from .tracker import (
    EffectivenessSummary,
    InterventionOutcome,
    OutcomeTracker,
    PeriodMetrics,
    score_effectiveness,
)

__all__ = [
    "EffectivenessSummary",
    "InterventionOutcome",
    "OutcomeTracker",
    "PeriodMetrics",
    "score_effectiveness",
]
