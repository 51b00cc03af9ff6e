"""
Escalation of unaddressed alerts and escalation reporting.

Usage:
    from retention.escalation import EscalationEngine

    engine = EscalationEngine(store)
    summary = engine.process_box("box-1")
"""

from .analysis import (
    BoxEscalationSummary,
    CoachEscalationMetrics,
    EscalationAnalysis,
    EscalationAnalyzer,
    EscalationEffectiveness,
    Recommendation,
    RecommendationReport,
    analyze_escalation_effectiveness,
    format_escalation_report_markdown,
)
from .engine import Escalation, EscalationCandidate, EscalationEngine
from .rules import (
    ESCALATION_RULES,
    EscalationContext,
    EscalationDecision,
    EscalationRule,
    evaluate_escalation,
    reason_key,
    urgency_score,
)

__all__ = [
    "BoxEscalationSummary",
    "CoachEscalationMetrics",
    "ESCALATION_RULES",
    "Escalation",
    "EscalationAnalysis",
    "EscalationAnalyzer",
    "EscalationCandidate",
    "EscalationContext",
    "EscalationDecision",
    "EscalationEffectiveness",
    "EscalationEngine",
    "EscalationRule",
    "Recommendation",
    "RecommendationReport",
    "analyze_escalation_effectiveness",
    "evaluate_escalation",
    "format_escalation_report_markdown",
    "reason_key",
    "urgency_score",
]
