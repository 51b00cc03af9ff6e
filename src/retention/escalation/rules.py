"""
Escalation rule families.

Each family inspects one aspect of an unaddressed alert (age, the
member's latest risk score, their attendance gap, the alert's own trigger
metrics) and may propose a higher severity. Families are tried in order
and the first that fires decides. Severity only ever increases and
critical alerts are never escalated.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable

from ..config import AlertType, EscalationConfig, RiskLevel
from ..early_warning.triggers import TriggerBase
from ..utils import days_between

logger = logging.getLogger(__name__)


@dataclass
class EscalationContext:
    """Everything the rule families need to judge one alert."""
    alert_id: str
    alert_type: AlertType
    severity: RiskLevel
    created_at: datetime
    now: datetime
    trigger: TriggerBase | None = None
    latest_risk_score: float | None = None
    last_attended: date | None = None

    @property
    def days_open(self) -> int:
        """Whole days since the alert was created."""
        return (self.now - self.created_at).days


@dataclass(frozen=True)
class EscalationDecision:
    """A proposed severity increase."""
    rule: str
    from_severity: RiskLevel
    to_severity: RiskLevel
    reason: str


@dataclass(frozen=True)
class EscalationRule:
    """A named rule family."""
    name: str
    evaluate: Callable[[EscalationContext, EscalationConfig], EscalationDecision | None]


def reason_key(reason: str) -> str:
    """Aggregation key of an escalation reason: the text before ' - '."""
    return reason.split(" - ")[0]


# =============================================================================
# Families
# =============================================================================


def evaluate_time(ctx: EscalationContext, config: EscalationConfig) -> EscalationDecision | None:
    """Escalate alerts left unaddressed for too long.

    When several thresholds are met the one with the highest target
    severity wins.
    """
    days = ctx.days_open
    candidates = sorted(
        (
            t for t in config.time_thresholds
            if t.from_severity == ctx.severity and days >= t.days
        ),
        key=lambda t: t.to_severity.rank,
        reverse=True,
    )
    if not candidates:
        return None

    target = candidates[0].to_severity
    prefix = "Alert" if ctx.severity == RiskLevel.LOW else f"{ctx.severity.value.capitalize()} alert"
    return EscalationDecision(
        rule="time",
        from_severity=ctx.severity,
        to_severity=target,
        reason=f"{prefix} unaddressed for {days} days - escalating to {target.value}",
    )


def evaluate_risk_score(
    ctx: EscalationContext, config: EscalationConfig
) -> EscalationDecision | None:
    """Escalate when the member's latest risk score crossed a threshold."""
    if ctx.latest_risk_score is None:
        return None
    for threshold in config.risk_score_thresholds:
        if threshold.from_severity == ctx.severity and ctx.latest_risk_score >= threshold.threshold:
            return EscalationDecision(
                rule="risk_score",
                from_severity=ctx.severity,
                to_severity=threshold.to_severity,
                reason=(
                    f"Risk score increased to {ctx.latest_risk_score} - escalating from "
                    f"{ctx.severity.value} to {threshold.to_severity.value}"
                ),
            )
    return None


def evaluate_attendance(
    ctx: EscalationContext, config: EscalationConfig
) -> EscalationDecision | None:
    """Escalate members who never attended or have been absent too long."""
    target = config.attendance_escalate_to
    if ctx.last_attended is None:
        return EscalationDecision(
            rule="attendance",
            from_severity=ctx.severity,
            to_severity=target,
            reason=f"No attendance records found - escalating to {target.value}",
        )

    days_absent = days_between(ctx.now, ctx.last_attended)
    if days_absent >= config.attendance_absent_days:
        return EscalationDecision(
            rule="attendance",
            from_severity=ctx.severity,
            to_severity=target,
            reason=f"{days_absent} days since last attendance - escalating to {target.value}",
        )
    return None


def evaluate_alert_type(
    ctx: EscalationContext, config: EscalationConfig
) -> EscalationDecision | None:
    """Escalate on metrics carried in the alert's own trigger data."""
    if ctx.trigger is None:
        return None
    for rule in config.type_rules:
        if ctx.alert_type not in rule.alert_types or ctx.severity != rule.from_severity:
            continue
        value = ctx.trigger.metric(rule.metric)
        if value is None:
            continue
        fired = value > rule.value if rule.comparison == "gt" else value < rule.value
        if fired:
            return EscalationDecision(
                rule="alert_type",
                from_severity=ctx.severity,
                to_severity=rule.to_severity,
                reason=rule.reason.format(value=value),
            )
    return None


ESCALATION_RULES: tuple[EscalationRule, ...] = (
    EscalationRule("time", evaluate_time),
    EscalationRule("risk_score", evaluate_risk_score),
    EscalationRule("attendance", evaluate_attendance),
    EscalationRule("alert_type", evaluate_alert_type),
)


def evaluate_escalation(
    ctx: EscalationContext,
    config: EscalationConfig,
    rules: tuple[EscalationRule, ...] = ESCALATION_RULES,
) -> EscalationDecision | None:
    """Return the first strictly-increasing decision of the rule families."""
    if ctx.severity == RiskLevel.CRITICAL:
        return None
    for rule in rules:
        decision = rule.evaluate(ctx, config)
        if decision is not None and decision.to_severity.rank > ctx.severity.rank:
            return decision
    return None


def urgency_score(days_open: int, current: RiskLevel, target: RiskLevel) -> int:
    """Ranking score for alerts awaiting escalation."""
    return days_open * 2 + current.weight * 10 + target.weight * 15
