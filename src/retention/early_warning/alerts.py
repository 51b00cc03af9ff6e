"""
Alert categories, the category decision table and alert construction.

All functions in this module are deterministic and touch no storage:
given a risk score and the alerting configuration they decide whether a
coach should be notified and what the message says.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

from ..config import (
    DEFAULT_ENGINE_CONFIG,
    AlertingConfig,
    AlertStatus,
    AlertType,
    CategoryThresholds,
    RiskLevel,
)
from ..scoring.calculator import RiskScore
from .triggers import TriggerBase, build_trigger_data, parse_trigger_data

logger = logging.getLogger(__name__)


# =============================================================================
# Decision table
# =============================================================================


def _above(value: float | None, threshold: float) -> bool:
    return value is not None and value > threshold


def _below(value: float | None, threshold: float) -> bool:
    return value is not None and value < threshold


@dataclass(frozen=True)
class CategoryRule:
    """One row of the category decision table."""
    name: str
    predicate: Callable[[RiskScore, CategoryThresholds], bool]
    category: str
    trigger_fields: tuple[str, ...]  # RiskScore attributes that fired the rule

    def matches(self, score: RiskScore, thresholds: CategoryThresholds) -> bool:
        return self.predicate(score, thresholds)


# Evaluated in order; the first match wins
CATEGORY_RULES: tuple[CategoryRule, ...] = (
    CategoryRule(
        name="long_absence",
        predicate=lambda s, t: _above(s.days_since_last_visit, t.absence_days),
        category="extended_absence",
        trigger_fields=("days_since_last_visit",),
    ),
    CategoryRule(
        name="sharp_wellness_decline",
        predicate=lambda s, t: _below(s.wellness_trend, t.wellness_crisis_trend),
        category="wellness_crisis",
        trigger_fields=("wellness_trend",),
    ),
    CategoryRule(
        name="sharp_performance_decline",
        predicate=lambda s, t: _below(s.performance_trend, t.performance_crash_trend),
        category="performance_crash",
        trigger_fields=("performance_trend",),
    ),
    CategoryRule(
        name="attendance_decline",
        predicate=lambda s, t: _below(s.attendance_trend, t.attendance_decline_trend),
        category="attendance_decline",
        trigger_fields=("attendance_trend",),
    ),
    CategoryRule(
        name="engagement_and_checkin_drop",
        predicate=lambda s, t: (
            _below(s.engagement_trend, t.engagement_drop_trend)
            and _above(s.days_since_last_checkin, t.engagement_drop_checkin_days)
        ),
        category="engagement_drop",
        trigger_fields=("engagement_trend", "days_since_last_checkin"),
    ),
    CategoryRule(
        name="moderate_wellness_decline",
        predicate=lambda s, t: _below(s.wellness_trend, t.moderate_wellness_trend),
        category="moderate_wellness_concern",
        trigger_fields=("wellness_trend",),
    ),
    CategoryRule(
        name="pr_drought",
        predicate=lambda s, t: _above(s.days_since_last_pr, t.stagnation_pr_days),
        category="performance_stagnation",
        trigger_fields=("days_since_last_pr",),
    ),
    CategoryRule(
        name="checkin_lapse",
        predicate=lambda s, t: (
            _above(s.days_since_last_checkin, t.checkin_lapse_days)
            and s.risk_level != RiskLevel.LOW
        ),
        category="checkin_lapse",
        trigger_fields=("days_since_last_checkin",),
    ),
)


def determine_category(
    score: RiskScore,
    thresholds: CategoryThresholds,
    rules: tuple[CategoryRule, ...] = CATEGORY_RULES,
) -> CategoryRule | None:
    """Return the first decision-table rule matching a risk score."""
    for rule in rules:
        if rule.matches(score, thresholds):
            return rule
    return None


# =============================================================================
# Alert
# =============================================================================


@dataclass
class Alert:
    """A coach-facing alert about one member."""
    box_id: str
    membership_id: str
    alert_type: AlertType
    severity: RiskLevel
    title: str
    description: str
    created_at: datetime
    updated_at: datetime
    status: AlertStatus = AlertStatus.ACTIVE
    category: str | None = None
    trigger_data: TriggerBase | None = None
    suggested_actions: dict[str, Any] = field(default_factory=dict)
    assigned_coach_id: str | None = None
    follow_up_at: datetime | None = None
    acknowledged_at: datetime | None = None
    resolved_at: datetime | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_row(self) -> dict[str, Any]:
        """Column values for the alerts table."""
        return {
            "id": self.id,
            "box_id": self.box_id,
            "membership_id": self.membership_id,
            "assigned_coach_id": self.assigned_coach_id,
            "alert_type": self.alert_type.value,
            "severity": self.severity.value,
            "title": self.title,
            "description": self.description,
            "trigger_data": (
                self.trigger_data.model_dump(mode="json") if self.trigger_data else None
            ),
            "suggested_actions": self.suggested_actions,
            "status": self.status.value,
            "follow_up_at": self.follow_up_at,
            "acknowledged_at": self.acknowledged_at,
            "resolved_at": self.resolved_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Alert":
        trigger = parse_trigger_data(row.get("trigger_data"))
        return cls(
            id=row["id"],
            box_id=row["box_id"],
            membership_id=row["membership_id"],
            alert_type=AlertType(row["alert_type"]),
            severity=RiskLevel(row["severity"]),
            status=AlertStatus(row["status"]),
            title=row["title"],
            description=row["description"],
            category=getattr(trigger, "alert_category", None),
            trigger_data=trigger,
            suggested_actions=row.get("suggested_actions") or {},
            assigned_coach_id=row.get("assigned_coach_id"),
            follow_up_at=row.get("follow_up_at"),
            acknowledged_at=row.get("acknowledged_at"),
            resolved_at=row.get("resolved_at"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


def render_description(template: str, score: RiskScore, trigger_fields: tuple[str, ...]) -> str:
    """Substitute {days} and {trend} from the metrics that fired the rule.

    Trends are printed as an absolute value with one decimal place.
    """
    values: dict[str, str] = {"days": "", "trend": ""}
    for name in trigger_fields:
        value = getattr(score, name)
        if value is None:
            continue
        if name.endswith("_trend"):
            values["trend"] = f"{abs(value):.1f}"
        elif name.startswith("days_since"):
            values["days"] = str(value)
    return template.format(**values)


def key_metrics_snapshot(score: RiskScore) -> dict[str, dict[str, Any]]:
    return {
        "attendance": {
            "score": score.attendance_score,
            "trend": score.attendance_trend,
            "days_since": score.days_since_last_visit,
        },
        "wellness": {
            "score": score.wellness_score,
            "trend": score.wellness_trend,
            "days_since": score.days_since_last_checkin,
        },
        "performance": {
            "score": score.performance_score,
            "trend": score.performance_trend,
            "days_since": score.days_since_last_pr,
        },
        "engagement": {
            "score": score.engagement_score,
            "trend": score.engagement_trend,
            "days_since": score.days_since_last_checkin,
        },
    }


def generate_alert(
    risk_score: RiskScore,
    config: AlertingConfig = DEFAULT_ENGINE_CONFIG.alerting,
    now: datetime | None = None,
) -> Alert | None:
    """Decide whether a risk score warrants an alert and build it.

    Args:
        risk_score: Latest risk score of a member.
        config: Alerting configuration (category templates and thresholds).
        now: Creation time. Defaults to the score's calculation time.

    Returns:
        An unsaved active Alert, or None for low-risk members and scores
        that match no category.
    """
    if risk_score.risk_level == RiskLevel.LOW:
        return None

    rule = determine_category(risk_score, config.thresholds)
    if rule is None:
        return None

    now = now or risk_score.calculated_at
    category = config.category(rule.category)

    trigger = build_trigger_data(
        category.name,
        {
            "risk_score": risk_score.overall_risk_score,
            "risk_level": risk_score.risk_level,
            "churn_probability": risk_score.churn_probability,
            "priority": category.priority,
            "key_metrics": key_metrics_snapshot(risk_score),
            "factors": risk_score.factors,
            "calculated_at": risk_score.calculated_at,
            **{name: getattr(risk_score, name) for name in rule.trigger_fields},
        },
    )

    escalation_days = category.escalation_hint_days or config.default_escalation_hint_days
    suggested_actions = {
        "immediate": list(category.actions),
        "follow_up": {
            "scheduled_days": category.follow_up_days,
            "escalation_threshold": escalation_days,
            "actions": list(config.follow_up_actions),
        },
        "metrics_to_monitor": list(config.metrics_to_monitor),
    }

    return Alert(
        box_id=risk_score.box_id,
        membership_id=risk_score.membership_id,
        alert_type=category.alert_type,
        severity=risk_score.risk_level,
        title=category.title,
        description=render_description(category.description, risk_score, rule.trigger_fields),
        category=category.name,
        trigger_data=trigger,
        suggested_actions=suggested_actions,
        follow_up_at=now + timedelta(days=category.follow_up_days),
        created_at=now,
        updated_at=now,
    )
