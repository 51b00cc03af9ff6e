"""
Configuration for the retention engine.

Centralizes every tunable the engine uses: component weights, risk-level
thresholds, alert category templates, escalation rule tables, outcome
weighting, batch sizing. All engine configuration is immutable and
versioned; components receive it at construction time so a box can run
with its own overrides without touching module state.

Process-level settings (database location, worker counts, log level) are
read from the environment via python-dotenv.
"""

import math
import os
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from dotenv import load_dotenv

from .errors import ConfigurationError

load_dotenv()


# =============================================================================
# Enumerations
# =============================================================================


class RiskLevel(Enum):
    """Risk level of a member, also used as alert severity."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Position in the ordering low < medium < high < critical."""
        return list(RiskLevel).index(self)

    @property
    def weight(self) -> int:
        """1-4 weight used for urgency scoring."""
        return self.rank + 1


class AlertType(Enum):
    """Kinds of member alerts a coach can receive."""
    RISK_THRESHOLD = "risk_threshold"
    PERFORMANCE_DECLINE = "performance_decline"
    ATTENDANCE_DROP = "attendance_drop"
    WELLNESS_CONCERN = "wellness_concern"
    CHECKIN_REMINDER = "checkin_reminder"
    MILESTONE_CELEBRATION = "milestone_celebration"
    PR_CELEBRATION = "pr_celebration"
    BENCHMARK_IMPROVEMENT = "benchmark_improvement"
    INTERVENTION_NEEDED = "intervention_needed"
    FEEDBACK_REQUEST = "feedback_request"
    # Legacy names still present on older alert rows
    CHURN_RISK = "churn_risk"
    DECLINING_PERFORMANCE = "declining_performance"


class AlertStatus(Enum):
    """Alert lifecycle states."""
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    ESCALATED = "escalated"
    SNOOZED = "snoozed"
    DISMISSED = "dismissed"


class MembershipRole(Enum):
    """Role of a membership within a box."""
    OWNER = "owner"
    HEAD_COACH = "head_coach"
    COACH = "coach"
    ATHLETE = "athlete"


COACHING_ROLES = (MembershipRole.OWNER, MembershipRole.HEAD_COACH, MembershipRole.COACH)
SENIOR_COACHING_ROLES = (MembershipRole.OWNER, MembershipRole.HEAD_COACH)


class Effectiveness(Enum):
    """Classification of a measured intervention outcome."""
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


# =============================================================================
# Risk scoring
# =============================================================================


@dataclass(frozen=True)
class RiskWeights:
    """Component weights for the composite risk score. Must sum to 1.0."""
    attendance: float = 0.30
    wellness: float = 0.25
    performance: float = 0.20
    engagement: float = 0.25

    def __post_init__(self) -> None:
        if not math.isclose(self.total, 1.0, abs_tol=1e-9):
            raise ConfigurationError(
                f"Risk component weights must sum to 1.0, got {self.total:.4f}"
            )

    @property
    def total(self) -> float:
        return self.attendance + self.wellness + self.performance + self.engagement

    def as_dict(self) -> dict[str, float]:
        return {
            "attendance": self.attendance,
            "wellness": self.wellness,
            "performance": self.performance,
            "engagement": self.engagement,
        }


@dataclass(frozen=True)
class ScoringConfig:
    """
    Configuration for the risk score calculator and its box-wide sweep.

    Risk level thresholds: <25 low, <50 medium, <75 high, >=75 critical.
    """
    lookback_days: int = 30
    weights: RiskWeights = field(default_factory=RiskWeights)

    medium_risk_threshold: float = 25.0
    high_risk_threshold: float = 50.0
    critical_risk_threshold: float = 75.0

    churn_probability_cap: float = 0.95
    validity_days: int = 7

    # Trend denominators floor: rates are fractions, counts are integers
    rate_epsilon: float = 0.01
    count_epsilon: float = 1.0

    wellness_default: float = 50.0

    # Sweep behavior
    batch_size: int = 10
    batch_pause_seconds: float = 0.1
    max_workers: int = 10

    def __post_init__(self) -> None:
        if not (
            0 < self.medium_risk_threshold
            < self.high_risk_threshold
            < self.critical_risk_threshold
            <= 100
        ):
            raise ConfigurationError("Risk level thresholds must be increasing within (0, 100]")

    def classify_risk(self, score: float) -> RiskLevel:
        """Map an overall risk score onto a risk level."""
        if score >= self.critical_risk_threshold:
            return RiskLevel.CRITICAL
        elif score >= self.high_risk_threshold:
            return RiskLevel.HIGH
        elif score >= self.medium_risk_threshold:
            return RiskLevel.MEDIUM
        else:
            return RiskLevel.LOW


# =============================================================================
# Alert generation
# =============================================================================


@dataclass(frozen=True)
class AlertCategoryConfig:
    """Static template for one alert category."""
    name: str
    alert_type: AlertType
    priority: int
    title: str
    description: str  # may contain {days} and {trend}
    actions: tuple[str, ...]
    follow_up_days: int = 7
    escalation_hint_days: int | None = None


@dataclass(frozen=True)
class CategoryThresholds:
    """Numeric triggers of the category decision table."""
    absence_days: int = 14
    wellness_crisis_trend: float = -25.0
    performance_crash_trend: float = -30.0
    attendance_decline_trend: float = -20.0
    engagement_drop_trend: float = -30.0
    engagement_drop_checkin_days: int = 7
    moderate_wellness_trend: float = -15.0
    stagnation_pr_days: int = 60
    checkin_lapse_days: int = 10


DEFAULT_ALERT_CATEGORIES: tuple[AlertCategoryConfig, ...] = (
    AlertCategoryConfig(
        name="extended_absence",
        alert_type=AlertType.RISK_THRESHOLD,
        priority=1,
        title="Extended Absence from Box",
        description=(
            "Athlete has not attended sessions for {days} days. "
            "Immediate outreach recommended to prevent churn."
        ),
        actions=(
            "Call athlete within 24 hours",
            "Send personalized message asking about their absence",
            "Offer flexible scheduling or makeup sessions",
            "Check if there are any personal/health issues affecting attendance",
        ),
        follow_up_days=7,
        escalation_hint_days=3,
    ),
    AlertCategoryConfig(
        name="wellness_crisis",
        alert_type=AlertType.WELLNESS_CONCERN,
        priority=1,
        title="Significant Wellness Decline",
        description=(
            "Athlete's wellness metrics show concerning decline ({trend}% drop). "
            "May indicate burnout or personal issues."
        ),
        actions=(
            "Schedule immediate one-on-one check-in",
            "Review recent training load and suggest modifications",
            "Discuss stress levels and potential external factors",
            "Consider recommending recovery-focused programming",
        ),
        follow_up_days=3,
        escalation_hint_days=2,
    ),
    AlertCategoryConfig(
        name="performance_crash",
        alert_type=AlertType.PERFORMANCE_DECLINE,
        priority=1,
        title="Severe Performance Decline",
        description=(
            "Athlete's performance metrics dropped by {trend}%. "
            "This may indicate overtraining or underlying issues."
        ),
        actions=(
            "Review recent training intensity and volume",
            "Schedule movement assessment or form check",
            "Discuss nutrition, sleep, and recovery habits",
            "Consider deload week or modified programming",
        ),
        follow_up_days=5,
        escalation_hint_days=5,
    ),
    AlertCategoryConfig(
        name="attendance_decline",
        alert_type=AlertType.ATTENDANCE_DROP,
        priority=2,
        title="Attendance Pattern Change",
        description=(
            "Athlete's attendance dropped {trend}% from their typical pattern. "
            "Early intervention can prevent further decline."
        ),
        actions=(
            "Send friendly check-in message",
            "Review their schedule preferences and barriers",
            "Offer alternative class times or formats",
            "Invite to upcoming social events or challenges",
        ),
        follow_up_days=10,
        escalation_hint_days=7,
    ),
    AlertCategoryConfig(
        name="engagement_drop",
        alert_type=AlertType.CHECKIN_REMINDER,
        priority=2,
        title="Decreased Engagement",
        description=(
            "Athlete hasn't completed wellness check-ins for {days} days. "
            "Their engagement score declined {trend}%."
        ),
        actions=(
            "Remind about wellness check-in importance",
            "Simplify check-in process or offer assistance",
            "Encourage participation in box community activities",
            "Check if they understand the value of tracking wellness",
        ),
        follow_up_days=14,
        escalation_hint_days=10,
    ),
    AlertCategoryConfig(
        name="moderate_wellness_concern",
        alert_type=AlertType.WELLNESS_CONCERN,
        priority=2,
        title="Wellness Metrics Declining",
        description=(
            "Athlete's wellness scores show concerning trends ({trend}% drop). "
            "Stress levels increased while energy decreased."
        ),
        actions=(
            "Check in about work/life balance",
            "Suggest stress management techniques",
            "Review sleep hygiene and recovery practices",
            "Offer modified workout intensity options",
        ),
        follow_up_days=7,
        escalation_hint_days=14,
    ),
    AlertCategoryConfig(
        name="performance_stagnation",
        alert_type=AlertType.PERFORMANCE_DECLINE,
        priority=3,
        title="Performance Plateau",
        description=(
            "Athlete hasn't achieved PRs in {days} days. "
            "May benefit from program adjustments."
        ),
        actions=(
            "Review current programming effectiveness",
            "Set new movement-specific goals",
            "Introduce skill work or accessory movements",
            "Plan benchmark retest to track progress",
        ),
        follow_up_days=21,
    ),
    AlertCategoryConfig(
        name="checkin_lapse",
        alert_type=AlertType.CHECKIN_REMINDER,
        priority=3,
        title="Missed Recent Check-ins",
        description=(
            "Athlete hasn't submitted wellness data in {days} days. "
            "Gentle reminder may help re-establish routine."
        ),
        actions=(
            "Send gentle reminder about wellness tracking",
            "Share benefits of consistent check-ins",
            "Offer to help troubleshoot any app issues",
            "Recognize their previous consistency",
        ),
        follow_up_days=7,
    ),
)


@dataclass(frozen=True)
class AlertingConfig:
    """Configuration for the alert generator."""
    categories: tuple[AlertCategoryConfig, ...] = DEFAULT_ALERT_CATEGORIES
    thresholds: CategoryThresholds = field(default_factory=CategoryThresholds)

    default_follow_up_days: int = 7
    default_escalation_hint_days: int = 7
    follow_up_actions: tuple[str, ...] = (
        "Check if initial outreach was successful",
        "Assess if athlete situation has improved",
        "Consider escalating to head coach if no improvement",
    )
    metrics_to_monitor: tuple[str, ...] = (
        "Attendance rate changes",
        "Wellness check-in frequency",
        "Response to coach communication",
        "Performance metrics improvements",
    )

    # Insert sweep behavior
    insert_batch_size: int = 20
    insert_pause_seconds: float = 0.05
    max_workers: int = 5

    def category(self, name: str) -> AlertCategoryConfig:
        """Look up a category template by name."""
        for category in self.categories:
            if category.name == name:
                return category
        raise KeyError(f"Unknown alert category: {name}")


# =============================================================================
# Escalation
# =============================================================================


@dataclass(frozen=True)
class TimeThreshold:
    """Escalate `from_severity` to `to_severity` once an alert is `days` old."""
    from_severity: RiskLevel
    days: int
    to_severity: RiskLevel


@dataclass(frozen=True)
class RiskScoreThreshold:
    """Escalate `from_severity` when the latest risk score reaches `threshold`."""
    from_severity: RiskLevel
    threshold: float
    to_severity: RiskLevel


@dataclass(frozen=True)
class TypeRuleConfig:
    """Alert-type-specific escalation on a trigger-data metric."""
    alert_types: tuple[AlertType, ...]
    from_severity: RiskLevel
    metric: str  # churn_probability, wellness_trend, performance_trend
    comparison: str  # "gt" or "lt"
    value: float
    to_severity: RiskLevel
    reason: str  # may contain {value}


DEFAULT_TIME_THRESHOLDS: tuple[TimeThreshold, ...] = (
    TimeThreshold(RiskLevel.LOW, 14, RiskLevel.CRITICAL),
    TimeThreshold(RiskLevel.LOW, 7, RiskLevel.HIGH),
    TimeThreshold(RiskLevel.LOW, 3, RiskLevel.MEDIUM),
    TimeThreshold(RiskLevel.MEDIUM, 7, RiskLevel.CRITICAL),
    TimeThreshold(RiskLevel.MEDIUM, 3, RiskLevel.HIGH),
    TimeThreshold(RiskLevel.HIGH, 3, RiskLevel.CRITICAL),
)

DEFAULT_RISK_SCORE_THRESHOLDS: tuple[RiskScoreThreshold, ...] = (
    RiskScoreThreshold(RiskLevel.LOW, 85.0, RiskLevel.CRITICAL),
    RiskScoreThreshold(RiskLevel.MEDIUM, 75.0, RiskLevel.HIGH),
    RiskScoreThreshold(RiskLevel.HIGH, 90.0, RiskLevel.CRITICAL),
)

DEFAULT_TYPE_RULES: tuple[TypeRuleConfig, ...] = (
    TypeRuleConfig(
        alert_types=(AlertType.CHURN_RISK, AlertType.RISK_THRESHOLD),
        from_severity=RiskLevel.HIGH,
        metric="churn_probability",
        comparison="gt",
        value=0.8,
        to_severity=RiskLevel.CRITICAL,
        reason="Churn probability increased to {value:.1%}",
    ),
    TypeRuleConfig(
        alert_types=(AlertType.WELLNESS_CONCERN,),
        from_severity=RiskLevel.MEDIUM,
        metric="wellness_trend",
        comparison="lt",
        value=-40.0,
        to_severity=RiskLevel.CRITICAL,
        reason="Wellness trend severely declined to {value}%",
    ),
    TypeRuleConfig(
        alert_types=(AlertType.DECLINING_PERFORMANCE, AlertType.PERFORMANCE_DECLINE),
        from_severity=RiskLevel.MEDIUM,
        metric="performance_trend",
        comparison="lt",
        value=-50.0,
        to_severity=RiskLevel.HIGH,
        reason="Performance decline worsened to {value}%",
    ),
)


@dataclass(frozen=True)
class EscalationConfig:
    """Configuration for the escalation rule engine and its analysis."""
    time_thresholds: tuple[TimeThreshold, ...] = DEFAULT_TIME_THRESHOLDS
    risk_score_thresholds: tuple[RiskScoreThreshold, ...] = DEFAULT_RISK_SCORE_THRESHOLDS
    attendance_absent_days: int = 14
    attendance_escalate_to: RiskLevel = RiskLevel.CRITICAL
    type_rules: tuple[TypeRuleConfig, ...] = DEFAULT_TYPE_RULES

    cooldown_hours: int = 24

    # Effectiveness feedback
    intervention_window_days: int = 7
    urgent_alerts_limit: int = 10

    # Recommendation triggers
    high_auto_escalation_rate: float = 70.0
    slow_escalation_hours: float = 48.0
    low_efficiency_rate: float = 50.0
    workload_spread_threshold: float = 10.0
    dominant_reason_share: float = 0.4


# =============================================================================
# Intervention outcomes
# =============================================================================


@dataclass(frozen=True)
class OutcomeWeights:
    """Weights of each delta in the effectiveness score. Must sum to 1.0."""
    risk: float = 0.30
    attendance: float = 0.25
    checkin: float = 0.20
    wellness: float = 0.15
    performance: float = 0.10

    def __post_init__(self) -> None:
        total = self.risk + self.attendance + self.checkin + self.wellness + self.performance
        if not math.isclose(total, 1.0, abs_tol=1e-9):
            raise ConfigurationError(
                f"Outcome weights must sum to 1.0, got {total:.4f}"
            )


@dataclass(frozen=True)
class OutcomeConfig:
    """Configuration for intervention outcome measurement."""
    measurement_period_days: int = 30
    pre_window_days: int = 30
    measurement_delay_days: int = 30
    weights: OutcomeWeights = field(default_factory=OutcomeWeights)
    pr_change_scale: float = 10.0
    baseline_score: float = 50.0
    positive_threshold: float = 60.0
    neutral_threshold: float = 40.0
    wellness_default: float = 50.0
    summary_lookback_days: int = 90
    min_outcomes_for_ranking: int = 3

    # Measurement sweep behavior
    batch_size: int = 10
    batch_pause_seconds: float = 0.1
    max_workers: int = 5

    def classify(self, score: float) -> Effectiveness:
        """Classify an effectiveness score."""
        if score >= self.positive_threshold:
            return Effectiveness.POSITIVE
        elif score >= self.neutral_threshold:
            return Effectiveness.NEUTRAL
        else:
            return Effectiveness.NEGATIVE


# =============================================================================
# Engine
# =============================================================================


@dataclass(frozen=True)
class EngineConfig:
    """Versioned bundle of all component configurations."""
    version: str = "2024.1"
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    alerting: AlertingConfig = field(default_factory=AlertingConfig)
    escalation: EscalationConfig = field(default_factory=EscalationConfig)
    outcomes: OutcomeConfig = field(default_factory=OutcomeConfig)

    def with_overrides(self, version: str | None = None, **sections: Any) -> "EngineConfig":
        """Return a copy with whole sections or the version replaced.

        Example:
            >>> box_config = DEFAULT_ENGINE_CONFIG.with_overrides(
            ...     version="2024.1-box42",
            ...     scoring=replace(DEFAULT_ENGINE_CONFIG.scoring, lookback_days=14),
            ... )
        """
        changes: dict[str, Any] = dict(sections)
        if version is not None:
            changes["version"] = version
        return replace(self, **changes)


DEFAULT_ENGINE_CONFIG = EngineConfig()


# =============================================================================
# Process settings
# =============================================================================


@dataclass
class Settings:
    """Process-level settings read from the environment."""
    database_url: str = ""
    lookback_days: int = 30
    max_workers: int = 10
    log_level: str = "INFO"
    seed: int | None = None


def get_database_url() -> str:
    """Get database URL from environment variables."""
    database_url = os.getenv("DATABASE_URL")
    if database_url:
        return database_url

    host = os.getenv("DB_HOST", "localhost")
    port = os.getenv("DB_PORT", "5432")
    name = os.getenv("DB_NAME", "retention_dev")
    user = os.getenv("DB_USER", "postgres")
    password = os.getenv("DB_PASSWORD", "password")

    return f"postgresql://{user}:{password}@{host}:{port}/{name}"


def get_settings() -> Settings:
    """Load process settings from environment variables."""
    seed = os.getenv("RETENTION_SEED")
    return Settings(
        database_url=get_database_url(),
        lookback_days=int(os.getenv("RETENTION_LOOKBACK_DAYS", "30")),
        max_workers=int(os.getenv("RETENTION_MAX_WORKERS", "10")),
        log_level=os.getenv("RETENTION_LOG_LEVEL", "INFO").upper(),
        seed=int(seed) if seed else None,
    )


def engine_config_from_settings(settings: Settings) -> EngineConfig:
    """Apply environment-level overrides to the default engine config."""
    scoring = replace(
        DEFAULT_ENGINE_CONFIG.scoring,
        lookback_days=settings.lookback_days,
        max_workers=settings.max_workers,
    )
    return DEFAULT_ENGINE_CONFIG.with_overrides(scoring=scoring)
