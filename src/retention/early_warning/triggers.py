"""
Typed trigger payloads stored on alerts.

Each alert category carries the metric that fired it plus a snapshot of
the risk score it was generated from. Payloads are versioned so the
escalation engine can tell a well-formed current payload from a legacy
or malformed one; the latter parse to None and type-specific rules then
do not fire.
"""

import logging
from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ..config import RiskLevel

logger = logging.getLogger(__name__)

TRIGGER_SCHEMA_VERSION = 1


# =============================================================================
# Snapshot
# =============================================================================


class KeyMetric(BaseModel):
    score: float
    trend: float | None = None
    days_since: int | None = None


class KeyMetrics(BaseModel):
    attendance: KeyMetric
    wellness: KeyMetric
    performance: KeyMetric
    engagement: KeyMetric


class TriggerBase(BaseModel):
    """Fields shared by every trigger payload."""
    model_config = ConfigDict(extra="ignore")

    schema_version: Literal[1] = TRIGGER_SCHEMA_VERSION
    risk_score: float = Field(description="Overall risk score at generation time")
    risk_level: RiskLevel
    churn_probability: float
    priority: int = Field(description="1 = most urgent")
    key_metrics: KeyMetrics
    factors: dict[str, Any] = Field(default_factory=dict)
    calculated_at: datetime

    def metric(self, name: str) -> float | None:
        """Look up a metric by name, falling back to the key-metric trends."""
        value = getattr(self, name, None)
        if value is None and name.endswith("_trend"):
            component = getattr(self.key_metrics, name.removesuffix("_trend"), None)
            value = component.trend if component is not None else None
        return value


# =============================================================================
# Category variants
# =============================================================================


class ExtendedAbsenceTrigger(TriggerBase):
    alert_category: Literal["extended_absence"]
    days_since_last_visit: int


class WellnessTrigger(TriggerBase):
    alert_category: Literal["wellness_crisis", "moderate_wellness_concern"]
    wellness_trend: float


class PerformanceCrashTrigger(TriggerBase):
    alert_category: Literal["performance_crash"]
    performance_trend: float


class AttendanceDeclineTrigger(TriggerBase):
    alert_category: Literal["attendance_decline"]
    attendance_trend: float


class EngagementDropTrigger(TriggerBase):
    alert_category: Literal["engagement_drop"]
    engagement_trend: float
    days_since_last_checkin: int


class PerformanceStagnationTrigger(TriggerBase):
    alert_category: Literal["performance_stagnation"]
    days_since_last_pr: int


class CheckinLapseTrigger(TriggerBase):
    alert_category: Literal["checkin_lapse"]
    days_since_last_checkin: int


TriggerData = Annotated[
    Union[
        ExtendedAbsenceTrigger,
        WellnessTrigger,
        PerformanceCrashTrigger,
        AttendanceDeclineTrigger,
        EngagementDropTrigger,
        PerformanceStagnationTrigger,
        CheckinLapseTrigger,
    ],
    Field(discriminator="alert_category"),
]

_trigger_adapter: TypeAdapter = TypeAdapter(TriggerData)


def parse_trigger_data(payload: Any) -> TriggerBase | None:
    """Parse a stored trigger payload.

    Args:
        payload: JSON-decoded payload from an alert row.

    Returns:
        The typed trigger, or None for missing, legacy or malformed data.
    """
    if payload is None:
        return None
    try:
        return _trigger_adapter.validate_python(payload)
    except ValidationError as e:
        logger.warning(f"Unrecognized trigger payload ({e.error_count()} errors); ignoring")
        return None


def build_trigger_data(category: str, fields: dict[str, Any]) -> TriggerBase:
    """Validate and build the trigger variant for a category."""
    return _trigger_adapter.validate_python({"alert_category": category, **fields})
