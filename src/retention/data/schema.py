"""
Table definitions for the retention engine.

Consumed ledgers (memberships, attendance, wellness check-ins, PRs,
benchmarks, interventions) are owned by the wider platform; they are
declared here so the engine can query them and so tests and local
development can create them. Produced tables (risk scores, alerts,
escalations, outcomes) are owned by this package.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)

metadata = MetaData()


# =============================================================================
# Consumed tables
# =============================================================================

box_memberships = Table(
    "box_memberships",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("box_id", String(64), nullable=False, index=True),
    Column("display_name", String(255)),
    Column("role", String(32), nullable=False),  # owner, head_coach, coach, athlete
    Column("is_active", Boolean, nullable=False, default=True),
    Column("joined_at", DateTime, nullable=False),
    Column("left_at", DateTime),
)

wod_attendance = Table(
    "wod_attendance",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("box_id", String(64), nullable=False),
    Column("membership_id", String(64), nullable=False, index=True),
    Column("attendance_date", Date, nullable=False),
    Column("status", String(32), nullable=False),  # attended, no_show, late_cancel, excused
)

athlete_wellness_checkins = Table(
    "athlete_wellness_checkins",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("box_id", String(64), nullable=False),
    Column("membership_id", String(64), nullable=False, index=True),
    Column("energy_level", Integer, nullable=False),
    Column("sleep_quality", Integer, nullable=False),
    Column("stress_level", Integer, nullable=False),
    Column("motivation_level", Integer, nullable=False),
    Column("workout_readiness", Integer, nullable=False),
    Column("checkin_date", DateTime, nullable=False),
)

athlete_prs = Table(
    "athlete_prs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("box_id", String(64), nullable=False),
    Column("membership_id", String(64), nullable=False, index=True),
    Column("movement", String(128)),
    Column("achieved_at", DateTime, nullable=False),
)

athlete_benchmarks = Table(
    "athlete_benchmarks",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("box_id", String(64), nullable=False),
    Column("membership_id", String(64), nullable=False, index=True),
    Column("benchmark", String(128)),
    Column("achieved_at", DateTime, nullable=False),
)

athlete_interventions = Table(
    "athlete_interventions",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("box_id", String(64), nullable=False, index=True),
    Column("membership_id", String(64), nullable=False),
    Column("coach_id", String(64), nullable=False),
    Column("alert_id", String(64)),
    Column("intervention_type", String(64), nullable=False),
    Column("intervention_date", DateTime, nullable=False),
    Column("outcome", String(32)),  # positive, neutral, negative
)


# =============================================================================
# Produced tables
# =============================================================================

athlete_risk_scores = Table(
    "athlete_risk_scores",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("box_id", String(64), nullable=False, index=True),
    Column("membership_id", String(64), nullable=False, unique=True),
    Column("overall_risk_score", Float, nullable=False),
    Column("risk_level", String(16), nullable=False),
    Column("churn_probability", Float, nullable=False),
    Column("attendance_score", Float, nullable=False),
    Column("wellness_score", Float, nullable=False),
    Column("performance_score", Float, nullable=False),
    Column("engagement_score", Float, nullable=False),
    Column("attendance_trend", Float),
    Column("performance_trend", Float),
    Column("engagement_trend", Float),
    Column("wellness_trend", Float),
    Column("days_since_last_visit", Integer),
    Column("days_since_last_checkin", Integer),
    Column("days_since_last_pr", Integer),
    Column("factors", JSON),
    Column("config_version", String(32)),
    Column("calculated_at", DateTime, nullable=False),
    Column("valid_until", DateTime, nullable=False, index=True),
)

athlete_alerts = Table(
    "athlete_alerts",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("box_id", String(64), nullable=False, index=True),
    Column("membership_id", String(64), nullable=False),
    Column("assigned_coach_id", String(64)),
    Column("alert_type", String(32), nullable=False),
    Column("severity", String(16), nullable=False),
    Column("title", String(255), nullable=False),
    Column("description", Text, nullable=False),
    Column("trigger_data", JSON),
    Column("suggested_actions", JSON),
    Column("status", String(16), nullable=False, default="active"),
    Column("follow_up_at", DateTime),
    Column("acknowledged_at", DateTime),
    Column("resolved_at", DateTime),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
)

# At most one active alert per (membership, alert type)
Index(
    "uq_athlete_alerts_active_type",
    athlete_alerts.c.membership_id,
    athlete_alerts.c.alert_type,
    unique=True,
    sqlite_where=athlete_alerts.c.status == "active",
    postgresql_where=athlete_alerts.c.status == "active",
)

alert_escalations = Table(
    "alert_escalations",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("alert_id", String(64), nullable=False, index=True),
    Column("from_severity", String(16), nullable=False),
    Column("to_severity", String(16), nullable=False),
    Column("reason", Text, nullable=False),
    Column("auto_escalated", Boolean, nullable=False, default=False),
    Column("escalated_at", DateTime, nullable=False, index=True),
)

intervention_outcomes = Table(
    "intervention_outcomes",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("intervention_id", String(64), nullable=False, unique=True),
    Column("box_id", String(64), nullable=False, index=True),
    Column("membership_id", String(64), nullable=False),
    Column("risk_score_change", Float),
    Column("attendance_rate_change", Float),
    Column("checkin_rate_change", Float),
    Column("wellness_score_change", Float),
    Column("pr_activity_change", Float),
    Column("overall_effectiveness", String(16), nullable=False),
    Column("effectiveness_score", Float, nullable=False),
    Column("outcome_period_start", DateTime, nullable=False),
    Column("outcome_period_end", DateTime, nullable=False),
    Column("measured_at", DateTime, nullable=False),
    Column("notes", Text),
)

CONSUMED_TABLES = (
    box_memberships,
    wod_attendance,
    athlete_wellness_checkins,
    athlete_prs,
    athlete_benchmarks,
    athlete_interventions,
)

PRODUCED_TABLES = (
    athlete_risk_scores,
    athlete_alerts,
    alert_escalations,
    intervention_outcomes,
)
