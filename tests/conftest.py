"""
Shared test fixtures for the retention test suite.

Provides a SQLite-backed store with the full schema created, a seeding
helper for memberships and activity ledgers, a fixed reference time and
an engine configuration without inter-batch pauses.
"""

from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from retention.config import DEFAULT_ENGINE_CONFIG, EngineConfig, RiskLevel
from retention.data.database import get_engine
from retention.data.schema import (
    athlete_benchmarks,
    athlete_interventions,
    athlete_prs,
    athlete_wellness_checkins,
    box_memberships,
    intervention_outcomes,
    metadata,
    wod_attendance,
)
from retention.data.store import RetentionStore
from retention.scoring.calculator import RiskScore

NOW = datetime(2024, 6, 1, 12, 0, 0)


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def now() -> datetime:
    """Fixed reference time shared by a test and its seed data."""
    return NOW


@pytest.fixture
def engine(tmp_path):
    """SQLite file database with all tables created."""
    db_engine = get_engine(f"sqlite:///{tmp_path / 'retention.db'}")
    metadata.create_all(db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture
def store(engine) -> RetentionStore:
    return RetentionStore(engine)


@pytest.fixture
def fast_config() -> EngineConfig:
    """Default engine configuration with every inter-batch pause removed."""
    cfg = DEFAULT_ENGINE_CONFIG
    return cfg.with_overrides(
        version="test",
        scoring=replace(cfg.scoring, batch_pause_seconds=0.0),
        alerting=replace(cfg.alerting, insert_pause_seconds=0.0),
        outcomes=replace(cfg.outcomes, batch_pause_seconds=0.0),
    )


# =============================================================================
# Seeding
# =============================================================================


class Seeder:
    """Writes memberships and ledger rows relative to a reference time."""

    def __init__(self, engine, now: datetime):
        self.engine = engine
        self.now = now

    def _insert(self, table, **values):
        with self.engine.begin() as conn:
            conn.execute(table.insert().values(**values))

    def member(
        self,
        membership_id: str,
        box_id: str = "box-1",
        role: str = "athlete",
        joined_days_ago: int = 365,
        is_active: bool = True,
        name: str | None = None,
    ) -> str:
        self._insert(
            box_memberships,
            id=membership_id,
            box_id=box_id,
            display_name=name or membership_id,
            role=role,
            is_active=is_active,
            joined_at=self.now - timedelta(days=joined_days_ago),
        )
        return membership_id

    def attendance(
        self,
        membership_id: str,
        days_ago: int,
        status: str = "attended",
        box_id: str = "box-1",
    ) -> None:
        self._insert(
            wod_attendance,
            box_id=box_id,
            membership_id=membership_id,
            attendance_date=(self.now - timedelta(days=days_ago)).date(),
            status=status,
        )

    def checkin(
        self,
        membership_id: str,
        days_ago: int,
        energy: int = 7,
        sleep: int = 7,
        stress: int = 3,
        motivation: int = 7,
        readiness: int = 7,
        box_id: str = "box-1",
    ) -> None:
        self._insert(
            athlete_wellness_checkins,
            box_id=box_id,
            membership_id=membership_id,
            energy_level=energy,
            sleep_quality=sleep,
            stress_level=stress,
            motivation_level=motivation,
            workout_readiness=readiness,
            checkin_date=self.now - timedelta(days=days_ago),
        )

    def pr(self, membership_id: str, days_ago: int, box_id: str = "box-1") -> None:
        self._insert(
            athlete_prs,
            box_id=box_id,
            membership_id=membership_id,
            movement="back_squat",
            achieved_at=self.now - timedelta(days=days_ago),
        )

    def benchmark(self, membership_id: str, days_ago: int, box_id: str = "box-1") -> None:
        self._insert(
            athlete_benchmarks,
            box_id=box_id,
            membership_id=membership_id,
            benchmark="fran",
            achieved_at=self.now - timedelta(days=days_ago),
        )

    def intervention(
        self,
        intervention_id: str,
        membership_id: str,
        coach_id: str = "coach-1",
        days_ago: int = 40,
        intervention_type: str = "phone_call",
        outcome: str | None = None,
        alert_id: str | None = None,
        box_id: str = "box-1",
    ) -> str:
        self._insert(
            athlete_interventions,
            id=intervention_id,
            box_id=box_id,
            membership_id=membership_id,
            coach_id=coach_id,
            alert_id=alert_id,
            intervention_type=intervention_type,
            intervention_date=self.now - timedelta(days=days_ago),
            outcome=outcome,
        )
        return intervention_id

    def outcome(
        self,
        intervention_id: str,
        membership_id: str,
        effectiveness: str,
        score: float,
        box_id: str = "box-1",
        days_ago: int = 1,
    ) -> None:
        measured_at = self.now - timedelta(days=days_ago)
        self._insert(
            intervention_outcomes,
            intervention_id=intervention_id,
            box_id=box_id,
            membership_id=membership_id,
            overall_effectiveness=effectiveness,
            effectiveness_score=score,
            outcome_period_start=measured_at - timedelta(days=30),
            outcome_period_end=measured_at,
            measured_at=measured_at,
        )


@pytest.fixture
def seed(engine, now) -> Seeder:
    return Seeder(engine, now)


@pytest.fixture
def make_score(now):
    """Factory for RiskScore objects with neutral defaults."""

    def _make(
        membership_id: str = "m-1",
        box_id: str = "box-1",
        risk_level: RiskLevel = RiskLevel.HIGH,
        overall_risk_score: float = 60.0,
        churn_probability: float | None = None,
        calculated_at: datetime | None = None,
        **overrides,
    ) -> RiskScore:
        calculated_at = calculated_at or now
        values = dict(
            box_id=box_id,
            membership_id=membership_id,
            overall_risk_score=overall_risk_score,
            risk_level=risk_level,
            churn_probability=(
                churn_probability
                if churn_probability is not None
                else round(min(overall_risk_score / 100, 0.95), 4)
            ),
            attendance_score=50.0,
            wellness_score=50.0,
            performance_score=50.0,
            engagement_score=50.0,
            attendance_trend=None,
            performance_trend=None,
            engagement_trend=None,
            wellness_trend=None,
            days_since_last_visit=None,
            days_since_last_checkin=None,
            days_since_last_pr=None,
            calculated_at=calculated_at,
            valid_until=calculated_at + timedelta(days=7),
            factors={},
            config_version="test",
        )
        values.update(overrides)
        return RiskScore(**values)

    return _make


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "db: marks tests as requiring a PostgreSQL database")
