"""
Tests for alert generation sweeps, deduplication and coach assignment.

Run with: pytest tests/test_generator.py -v
"""

import random
from datetime import timedelta

import pytest

from retention.config import AlertStatus, AlertType, RiskLevel
from retention.early_warning import AlertGenerator, assign_coach
from retention.errors import TransientStoreError
from retention.scoring import RiskScoreCalculator


@pytest.fixture
def box(seed):
    """Box with a head coach, a coach and three athletes."""
    seed.member("hc-1", role="head_coach")
    seed.member("c-1", role="coach")
    for mid in ("m-1", "m-2", "m-3"):
        seed.member(mid)
    return "box-1"


@pytest.fixture
def save_score(store):
    calculator = RiskScoreCalculator(store)
    return calculator.save


def _generator(store, fast_config, seed_value=1):
    return AlertGenerator(store, fast_config, rng=random.Random(seed_value))


# =============================================================================
# TestAssignCoach
# =============================================================================


class TestAssignCoach:
    """Coach selection by severity."""

    COACHES = [
        {"id": "c-1", "role": "coach"},
        {"id": "c-2", "role": "coach"},
        {"id": "hc-1", "role": "head_coach"},
    ]

    def test_critical_goes_to_senior_staff(self):
        rng = random.Random(0)
        picks = {assign_coach(RiskLevel.CRITICAL, self.COACHES, rng) for _ in range(20)}
        assert picks == {"hc-1"}

    def test_non_critical_spread_over_all(self):
        rng = random.Random(0)
        picks = {assign_coach(RiskLevel.HIGH, self.COACHES, rng) for _ in range(50)}
        assert picks == {"c-1", "c-2", "hc-1"}

    def test_critical_without_senior_staff(self):
        coaches = [{"id": "c-1", "role": "coach"}]
        assert assign_coach(RiskLevel.CRITICAL, coaches, random.Random(0)) == "c-1"

    def test_no_coaches(self):
        assert assign_coach(RiskLevel.HIGH, [], random.Random(0)) is None


# =============================================================================
# TestProcessBox
# =============================================================================


class TestProcessBox:
    """Box sweeps over saved risk scores."""

    def test_creates_and_skips(self, store, box, save_score, make_score, now, fast_config):
        save_score(make_score("m-1", days_since_last_visit=20))
        save_score(make_score("m-2", risk_level=RiskLevel.LOW, overall_risk_score=10))
        save_score(make_score("m-3", risk_level=RiskLevel.MEDIUM, overall_risk_score=30))

        summary = _generator(store, fast_config).process_box(box, now)

        assert summary.evaluated == 3
        assert summary.created == 1
        assert summary.skipped == 2
        alerts = store.list_active_alerts(box)
        assert len(alerts) == 1
        assert alerts[0]["membership_id"] == "m-1"
        assert alerts[0]["alert_type"] == AlertType.RISK_THRESHOLD.value
        assert alerts[0]["assigned_coach_id"] in {"hc-1", "c-1"}

    def test_rerun_is_deduplicated(self, store, box, save_score, make_score, now, fast_config):
        save_score(make_score("m-1", days_since_last_visit=20))
        generator = _generator(store, fast_config)
        generator.process_box(box, now)
        first = store.list_active_alerts(box)[0]

        summary = generator.process_box(box, now + timedelta(hours=1))

        assert summary.created == 0
        assert summary.unchanged == 1
        alerts = store.list_active_alerts(box)
        assert len(alerts) == 1
        assert alerts[0]["updated_at"] == first["updated_at"]

    def test_severity_change_updates_in_place(
        self, store, box, save_score, make_score, now, fast_config
    ):
        save_score(make_score("m-1", days_since_last_visit=20))
        generator = _generator(store, fast_config)
        generator.process_box(box, now)

        later = now + timedelta(days=1)
        save_score(
            make_score(
                "m-1",
                risk_level=RiskLevel.CRITICAL,
                overall_risk_score=80,
                days_since_last_visit=21,
                calculated_at=later,
            )
        )
        summary = generator.process_box(box, later)

        assert summary.updated == 1
        alerts = store.list_active_alerts(box)
        assert len(alerts) == 1
        assert alerts[0]["severity"] == "critical"
        assert alerts[0]["updated_at"] == later
        assert alerts[0]["created_at"] == now
        assert "21 days" in alerts[0]["description"]

    def test_concurrent_insert_takes_update_path(
        self, store, box, save_score, make_score, now, fast_config, monkeypatch
    ):
        save_score(make_score("m-1", days_since_last_visit=20))
        generator = _generator(store, fast_config)
        generator.process_box(box, now)

        # Simulate a sweep that read the alert list before the insert landed
        monkeypatch.setattr(store, "list_active_alerts", lambda box_id: [])
        summary = generator.process_box(box, now + timedelta(hours=1))

        assert summary.failed == 0
        assert summary.created == 0
        assert summary.unchanged == 1
        assert len(store.list_alerts(box)) == 1

    def test_resolved_alert_allows_new_one(
        self, store, box, save_score, make_score, now, fast_config
    ):
        save_score(make_score("m-1", days_since_last_visit=20))
        generator = _generator(store, fast_config)
        generator.process_box(box, now)
        alert_id = store.list_active_alerts(box)[0]["id"]
        store.update_alert(alert_id, {"status": AlertStatus.RESOLVED.value, "resolved_at": now})

        summary = generator.process_box(box, now + timedelta(hours=1))

        assert summary.created == 1
        assert len(store.list_alerts(box)) == 2
        assert len(store.list_active_alerts(box)) == 1

    def test_expired_scores_ignored(self, store, box, save_score, make_score, now, fast_config):
        save_score(make_score("m-1", days_since_last_visit=20, calculated_at=now - timedelta(days=8)))
        summary = _generator(store, fast_config).process_box(box, now)
        assert summary.evaluated == 0
        assert store.list_alerts(box) == []

    def test_insert_failure_isolated(
        self, store, box, save_score, make_score, now, fast_config, monkeypatch
    ):
        save_score(make_score("m-1", days_since_last_visit=20))
        save_score(make_score("m-2", days_since_last_visit=25))
        original = store.insert_alert

        def flaky(values):
            if values["membership_id"] == "m-2":
                raise TransientStoreError("insert_alert", RuntimeError("disk full"))
            return original(values)

        monkeypatch.setattr(store, "insert_alert", flaky)
        summary = _generator(store, fast_config).process_box(box, now)

        assert summary.created == 1
        assert summary.failed == 1
        assert not summary.success
        assert summary.errors[0].startswith("m-2:")


# =============================================================================
# TestGenerateForMember
# =============================================================================


class TestGenerateForMember:
    """Single-member generation after an on-demand recalculation."""

    def test_created_then_unchanged(self, store, box, make_score, now, fast_config):
        generator = _generator(store, fast_config)
        score = make_score("m-1", wellness_trend=-30.0)

        action, alert = generator.generate_for_member(score, now)
        assert action == "created"
        assert alert.category == "wellness_crisis"

        action, again = generator.generate_for_member(score, now + timedelta(hours=2))
        assert action == "unchanged"
        assert again.id == alert.id

    def test_skipped(self, store, box, make_score, now, fast_config):
        action, alert = _generator(store, fast_config).generate_for_member(make_score("m-1"), now)
        assert action == "skipped"
        assert alert is None


# =============================================================================
# TestScoreToAlertPipeline
# =============================================================================


class TestScoreToAlertPipeline:
    """Scoring followed by alert generation over stored ledgers."""

    def test_absent_member_gets_extended_absence_alert(self, store, seed, box, now, fast_config):
        """20 days without attending at high risk produces a high extended-absence alert."""
        seed.attendance("m-1", 20)
        for day in (5, 10, 15):
            seed.attendance("m-1", day, status="no_show")
        for day in range(1, 11):
            seed.checkin("m-1", day, energy=5, sleep=5, stress=5, readiness=5)

        calculator = RiskScoreCalculator(store, fast_config)
        score = calculator.compute_risk_score("m-1", box, now=now)
        assert score.days_since_last_visit == 20
        assert score.risk_level == RiskLevel.HIGH

        calculator.save(score)
        _generator(store, fast_config).process_box(box, now)

        alert = store.get_active_alert("m-1", AlertType.RISK_THRESHOLD.value)
        assert alert is not None
        assert alert["severity"] == "high"
        assert alert["trigger_data"]["alert_category"] == "extended_absence"
        assert alert["trigger_data"]["days_since_last_visit"] == 20
