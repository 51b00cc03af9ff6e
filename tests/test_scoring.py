"""
Tests for component formulas, trends and the risk score calculator.

Run with: pytest tests/test_scoring.py -v
"""

from dataclasses import replace
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from retention.config import RiskLevel
from retention.errors import NotFound
from retention.scoring import RiskScoreCalculator
from retention.scoring.signals import (
    MemberSignals,
    WindowAggregates,
    attendance_score,
    compute_trends,
    engagement_score,
    performance_score,
    wellness_composite,
)


# =============================================================================
# TestComponentFormulas
# =============================================================================


class TestComponentFormulas:
    """Pure 0-100 component scores."""

    def test_attendance_score(self):
        assert attendance_score(WindowAggregates(attended=3, attendance_total=4)) == 75.0
        assert attendance_score(WindowAggregates()) == 0.0

    def test_wellness_default_without_checkins(self):
        assert wellness_composite(WindowAggregates()) == 50.0

    def test_wellness_inverts_stress(self):
        window = WindowAggregates(
            checkins=4, avg_energy=8, avg_sleep=6, avg_stress=4, avg_readiness=7
        )
        assert wellness_composite(window) == pytest.approx(67.5)

    def test_performance_score_capped(self):
        assert performance_score(WindowAggregates(prs=1, benchmarks=1)) == 25.0
        assert performance_score(WindowAggregates(prs=5, benchmarks=4)) == 100.0

    def test_engagement_score(self):
        assert engagement_score(WindowAggregates(checkins=15), 30) == pytest.approx(50.0)
        assert engagement_score(WindowAggregates(checkins=40), 30) == 100.0


# =============================================================================
# TestTrends
# =============================================================================


class TestTrends:
    """Signed trends against the previous window."""

    def test_no_previous_data_gives_no_trends(self):
        current = WindowAggregates(attended=5, attendance_total=5, checkins=3, prs=1)
        trends = compute_trends(current, WindowAggregates())
        assert trends == {
            "attendance_trend": None,
            "performance_trend": None,
            "engagement_trend": None,
            "wellness_trend": None,
        }

    def test_attendance_decline(self):
        current = WindowAggregates(attended=4, attendance_total=10)
        previous = WindowAggregates(attended=8, attendance_total=10)
        assert compute_trends(current, previous)["attendance_trend"] == pytest.approx(-50.0)

    def test_zero_previous_rate_uses_epsilon(self):
        current = WindowAggregates(attended=5, attendance_total=10)
        previous = WindowAggregates(attended=0, attendance_total=5)
        trend = compute_trends(current, previous)["attendance_trend"]
        assert trend == pytest.approx(5000.0)

    def test_performance_trend_on_combined_count(self):
        current = WindowAggregates(prs=1)
        previous = WindowAggregates(prs=1, benchmarks=1)
        assert compute_trends(current, previous)["performance_trend"] == pytest.approx(-50.0)


# =============================================================================
# TestScoreSignals
# =============================================================================


class TestScoreSignals:
    """Weighted inversion of component scores."""

    def _signals(self, now, current):
        return MemberSignals(
            membership_id="m-1",
            box_id="box-1",
            joined_at=now - timedelta(days=100),
            lookback_days=30,
            current=current,
        )

    def test_perfect_member_has_zero_risk(self, store, now):
        current = WindowAggregates(
            attended=10, attendance_total=10, checkins=30,
            avg_energy=10, avg_sleep=10, avg_stress=0, avg_readiness=10,
            prs=7,
        )
        score = RiskScoreCalculator(store).score_signals(self._signals(now, current), now)
        assert score.overall_risk_score == 0.0
        assert score.risk_level == RiskLevel.LOW
        assert score.churn_probability == 0.0

    def test_churn_probability_capped(self, store, now):
        current = WindowAggregates(
            attended=0, attendance_total=10, checkins=1,
            avg_energy=1, avg_sleep=1, avg_stress=10, avg_readiness=1,
        )
        score = RiskScoreCalculator(store).score_signals(self._signals(now, current), now)
        assert score.overall_risk_score > 95
        assert score.risk_level == RiskLevel.CRITICAL
        assert score.churn_probability == 0.95

    def test_validity_and_version(self, store, now, fast_config):
        score = RiskScoreCalculator(store, fast_config).score_signals(
            self._signals(now, WindowAggregates()), now
        )
        assert score.valid_until == now + timedelta(days=7)
        assert score.config_version == "test"
        assert score.factors["membership_age_days"] == 100


# =============================================================================
# TestRiskScoreCalculator
# =============================================================================


class TestRiskScoreCalculator:
    """Scoring members from stored ledgers."""

    def test_unknown_membership(self, store, now):
        with pytest.raises(NotFound):
            RiskScoreCalculator(store).compute_risk_score("ghost", now=now)

    def test_membership_in_other_box(self, store, seed, now):
        seed.member("m-1", box_id="box-2")
        with pytest.raises(NotFound):
            RiskScoreCalculator(store).compute_risk_score("m-1", box_id="box-1", now=now)

    def test_member_without_activity(self, store, seed, now):
        seed.member("m-1")
        score = RiskScoreCalculator(store).compute_risk_score("m-1", now=now)

        assert score.attendance_score == 0.0
        assert score.wellness_score == 50.0
        assert score.performance_score == 0.0
        assert score.engagement_score == 0.0
        assert score.overall_risk_score == 87.5
        assert score.risk_level == RiskLevel.CRITICAL
        assert score.attendance_trend is None
        assert score.days_since_last_visit is None
        assert score.days_since_last_checkin is None

    def test_full_member_profile(self, store, seed, now):
        seed.member("m-1", joined_days_ago=200)
        for day in range(1, 11):
            seed.attendance("m-1", day, "attended" if day <= 8 else "no_show")
        for day in range(31, 41):
            seed.attendance("m-1", day)
        for day in range(1, 16):
            seed.checkin("m-1", day, energy=8, sleep=6, stress=4, readiness=7)
        for day in range(31, 41):
            seed.checkin("m-1", day, energy=8, sleep=6, stress=4, readiness=7)
        seed.pr("m-1", 3)
        seed.pr("m-1", 5)
        seed.benchmark("m-1", 4)
        seed.pr("m-1", 35)
        seed.benchmark("m-1", 36)

        score = RiskScoreCalculator(store).compute_risk_score("m-1", "box-1", now=now)

        assert score.attendance_score == 80.0
        assert score.wellness_score == 67.5
        assert score.performance_score == 40.0
        assert score.engagement_score == 50.0
        assert score.overall_risk_score == pytest.approx(38.63, abs=0.01)
        assert score.risk_level == RiskLevel.MEDIUM
        assert score.attendance_trend == pytest.approx(-20.0)
        assert score.engagement_trend == pytest.approx(50.0)
        assert score.wellness_trend == pytest.approx(0.0)
        assert score.performance_trend == pytest.approx(50.0)
        assert score.days_since_last_visit == 1
        assert score.days_since_last_checkin == 1
        assert score.days_since_last_pr == 3
        assert score.factors["membership_age_days"] == 200
        assert score.factors["attendance_rate"] == 0.8

    def test_window_boundary_counted_once(self, store, seed, now):
        seed.member("m-1")
        seed.checkin("m-1", 30)
        calculator = RiskScoreCalculator(store)
        signals = calculator.aggregator.collect(store.get_membership("m-1"), 30, now)
        assert signals.current.checkins == 1
        assert signals.previous.checkins == 0

    def test_save_replaces_previous_score(self, store, seed, now):
        seed.member("m-1")
        calculator = RiskScoreCalculator(store)
        calculator.save(calculator.compute_risk_score("m-1", now=now))

        seed.attendance("m-1", 1)
        later = now + timedelta(hours=1)
        calculator.save(calculator.compute_risk_score("m-1", now=later))

        rows = store.get_risk_scores("box-1", now)
        assert len(rows) == 1
        assert rows[0]["attendance_score"] == 100.0
        assert rows[0]["calculated_at"] == later


# =============================================================================
# TestRecalculateBox
# =============================================================================


class TestRecalculateBox:
    """Box-wide sweeps."""

    def _seed_box(self, seed):
        for mid in ("m-1", "m-2", "m-3"):
            seed.member(mid)
        seed.member("m-gone", is_active=False)
        seed.member("c-1", role="coach")

    def test_scores_every_active_athlete(self, store, seed, now, fast_config):
        self._seed_box(seed)
        summary = RiskScoreCalculator(store, fast_config).recalculate_box("box-1", now)

        assert summary.total == 3
        assert summary.successful == 3
        assert summary.success
        ids = {s.membership_id for s in RiskScoreCalculator(store).get_latest_scores("box-1", now)}
        assert ids == {"m-1", "m-2", "m-3"}

    def test_failing_member_isolated(self, store, seed, now, fast_config, monkeypatch):
        self._seed_box(seed)
        calculator = RiskScoreCalculator(store, fast_config)
        original = calculator.compute_risk_score

        def flaky(membership_id, *args, **kwargs):
            if membership_id == "m-2":
                raise RuntimeError("signal store unavailable")
            return original(membership_id, *args, **kwargs)

        monkeypatch.setattr(calculator, "compute_risk_score", flaky)
        summary = calculator.recalculate_box("box-1", now)

        assert summary.successful == 2
        assert summary.failed == 1
        assert "m-2" in summary.errors[0]
        assert store.get_latest_risk_score("m-2") is None
        assert store.get_latest_risk_score("m-3") is not None

    def test_pauses_between_batches(self, store, seed, now, fast_config):
        self._seed_box(seed)
        config = fast_config.with_overrides(
            scoring=replace(fast_config.scoring, batch_size=1, batch_pause_seconds=0.1)
        )
        sleep = MagicMock()
        RiskScoreCalculator(store, config, sleep=sleep).recalculate_box("box-1", now)
        assert sleep.call_count == 2

    def test_cleanup_expired(self, store, seed, now, fast_config):
        self._seed_box(seed)
        calculator = RiskScoreCalculator(store, fast_config)
        calculator.recalculate_box("box-1", now)

        assert calculator.cleanup_expired(now + timedelta(days=1)) == 0
        assert calculator.cleanup_expired(now + timedelta(days=8)) == 3
        assert calculator.get_latest_scores("box-1", now) == []
