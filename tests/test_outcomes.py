"""
Tests for intervention outcome scoring, measurement and summaries.

Run with: pytest tests/test_outcomes.py -v
"""

from datetime import timedelta

import pytest

from retention.config import Effectiveness, OutcomeConfig, RiskLevel
from retention.errors import NotFound
from retention.outcomes import OutcomeTracker
from retention.outcomes.tracker import score_effectiveness

CONFIG = OutcomeConfig()


# =============================================================================
# TestScoreEffectiveness
# =============================================================================


class TestScoreEffectiveness:
    """Weighted delta scoring."""

    def test_no_change(self):
        effectiveness, score, notes = score_effectiveness(None, 0, 0, 0, 0, CONFIG)
        assert score == 50.0
        assert effectiveness == Effectiveness.NEUTRAL
        assert notes == "No significant changes observed"

    def test_improvements_noted(self):
        effectiveness, score, notes = score_effectiveness(10, 20, 0, 0, 0, CONFIG)
        assert score == pytest.approx(58.0)
        assert effectiveness == Effectiveness.NEUTRAL
        assert notes == "Risk score improved significantly; Attendance improved notably"

    def test_pr_change_scaled(self):
        _, score, notes = score_effectiveness(None, 0, 0, 0, 2, CONFIG)
        assert score == pytest.approx(52.0)
        assert notes == "Performance activity increased"

    def test_negative(self):
        effectiveness, score, notes = score_effectiveness(None, -50, 0, 0, 0, CONFIG)
        assert score == pytest.approx(37.5)
        assert effectiveness == Effectiveness.NEGATIVE
        assert notes == "Attendance declined"

    def test_clamped(self):
        _, high, _ = score_effectiveness(50, 250, 100, 50, 5, CONFIG)
        _, low, _ = score_effectiveness(-50, -250, -100, -50, -5, CONFIG)
        assert high == 100.0
        assert low == 0.0


# =============================================================================
# TestMeasureOutcome
# =============================================================================


@pytest.fixture
def improving_member(seed):
    """Member whose attendance went from 20% to 70% around an intervention 40 days ago."""
    seed.member("m-1")
    seed.intervention("i-1", "m-1", days_ago=40)
    for offset in range(2, 12):
        seed.attendance("m-1", 40 + offset, "attended" if offset <= 3 else "no_show")
    for offset in range(2, 12):
        seed.attendance("m-1", 40 - offset, "attended" if offset <= 8 else "no_show")
    return "i-1"


class TestMeasureOutcome:
    """Before/after measurement of one intervention."""

    def test_attendance_improvement(self, store, improving_member, now):
        outcome = OutcomeTracker(store).measure_outcome(improving_member, now=now)

        assert outcome.risk_score_change is None
        assert outcome.attendance_rate_change == pytest.approx(50.0)
        assert outcome.checkin_rate_change == 0.0
        assert outcome.wellness_score_change == 0.0
        assert outcome.pr_activity_change == 0.0
        assert outcome.effectiveness_score == pytest.approx(62.5)
        assert outcome.overall_effectiveness == Effectiveness.POSITIVE
        assert outcome.notes == "Attendance improved notably"
        assert outcome.outcome_period_start == now - timedelta(days=39)
        assert outcome.outcome_period_end == now - timedelta(days=10)

    def test_risk_change_needs_both_windows(self, store, improving_member, make_score, now):
        score = make_score("m-1", risk_level=RiskLevel.HIGH, calculated_at=now - timedelta(days=45))
        store.upsert_risk_score(score.to_row())

        outcome = OutcomeTracker(store).measure_outcome(improving_member, now=now)
        assert outcome.risk_score_change is None

    def test_deterministic(self, store, improving_member, now):
        tracker = OutcomeTracker(store)
        assert tracker.measure_outcome(improving_member, now=now) == tracker.measure_outcome(
            improving_member, now=now
        )

    def test_unknown_intervention(self, store, now):
        with pytest.raises(NotFound):
            OutcomeTracker(store).measure_outcome("missing", now=now)


# =============================================================================
# TestMeasurementWindows
# =============================================================================


class TestMeasurementWindows:
    """Inclusive edges of the pre and post windows around an intervention 40 days ago."""

    @pytest.fixture
    def member(self, seed):
        seed.member("m-1")
        seed.intervention("i-1", "m-1", days_ago=40)
        return seed

    @pytest.mark.parametrize(
        "days_ago, expected",
        [
            (39, 100.0),  # day after the intervention
            (10, 100.0),  # last day of a 30 day post window
            (9, 0.0),  # one day past it
            (40, 0.0),  # intervention day itself
            (41, -100.0),  # day before the intervention
            (70, -100.0),  # first day of the pre window
            (71, 0.0),  # one day before it
        ],
    )
    def test_attendance_edges(self, store, member, now, days_ago, expected):
        member.attendance("m-1", days_ago)

        outcome = OutcomeTracker(store).measure_outcome("i-1", now=now)

        assert outcome.attendance_rate_change == expected

    @pytest.mark.parametrize(
        "days_ago, expected",
        [(10, 3.33), (9, 0.0), (70, -3.33), (71, 0.0)],
    )
    def test_checkin_edges(self, store, member, now, days_ago, expected):
        member.checkin("m-1", days_ago)

        outcome = OutcomeTracker(store).measure_outcome("i-1", now=now)

        assert outcome.checkin_rate_change == pytest.approx(expected)

    def test_post_period_spans_measurement_days(self, store, member, now):
        outcome = OutcomeTracker(store).measure_outcome(
            "i-1", measurement_period_days=14, now=now
        )

        assert outcome.outcome_period_start == now - timedelta(days=39)
        assert outcome.outcome_period_end == now - timedelta(days=26)


# =============================================================================
# TestProcessReady
# =============================================================================


class TestProcessReady:
    """Write-once outcome sweeps."""

    def test_records_once(self, store, improving_member, now, fast_config):
        tracker = OutcomeTracker(store, fast_config)

        first = tracker.process_ready("box-1", now=now)
        assert first.processed == 1
        assert first.positive == 1
        assert first.average_score == pytest.approx(62.5)

        second = tracker.process_ready("box-1", now=now + timedelta(days=1))
        assert second.processed == 0

        row = store.get_outcome(improving_member)
        assert row["measured_at"] == now
        assert row["overall_effectiveness"] == "positive"

    def test_recent_interventions_wait(self, store, seed, now, fast_config):
        seed.member("m-1")
        seed.intervention("i-recent", "m-1", days_ago=10)

        summary = OutcomeTracker(store, fast_config).process_ready("box-1", now=now)

        assert summary.processed == 0
        assert store.get_outcome("i-recent") is None

    def test_failure_isolated(self, store, seed, now, fast_config, monkeypatch):
        seed.member("m-1")
        seed.intervention("i-1", "m-1", days_ago=40)
        seed.intervention("i-2", "m-1", days_ago=45)
        tracker = OutcomeTracker(store, fast_config)
        original = tracker.measure_outcome

        def flaky(intervention_id, *args, **kwargs):
            if intervention_id == "i-2":
                raise RuntimeError("ledger unavailable")
            return original(intervention_id, *args, **kwargs)

        monkeypatch.setattr(tracker, "measure_outcome", flaky)
        summary = tracker.process_ready("box-1", now=now)

        assert summary.processed == 1
        assert summary.failed == 1
        assert store.get_outcome("i-1") is not None
        assert store.get_outcome("i-2") is None


# =============================================================================
# TestEffectivenessSummary
# =============================================================================


class TestEffectivenessSummary:
    """Aggregates over recorded outcomes."""

    def test_summary(self, store, seed, now):
        seed.member("m-1")
        recorded = [
            ("phone_call", "positive", 70.0),
            ("phone_call", "positive", 65.0),
            ("phone_call", "neutral", 45.0),
            ("email", "negative", 30.0),
            ("email", "positive", 80.0),
            ("meeting", "positive", 80.0),
            ("meeting", "positive", 80.0),
            ("meeting", "positive", 80.0),
        ]
        for index, (kind, effectiveness, score) in enumerate(recorded):
            intervention_id = f"i-{index}"
            seed.intervention(intervention_id, "m-1", intervention_type=kind)
            seed.outcome(intervention_id, "m-1", effectiveness, score)

        summary = OutcomeTracker(store).get_effectiveness_summary("box-1", now=now)

        assert summary.total_outcomes == 8
        assert summary.positive_outcomes == 6
        assert summary.neutral_outcomes == 1
        assert summary.negative_outcomes == 1
        assert summary.avg_effectiveness_score == pytest.approx(66.25)
        assert summary.by_type["phone_call"] == {
            "count": 3,
            "avg_score": 60.0,
            "positive_rate": pytest.approx(66.67),
        }
        assert summary.by_type["email"]["count"] == 2
        assert summary.top_performing_types == ["meeting", "phone_call"]

    def test_empty(self, store, now):
        summary = OutcomeTracker(store).get_effectiveness_summary("box-1", now=now)
        assert summary.total_outcomes == 0
        assert summary.top_performing_types == []
