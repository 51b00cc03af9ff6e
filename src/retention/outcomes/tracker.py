"""
Intervention outcome tracking.

Compares a member's risk score, attendance, check-in cadence, wellness
and PR activity in the window before a coach intervention with the
window after it, scores the change and classifies the intervention as
positive, neutral or negative. Outcomes are written once per
intervention and never revised.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

from ..batch import OutcomeSweepSummary, run_in_batches
from ..config import DEFAULT_ENGINE_CONFIG, Effectiveness, EngineConfig, OutcomeConfig
from ..data.store import RetentionStore
from ..errors import NotFound
from ..scoring.signals import SignalAggregator, wellness_composite
from ..utils import round2, utcnow

logger = logging.getLogger(__name__)


@dataclass
class PeriodMetrics:
    """Member metrics over one measurement window."""
    start: datetime
    end: datetime
    risk_score: float | None
    attendance_rate: float
    checkin_rate: float
    wellness_score: float
    pr_activity: int


@dataclass
class InterventionOutcome:
    """Measured effect of one intervention."""
    intervention_id: str
    box_id: str
    membership_id: str
    risk_score_change: float | None
    attendance_rate_change: float
    checkin_rate_change: float
    wellness_score_change: float
    pr_activity_change: float
    overall_effectiveness: Effectiveness
    effectiveness_score: float
    outcome_period_start: datetime
    outcome_period_end: datetime
    measured_at: datetime
    notes: str = ""

    def to_row(self) -> dict[str, Any]:
        return {
            "intervention_id": self.intervention_id,
            "box_id": self.box_id,
            "membership_id": self.membership_id,
            "risk_score_change": self.risk_score_change,
            "attendance_rate_change": self.attendance_rate_change,
            "checkin_rate_change": self.checkin_rate_change,
            "wellness_score_change": self.wellness_score_change,
            "pr_activity_change": self.pr_activity_change,
            "overall_effectiveness": self.overall_effectiveness.value,
            "effectiveness_score": self.effectiveness_score,
            "outcome_period_start": self.outcome_period_start,
            "outcome_period_end": self.outcome_period_end,
            "measured_at": self.measured_at,
            "notes": self.notes,
        }


@dataclass
class EffectivenessSummary:
    """Outcome statistics of a box over a lookback period."""
    box_id: str
    total_outcomes: int = 0
    positive_outcomes: int = 0
    neutral_outcomes: int = 0
    negative_outcomes: int = 0
    avg_effectiveness_score: float = 0.0
    by_type: dict[str, dict[str, float]] = field(default_factory=dict)
    top_performing_types: list[str] = field(default_factory=list)


def score_effectiveness(
    risk_change: float | None,
    attendance_change: float,
    checkin_change: float,
    wellness_change: float,
    pr_change: float,
    config: OutcomeConfig,
) -> tuple[Effectiveness, float, str]:
    """Combine metric deltas into a 0-100 score, a class and notes.

    A missing risk delta contributes nothing to the score.

    Returns:
        Tuple of (effectiveness, score, notes).
    """
    w = config.weights
    notes: list[str] = []
    score = config.baseline_score

    if risk_change is not None:
        score += w.risk * risk_change
        if risk_change > 5:
            notes.append("Risk score improved significantly")
        elif risk_change < -5:
            notes.append("Risk score worsened")

    score += w.attendance * attendance_change
    if attendance_change > 10:
        notes.append("Attendance improved notably")
    elif attendance_change < -10:
        notes.append("Attendance declined")

    score += w.checkin * checkin_change
    if checkin_change > 15:
        notes.append("Engagement improved")
    elif checkin_change < -15:
        notes.append("Engagement declined")

    score += w.wellness * wellness_change
    if wellness_change > 5:
        notes.append("Wellness indicators improved")
    elif wellness_change < -5:
        notes.append("Wellness indicators declined")

    score += w.performance * pr_change * config.pr_change_scale
    if pr_change > 0:
        notes.append("Performance activity increased")
    elif pr_change < 0:
        notes.append("Performance activity decreased")

    score = round2(max(0.0, min(100.0, score)))
    text = "; ".join(notes) if notes else "No significant changes observed"
    return config.classify(score), score, text


class OutcomeTracker:
    """
    Measures and records intervention outcomes.

    Example:
        >>> tracker = OutcomeTracker(RetentionStore(engine))
        >>> outcome = tracker.measure_outcome("intervention-1")
        >>> summary = tracker.process_ready("box-1")
    """

    def __init__(
        self,
        store: RetentionStore,
        config: EngineConfig = DEFAULT_ENGINE_CONFIG,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.config = config
        self.outcomes = config.outcomes
        self.aggregator = SignalAggregator(store)
        self._sleep = sleep

    def _period_metrics(
        self,
        membership_id: str,
        start: datetime,
        end: datetime,
        days: int,
        risk_score: dict[str, Any] | None,
    ) -> PeriodMetrics:
        window = self.aggregator.window(membership_id, start, end, end_inclusive=True)
        return PeriodMetrics(
            start=start,
            end=end,
            risk_score=risk_score["overall_risk_score"] if risk_score else None,
            attendance_rate=window.attendance_rate * 100,
            checkin_rate=window.checkins / days * 100,
            wellness_score=wellness_composite(window, self.outcomes.wellness_default),
            pr_activity=window.performance_count,
        )

    def measure_outcome(
        self,
        intervention_id: str,
        measurement_period_days: int | None = None,
        now: datetime | None = None,
    ) -> InterventionOutcome:
        """Measure the effect of an intervention without saving it.

        The pre window is the `pre_window_days` ending the day before the
        intervention; the post window starts the day after it and ends
        `measurement_period_days` after the intervention. Both are inclusive.

        Raises:
            NotFound: The intervention does not exist.
        """
        now = now or utcnow()
        cfg = self.outcomes
        period = measurement_period_days or cfg.measurement_period_days

        intervention = self.store.get_intervention(intervention_id)
        if intervention is None:
            raise NotFound("intervention", intervention_id)

        membership_id = intervention["membership_id"]
        performed_at = intervention["intervention_date"]

        pre_start = performed_at - timedelta(days=cfg.pre_window_days)
        pre_end = performed_at - timedelta(days=1)
        post_start = performed_at + timedelta(days=1)
        post_end = performed_at + timedelta(days=period)

        pre = self._period_metrics(
            membership_id,
            pre_start,
            pre_end,
            cfg.pre_window_days,
            self.store.get_latest_risk_score(membership_id, end=pre_end),
        )
        post = self._period_metrics(
            membership_id,
            post_start,
            post_end,
            period,
            self.store.get_latest_risk_score(membership_id, start=post_start, end=post_end),
        )

        risk_change = None
        if pre.risk_score is not None and post.risk_score is not None:
            risk_change = round2(pre.risk_score - post.risk_score)
        attendance_change = round2(post.attendance_rate - pre.attendance_rate)
        checkin_change = round2(post.checkin_rate - pre.checkin_rate)
        wellness_change = round2(post.wellness_score - pre.wellness_score)
        pr_change = float(post.pr_activity - pre.pr_activity)

        effectiveness, score, notes = score_effectiveness(
            risk_change, attendance_change, checkin_change, wellness_change, pr_change, cfg
        )

        logger.debug(
            f"Intervention {intervention_id}: {effectiveness.value} ({score}) - {notes}"
        )
        return InterventionOutcome(
            intervention_id=intervention_id,
            box_id=intervention["box_id"],
            membership_id=membership_id,
            risk_score_change=risk_change,
            attendance_rate_change=attendance_change,
            checkin_rate_change=checkin_change,
            wellness_score_change=wellness_change,
            pr_activity_change=pr_change,
            overall_effectiveness=effectiveness,
            effectiveness_score=score,
            outcome_period_start=post_start,
            outcome_period_end=post_end,
            measured_at=now,
            notes=notes,
        )

    def _measure_and_record(self, intervention_id: str, now: datetime) -> InterventionOutcome | None:
        outcome = self.measure_outcome(intervention_id, now=now)
        if not self.store.insert_outcome(outcome.to_row()):
            logger.debug(f"Outcome for {intervention_id} already recorded")
            return None
        return outcome

    def process_ready(
        self,
        box_id: str,
        delay_days: int | None = None,
        now: datetime | None = None,
    ) -> OutcomeSweepSummary:
        """Measure every intervention old enough and not yet measured.

        Re-running the sweep is a no-op for interventions already measured.
        """
        now = now or utcnow()
        cfg = self.outcomes
        delay_days = delay_days if delay_days is not None else cfg.measurement_delay_days

        ready = self.store.list_interventions_ready(box_id, now - timedelta(days=delay_days))
        logger.info(f"Measuring {len(ready)} intervention outcomes for box {box_id}")

        report = run_in_batches(
            ready,
            lambda intervention_id: self._measure_and_record(intervention_id, now),
            batch_size=cfg.batch_size,
            pause_seconds=cfg.batch_pause_seconds,
            max_workers=cfg.max_workers,
            sleep=self._sleep,
        )

        recorded = [r.value for r in report.successes if r.value is not None]
        summary = OutcomeSweepSummary(
            box_id=box_id,
            processed=len(recorded),
            positive=sum(1 for o in recorded if o.overall_effectiveness == Effectiveness.POSITIVE),
            neutral=sum(1 for o in recorded if o.overall_effectiveness == Effectiveness.NEUTRAL),
            negative=sum(1 for o in recorded if o.overall_effectiveness == Effectiveness.NEGATIVE),
            failed=len(report.failures),
            average_score=(
                round2(sum(o.effectiveness_score for o in recorded) / len(recorded))
                if recorded else None
            ),
            errors=report.errors,
        )
        logger.info(summary.summary())
        return summary

    def get_effectiveness_summary(
        self,
        box_id: str,
        lookback_days: int | None = None,
        now: datetime | None = None,
    ) -> EffectivenessSummary:
        """Outcome counts, per-type averages and the best intervention types."""
        now = now or utcnow()
        cfg = self.outcomes
        lookback_days = lookback_days or cfg.summary_lookback_days

        df = self.store.outcomes_frame(box_id, now - timedelta(days=lookback_days))
        summary = EffectivenessSummary(box_id=box_id)
        if df.empty:
            return summary

        counts = df["overall_effectiveness"].value_counts()
        summary.total_outcomes = len(df)
        summary.positive_outcomes = int(counts.get(Effectiveness.POSITIVE.value, 0))
        summary.neutral_outcomes = int(counts.get(Effectiveness.NEUTRAL.value, 0))
        summary.negative_outcomes = int(counts.get(Effectiveness.NEGATIVE.value, 0))
        summary.avg_effectiveness_score = round2(df["effectiveness_score"].mean())

        by_type = (
            df.assign(is_positive=df["overall_effectiveness"] == Effectiveness.POSITIVE.value)
            .groupby("intervention_type")
            .agg(
                count=("effectiveness_score", "size"),
                avg_score=("effectiveness_score", "mean"),
                positive_rate=("is_positive", "mean"),
            )
        )
        summary.by_type = {
            str(name): {
                "count": int(row["count"]),
                "avg_score": round2(row["avg_score"]),
                "positive_rate": round2(row["positive_rate"] * 100),
            }
            for name, row in by_type.iterrows()
        }
        ranked = by_type[by_type["count"] >= cfg.min_outcomes_for_ranking].sort_values(
            "avg_score", ascending=False
        )
        summary.top_performing_types = [str(name) for name in ranked.index[:3]]
        return summary
