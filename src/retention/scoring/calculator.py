"""
Risk score calculator.

Turns a member's windowed activity signals into four 0-100 component
scores, signed trends against the previous window, an inverted weighted
overall risk score, a risk level and a churn probability. Scores are
persisted one row per membership and replaced on every recalculation.
"""

import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

from ..batch import SweepSummary, run_in_batches
from ..config import DEFAULT_ENGINE_CONFIG, EngineConfig, RiskLevel
from ..data.store import RetentionStore
from ..errors import NotFound
from ..utils import days_between, round2, utcnow
from .signals import (
    MemberSignals,
    SignalAggregator,
    attendance_score,
    compute_trends,
    engagement_score,
    performance_score,
    wellness_composite,
)

logger = logging.getLogger(__name__)


@dataclass
class RiskScore:
    """Risk assessment of one membership at a point in time."""
    box_id: str
    membership_id: str
    overall_risk_score: float
    risk_level: RiskLevel
    churn_probability: float
    attendance_score: float
    wellness_score: float
    performance_score: float
    engagement_score: float
    attendance_trend: float | None
    performance_trend: float | None
    engagement_trend: float | None
    wellness_trend: float | None
    days_since_last_visit: int | None
    days_since_last_checkin: int | None
    days_since_last_pr: int | None
    calculated_at: datetime
    valid_until: datetime
    factors: dict[str, Any] = field(default_factory=dict)
    config_version: str | None = None

    def to_row(self) -> dict[str, Any]:
        """Column values for the risk score table."""
        row = asdict(self)
        row["risk_level"] = self.risk_level.value
        return row

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "RiskScore":
        values = {name: row.get(name) for name in cls.__dataclass_fields__}
        values["risk_level"] = RiskLevel(row["risk_level"])
        values["factors"] = row.get("factors") or {}
        return cls(**values)

    def is_valid(self, now: datetime) -> bool:
        return self.valid_until > now


class RiskScoreCalculator:
    """
    Computes, persists and sweeps member risk scores.

    Example:
        >>> calculator = RiskScoreCalculator(RetentionStore(engine))
        >>> score = calculator.compute_risk_score("m-1", "box-1")
        >>> calculator.save(score)
        >>> summary = calculator.recalculate_box("box-1")
    """

    def __init__(
        self,
        store: RetentionStore,
        config: EngineConfig = DEFAULT_ENGINE_CONFIG,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.config = config
        self.scoring = config.scoring
        self.aggregator = SignalAggregator(store, max_workers=4)
        self._sleep = sleep

    def compute_risk_score(
        self,
        membership_id: str,
        box_id: str | None = None,
        lookback_days: int | None = None,
        now: datetime | None = None,
    ) -> RiskScore:
        """Compute the current risk score of a membership.

        Args:
            membership_id: Membership to score.
            box_id: Expected box of the membership, if known.
            lookback_days: Window length. Defaults to the scoring config.
            now: Reference time. Defaults to the current UTC time.

        Returns:
            The computed, unsaved RiskScore.

        Raises:
            NotFound: The membership does not exist (in `box_id`).
        """
        now = now or utcnow()
        lookback_days = lookback_days or self.scoring.lookback_days

        membership = self.store.get_membership(membership_id)
        if membership is None or (box_id is not None and membership["box_id"] != box_id):
            raise NotFound("membership", membership_id)

        signals = self.aggregator.collect(membership, lookback_days, now)
        return self.score_signals(signals, now)

    def score_signals(self, signals: MemberSignals, now: datetime) -> RiskScore:
        """Pure scoring of already-aggregated signals."""
        cfg = self.scoring
        current = signals.current

        components = {
            "attendance": attendance_score(current),
            "wellness": wellness_composite(current, cfg.wellness_default),
            "performance": performance_score(current),
            "engagement": engagement_score(current, signals.lookback_days),
        }
        weights = cfg.weights.as_dict()
        weighted = sum(components[name] * weights[name] for name in components)
        overall = round2(100 - weighted)

        trends = compute_trends(
            current,
            signals.previous,
            rate_epsilon=cfg.rate_epsilon,
            count_epsilon=cfg.count_epsilon,
            wellness_default=cfg.wellness_default,
        )

        factors = {
            "attendance_rate": round(current.attendance_rate, 4),
            "checkin_frequency": round(current.checkins / signals.lookback_days, 4),
            "avg_wellness_score": round(components["wellness"] / 100, 4),
            "recent_performance": current.performance_count,
            "membership_age_days": days_between(now, signals.joined_at),
            "current_window": current.as_dict(),
            "previous_window": signals.previous.as_dict(),
        }

        return RiskScore(
            box_id=signals.box_id,
            membership_id=signals.membership_id,
            overall_risk_score=overall,
            risk_level=cfg.classify_risk(overall),
            churn_probability=round(min(overall / 100, cfg.churn_probability_cap), 4),
            attendance_score=round2(components["attendance"]),
            wellness_score=round2(components["wellness"]),
            performance_score=round2(components["performance"]),
            engagement_score=round2(components["engagement"]),
            attendance_trend=round2(trends["attendance_trend"]),
            performance_trend=round2(trends["performance_trend"]),
            engagement_trend=round2(trends["engagement_trend"]),
            wellness_trend=round2(trends["wellness_trend"]),
            days_since_last_visit=(
                days_between(now, signals.last_visit) if signals.last_visit else None
            ),
            days_since_last_checkin=(
                days_between(now, signals.last_checkin) if signals.last_checkin else None
            ),
            days_since_last_pr=(
                days_between(now, signals.last_pr) if signals.last_pr else None
            ),
            calculated_at=now,
            valid_until=now + timedelta(days=cfg.validity_days),
            factors=factors,
            config_version=self.config.version,
        )

    def save(self, score: RiskScore) -> RiskScore:
        """Upsert a risk score, replacing any previous row for the membership."""
        self.store.upsert_risk_score(score.to_row())
        logger.debug(
            f"Saved risk score {score.overall_risk_score} ({score.risk_level.value}) "
            f"for {score.membership_id}"
        )
        return score

    def recalculate_box(self, box_id: str, now: datetime | None = None) -> SweepSummary:
        """Recompute and save scores for every active athlete of a box.

        Members are processed in batches with bounded parallelism and a
        pause between batches. A failing member is logged and counted; it
        never stops the sweep.
        """
        now = now or utcnow()
        cfg = self.scoring
        start = time.perf_counter()

        athletes = self.store.list_active_athletes(box_id)
        logger.info(f"Recalculating risk scores for {len(athletes)} athletes in box {box_id}")

        report = run_in_batches(
            athletes,
            lambda membership_id: self.save(
                self.compute_risk_score(membership_id, box_id, now=now)
            ),
            batch_size=cfg.batch_size,
            pause_seconds=cfg.batch_pause_seconds,
            max_workers=cfg.max_workers,
            sleep=self._sleep,
        )

        summary = SweepSummary(
            box_id=box_id,
            total=report.total,
            successful=len(report.successes),
            failed=len(report.failures),
            duration_seconds=time.perf_counter() - start,
            errors=report.errors,
        )
        logger.info(summary.summary())
        return summary

    def cleanup_expired(self, now: datetime | None = None) -> int:
        """Delete scores whose validity has lapsed. Returns the count removed."""
        now = now or utcnow()
        removed = self.store.delete_expired_risk_scores(now)
        logger.info(f"Removed {removed} expired risk scores")
        return removed

    def get_latest_scores(self, box_id: str, now: datetime | None = None) -> list[RiskScore]:
        """Currently valid risk scores of a box."""
        now = now or utcnow()
        return [RiskScore.from_row(row) for row in self.store.get_risk_scores(box_id, now)]
