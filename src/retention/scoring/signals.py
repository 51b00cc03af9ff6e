"""
Windowed signal aggregation and component score formulas.

The aggregator pulls a member's attendance, wellness, PR and benchmark
aggregates for the current lookback window and the equal-length window
before it, plus last-event dates, issuing the store reads concurrently.
The formulas below are pure functions of those aggregates.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from ..data.store import RetentionStore

logger = logging.getLogger(__name__)


@dataclass
class WindowAggregates:
    """Raw aggregates for one time window."""
    attended: int = 0
    attendance_total: int = 0
    checkins: int = 0
    avg_energy: float | None = None
    avg_sleep: float | None = None
    avg_stress: float | None = None
    avg_readiness: float | None = None
    prs: int = 0
    benchmarks: int = 0

    @property
    def attendance_rate(self) -> float:
        """Attended / total records, 0 with no records."""
        if self.attendance_total == 0:
            return 0.0
        return self.attended / self.attendance_total

    @property
    def performance_count(self) -> int:
        return self.prs + self.benchmarks

    def as_dict(self) -> dict:
        return {
            "attended": self.attended,
            "attendance_total": self.attendance_total,
            "checkins": self.checkins,
            "avg_energy": self.avg_energy,
            "avg_sleep": self.avg_sleep,
            "avg_stress": self.avg_stress,
            "avg_readiness": self.avg_readiness,
            "prs": self.prs,
            "benchmarks": self.benchmarks,
        }


@dataclass
class MemberSignals:
    """Everything the risk calculator needs about one member."""
    membership_id: str
    box_id: str
    joined_at: datetime
    lookback_days: int
    current: WindowAggregates = field(default_factory=WindowAggregates)
    previous: WindowAggregates = field(default_factory=WindowAggregates)
    last_visit: date | None = None
    last_checkin: datetime | None = None
    last_pr: datetime | None = None


# =============================================================================
# Component formulas
# =============================================================================


def attendance_score(window: WindowAggregates) -> float:
    return min(window.attendance_rate * 100, 100.0)


def wellness_composite(window: WindowAggregates, default: float = 50.0) -> float:
    """Mean of energy, sleep, readiness and inverted stress on a 0-100 scale.

    Returns `default` when the window holds no check-ins. Missing averages
    inside a non-empty window fall back to the 1-10 midpoint.
    """
    if window.checkins == 0:
        return default

    def avg(value: float | None) -> float:
        return value if value is not None else 5.0

    energy = avg(window.avg_energy) * 10
    sleep = avg(window.avg_sleep) * 10
    readiness = avg(window.avg_readiness) * 10
    stress = (10 - avg(window.avg_stress)) * 10
    return (energy + sleep + readiness + stress) / 4


def performance_score(window: WindowAggregates) -> float:
    return float(min(window.prs * 15 + window.benchmarks * 10, 100))


def engagement_score(window: WindowAggregates, lookback_days: int) -> float:
    return min(window.checkins / lookback_days * 100, 100.0)


def percent_change(current: float, previous: float, epsilon: float) -> float:
    """Signed % change of `current` vs `previous` with a floored denominator."""
    return (current - previous) / max(previous, epsilon) * 100


def compute_trends(
    current: WindowAggregates,
    previous: WindowAggregates,
    rate_epsilon: float = 0.01,
    count_epsilon: float = 1.0,
    wellness_default: float = 50.0,
) -> dict[str, float | None]:
    """Trends of each signal vs the previous window.

    A trend is None when the previous window has no records for that
    signal, so an absent baseline never reads as a decline.
    """
    attendance = None
    if previous.attendance_total > 0:
        attendance = percent_change(
            current.attendance_rate, previous.attendance_rate, rate_epsilon
        )

    performance = None
    if previous.performance_count > 0:
        performance = percent_change(
            current.performance_count, previous.performance_count, count_epsilon
        )

    engagement = None
    wellness = None
    if previous.checkins > 0:
        engagement = percent_change(current.checkins, previous.checkins, count_epsilon)
        wellness = percent_change(
            wellness_composite(current, wellness_default),
            wellness_composite(previous, wellness_default),
            count_epsilon,
        )

    return {
        "attendance_trend": attendance,
        "performance_trend": performance,
        "engagement_trend": engagement,
        "wellness_trend": wellness,
    }


# =============================================================================
# Aggregation
# =============================================================================


class SignalAggregator:
    """
    Pulls windowed aggregates for a member from the store.

    The current window covers [now - lookback, now]; the previous window
    covers [now - 2 * lookback, now - lookback), so a record on the
    boundary counts once.
    """

    def __init__(self, store: RetentionStore, max_workers: int = 8):
        self.store = store
        self.max_workers = max_workers

    def window(
        self,
        membership_id: str,
        start: datetime,
        end: datetime,
        end_inclusive: bool,
    ) -> WindowAggregates:
        """Aggregates of a single window starting at `start`."""
        attended, total = self.store.attendance_summary(
            membership_id, start.date(), end.date(), end_inclusive
        )
        wellness = self.store.wellness_summary(membership_id, start, end, end_inclusive)
        return WindowAggregates(
            attended=attended,
            attendance_total=total,
            checkins=wellness["count"],
            avg_energy=wellness["avg_energy"],
            avg_sleep=wellness["avg_sleep"],
            avg_stress=wellness["avg_stress"],
            avg_readiness=wellness["avg_readiness"],
            prs=self.store.count_prs(membership_id, start, end, end_inclusive),
            benchmarks=self.store.count_benchmarks(membership_id, start, end, end_inclusive),
        )

    def collect(
        self,
        membership: dict,
        lookback_days: int,
        now: datetime,
    ) -> MemberSignals:
        """Gather both windows and last-event dates for a membership.

        Args:
            membership: Membership row (id, box_id, joined_at).
            lookback_days: Window length in days.
            now: Reference time.

        Returns:
            MemberSignals for the membership.
        """
        membership_id = membership["id"]
        start = now - timedelta(days=lookback_days)
        prev_start = now - timedelta(days=2 * lookback_days)

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            current = executor.submit(self.window, membership_id, start, now, True)
            previous = executor.submit(self.window, membership_id, prev_start, start, False)
            last_visit = executor.submit(self.store.last_attended_date, membership_id)
            last_checkin = executor.submit(self.store.last_checkin_at, membership_id)
            last_pr = executor.submit(self.store.last_pr_at, membership_id)

            signals = MemberSignals(
                membership_id=membership_id,
                box_id=membership["box_id"],
                joined_at=membership["joined_at"],
                lookback_days=lookback_days,
                current=current.result(),
                previous=previous.result(),
                last_visit=last_visit.result(),
                last_checkin=last_checkin.result(),
                last_pr=last_pr.result(),
            )

        logger.debug(
            f"Signals for {membership_id}: {signals.current.attended}/"
            f"{signals.current.attendance_total} attended, "
            f"{signals.current.checkins} check-ins"
        )
        return signals
