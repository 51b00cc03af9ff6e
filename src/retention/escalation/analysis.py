"""
Escalation effectiveness and pattern analysis.

Read-only reports over recorded escalations: whether escalations led to
successful interventions, which severity paths and reasons dominate,
how coaches are loaded, and rule-based recommendations for tuning the
escalation process. All aggregation is done with pandas.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import numpy as np
import pandas as pd

from ..config import DEFAULT_ENGINE_CONFIG, EngineConfig
from ..data.store import RetentionStore
from ..utils import format_dataframe_as_markdown, round2, utcnow
from .engine import EscalationCandidate, EscalationEngine

logger = logging.getLogger(__name__)


@dataclass
class EscalationEffectiveness:
    """Whether escalations were followed by successful interventions."""
    successful_interventions: int = 0
    failed_escalations: int = 0
    avg_hours_to_intervention: float | None = None


@dataclass
class EscalationPath:
    """Aggregate of escalations sharing a (from, to) severity path."""
    from_severity: str
    to_severity: str
    count: int
    avg_hours_to_escalate: float
    common_reasons: list[str]


@dataclass
class EscalationAnalysis:
    """Escalation patterns of a box over a lookback period."""
    box_id: str
    period_start: datetime
    period_end: datetime
    total_escalations: int = 0
    auto_escalations: int = 0
    manual_escalations: int = 0
    escalations_by_type: dict[str, int] = field(default_factory=dict)
    escalation_paths: list[EscalationPath] = field(default_factory=list)
    alerts_requiring_escalation: list[EscalationCandidate] = field(default_factory=list)
    effectiveness: EscalationEffectiveness = field(default_factory=EscalationEffectiveness)

    @property
    def efficiency(self) -> float:
        """Share of escalations followed by a successful intervention, in %."""
        if self.total_escalations == 0:
            return 0.0
        return self.effectiveness.successful_interventions / self.total_escalations * 100


@dataclass
class BoxEscalationSummary:
    """Box-wide escalation metrics."""
    box_id: str
    total_escalations: int = 0
    escalation_rate: float = 0.0
    auto_escalation_rate: float = 0.0
    avg_escalation_hours: float | None = None
    critical_escalations: int = 0
    daily_trend: dict[str, int] = field(default_factory=dict)
    top_reasons: list[dict[str, Any]] = field(default_factory=list)
    coach_workload: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class CoachEscalationMetrics:
    """Escalation metrics for the alerts assigned to one coach."""
    coach_id: str
    total_alerts_handled: int = 0
    escalations: int = 0
    avg_hours_to_escalation: float | None = None
    success_rate: float | None = None
    common_reasons: list[str] = field(default_factory=list)


@dataclass
class Recommendation:
    category: str  # process, training, threshold, assignment
    priority: str  # high, medium, low
    title: str
    description: str
    action_items: list[str]


@dataclass
class RecommendationReport:
    recommendations: list[Recommendation] = field(default_factory=list)
    efficiency: float = 0.0
    bottlenecks: list[str] = field(default_factory=list)
    opportunities: list[str] = field(default_factory=list)


_PRIORITY_ORDER = {"high": 3, "medium": 2, "low": 1}


def _reason_keys(reasons: pd.Series) -> pd.Series:
    return reasons.str.split(" - ").str[0]


def _hours_to_escalate(df: pd.DataFrame) -> pd.Series:
    return (df["escalated_at"] - df["alert_created_at"]).dt.total_seconds() / 3600


def _match_followups(
    escalations: pd.DataFrame,
    interventions: pd.DataFrame,
    key: str,
    window: pd.Timedelta,
) -> pd.DataFrame:
    """Pair each escalation with the first intervention on `key` within `window`."""
    esc = escalations[[key, "escalated_at"]].copy()
    esc["escalated_at"] = pd.to_datetime(esc["escalated_at"]).astype("datetime64[ns]")
    esc = esc.sort_values("escalated_at")

    inter = pd.DataFrame()
    if not interventions.empty:
        inter = interventions.loc[
            interventions[key].notna(), [key, "intervention_date", "outcome"]
        ].copy()
    if inter.empty:
        return esc.assign(intervention_date=pd.NaT, outcome=None)

    inter["intervention_date"] = pd.to_datetime(inter["intervention_date"]).astype("datetime64[ns]")
    inter = inter.sort_values("intervention_date")
    return pd.merge_asof(
        esc,
        inter,
        left_on="escalated_at",
        right_on="intervention_date",
        by=key,
        direction="forward",
        tolerance=window,
    )


def analyze_escalation_effectiveness(
    escalations: pd.DataFrame,
    interventions: pd.DataFrame,
    now: datetime,
    window_days: int = 7,
) -> EscalationEffectiveness:
    """Match each escalation with the nearest later intervention for the member.

    An escalation followed within `window_days` by a positive intervention
    counts as a success, a negative one as a failure. An escalation older
    than `window_days` with no intervention in that window also counts as
    a failure.

    Args:
        escalations: Frame with membership_id and escalated_at.
        interventions: Frame with membership_id, intervention_date, outcome.
        now: Reference time.
        window_days: How long after an escalation an intervention counts.

    Returns:
        EscalationEffectiveness counts and average response time.
    """
    if escalations.empty:
        return EscalationEffectiveness()

    window = pd.Timedelta(days=window_days)
    matched = _match_followups(escalations, interventions, "membership_id", window)

    found = matched["intervention_date"].notna()
    age = pd.Timestamp(now) - matched["escalated_at"]
    successful = int((found & (matched["outcome"] == "positive")).sum())
    failed = int(
        (found & (matched["outcome"] == "negative")).sum()
        + (~found & (age > window)).sum()
    )

    hours = (
        matched.loc[found, "intervention_date"] - matched.loc[found, "escalated_at"]
    ).dt.total_seconds() / 3600
    avg_hours = round2(hours.mean()) if not hours.empty else None

    return EscalationEffectiveness(
        successful_interventions=successful,
        failed_escalations=failed,
        avg_hours_to_intervention=avg_hours,
    )


class EscalationAnalyzer:
    """
    Escalation reporting for a box.

    Example:
        >>> analyzer = EscalationAnalyzer(RetentionStore(engine))
        >>> analysis = analyzer.analyze_escalation_patterns("box-1")
        >>> print(format_escalation_report_markdown(analysis))
    """

    def __init__(self, store: RetentionStore, config: EngineConfig = DEFAULT_ENGINE_CONFIG):
        self.store = store
        self.config = config
        self.escalation = config.escalation
        self.engine = EscalationEngine(store, config)

    def analyze_escalation_patterns(
        self,
        box_id: str,
        lookback_days: int = 30,
        now: datetime | None = None,
    ) -> EscalationAnalysis:
        """Summarize escalation volume, paths, reasons and effectiveness."""
        now = now or utcnow()
        since = now - timedelta(days=lookback_days)
        logger.info(f"Analyzing escalation patterns for box {box_id} over {lookback_days} days")

        df = self.store.escalations_frame(box_id, since)
        analysis = EscalationAnalysis(box_id=box_id, period_start=since, period_end=now)
        analysis.alerts_requiring_escalation = self.engine.identify_alerts_needing_escalation(
            box_id, now
        )
        if df.empty:
            return analysis

        auto = int(df["auto_escalated"].astype(bool).sum())
        analysis.total_escalations = len(df)
        analysis.auto_escalations = auto
        analysis.manual_escalations = len(df) - auto
        analysis.escalations_by_type = {
            str(k): int(v) for k, v in df["alert_type"].value_counts().items()
        }

        df = df.assign(hours=_hours_to_escalate(df), reason_key=_reason_keys(df["reason"]))
        for (from_sev, to_sev), group in df.groupby(["from_severity", "to_severity"], sort=False):
            analysis.escalation_paths.append(
                EscalationPath(
                    from_severity=from_sev,
                    to_severity=to_sev,
                    count=len(group),
                    avg_hours_to_escalate=round2(group["hours"].mean()),
                    common_reasons=group["reason_key"].value_counts().head(3).index.tolist(),
                )
            )

        interventions = self.store.interventions_frame(box_id, since)
        analysis.effectiveness = analyze_escalation_effectiveness(
            df, interventions, now, self.escalation.intervention_window_days
        )
        return analysis

    def get_box_escalation_summary(
        self,
        box_id: str,
        lookback_days: int = 30,
        now: datetime | None = None,
    ) -> BoxEscalationSummary:
        """Escalation rate, reasons, daily trend and per-coach workload."""
        now = now or utcnow()
        since = now - timedelta(days=lookback_days)

        df = self.store.escalations_frame(box_id, since)
        alerts_created = self.store.count_alerts_created(box_id, since)

        # One bucket per day, ending with today
        daily = {
            (now - timedelta(days=offset)).date().isoformat(): 0
            for offset in range(lookback_days - 1, -1, -1)
        }
        summary = BoxEscalationSummary(box_id=box_id, daily_trend=daily)
        if df.empty:
            return summary

        total = len(df)
        summary.total_escalations = total
        summary.escalation_rate = round2(total / alerts_created * 100) if alerts_created else 0.0
        summary.auto_escalation_rate = round2(df["auto_escalated"].astype(bool).sum() / total * 100)
        summary.avg_escalation_hours = round2(_hours_to_escalate(df).mean())
        summary.critical_escalations = int((df["to_severity"] == "critical").sum())

        for day, count in df["escalated_at"].dt.date.value_counts().items():
            key = day.isoformat()
            if key in daily:
                daily[key] = int(count)

        reasons = _reason_keys(df["reason"]).value_counts().head(5)
        summary.top_reasons = [
            {"reason": reason, "count": int(count)} for reason, count in reasons.items()
        ]

        names = {c["id"]: c.get("display_name") for c in self.store.list_active_coaches(box_id)}
        assigned = df.dropna(subset=["assigned_coach_id"]).assign(hours=_hours_to_escalate(df))
        for coach_id, group in assigned.groupby("assigned_coach_id"):
            summary.coach_workload.append(
                {
                    "coach_id": coach_id,
                    "display_name": names.get(coach_id),
                    "escalations_handled": len(group),
                    "avg_handling_hours": round2(group["hours"].mean()),
                }
            )
        return summary

    def get_coach_escalation_metrics(
        self,
        coach_id: str,
        box_id: str,
        lookback_days: int = 30,
        now: datetime | None = None,
    ) -> CoachEscalationMetrics:
        """Escalation efficiency for alerts assigned to one coach."""
        now = now or utcnow()
        since = now - timedelta(days=lookback_days)

        df = self.store.escalations_frame(box_id, since, coach_id=coach_id)
        metrics = CoachEscalationMetrics(
            coach_id=coach_id,
            total_alerts_handled=self.store.count_alerts_created(box_id, since, coach_id=coach_id),
        )
        if df.empty:
            return metrics

        metrics.escalations = len(df)
        metrics.avg_hours_to_escalation = round2(_hours_to_escalate(df).mean())
        metrics.common_reasons = (
            _reason_keys(df["reason"]).value_counts().head(5).index.tolist()
        )

        # Same response window as the box-level effectiveness match
        interventions = self.store.interventions_frame(box_id, since)
        if not interventions.empty:
            interventions = interventions[interventions["coach_id"] == coach_id]
        matched = _match_followups(
            df,
            interventions,
            "alert_id",
            pd.Timedelta(days=self.escalation.intervention_window_days),
        )
        successful = int((matched["outcome"] == "positive").sum())
        metrics.success_rate = round2(successful / len(df) * 100)
        return metrics

    def generate_escalation_recommendations(
        self, box_id: str, now: datetime | None = None
    ) -> RecommendationReport:
        """Rule-based recommendations for improving the escalation process."""
        now = now or utcnow()
        cfg = self.escalation
        analysis = self.analyze_escalation_patterns(box_id, lookback_days=60, now=now)
        summary = self.get_box_escalation_summary(box_id, lookback_days=30, now=now)

        report = RecommendationReport(efficiency=round2(analysis.efficiency))

        if summary.auto_escalation_rate > cfg.high_auto_escalation_rate:
            report.recommendations.append(
                Recommendation(
                    category="process",
                    priority="high",
                    title="High Auto-Escalation Rate",
                    description=(
                        f"{summary.auto_escalation_rate:.1f}% of escalations are automatic, "
                        "indicating coaches may not be responding to alerts promptly."
                    ),
                    action_items=[
                        "Review coach alert notification settings",
                        "Implement alert acknowledgment requirements",
                        "Provide training on timely alert response",
                        "Consider adjusting auto-escalation thresholds",
                    ],
                )
            )
            report.bottlenecks.append("Delayed coach response to alerts")

        if summary.avg_escalation_hours and summary.avg_escalation_hours > cfg.slow_escalation_hours:
            report.recommendations.append(
                Recommendation(
                    category="threshold",
                    priority="medium",
                    title="Slow Escalation Times",
                    description=(
                        f"Average time to escalation is {summary.avg_escalation_hours:.1f} hours, "
                        "which may delay critical interventions."
                    ),
                    action_items=[
                        "Review and optimize escalation time thresholds",
                        "Implement priority-based alert routing",
                        "Set up automated reminders for pending alerts",
                        "Create escalation urgency indicators",
                    ],
                )
            )
            report.bottlenecks.append("Slow escalation processing")

        if analysis.total_escalations > 0 and analysis.efficiency < cfg.low_efficiency_rate:
            report.recommendations.append(
                Recommendation(
                    category="training",
                    priority="high",
                    title="Low Escalation Success Rate",
                    description=(
                        f"Only {analysis.efficiency:.1f}% of escalations result in "
                        "successful interventions."
                    ),
                    action_items=[
                        "Provide intervention training for coaches",
                        "Review escalation criteria accuracy",
                        "Implement post-escalation follow-up protocols",
                        "Analyze successful intervention patterns",
                    ],
                )
            )
            report.opportunities.append("Improve intervention effectiveness training")

        workloads = [c["escalations_handled"] for c in summary.coach_workload]
        if len(workloads) > 1 and float(np.std(workloads)) > cfg.workload_spread_threshold:
            report.recommendations.append(
                Recommendation(
                    category="assignment",
                    priority="medium",
                    title="Uneven Escalation Distribution",
                    description="Escalation workload is unevenly distributed among coaches.",
                    action_items=[
                        "Review alert assignment algorithms",
                        "Implement workload balancing for escalations",
                        "Cross-train coaches for escalation handling",
                        "Monitor coach capacity and availability",
                    ],
                )
            )
            report.bottlenecks.append("Uneven coach workload distribution")

        if summary.top_reasons and summary.total_escalations:
            top = summary.top_reasons[0]
            share = top["count"] / summary.total_escalations
            if share > cfg.dominant_reason_share:
                reason = top["reason"]
                report.recommendations.append(
                    Recommendation(
                        category="process",
                        priority="medium",
                        title=f'High Frequency of "{reason}" Escalations',
                        description=f"{reason} accounts for {share * 100:.1f}% of escalations.",
                        action_items=[
                            f"Implement proactive monitoring for {reason.lower()}",
                            "Review early warning systems for this risk factor",
                            "Create specific intervention protocols",
                            "Train coaches on prevention strategies",
                        ],
                    )
                )
                report.opportunities.append(f"Proactive {reason.lower()} prevention")

        report.recommendations.sort(key=lambda r: _PRIORITY_ORDER[r.priority], reverse=True)
        return report


def format_escalation_report_markdown(
    analysis: EscalationAnalysis,
    recommendations: RecommendationReport | None = None,
) -> str:
    """Render an escalation analysis as markdown.

    Args:
        analysis: EscalationAnalysis to format.
        recommendations: Optional recommendations to append.

    Returns:
        Markdown-formatted string.
    """
    lines = [
        "# Escalation Report",
        f"**Box**: {analysis.box_id}",
        f"**Period**: {analysis.period_start:%Y-%m-%d} → {analysis.period_end:%Y-%m-%d}",
        "",
        "## Summary",
        f"- Total escalations: {analysis.total_escalations}",
        f"- Automatic: {analysis.auto_escalations}",
        f"- Manual: {analysis.manual_escalations}",
        f"- Successful interventions: {analysis.effectiveness.successful_interventions}",
        f"- Failed escalations: {analysis.effectiveness.failed_escalations}",
        f"- Efficiency: {analysis.efficiency:.1f}%",
        "",
    ]

    if analysis.escalation_paths:
        paths = pd.DataFrame(
            [
                {
                    "Path": f"{p.from_severity} → {p.to_severity}",
                    "Count": p.count,
                    "Avg Hours": p.avg_hours_to_escalate,
                    "Top Reasons": "; ".join(p.common_reasons),
                }
                for p in analysis.escalation_paths
            ]
        )
        lines.append("## Escalation Paths")
        lines.append("")
        lines.append(format_dataframe_as_markdown(paths))
        lines.append("")

    if analysis.alerts_requiring_escalation:
        pending = pd.DataFrame(
            [
                {
                    "Alert": c.alert_id,
                    "Member": c.membership_id,
                    "Current": c.current_severity.value,
                    "Suggested": c.target_severity.value,
                    "Urgency": c.urgency,
                }
                for c in analysis.alerts_requiring_escalation
            ]
        )
        lines.append("## Alerts Requiring Escalation")
        lines.append("")
        lines.append(format_dataframe_as_markdown(pending))
        lines.append("")

    if recommendations and recommendations.recommendations:
        lines.append("## Recommendations")
        lines.append("")
        for i, rec in enumerate(recommendations.recommendations, 1):
            lines.append(f"### {i}. {rec.title} ({rec.priority})")
            lines.append(rec.description)
            for item in rec.action_items:
                lines.append(f"- {item}")
            lines.append("")

    return "\n".join(lines)
