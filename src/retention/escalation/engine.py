"""
Escalation engine.

Periodically sweeps a box's active alerts and raises the severity of the
ones the rule families flag, recording an append-only escalation entry
in the same transaction. An alert escalated automatically is left alone
for a cool-down period; manual escalations bypass the rules and the
cool-down but still only ever raise severity.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from ..batch import EscalationSweepSummary, run_sequentially
from ..config import DEFAULT_ENGINE_CONFIG, EngineConfig, RiskLevel
from ..data.store import RetentionStore
from ..early_warning.alerts import Alert
from ..errors import InvalidEscalation, NotFound
from ..utils import utcnow
from .rules import (
    ESCALATION_RULES,
    EscalationContext,
    EscalationRule,
    evaluate_escalation,
    urgency_score,
)

logger = logging.getLogger(__name__)


@dataclass
class Escalation:
    """A recorded severity increase of an alert."""
    alert_id: str
    from_severity: RiskLevel
    to_severity: RiskLevel
    reason: str
    auto_escalated: bool
    escalated_at: datetime
    rule: str | None = None


@dataclass
class EscalationCandidate:
    """An alert the rules would escalate, ranked by urgency."""
    alert_id: str
    membership_id: str
    alert_type: str
    current_severity: RiskLevel
    target_severity: RiskLevel
    reason: str
    days_open: int
    urgency: int


class EscalationEngine:
    """
    Automatic and manual alert escalation.

    Example:
        >>> engine = EscalationEngine(RetentionStore(db_engine))
        >>> summary = engine.process_box("box-1")
        >>> engine.escalate_manually(alert_id, RiskLevel.CRITICAL, "Coach request")
    """

    def __init__(
        self,
        store: RetentionStore,
        config: EngineConfig = DEFAULT_ENGINE_CONFIG,
        rules: tuple[EscalationRule, ...] = ESCALATION_RULES,
    ):
        self.store = store
        self.config = config
        self.escalation = config.escalation
        self.rules = rules

    def _context(self, row: dict[str, Any], now: datetime) -> EscalationContext:
        alert = Alert.from_row(row)
        latest = self.store.get_latest_risk_score(alert.membership_id)
        return EscalationContext(
            alert_id=alert.id,
            alert_type=alert.alert_type,
            severity=alert.severity,
            created_at=alert.created_at,
            now=now,
            trigger=alert.trigger_data,
            latest_risk_score=latest["overall_risk_score"] if latest else None,
            last_attended=self.store.last_attended_date(alert.membership_id),
        )

    def _apply(
        self,
        alert_id: str,
        from_severity: RiskLevel,
        to_severity: RiskLevel,
        reason: str,
        auto_escalated: bool,
        now: datetime,
        rule: str | None = None,
    ) -> Escalation | None:
        applied = self.store.apply_escalation(
            alert_id,
            from_severity.value,
            to_severity.value,
            reason,
            auto_escalated,
            now,
        )
        if not applied:
            logger.warning(f"Alert {alert_id} changed severity concurrently; escalation skipped")
            return None
        logger.info(
            f"Escalated alert {alert_id}: {from_severity.value} -> {to_severity.value} ({reason})"
        )
        return Escalation(
            alert_id=alert_id,
            from_severity=from_severity,
            to_severity=to_severity,
            reason=reason,
            auto_escalated=auto_escalated,
            escalated_at=now,
            rule=rule,
        )

    def evaluate_alert(self, row: dict[str, Any], now: datetime) -> Escalation | None:
        """Evaluate one alert row and apply the first firing rule."""
        ctx = self._context(row, now)
        decision = evaluate_escalation(ctx, self.escalation, self.rules)
        if decision is None:
            return None
        return self._apply(
            ctx.alert_id,
            decision.from_severity,
            decision.to_severity,
            decision.reason,
            auto_escalated=True,
            now=now,
            rule=decision.rule,
        )

    def process_box(self, box_id: str, now: datetime | None = None) -> EscalationSweepSummary:
        """Run automatic escalation over a box's active alerts.

        Alerts with an automatic escalation inside the cool-down window
        are skipped. Each alert is escalated at most once per sweep.
        """
        now = now or utcnow()
        rows = {row["id"]: row for row in self.store.list_active_alerts(box_id)}
        cooling = self.store.auto_escalated_alert_ids(
            rows, now - timedelta(hours=self.escalation.cooldown_hours)
        )
        eligible = [alert_id for alert_id in rows if alert_id not in cooling]
        logger.info(
            f"Evaluating {len(eligible)} alerts for escalation in box {box_id} "
            f"({len(cooling)} in cool-down)"
        )

        report = run_sequentially(eligible, lambda alert_id: self.evaluate_alert(rows[alert_id], now))

        summary = EscalationSweepSummary(
            box_id=box_id,
            evaluated=len(eligible),
            escalated=sum(1 for r in report.successes if r.value is not None),
            skipped_cooldown=len(cooling),
            failed=len(report.failures),
            errors=report.errors,
        )
        logger.info(summary.summary())
        return summary

    def escalate_manually(
        self,
        alert_id: str,
        to_severity: RiskLevel,
        reason: str,
        now: datetime | None = None,
    ) -> Escalation:
        """Escalate an alert on a coach's request.

        Raises:
            NotFound: The alert does not exist.
            InvalidEscalation: The target is not above the current severity.
        """
        now = now or utcnow()
        row = self.store.get_alert(alert_id)
        if row is None:
            raise NotFound("alert", alert_id)

        current = RiskLevel(row["severity"])
        if to_severity.rank <= current.rank:
            raise InvalidEscalation(
                f"Cannot escalate alert {alert_id} from {current.value} to {to_severity.value}"
            )

        escalation = self._apply(
            alert_id, current, to_severity, reason, auto_escalated=False, now=now, rule="manual"
        )
        if escalation is None:
            raise InvalidEscalation(f"Alert {alert_id} severity changed during escalation")
        return escalation

    def identify_alerts_needing_escalation(
        self,
        box_id: str,
        now: datetime | None = None,
        limit: int | None = None,
    ) -> list[EscalationCandidate]:
        """Dry-run the rules over a box and rank alerts by urgency."""
        now = now or utcnow()
        limit = limit or self.escalation.urgent_alerts_limit

        candidates = []
        for row in self.store.list_active_alerts(box_id):
            ctx = self._context(row, now)
            decision = evaluate_escalation(ctx, self.escalation, self.rules)
            if decision is None:
                continue
            candidates.append(
                EscalationCandidate(
                    alert_id=ctx.alert_id,
                    membership_id=row["membership_id"],
                    alert_type=row["alert_type"],
                    current_severity=ctx.severity,
                    target_severity=decision.to_severity,
                    reason=decision.reason,
                    days_open=ctx.days_open,
                    urgency=urgency_score(ctx.days_open, ctx.severity, decision.to_severity),
                )
            )

        candidates.sort(key=lambda c: c.urgency, reverse=True)
        return candidates[:limit]
