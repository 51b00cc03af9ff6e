"""
Alert generator.

Sweeps a box's latest valid risk scores, builds alerts for members that
warrant one and reconciles them with the alerts already active: new
(member, alert type) pairs are inserted with a coach assigned, existing
ones are refreshed only when the severity changed. Re-running the sweep
over unchanged scores writes nothing.
"""

import logging
import random
import time
from datetime import datetime
from typing import Any, Callable

from ..batch import AlertSweepSummary, run_in_batches, run_sequentially
from ..config import (
    DEFAULT_ENGINE_CONFIG,
    SENIOR_COACHING_ROLES,
    EngineConfig,
    RiskLevel,
)
from ..data.store import RetentionStore
from ..errors import ConflictOnUnique
from ..scoring.calculator import RiskScore
from ..utils import utcnow
from .alerts import Alert, generate_alert

logger = logging.getLogger(__name__)

CREATED = "created"
UPDATED = "updated"
UNCHANGED = "unchanged"
SKIPPED = "skipped"


def assign_coach(
    severity: RiskLevel,
    coaches: list[dict[str, Any]],
    rng: random.Random,
) -> str | None:
    """Pick a coach for a new alert.

    Critical alerts go to a head coach or owner when one is available;
    everything else is spread uniformly over all coaching staff.

    Args:
        severity: Alert severity.
        coaches: Active coaching memberships with `id` and `role`.
        rng: Random source.

    Returns:
        The chosen coach membership ID, or None if the box has no coaches.
    """
    if not coaches:
        return None
    if severity == RiskLevel.CRITICAL:
        senior_roles = {role.value for role in SENIOR_COACHING_ROLES}
        senior = [c for c in coaches if c["role"] in senior_roles]
        if senior:
            return rng.choice(senior)["id"]
    return rng.choice(coaches)["id"]


class AlertGenerator:
    """
    Generates and reconciles coach alerts from risk scores.

    Example:
        >>> generator = AlertGenerator(RetentionStore(engine))
        >>> summary = generator.process_box("box-1")
        >>> print(summary.summary())
    """

    def __init__(
        self,
        store: RetentionStore,
        config: EngineConfig = DEFAULT_ENGINE_CONFIG,
        rng: random.Random | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.config = config
        self.alerting = config.alerting
        self.rng = rng or random.Random()
        self._sleep = sleep

    def _refresh(self, existing: dict[str, Any], alert: Alert, now: datetime) -> str:
        """Bring an active alert in line with a newly generated one."""
        if existing["severity"] == alert.severity.value:
            return UNCHANGED
        row = alert.to_row()
        self.store.update_alert(
            existing["id"],
            {
                "severity": row["severity"],
                "title": row["title"],
                "description": row["description"],
                "trigger_data": row["trigger_data"],
                "suggested_actions": row["suggested_actions"],
                "updated_at": now,
            },
        )
        logger.debug(
            f"Updated {alert.alert_type.value} alert for {alert.membership_id}: "
            f"{existing['severity']} -> {alert.severity.value}"
        )
        return UPDATED

    def _insert(self, alert: Alert, now: datetime) -> str:
        """Insert a new alert, taking the update path on a unique conflict."""
        try:
            self.store.insert_alert(alert.to_row())
            logger.debug(f"Created {alert.alert_type.value} alert for {alert.membership_id}")
            return CREATED
        except ConflictOnUnique:
            existing = self.store.get_active_alert(alert.membership_id, alert.alert_type.value)
            if existing is None:
                raise
            return self._refresh(existing, alert, now)

    def process_box(self, box_id: str, now: datetime | None = None) -> AlertSweepSummary:
        """Generate, insert and refresh alerts for one box.

        Args:
            box_id: Box to process.
            now: Reference time. Defaults to the current UTC time.

        Returns:
            AlertSweepSummary with counts per action.
        """
        now = now or utcnow()
        cfg = self.alerting

        scores = [RiskScore.from_row(row) for row in self.store.get_risk_scores(box_id, now)]
        coaches = self.store.list_active_coaches(box_id)
        active = {
            (row["membership_id"], row["alert_type"]): row
            for row in self.store.list_active_alerts(box_id)
        }
        logger.info(
            f"Generating alerts for box {box_id}: {len(scores)} scores, "
            f"{len(active)} active alerts, {len(coaches)} coaches"
        )

        summary = AlertSweepSummary(box_id=box_id, evaluated=len(scores))
        inserts: dict[str, Alert] = {}
        updates: list[tuple[dict[str, Any], Alert]] = []

        for score in scores:
            alert = generate_alert(score, cfg, now)
            if alert is None:
                summary.skipped += 1
                continue
            existing = active.get((alert.membership_id, alert.alert_type.value))
            if existing is None:
                alert.assigned_coach_id = assign_coach(alert.severity, coaches, self.rng)
                inserts[alert.membership_id] = alert
            elif existing["severity"] == alert.severity.value:
                summary.unchanged += 1
            else:
                updates.append((existing, alert))

        insert_report = run_in_batches(
            list(inserts),
            lambda membership_id: self._insert(inserts[membership_id], now),
            batch_size=cfg.insert_batch_size,
            pause_seconds=cfg.insert_pause_seconds,
            max_workers=cfg.max_workers,
            sleep=self._sleep,
        )
        update_report = run_sequentially(
            range(len(updates)),
            lambda index: self._refresh(updates[index][0], updates[index][1], now),
        )

        for result in (*insert_report.successes, *update_report.successes):
            if result.value == CREATED:
                summary.created += 1
            elif result.value == UPDATED:
                summary.updated += 1
            else:
                summary.unchanged += 1

        summary.failed = len(insert_report.failures) + len(update_report.failures)
        summary.errors = insert_report.errors + [
            f"{updates[r.key][1].membership_id}: {r.error}" for r in update_report.failures
        ]
        logger.info(summary.summary())
        return summary

    def generate_for_member(
        self, risk_score: RiskScore, now: datetime | None = None
    ) -> tuple[str, Alert | None]:
        """Apply alert generation to a single freshly computed score.

        Returns:
            Tuple of (action, alert) where action is one of created,
            updated, unchanged or skipped.
        """
        now = now or utcnow()
        alert = generate_alert(risk_score, self.alerting, now)
        if alert is None:
            return SKIPPED, None

        existing = self.store.get_active_alert(alert.membership_id, alert.alert_type.value)
        if existing is not None:
            action = self._refresh(existing, alert, now)
            return action, Alert.from_row(self.store.get_alert(existing["id"]))

        coaches = self.store.list_active_coaches(risk_score.box_id)
        alert.assigned_coach_id = assign_coach(alert.severity, coaches, self.rng)
        action = self._insert(alert, now)
        if action != CREATED:
            existing = self.store.get_active_alert(alert.membership_id, alert.alert_type.value)
            return action, Alert.from_row(existing)
        return action, alert
