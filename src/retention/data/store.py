"""
Data access layer for the retention engine.

`RetentionStore` wraps a SQLAlchemy engine and exposes the reads, range
queries and idempotent writes the engine components need. Every write
is a single statement or a single transaction, so concurrent sweeps
resolve races through upsert and unique-constraint semantics rather than
read-then-write locking.
"""

import logging
from datetime import date, datetime
from typing import Any, Iterable

import pandas as pd
from sqlalchemy import and_, case, delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..config import COACHING_ROLES, AlertStatus, MembershipRole
from ..errors import ConfigurationError, ConflictOnUnique, TransientStoreError
from .schema import (
    alert_escalations,
    athlete_alerts,
    athlete_benchmarks,
    athlete_interventions,
    athlete_prs,
    athlete_risk_scores,
    athlete_wellness_checkins,
    box_memberships,
    intervention_outcomes,
    wod_attendance,
)

logger = logging.getLogger(__name__)

ACTIVE = AlertStatus.ACTIVE.value


def _between(column, start, end, end_inclusive: bool = True):
    """Range predicate: start <= column <= end (or < end)."""
    upper = column <= end if end_inclusive else column < end
    return and_(column >= start, upper)


class RetentionStore:
    """
    SQLAlchemy-backed store for signals, scores, alerts and outcomes.

    Example:
        >>> store = RetentionStore(get_engine())
        >>> athletes = store.list_active_athletes("box-1")
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    # -------------------------------------------------------------------------
    # Dialect helpers
    # -------------------------------------------------------------------------

    def _insert(self, table):
        """Dialect-specific INSERT supporting ON CONFLICT clauses."""
        dialect = self.engine.dialect.name
        if dialect == "postgresql":
            return postgresql.insert(table)
        if dialect == "sqlite":
            return sqlite.insert(table)
        raise ConfigurationError(f"Unsupported database dialect: {dialect}")

    # -------------------------------------------------------------------------
    # Memberships
    # -------------------------------------------------------------------------

    def get_membership(self, membership_id: str) -> dict[str, Any] | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(box_memberships).where(box_memberships.c.id == membership_id)
            ).first()
        return dict(row._mapping) if row else None

    def list_active_athletes(self, box_id: str) -> list[str]:
        """IDs of active athlete memberships in a box."""
        query = (
            select(box_memberships.c.id)
            .where(
                box_memberships.c.box_id == box_id,
                box_memberships.c.role == MembershipRole.ATHLETE.value,
                box_memberships.c.is_active.is_(True),
            )
            .order_by(box_memberships.c.id)
        )
        with self.engine.connect() as conn:
            return list(conn.execute(query).scalars())

    def list_active_coaches(self, box_id: str) -> list[dict[str, Any]]:
        """Active owner / head coach / coach memberships of a box."""
        query = (
            select(box_memberships.c.id, box_memberships.c.role, box_memberships.c.display_name)
            .where(
                box_memberships.c.box_id == box_id,
                box_memberships.c.role.in_([r.value for r in COACHING_ROLES]),
                box_memberships.c.is_active.is_(True),
            )
            .order_by(box_memberships.c.id)
        )
        with self.engine.connect() as conn:
            return [dict(row._mapping) for row in conn.execute(query)]

    def list_active_box_ids(self) -> list[str]:
        """Boxes with at least one active membership."""
        query = (
            select(box_memberships.c.box_id)
            .where(box_memberships.c.is_active.is_(True))
            .distinct()
            .order_by(box_memberships.c.box_id)
        )
        with self.engine.connect() as conn:
            return list(conn.execute(query).scalars())

    # -------------------------------------------------------------------------
    # Signal ledgers
    # -------------------------------------------------------------------------

    def attendance_summary(
        self, membership_id: str, start: date, end: date, end_inclusive: bool = True
    ) -> tuple[int, int]:
        """Return (attended, total) attendance records in a date range."""
        attended = func.sum(case((wod_attendance.c.status == "attended", 1), else_=0))
        query = select(func.count(), attended).where(
            wod_attendance.c.membership_id == membership_id,
            _between(wod_attendance.c.attendance_date, start, end, end_inclusive),
        )
        with self.engine.connect() as conn:
            total, attended_count = conn.execute(query).one()
        return int(attended_count or 0), int(total or 0)

    def wellness_summary(
        self, membership_id: str, start: datetime, end: datetime, end_inclusive: bool = True
    ) -> dict[str, Any]:
        """Count and averages of wellness check-ins in a range."""
        c = athlete_wellness_checkins.c
        query = select(
            func.count().label("count"),
            func.avg(c.energy_level).label("avg_energy"),
            func.avg(c.sleep_quality).label("avg_sleep"),
            func.avg(c.stress_level).label("avg_stress"),
            func.avg(c.workout_readiness).label("avg_readiness"),
        ).where(
            c.membership_id == membership_id,
            _between(c.checkin_date, start, end, end_inclusive),
        )
        with self.engine.connect() as conn:
            row = conn.execute(query).one()._mapping
        summary: dict[str, Any] = {"count": int(row["count"] or 0)}
        for key in ("avg_energy", "avg_sleep", "avg_stress", "avg_readiness"):
            summary[key] = float(row[key]) if row[key] is not None else None
        return summary

    def _count_between(self, table, membership_id, start, end, end_inclusive) -> int:
        query = select(func.count()).where(
            table.c.membership_id == membership_id,
            _between(table.c.achieved_at, start, end, end_inclusive),
        )
        with self.engine.connect() as conn:
            return int(conn.execute(query).scalar_one() or 0)

    def count_prs(
        self, membership_id: str, start: datetime, end: datetime, end_inclusive: bool = True
    ) -> int:
        return self._count_between(athlete_prs, membership_id, start, end, end_inclusive)

    def count_benchmarks(
        self, membership_id: str, start: datetime, end: datetime, end_inclusive: bool = True
    ) -> int:
        return self._count_between(athlete_benchmarks, membership_id, start, end, end_inclusive)

    def last_attended_date(self, membership_id: str) -> date | None:
        query = select(func.max(wod_attendance.c.attendance_date)).where(
            wod_attendance.c.membership_id == membership_id,
            wod_attendance.c.status == "attended",
        )
        with self.engine.connect() as conn:
            return conn.execute(query).scalar_one_or_none()

    def last_checkin_at(self, membership_id: str) -> datetime | None:
        query = select(func.max(athlete_wellness_checkins.c.checkin_date)).where(
            athlete_wellness_checkins.c.membership_id == membership_id
        )
        with self.engine.connect() as conn:
            return conn.execute(query).scalar_one_or_none()

    def last_pr_at(self, membership_id: str) -> datetime | None:
        query = select(func.max(athlete_prs.c.achieved_at)).where(
            athlete_prs.c.membership_id == membership_id
        )
        with self.engine.connect() as conn:
            return conn.execute(query).scalar_one_or_none()

    # -------------------------------------------------------------------------
    # Risk scores
    # -------------------------------------------------------------------------

    def upsert_risk_score(self, values: dict[str, Any]) -> None:
        """Insert or fully replace the risk score of a membership."""
        stmt = self._insert(athlete_risk_scores).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[athlete_risk_scores.c.membership_id],
            set_={k: stmt.excluded[k] for k in values if k != "membership_id"},
        )
        try:
            with self.engine.begin() as conn:
                conn.execute(stmt)
        except SQLAlchemyError as e:
            raise TransientStoreError("upsert_risk_score", e) from e

    def get_risk_scores(self, box_id: str, valid_at: datetime) -> list[dict[str, Any]]:
        """Risk scores of a box still valid at `valid_at`."""
        query = (
            select(athlete_risk_scores)
            .where(
                athlete_risk_scores.c.box_id == box_id,
                athlete_risk_scores.c.valid_until > valid_at,
            )
            .order_by(athlete_risk_scores.c.membership_id)
        )
        with self.engine.connect() as conn:
            return [dict(row._mapping) for row in conn.execute(query)]

    def get_latest_risk_score(
        self,
        membership_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict[str, Any] | None:
        """Latest risk score of a membership, optionally bounded by calculated_at."""
        c = athlete_risk_scores.c
        query = select(athlete_risk_scores).where(c.membership_id == membership_id)
        if start is not None:
            query = query.where(c.calculated_at >= start)
        if end is not None:
            query = query.where(c.calculated_at <= end)
        query = query.order_by(c.calculated_at.desc()).limit(1)
        with self.engine.connect() as conn:
            row = conn.execute(query).first()
        return dict(row._mapping) if row else None

    def delete_expired_risk_scores(self, now: datetime) -> int:
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    delete(athlete_risk_scores).where(athlete_risk_scores.c.valid_until <= now)
                )
        except SQLAlchemyError as e:
            raise TransientStoreError("delete_expired_risk_scores", e) from e
        return result.rowcount or 0

    # -------------------------------------------------------------------------
    # Alerts
    # -------------------------------------------------------------------------

    def insert_alert(self, values: dict[str, Any]) -> None:
        """Insert a new alert.

        Raises:
            ConflictOnUnique: An active alert of the same type already
                exists for the membership.
            TransientStoreError: Any other database failure.
        """
        try:
            with self.engine.begin() as conn:
                conn.execute(athlete_alerts.insert().values(**values))
        except IntegrityError as e:
            raise ConflictOnUnique(values["membership_id"], values["alert_type"]) from e
        except SQLAlchemyError as e:
            raise TransientStoreError("insert_alert", e) from e

    def update_alert(self, alert_id: str, values: dict[str, Any]) -> int:
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    update(athlete_alerts).where(athlete_alerts.c.id == alert_id).values(**values)
                )
        except SQLAlchemyError as e:
            raise TransientStoreError("update_alert", e) from e
        return result.rowcount or 0

    def get_alert(self, alert_id: str) -> dict[str, Any] | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(athlete_alerts).where(athlete_alerts.c.id == alert_id)
            ).first()
        return dict(row._mapping) if row else None

    def get_active_alert(self, membership_id: str, alert_type: str) -> dict[str, Any] | None:
        query = select(athlete_alerts).where(
            athlete_alerts.c.membership_id == membership_id,
            athlete_alerts.c.alert_type == alert_type,
            athlete_alerts.c.status == ACTIVE,
        )
        with self.engine.connect() as conn:
            row = conn.execute(query).first()
        return dict(row._mapping) if row else None

    def list_active_alerts(self, box_id: str) -> list[dict[str, Any]]:
        query = (
            select(athlete_alerts)
            .where(athlete_alerts.c.box_id == box_id, athlete_alerts.c.status == ACTIVE)
            .order_by(athlete_alerts.c.created_at.desc())
        )
        with self.engine.connect() as conn:
            return [dict(row._mapping) for row in conn.execute(query)]

    def list_alerts(self, box_id: str) -> list[dict[str, Any]]:
        """All alerts of a box regardless of status."""
        query = select(athlete_alerts).where(athlete_alerts.c.box_id == box_id)
        with self.engine.connect() as conn:
            return [dict(row._mapping) for row in conn.execute(query)]

    def count_alerts_created(
        self, box_id: str, since: datetime, coach_id: str | None = None
    ) -> int:
        query = select(func.count()).where(
            athlete_alerts.c.box_id == box_id, athlete_alerts.c.created_at >= since
        )
        if coach_id is not None:
            query = query.where(athlete_alerts.c.assigned_coach_id == coach_id)
        with self.engine.connect() as conn:
            return int(conn.execute(query).scalar_one() or 0)

    # -------------------------------------------------------------------------
    # Escalations
    # -------------------------------------------------------------------------

    def apply_escalation(
        self,
        alert_id: str,
        from_severity: str,
        to_severity: str,
        reason: str,
        auto_escalated: bool,
        escalated_at: datetime,
    ) -> bool:
        """Record an escalation and raise the alert severity atomically.

        The severity update is guarded on the alert still carrying
        `from_severity`; if another writer changed it first nothing is
        recorded.

        Returns:
            True if the escalation was applied.
        """
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    update(athlete_alerts)
                    .where(
                        athlete_alerts.c.id == alert_id,
                        athlete_alerts.c.severity == from_severity,
                    )
                    .values(severity=to_severity, updated_at=escalated_at)
                )
                if not result.rowcount:
                    return False
                conn.execute(
                    alert_escalations.insert().values(
                        alert_id=alert_id,
                        from_severity=from_severity,
                        to_severity=to_severity,
                        reason=reason,
                        auto_escalated=auto_escalated,
                        escalated_at=escalated_at,
                    )
                )
        except SQLAlchemyError as e:
            raise TransientStoreError("apply_escalation", e) from e
        return True

    def auto_escalated_alert_ids(self, alert_ids: Iterable[str], since: datetime) -> set[str]:
        """Alerts among `alert_ids` with an automatic escalation since `since`."""
        alert_ids = list(alert_ids)
        if not alert_ids:
            return set()
        query = select(alert_escalations.c.alert_id).where(
            alert_escalations.c.alert_id.in_(alert_ids),
            alert_escalations.c.auto_escalated.is_(True),
            alert_escalations.c.escalated_at >= since,
        )
        with self.engine.connect() as conn:
            return set(conn.execute(query).scalars())

    def list_escalations(self, alert_id: str) -> list[dict[str, Any]]:
        query = (
            select(alert_escalations)
            .where(alert_escalations.c.alert_id == alert_id)
            .order_by(alert_escalations.c.escalated_at, alert_escalations.c.id)
        )
        with self.engine.connect() as conn:
            return [dict(row._mapping) for row in conn.execute(query)]

    def escalations_frame(
        self, box_id: str, since: datetime, coach_id: str | None = None
    ) -> pd.DataFrame:
        """Escalations of a box joined with their alerts."""
        e, a = alert_escalations.c, athlete_alerts.c
        query = (
            select(
                e.id.label("escalation_id"),
                e.alert_id,
                e.from_severity,
                e.to_severity,
                e.reason,
                e.auto_escalated,
                e.escalated_at,
                a.membership_id,
                a.alert_type,
                a.assigned_coach_id,
                a.created_at.label("alert_created_at"),
            )
            .select_from(alert_escalations.join(athlete_alerts, e.alert_id == a.id))
            .where(a.box_id == box_id, e.escalated_at >= since)
            .order_by(e.escalated_at)
        )
        if coach_id is not None:
            query = query.where(a.assigned_coach_id == coach_id)
        with self.engine.connect() as conn:
            return pd.read_sql(query, conn, parse_dates=["escalated_at", "alert_created_at"])

    # -------------------------------------------------------------------------
    # Interventions and outcomes
    # -------------------------------------------------------------------------

    def get_intervention(self, intervention_id: str) -> dict[str, Any] | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(athlete_interventions).where(athlete_interventions.c.id == intervention_id)
            ).first()
        return dict(row._mapping) if row else None

    def list_interventions_ready(self, box_id: str, cutoff: datetime) -> list[str]:
        """Interventions dated on/before `cutoff` that have no outcome yet."""
        i, o = athlete_interventions.c, intervention_outcomes.c
        query = (
            select(i.id)
            .select_from(
                athlete_interventions.outerjoin(intervention_outcomes, o.intervention_id == i.id)
            )
            .where(i.box_id == box_id, i.intervention_date <= cutoff, o.id.is_(None))
            .order_by(i.intervention_date)
        )
        with self.engine.connect() as conn:
            return list(conn.execute(query).scalars())

    def interventions_frame(self, box_id: str, since: datetime) -> pd.DataFrame:
        query = (
            select(athlete_interventions)
            .where(
                athlete_interventions.c.box_id == box_id,
                athlete_interventions.c.intervention_date >= since,
            )
            .order_by(athlete_interventions.c.intervention_date)
        )
        with self.engine.connect() as conn:
            return pd.read_sql(query, conn, parse_dates=["intervention_date"])

    def insert_outcome(self, values: dict[str, Any]) -> bool:
        """Write-once insert of an intervention outcome.

        Returns:
            True if a row was written, False if one already existed.
        """
        stmt = (
            self._insert(intervention_outcomes)
            .values(**values)
            .on_conflict_do_nothing(index_elements=[intervention_outcomes.c.intervention_id])
        )
        try:
            with self.engine.begin() as conn:
                result = conn.execute(stmt)
        except SQLAlchemyError as e:
            raise TransientStoreError("insert_outcome", e) from e
        return bool(result.rowcount)

    def get_outcome(self, intervention_id: str) -> dict[str, Any] | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(intervention_outcomes).where(
                    intervention_outcomes.c.intervention_id == intervention_id
                )
            ).first()
        return dict(row._mapping) if row else None

    def outcomes_frame(self, box_id: str, since: datetime) -> pd.DataFrame:
        """Outcomes of a box joined with their intervention type."""
        o, i = intervention_outcomes.c, athlete_interventions.c
        query = (
            select(
                o.intervention_id,
                i.intervention_type,
                o.overall_effectiveness,
                o.effectiveness_score,
                o.measured_at,
            )
            .select_from(
                intervention_outcomes.join(athlete_interventions, o.intervention_id == i.id)
            )
            .where(o.box_id == box_id, o.measured_at >= since)
        )
        with self.engine.connect() as conn:
            return pd.read_sql(query, conn, parse_dates=["measured_at"])
