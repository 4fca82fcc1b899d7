"""Repository classes for dispatch engine data access.

Every write method accepts an optional ``conn``. When given, the statement
joins the caller's transaction so multi-entity operations (assign, review)
commit or roll back as one unit. Without it the repository opens its own
short transaction, like the single-row helpers always did.
"""

import json
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Iterator

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.engine import Connection, Engine

from services.dispatch.src.dispatch.db.models import (
    activity_events,
    assignments,
    escalations,
    issues,
    resolution_proofs,
    sla_rules,
    verification_records,
    worker_metrics,
    worker_ratings,
    workers,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def as_utc(value: datetime | None) -> datetime | None:
    """Normalise a datetime to aware UTC (SQLite hands back naive values)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_dict(row) -> dict:
    d = dict(row)
    for key, value in d.items():
        if isinstance(value, datetime):
            d[key] = as_utc(value)
    return d


class _Repository:
    def __init__(self, engine: Engine):
        self.engine = engine

    @contextmanager
    def _begin(self, conn: Connection | None) -> Iterator[Connection]:
        if conn is not None:
            yield conn
            return
        with self.engine.begin() as own:
            yield own

    @contextmanager
    def _read(self, conn: Connection | None) -> Iterator[Connection]:
        if conn is not None:
            yield conn
            return
        with self.engine.connect() as own:
            yield own


class IssueRepository(_Repository):
    """Data access for issues, with compare-and-swap updates."""

    def create(
        self,
        *,
        category: str,
        description: str,
        risk_score: int,
        priority_tier: str,
        is_auto_escalated: bool = False,
        needs_manual_review: bool = False,
        classifier_confidence: int | None = None,
        now: datetime | None = None,
        conn: Connection | None = None,
    ) -> dict:
        now = now or _now()
        row = {
            "id": _new_id(),
            "category": category,
            "description": description,
            "risk_score": risk_score,
            "priority_tier": priority_tier,
            "status": "Reported",
            "is_auto_escalated": is_auto_escalated,
            "needs_manual_review": needs_manual_review,
            "classifier_confidence": classifier_confidence,
            "sla_deadline": None,
            "resolved_at": None,
            "version": 1,
            "created_at": now,
            "updated_at": now,
        }
        with self._begin(conn) as c:
            c.execute(issues.insert().values(row))
        return row

    def get(self, issue_id: str, conn: Connection | None = None) -> dict | None:
        with self._read(conn) as c:
            result = c.execute(select(issues).where(issues.c.id == issue_id))
            row = result.mappings().first()
            return _to_dict(row) if row else None

    def compare_and_set(
        self,
        issue_id: str,
        *,
        expected_status: str,
        expected_version: int,
        values: dict,
        now: datetime | None = None,
        conn: Connection | None = None,
    ) -> bool:
        """Apply ``values`` only if status and version still match.

        Returns False when another writer got there first; nothing is
        written in that case.
        """
        with self._begin(conn) as c:
            result = c.execute(
                update(issues)
                .where(
                    issues.c.id == issue_id,
                    issues.c.status == expected_status,
                    issues.c.version == expected_version,
                )
                .values(**values, version=expected_version + 1, updated_at=now or _now())
            )
            return result.rowcount == 1

    def list_all(
        self,
        status: str | None = None,
        category: str | None = None,
        limit: int = 100,
    ) -> list[dict]:
        query = select(issues)
        if status:
            query = query.where(issues.c.status == status)
        if category:
            query = query.where(issues.c.category == category)
        query = query.order_by(issues.c.created_at.desc()).limit(limit)
        with self.engine.connect() as conn:
            return [_to_dict(row) for row in conn.execute(query).mappings()]

    def list_with_deadline(self, statuses: list[str]) -> list[dict]:
        """Issues in ``statuses`` that have an SLA deadline, earliest first."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(issues)
                .where(
                    issues.c.status.in_(statuses),
                    issues.c.sla_deadline.is_not(None),
                )
                .order_by(issues.c.sla_deadline.asc())
            )
            return [_to_dict(row) for row in result.mappings()]

    def list_closed(self) -> list[dict]:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(issues.c.id, issues.c.created_at, issues.c.resolved_at)
                .where(issues.c.status == "Closed", issues.c.resolved_at.is_not(None))
            )
            return [_to_dict(row) for row in result.mappings()]

    def count(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(issues)).scalar_one()


class WorkerRepository(_Repository):
    """Data access for worker profiles."""

    def create(
        self,
        name: str,
        department: str | None = None,
        availability: str = "Available",
        last_assigned_at: datetime | None = None,
        now: datetime | None = None,
    ) -> dict:
        now = now or _now()
        row = {
            "id": _new_id(),
            "name": name,
            "department": department,
            "availability": availability,
            "last_assigned_at": last_assigned_at,
            "created_at": now,
        }
        with self.engine.begin() as conn:
            conn.execute(workers.insert().values(row))
            conn.execute(worker_metrics.insert().values(
                worker_id=row["id"],
                total_assigned=0,
                total_resolved=0,
                rework_count=0,
                rating_count=0,
                rating_avg=None,
                last_updated=now,
            ))
        return row

    def get(self, worker_id: str, conn: Connection | None = None) -> dict | None:
        with self._read(conn) as c:
            result = c.execute(select(workers).where(workers.c.id == worker_id))
            row = result.mappings().first()
            return _to_dict(row) if row else None

    def list_available(self, conn: Connection | None = None) -> list[dict]:
        """Workers whose stored availability is Available (cooldown not applied)."""
        with self._read(conn) as c:
            result = c.execute(
                select(workers)
                .where(workers.c.availability == "Available")
                .order_by(workers.c.id)
            )
            return [_to_dict(row) for row in result.mappings()]

    def set_availability(self, worker_id: str, availability: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                update(workers)
                .where(workers.c.id == worker_id)
                .values(availability=availability)
            )
            return result.rowcount == 1

    def claim(
        self,
        worker_id: str,
        *,
        now: datetime,
        cooldown: timedelta,
        conn: Connection | None = None,
    ) -> bool:
        """Stamp ``last_assigned_at`` if the worker is still eligible.

        The cooldown predicate is evaluated by the database inside the
        UPDATE, so of two concurrent claims at most one sees a row.
        """
        with self._begin(conn) as c:
            result = c.execute(
                update(workers)
                .where(
                    workers.c.id == worker_id,
                    workers.c.availability == "Available",
                    or_(
                        workers.c.last_assigned_at.is_(None),
                        workers.c.last_assigned_at <= now - cooldown,
                    ),
                )
                .values(last_assigned_at=now)
            )
            return result.rowcount == 1


class AssignmentRepository(_Repository):
    """Data access for issue/worker assignments."""

    def create(
        self,
        *,
        issue_id: str,
        worker_id: str,
        assigned_at: datetime,
        deadline: datetime,
        priority: str,
        conn: Connection | None = None,
    ) -> dict:
        row = {
            "id": _new_id(),
            "issue_id": issue_id,
            "worker_id": worker_id,
            "assigned_at": assigned_at,
            "deadline": deadline,
            "priority": priority,
            "is_active": True,
        }
        with self._begin(conn) as c:
            c.execute(assignments.insert().values(row))
        return row

    def deactivate_active(self, issue_id: str, conn: Connection | None = None) -> int:
        with self._begin(conn) as c:
            result = c.execute(
                update(assignments)
                .where(assignments.c.issue_id == issue_id, assignments.c.is_active.is_(True))
                .values(is_active=False)
            )
            return result.rowcount

    def get_active(self, issue_id: str, conn: Connection | None = None) -> dict | None:
        with self._read(conn) as c:
            result = c.execute(
                select(assignments).where(
                    assignments.c.issue_id == issue_id,
                    assignments.c.is_active.is_(True),
                )
            )
            row = result.mappings().first()
            return _to_dict(row) if row else None

    def list_by_issue(self, issue_id: str) -> list[dict]:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(assignments)
                .where(assignments.c.issue_id == issue_id)
                .order_by(assignments.c.assigned_at.asc())
            )
            return [_to_dict(row) for row in result.mappings()]

    def count_active_by_worker(self, conn: Connection | None = None) -> dict[str, int]:
        with self._read(conn) as c:
            result = c.execute(
                select(assignments.c.worker_id, func.count().label("active"))
                .where(assignments.c.is_active.is_(True))
                .group_by(assignments.c.worker_id)
            )
            return {row.worker_id: row.active for row in result}


class VerificationRepository(_Repository):
    """Append-only verification records."""

    def create(
        self,
        *,
        issue_id: str,
        reviewer_id: str,
        worker_id: str | None,
        action: str,
        comment: str | None,
        rating: int | None,
        now: datetime | None = None,
        conn: Connection | None = None,
    ) -> dict:
        row = {
            "id": _new_id(),
            "issue_id": issue_id,
            "reviewer_id": reviewer_id,
            "worker_id": worker_id,
            "action": action,
            "comment": comment,
            "rating": rating,
            "created_at": now or _now(),
        }
        with self._begin(conn) as c:
            c.execute(verification_records.insert().values(row))
        return row

    def list_by_issue(self, issue_id: str) -> list[dict]:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(verification_records)
                .where(verification_records.c.issue_id == issue_id)
                .order_by(verification_records.c.created_at.asc())
            )
            return [_to_dict(row) for row in result.mappings()]


class WorkerMetricsRepository(_Repository):
    """Derived per-worker performance counters."""

    _COUNTERS = ("total_assigned", "total_resolved", "rework_count")

    def get(self, worker_id: str) -> dict | None:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(worker_metrics).where(worker_metrics.c.worker_id == worker_id)
            )
            row = result.mappings().first()
            return _to_dict(row) if row else None

    def increment(
        self,
        worker_id: str,
        counter: str,
        *,
        now: datetime | None = None,
        conn: Connection | None = None,
    ) -> None:
        if counter not in self._COUNTERS:
            raise ValueError(f"Unknown metrics counter: {counter}")
        column = worker_metrics.c[counter]
        with self._begin(conn) as c:
            result = c.execute(
                update(worker_metrics)
                .where(worker_metrics.c.worker_id == worker_id)
                .values({counter: column + 1, "last_updated": now or _now()})
            )
            if result.rowcount != 1:
                raise LookupError(f"No metrics row for worker {worker_id}")

    def record_rating(
        self,
        worker_id: str,
        rating: int,
        *,
        now: datetime | None = None,
        conn: Connection | None = None,
    ) -> None:
        """Fold one rating into the running average in a single UPDATE."""
        count = worker_metrics.c.rating_count
        avg = func.coalesce(worker_metrics.c.rating_avg, 0.0)
        with self._begin(conn) as c:
            c.execute(
                update(worker_metrics)
                .where(worker_metrics.c.worker_id == worker_id)
                .values(
                    rating_avg=(avg * count + rating) / (count + 1),
                    rating_count=count + 1,
                    last_updated=now or _now(),
                )
            )


class RatingRepository(_Repository):
    """One rating per resolved assignment."""

    def create(
        self,
        *,
        issue_id: str,
        worker_id: str,
        rating: int,
        rated_by: str,
        remark: str = "",
        now: datetime | None = None,
        conn: Connection | None = None,
    ) -> dict:
        row = {
            "id": _new_id(),
            "issue_id": issue_id,
            "worker_id": worker_id,
            "rating": rating,
            "remark": remark,
            "rated_by": rated_by,
            "rated_at": now or _now(),
        }
        with self._begin(conn) as c:
            c.execute(worker_ratings.insert().values(row))
        return row

    def get_for_issue(self, issue_id: str) -> dict | None:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(worker_ratings).where(worker_ratings.c.issue_id == issue_id)
            )
            row = result.mappings().first()
            return _to_dict(row) if row else None


class ProofRepository(_Repository):
    """Completion proofs submitted by workers."""

    def create(
        self,
        *,
        issue_id: str,
        worker_id: str,
        notes: str = "",
        before_image_url: str | None = None,
        after_image_url: str | None = None,
        now: datetime | None = None,
        conn: Connection | None = None,
    ) -> dict:
        row = {
            "id": _new_id(),
            "issue_id": issue_id,
            "worker_id": worker_id,
            "notes": notes,
            "before_image_url": before_image_url,
            "after_image_url": after_image_url,
            "created_at": now or _now(),
        }
        with self._begin(conn) as c:
            c.execute(resolution_proofs.insert().values(row))
        return row

    def list_by_issue(self, issue_id: str) -> list[dict]:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(resolution_proofs)
                .where(resolution_proofs.c.issue_id == issue_id)
                .order_by(resolution_proofs.c.created_at.asc())
            )
            return [_to_dict(row) for row in result.mappings()]


class EscalationRepository(_Repository):
    """Append-only escalation ledger. There is no update or delete."""

    def append(
        self,
        *,
        issue_id: str,
        reason: str,
        severity: str,
        triggered_by: str | None = None,
        now: datetime | None = None,
        conn: Connection | None = None,
    ) -> dict:
        row = {
            "id": _new_id(),
            "issue_id": issue_id,
            "reason": reason,
            "severity": severity,
            "triggered_by": triggered_by,
            "created_at": now or _now(),
        }
        with self._begin(conn) as c:
            c.execute(escalations.insert().values(row))
        return row

    def list_by_issue(self, issue_id: str) -> list[dict]:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(escalations)
                .where(escalations.c.issue_id == issue_id)
                .order_by(escalations.c.created_at.asc())
            )
            return [_to_dict(row) for row in result.mappings()]


class SlaRuleRepository(_Repository):
    """SLA rules scoped by category, priority, or both."""

    def create(
        self,
        max_hours: float,
        category: str | None = None,
        priority: str | None = None,
    ) -> dict:
        row = {
            "id": _new_id(),
            "category": category,
            "priority": priority,
            "max_hours": max_hours,
            "created_at": _now(),
        }
        with self.engine.begin() as conn:
            conn.execute(sla_rules.insert().values(row))
        return row

    def list_matching(
        self,
        category: str,
        priority: str,
        conn: Connection | None = None,
    ) -> list[dict]:
        """Rules that could apply to an issue with this category and priority."""
        with self._read(conn) as c:
            result = c.execute(
                select(sla_rules).where(
                    and_(
                        or_(sla_rules.c.category.is_(None), sla_rules.c.category == category),
                        or_(sla_rules.c.priority.is_(None), sla_rules.c.priority == priority),
                    )
                )
            )
            return [_to_dict(row) for row in result.mappings()]


class ActivityRepository(_Repository):
    """Append-only activity timeline per issue."""

    def append(
        self,
        *,
        issue_id: str,
        trace_id: str,
        step: str,
        payload_json: dict | None = None,
        actor_id: str | None = None,
        now: datetime | None = None,
        conn: Connection | None = None,
    ) -> dict:
        row = {
            "id": _new_id(),
            "issue_id": issue_id,
            "trace_id": trace_id,
            "step": step,
            "actor_id": actor_id,
            "payload_json": json.dumps(payload_json or {}, default=str),
            "created_at": now or _now(),
        }
        with self._begin(conn) as c:
            c.execute(activity_events.insert().values(row))
        return row

    def list_by_issue(self, issue_id: str) -> list[dict]:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(activity_events)
                .where(activity_events.c.issue_id == issue_id)
                .order_by(activity_events.c.created_at.asc())
            )
            rows = []
            for row in result.mappings():
                d = _to_dict(row)
                d["payload_json"] = json.loads(d["payload_json"])
                rows.append(d)
            return rows
