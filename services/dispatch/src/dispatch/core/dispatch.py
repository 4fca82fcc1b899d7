"""Worker dispatch: cooldown eligibility, selection and atomic assignment."""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError

from services.dispatch.src.dispatch.core.categories import department_for
from services.dispatch.src.dispatch.core.errors import (
    AssignmentConflict,
    IssueLocked,
    NoEligibleWorker,
    WorkerNotFound,
    WorkerOnCooldown,
    WorkerUnavailable,
)
from services.dispatch.src.dispatch.core.lifecycle import (
    IssueLifecycle,
    check_transition,
    new_trace_id,
    record_activity,
)
from services.dispatch.src.dispatch.core.sla import SlaPolicy
from services.dispatch.src.dispatch.db.repository import (
    AssignmentRepository,
    WorkerMetricsRepository,
    WorkerRepository,
)
from services.dispatch.src.dispatch.db.schemas import AssignmentRecord, WorkerRecord
from services.dispatch.src.dispatch.schemas.enums import IssueStatus, WorkerAvailability

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN = timedelta(hours=72)

_NEVER = datetime.min.replace(tzinfo=timezone.utc)


def eligible_at(worker: dict, cooldown: timedelta) -> datetime | None:
    """When the worker's cooldown ends; None if never assigned."""
    last = worker.get("last_assigned_at")
    return None if last is None else last + cooldown


def is_eligible(worker: dict, now: datetime, cooldown: timedelta) -> bool:
    if worker["availability"] != WorkerAvailability.AVAILABLE.value:
        return False
    ready = eligible_at(worker, cooldown)
    return ready is None or now >= ready


def effective_availability(worker: dict, now: datetime, cooldown: timedelta) -> WorkerAvailability:
    """Stored availability with the derived OnCooldown state applied."""
    if worker["availability"] != WorkerAvailability.AVAILABLE.value:
        return WorkerAvailability(worker["availability"])
    if is_eligible(worker, now, cooldown):
        return WorkerAvailability.AVAILABLE
    return WorkerAvailability.ON_COOLDOWN


def rank_candidates(
    workers: list[dict],
    *,
    department: str | None,
    active_counts: dict[str, int],
) -> list[dict]:
    """Order eligible workers by preference.

    Matching department first, then fewest active assignments, then the
    longest-idle (never assigned first), then id.
    """
    def key(w: dict):
        last = w.get("last_assigned_at")
        return (
            0 if department and w.get("department") == department else 1,
            active_counts.get(w["id"], 0),
            last is not None,
            last or _NEVER,
            w["id"],
        )

    return sorted(workers, key=key)


class DispatchScheduler:
    """Assigns workers to issues while enforcing the per-worker cooldown."""

    def __init__(
        self,
        lifecycle: IssueLifecycle,
        *,
        cooldown: timedelta = DEFAULT_COOLDOWN,
        sla_policy: SlaPolicy | None = None,
    ):
        self.lifecycle = lifecycle
        self.engine = lifecycle.engine
        self.clock = lifecycle.clock
        self.cooldown = cooldown
        self.sla = sla_policy or SlaPolicy(self.engine)
        self.workers = WorkerRepository(self.engine)
        self.assignments = AssignmentRepository(self.engine)
        self.metrics = WorkerMetricsRepository(self.engine)

    # ------------------------------------------------------------------
    # Worker views
    # ------------------------------------------------------------------

    def worker_view(self, worker: dict, now: datetime | None = None) -> WorkerRecord:
        now = now or self.clock()
        return WorkerRecord(
            id=worker["id"],
            name=worker["name"],
            department=worker.get("department"),
            availability=effective_availability(worker, now, self.cooldown),
            last_assigned_at=worker.get("last_assigned_at"),
            eligible_at=eligible_at(worker, self.cooldown),
        )

    def get_worker(self, worker_id: str) -> WorkerRecord:
        worker = self.workers.get(worker_id)
        if worker is None:
            raise WorkerNotFound(worker_id)
        return self.worker_view(worker)

    def eligible_workers(self) -> list[WorkerRecord]:
        now = self.clock()
        return [
            self.worker_view(w, now)
            for w in self.workers.list_available()
            if is_eligible(w, now, self.cooldown)
        ]

    def _check_worker(self, worker_id: str, issue_id: str, now: datetime) -> dict:
        worker = self.workers.get(worker_id)
        if worker is None:
            raise WorkerNotFound(worker_id)
        if worker["availability"] != WorkerAvailability.AVAILABLE.value:
            raise WorkerUnavailable(worker_id, issue_id)
        if not is_eligible(worker, now, self.cooldown):
            raise WorkerOnCooldown(worker_id, eligible_at(worker, self.cooldown), issue_id)
        return worker

    def select_worker(self, issue: dict, now: datetime) -> dict:
        candidates = [
            w for w in self.workers.list_available() if is_eligible(w, now, self.cooldown)
        ]
        if not candidates:
            raise NoEligibleWorker(issue["id"], issue["category"])
        ranked = rank_candidates(
            candidates,
            department=department_for(issue["category"]),
            active_counts=self.assignments.count_active_by_worker(),
        )
        return ranked[0]

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    def assign(self, issue_id: str, worker_id: str | None = None) -> AssignmentRecord:
        """Assign ``worker_id`` (or the best eligible worker) to an issue.

        Valid from Reported and Reopened. The issue CAS, the cooldown claim,
        the assignment row, the deadline and the metrics all commit together
        or not at all.
        """
        issue = self.lifecycle.load(issue_id)
        current = IssueStatus(issue["status"])
        if current == IssueStatus.CLOSED:
            raise IssueLocked(issue_id, "assign worker")
        check_transition(issue_id, current, IssueStatus.ASSIGNED)

        now = self.clock()
        if worker_id is None:
            worker = self.select_worker(issue, now)
        else:
            worker = self._check_worker(worker_id, issue_id, now)
        worker_id = worker["id"]

        trace_id = new_trace_id()
        deadline = issue["sla_deadline"]
        values = {}

        with self.engine.begin() as conn:
            if deadline is None:
                deadline = self.sla.deadline_for(
                    issue["category"], issue["priority_tier"], now, conn=conn
                )
                values["sla_deadline"] = deadline

            # Issue first: a concurrent assigner blocks on the issue row and
            # then fails the CAS instead of the active-assignment index.
            updated = self.lifecycle.apply(
                conn, issue, IssueStatus.ASSIGNED, now=now, values=values,
                conflict=lambda: AssignmentConflict(issue_id, worker_id, "issue changed"),
            )

            if not self.workers.claim(worker_id, now=now, cooldown=self.cooldown, conn=conn):
                fresh = self.workers.get(worker_id, conn=conn)
                if fresh is None or fresh["availability"] != WorkerAvailability.AVAILABLE.value:
                    raise WorkerUnavailable(worker_id, issue_id)
                raise WorkerOnCooldown(worker_id, eligible_at(fresh, self.cooldown), issue_id)

            replaced = self.assignments.deactivate_active(issue_id, conn=conn)
            try:
                assignment = self.assignments.create(
                    issue_id=issue_id,
                    worker_id=worker_id,
                    assigned_at=now,
                    deadline=deadline,
                    priority=issue["priority_tier"],
                    conn=conn,
                )
            except IntegrityError as exc:
                raise AssignmentConflict(issue_id, worker_id, "active assignment exists") from exc

            self.metrics.increment(worker_id, "total_assigned", now=now, conn=conn)
            record_activity(
                self.lifecycle.activity, conn,
                issue_id=issue_id, trace_id=trace_id, step="WORKER_ASSIGNED",
                payload={
                    "worker_id": worker_id,
                    "from": current.value,
                    "sla_deadline": deadline,
                    "reassignment": bool(replaced),
                },
                now=now,
            )

        logger.info("worker_assigned", extra={
            "issue_id": issue_id,
            "worker_id": worker_id,
            "sla_deadline": deadline.isoformat(),
            "trace_id": trace_id,
        })
        self.lifecycle.announce(updated, current.value, trace_id)
        return AssignmentRecord(**assignment)
