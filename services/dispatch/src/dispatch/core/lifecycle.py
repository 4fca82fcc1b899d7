"""Issue lifecycle state machine.

  Reported             → Assigned              (dispatch)
  Assigned             → InProgress            (worker starts)
  InProgress           → AwaitingVerification  (worker submits proof)
  AwaitingVerification → Closed                (reviewer approves, terminal)
  AwaitingVerification → Reopened              (reviewer rejects)
  Reopened             → InProgress            (worker resumes)
  Reopened             → Assigned              (reassignment)

Transitions are fail-closed: anything not in ``TRANSITIONS`` is rejected.
Every write is a compare-and-swap on (status, version) so a request can
never be applied against a stale snapshot.
"""

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy.engine import Connection, Engine

from services.dispatch.src.dispatch.core.errors import (
    IllegalTransition,
    IssueLocked,
    IssueNotFound,
    NotAssignedWorker,
    StaleIssue,
)
from services.dispatch.src.dispatch.core.notify import Event, Notifier, publish
from services.dispatch.src.dispatch.core.redaction import redact_dict
from services.dispatch.src.dispatch.db.repository import (
    ActivityRepository,
    AssignmentRepository,
    IssueRepository,
    ProofRepository,
)
from services.dispatch.src.dispatch.db.schemas import IssueRecord
from services.dispatch.src.dispatch.schemas.enums import EventType, IssueStatus

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

S = IssueStatus

# {source: {target: trigger}}
TRANSITIONS: dict[IssueStatus, dict[IssueStatus, str]] = {
    S.REPORTED: {S.ASSIGNED: "dispatch"},
    S.ASSIGNED: {S.IN_PROGRESS: "start"},
    S.IN_PROGRESS: {S.AWAITING_VERIFICATION: "submit"},
    S.AWAITING_VERIFICATION: {S.CLOSED: "approve", S.REOPENED: "reject"},
    S.REOPENED: {S.IN_PROGRESS: "resume", S.ASSIGNED: "dispatch"},
    S.CLOSED: {},
}

# Targets reachable through transition_status; the rest belong to
# assign_worker (Assigned) and submit_review (Closed, Reopened).
WORKER_TARGETS = frozenset({S.IN_PROGRESS, S.AWAITING_VERIFICATION})

_OWNING_OPERATION = {
    S.ASSIGNED: "use assign_worker",
    S.CLOSED: "use submit_review",
    S.REOPENED: "use submit_review",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_trace_id() -> str:
    return str(uuid.uuid4())


def allowed_targets(current: IssueStatus) -> set[IssueStatus]:
    return set(TRANSITIONS.get(current, {}))


def check_transition(issue_id: str, current: IssueStatus, target: IssueStatus) -> str:
    """Validate a move against the table. Returns the trigger name.

    Closed issues always fail with IssueLocked, whatever the target.
    """
    current, target = IssueStatus(current), IssueStatus(target)
    if current == S.CLOSED:
        raise IssueLocked(issue_id, f"transition to {target.value}")
    trigger = TRANSITIONS[current].get(target)
    if trigger is None:
        raise IllegalTransition(issue_id, current, target)
    return trigger


def record_activity(
    activity: ActivityRepository,
    conn: Connection,
    *,
    issue_id: str,
    trace_id: str,
    step: str,
    payload: dict,
    now: datetime,
    actor_id: str | None = None,
) -> None:
    activity.append(
        issue_id=issue_id,
        trace_id=trace_id,
        step=step,
        payload_json=redact_dict(payload),
        actor_id=actor_id,
        now=now,
        conn=conn,
    )


class IssueLifecycle:
    """Owns the canonical status of issues and applies legal transitions."""

    def __init__(
        self,
        engine: Engine,
        *,
        clock: Clock = utcnow,
        notifier: Notifier | None = None,
    ):
        self.engine = engine
        self.clock = clock
        self.notifier = notifier
        self.issues = IssueRepository(engine)
        self.assignments = AssignmentRepository(engine)
        self.proofs = ProofRepository(engine)
        self.activity = ActivityRepository(engine)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def load(self, issue_id: str, conn: Connection | None = None) -> dict:
        row = self.issues.get(issue_id, conn=conn)
        if row is None:
            raise IssueNotFound(issue_id)
        return row

    def get(self, issue_id: str) -> IssueRecord:
        return IssueRecord(**self.load(issue_id))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def apply(
        self,
        conn: Connection,
        issue: dict,
        target: IssueStatus,
        *,
        now: datetime,
        values: dict | None = None,
        conflict: Callable[[], Exception] | None = None,
    ) -> dict:
        """CAS ``issue`` from its snapshot status to ``target`` inside ``conn``.

        Returns the updated row. Raises StaleIssue (or ``conflict()``) if the
        snapshot no longer matches the stored row.
        """
        check_transition(issue["id"], issue["status"], target)
        changes = {"status": IssueStatus(target).value, **(values or {})}
        ok = self.issues.compare_and_set(
            issue["id"],
            expected_status=IssueStatus(issue["status"]).value,
            expected_version=issue["version"],
            values=changes,
            now=now,
            conn=conn,
        )
        if not ok:
            if conflict is not None:
                raise conflict()
            raise StaleIssue(issue["id"], issue["status"], issue["version"])
        return {**issue, **changes, "version": issue["version"] + 1, "updated_at": now}

    def announce(self, issue: dict, previous: str, trace_id: str) -> None:
        publish(self.notifier, Event(
            type=EventType.ISSUE_UPDATED,
            issue_id=issue["id"],
            payload={
                "from": IssueStatus(previous).value,
                "to": IssueStatus(issue["status"]).value,
                "trace_id": trace_id,
            },
            ts=issue["updated_at"],
        ))

    def transition_status(
        self,
        issue_id: str,
        target: IssueStatus | str,
        actor_id: str | None = None,
    ) -> IssueRecord:
        """Drive a worker-triggered transition (start, resume, submit).

        Requesting the status the issue is already in is a no-op.
        """
        target = IssueStatus(target)
        issue = self.load(issue_id)
        current = IssueStatus(issue["status"])

        if current == S.CLOSED:
            raise IssueLocked(issue_id, f"transition to {target.value}")
        if current == target:
            return IssueRecord(**issue)
        if target not in WORKER_TARGETS:
            raise IllegalTransition(issue_id, current, target, _OWNING_OPERATION.get(target, ""))

        now = self.clock()
        trace_id = new_trace_id()
        with self.engine.begin() as conn:
            updated = self.apply(conn, issue, target, now=now)
            record_activity(
                self.activity, conn,
                issue_id=issue_id, trace_id=trace_id, step="STATUS_CHANGED",
                payload={"from": current.value, "to": target.value},
                now=now, actor_id=actor_id,
            )

        logger.info("issue_transitioned", extra={
            "issue_id": issue_id, "from_status": current.value,
            "to_status": target.value, "trace_id": trace_id,
        })
        self.announce(updated, current.value, trace_id)
        return IssueRecord(**updated)

    def submit_completion(
        self,
        issue_id: str,
        worker_id: str,
        notes: str = "",
        before_image_url: str | None = None,
        after_image_url: str | None = None,
    ) -> IssueRecord:
        """InProgress -> AwaitingVerification with a stored completion proof."""
        issue = self.load(issue_id)
        current = IssueStatus(issue["status"])
        if current == S.CLOSED:
            raise IssueLocked(issue_id, "submit completion")
        check_transition(issue_id, current, S.AWAITING_VERIFICATION)

        now = self.clock()
        trace_id = new_trace_id()
        with self.engine.begin() as conn:
            active = self.assignments.get_active(issue_id, conn=conn)
            if active is None or active["worker_id"] != worker_id:
                raise NotAssignedWorker(issue_id, worker_id)
            updated = self.apply(conn, issue, S.AWAITING_VERIFICATION, now=now)
            proof = self.proofs.create(
                issue_id=issue_id,
                worker_id=worker_id,
                notes=notes,
                before_image_url=before_image_url,
                after_image_url=after_image_url,
                now=now,
                conn=conn,
            )
            record_activity(
                self.activity, conn,
                issue_id=issue_id, trace_id=trace_id, step="COMPLETION_SUBMITTED",
                payload={"proof_id": proof["id"], "notes": notes},
                now=now, actor_id=worker_id,
            )

        logger.info("completion_submitted", extra={
            "issue_id": issue_id, "worker_id": worker_id, "trace_id": trace_id,
        })
        self.announce(updated, current.value, trace_id)
        return IssueRecord(**updated)
