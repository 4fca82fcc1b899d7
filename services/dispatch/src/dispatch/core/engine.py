"""DispatchEngine: the single entry point callers (and the HTTP layer) use."""

import logging
from collections.abc import Iterator
from datetime import timedelta

from sqlalchemy.engine import Engine

from services.dispatch.src.dispatch.core.dispatch import DispatchScheduler
from services.dispatch.src.dispatch.core.errors import IssueLocked, WorkerNotFound
from services.dispatch.src.dispatch.core.escalation import EscalationLedger
from services.dispatch.src.dispatch.core.intake import IssueIntake, RiskClassifier
from services.dispatch.src.dispatch.core.lifecycle import (
    Clock,
    IssueLifecycle,
    new_trace_id,
    record_activity,
    utcnow,
)
from services.dispatch.src.dispatch.core.notify import Notifier
from services.dispatch.src.dispatch.core.sla import SlaMonitor, SlaPolicy, operations_stats
from services.dispatch.src.dispatch.core.verification import VerificationWorkflow
from services.dispatch.src.dispatch.db.repository import (
    AssignmentRepository,
    WorkerMetricsRepository,
    WorkerRepository,
)
from services.dispatch.src.dispatch.db.schemas import (
    ActivityEvent,
    AssignmentRecord,
    EscalationEntry,
    IssueRecord,
    OperationsStats,
    OverdueIssue,
    RiskAssessment,
    VerificationRecord,
    WorkerMetricsRecord,
    WorkerRecord,
)
from services.dispatch.src.dispatch.schemas.enums import (
    EscalationSeverity,
    IssueStatus,
    ReviewAction,
    WorkerAvailability,
)

logger = logging.getLogger(__name__)


class DispatchEngine:
    """Wires intake, lifecycle, dispatch, verification, SLA and escalation."""

    def __init__(
        self,
        engine: Engine,
        *,
        classifier: RiskClassifier | None = None,
        notifier: Notifier | None = None,
        clock: Clock = utcnow,
        cooldown: timedelta = timedelta(hours=72),
        default_sla_hours: float = 24,
        sla_sweep_interval_s: float = 60.0,
    ):
        self.engine = engine
        self.clock = clock
        self.notifier = notifier
        self.lifecycle = IssueLifecycle(engine, clock=clock, notifier=notifier)
        self.ledger = EscalationLedger(engine)
        self.intake = IssueIntake(
            engine, classifier=classifier, ledger=self.ledger, clock=clock, notifier=notifier
        )
        self.scheduler = DispatchScheduler(
            self.lifecycle, cooldown=cooldown, sla_policy=SlaPolicy(engine, default_sla_hours)
        )
        self.verification = VerificationWorkflow(self.lifecycle)
        self.monitor = SlaMonitor(
            engine, clock=clock, notifier=notifier, interval_s=sla_sweep_interval_s
        )
        self.workers = WorkerRepository(engine)
        self.metrics = WorkerMetricsRepository(engine)
        self.assignments = AssignmentRepository(engine)

    @classmethod
    def from_settings(cls, engine: Engine, **overrides) -> "DispatchEngine":
        from services.dispatch.src.dispatch.adapters.openai_classifier import OpenAIRiskClassifier
        from services.dispatch.src.dispatch.config import settings
        from services.dispatch.src.dispatch.core.notify import default_notifier

        kwargs = {
            "classifier": OpenAIRiskClassifier(),
            "notifier": default_notifier(),
            "cooldown": timedelta(hours=settings.cooldown_hours),
            "default_sla_hours": settings.default_sla_hours,
            "sla_sweep_interval_s": settings.sla_sweep_interval_s,
        }
        kwargs.update(overrides)
        return cls(engine, **kwargs)

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    def create_issue(
        self,
        category: str | None,
        raw_description: str,
        *,
        image_bytes: bytes | None = None,
        mime_type: str = "image/jpeg",
        risk: RiskAssessment | int | None = None,
    ) -> IssueRecord:
        return self.intake.create_issue(
            category, raw_description, image_bytes=image_bytes, mime_type=mime_type, risk=risk
        )

    def get_issue(self, issue_id: str) -> IssueRecord:
        return self.lifecycle.get(issue_id)

    def list_issues(
        self,
        status: IssueStatus | str | None = None,
        category: str | None = None,
        limit: int = 100,
    ) -> list[IssueRecord]:
        status = IssueStatus(status).value if status else None
        rows = self.lifecycle.issues.list_all(status=status, category=category, limit=limit)
        return [IssueRecord(**row) for row in rows]

    def assign_worker(self, issue_id: str, worker_id: str | None = None) -> AssignmentRecord:
        return self.scheduler.assign(issue_id, worker_id)

    def transition_status(
        self,
        issue_id: str,
        target: IssueStatus | str,
        actor_id: str | None = None,
    ) -> IssueRecord:
        return self.lifecycle.transition_status(issue_id, target, actor_id=actor_id)

    def submit_completion(
        self,
        issue_id: str,
        worker_id: str,
        notes: str = "",
        before_image_url: str | None = None,
        after_image_url: str | None = None,
    ) -> IssueRecord:
        return self.lifecycle.submit_completion(
            issue_id, worker_id, notes, before_image_url, after_image_url
        )

    def submit_review(
        self,
        issue_id: str,
        reviewer_id: str,
        action: ReviewAction | str,
        comment: str | None = None,
        rating: int | None = None,
    ) -> IssueRecord:
        return self.verification.review(issue_id, reviewer_id, action, comment, rating)

    def list_overdue(self) -> Iterator[OverdueIssue]:
        return self.monitor.overdue()

    def escalate(
        self,
        issue_id: str,
        reason: str,
        severity: EscalationSeverity | str = EscalationSeverity.HIGH,
        triggered_by: str | None = None,
    ) -> EscalationEntry:
        """Manually escalate an open issue."""
        issue = self.lifecycle.load(issue_id)
        if IssueStatus(issue["status"]) == IssueStatus.CLOSED:
            raise IssueLocked(issue_id, "escalate")

        now = self.clock()
        with self.engine.begin() as conn:
            entry = self.ledger.record(
                issue_id, reason, severity, triggered_by, now=now, conn=conn
            )
            record_activity(
                self.lifecycle.activity, conn,
                issue_id=issue_id, trace_id=new_trace_id(), step="ESCALATED",
                payload={"reason": reason, "severity": entry.severity.value},
                now=now, actor_id=triggered_by,
            )
        return entry

    def escalations(self, issue_id: str) -> list[EscalationEntry]:
        self.lifecycle.load(issue_id)
        return self.ledger.list_for_issue(issue_id)

    def timeline(self, issue_id: str) -> list[ActivityEvent]:
        self.lifecycle.load(issue_id)
        return [ActivityEvent(**row) for row in self.lifecycle.activity.list_by_issue(issue_id)]

    def assignment_history(self, issue_id: str) -> list[AssignmentRecord]:
        self.lifecycle.load(issue_id)
        return [AssignmentRecord(**row) for row in self.assignments.list_by_issue(issue_id)]

    def verification_history(self, issue_id: str) -> list[VerificationRecord]:
        self.lifecycle.load(issue_id)
        return [
            VerificationRecord(**row)
            for row in self.verification.records.list_by_issue(issue_id)
        ]

    def stats(self) -> OperationsStats:
        return operations_stats(self.engine, self.clock())

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    def register_worker(self, name: str, department: str | None = None) -> WorkerRecord:
        row = self.workers.create(name, department=department, now=self.clock())
        logger.info("worker_registered", extra={"worker_id": row["id"], "department": department})
        return self.scheduler.worker_view(row)

    def get_worker(self, worker_id: str) -> WorkerRecord:
        return self.scheduler.get_worker(worker_id)

    def set_worker_availability(
        self, worker_id: str, available: bool
    ) -> WorkerRecord:
        availability = WorkerAvailability.AVAILABLE if available else WorkerAvailability.UNAVAILABLE
        if not self.workers.set_availability(worker_id, availability.value):
            raise WorkerNotFound(worker_id)
        return self.get_worker(worker_id)

    def eligible_workers(self) -> list[WorkerRecord]:
        return self.scheduler.eligible_workers()

    def worker_metrics(self, worker_id: str) -> WorkerMetricsRecord:
        row = self.metrics.get(worker_id)
        if row is None:
            raise WorkerNotFound(worker_id)
        return WorkerMetricsRecord(**row)
