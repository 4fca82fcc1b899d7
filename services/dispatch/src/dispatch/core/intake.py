"""Issue intake: classify, resolve priority, create, auto-escalate."""

import logging
from typing import Protocol

from sqlalchemy.engine import Engine

from services.dispatch.src.dispatch.core.categories import FALLBACK_CATEGORY, normalize_category
from services.dispatch.src.dispatch.core.errors import ClassifierUnavailable, InvalidIntake
from services.dispatch.src.dispatch.core.escalation import EscalationLedger
from services.dispatch.src.dispatch.core.lifecycle import (
    Clock,
    new_trace_id,
    record_activity,
    utcnow,
)
from services.dispatch.src.dispatch.core.notify import Event, Notifier, publish
from services.dispatch.src.dispatch.core.priority import escalation_reason, resolve_priority
from services.dispatch.src.dispatch.db.repository import ActivityRepository, IssueRepository
from services.dispatch.src.dispatch.db.schemas import IssueRecord, RiskAssessment
from services.dispatch.src.dispatch.schemas.enums import EscalationSeverity, EventType

logger = logging.getLogger(__name__)


class RiskClassifier(Protocol):
    def classify(self, image_bytes: bytes, mime_type: str = "image/jpeg") -> RiskAssessment:
        ...


class IssueIntake:
    def __init__(
        self,
        engine: Engine,
        *,
        classifier: RiskClassifier | None = None,
        ledger: EscalationLedger | None = None,
        clock: Clock = utcnow,
        notifier: Notifier | None = None,
    ):
        self.engine = engine
        self.classifier = classifier
        self.ledger = ledger or EscalationLedger(engine)
        self.clock = clock
        self.notifier = notifier
        self.issues = IssueRepository(engine)
        self.activity = ActivityRepository(engine)

    def assess(
        self,
        category: str | None,
        image_bytes: bytes | None,
        mime_type: str,
        risk: RiskAssessment | int | None,
    ) -> tuple[RiskAssessment, bool, str | None]:
        """Work out (assessment, needs_manual_review, failure_reason).

        An explicit ``risk`` wins over the classifier. A classifier failure
        falls back to risk 0 in the Other category and flags the issue for
        manual review.
        """
        if risk is not None:
            if isinstance(risk, RiskAssessment):
                return risk, False, None
            return RiskAssessment(
                category=normalize_category(category), risk_score=risk, confidence=0
            ), False, None

        if image_bytes is None:
            raise InvalidIntake("an image or a risk score is required")
        if self.classifier is None:
            failure = ClassifierUnavailable("no classifier configured")
        else:
            try:
                return self.classifier.classify(image_bytes, mime_type), False, None
            except ClassifierUnavailable as exc:
                failure = exc

        logger.warning("classifier_failed", extra={"reason": failure.context.get("reason")})
        fallback = RiskAssessment(category=FALLBACK_CATEGORY, risk_score=0, confidence=0)
        return fallback, True, failure.context.get("reason")

    def create_issue(
        self,
        category: str | None,
        raw_description: str,
        *,
        image_bytes: bytes | None = None,
        mime_type: str = "image/jpeg",
        risk: RiskAssessment | int | None = None,
    ) -> IssueRecord:
        """Create a Reported issue; Critical risk also writes an escalation."""
        assessment, manual_review, failure = self.assess(category, image_bytes, mime_type, risk)
        decision = resolve_priority(assessment.risk_score)

        # A caller-chosen category beats the classifier's guess. Without a
        # classification the issue is filed under the fallback category.
        chosen = normalize_category(category)
        if failure is not None or chosen == FALLBACK_CATEGORY:
            chosen = normalize_category(assessment.category)

        now = self.clock()
        trace_id = new_trace_id()
        with self.engine.begin() as conn:
            row = self.issues.create(
                category=chosen,
                description=raw_description.strip(),
                risk_score=assessment.risk_score,
                priority_tier=decision.tier.value,
                is_auto_escalated=decision.auto_escalate,
                needs_manual_review=manual_review,
                classifier_confidence=None if risk is not None else assessment.confidence,
                now=now,
                conn=conn,
            )
            issue_id = row["id"]
            record_activity(
                self.activity, conn,
                issue_id=issue_id, trace_id=trace_id, step="ISSUE_CREATED",
                payload={
                    "category": chosen,
                    "risk_score": assessment.risk_score,
                    "priority_tier": decision.tier.value,
                    "description": row["description"],
                },
                now=now,
            )
            if failure is not None:
                record_activity(
                    self.activity, conn,
                    issue_id=issue_id, trace_id=trace_id, step="CLASSIFIER_FAILED",
                    payload={"reason": failure},
                    now=now,
                )
            if decision.auto_escalate:
                self.ledger.record(
                    issue_id,
                    escalation_reason(assessment.risk_score),
                    EscalationSeverity.CRITICAL,
                    now=now,
                    conn=conn,
                )
                record_activity(
                    self.activity, conn,
                    issue_id=issue_id, trace_id=trace_id, step="AUTO_ESCALATED",
                    payload={"risk_score": assessment.risk_score},
                    now=now,
                )

        logger.info("issue_created", extra={
            "issue_id": issue_id,
            "category": chosen,
            "risk_score": assessment.risk_score,
            "priority_tier": decision.tier.value,
            "auto_escalated": decision.auto_escalate,
            "needs_manual_review": manual_review,
            "trace_id": trace_id,
        })
        publish(self.notifier, Event(
            type=EventType.NEW_ISSUE,
            issue_id=issue_id,
            payload={
                "category": chosen,
                "priority_tier": decision.tier.value,
                "trace_id": trace_id,
            },
            ts=now,
        ))
        return IssueRecord(**row)
