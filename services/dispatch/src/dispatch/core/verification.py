"""Review of submitted work: approve to close, reject to reopen."""

import logging

from services.dispatch.src.dispatch.core.errors import (
    CommentRequired,
    InvalidRating,
    IssueLocked,
)
from services.dispatch.src.dispatch.core.lifecycle import (
    IssueLifecycle,
    check_transition,
    new_trace_id,
    record_activity,
)
from services.dispatch.src.dispatch.db.repository import (
    AssignmentRepository,
    RatingRepository,
    VerificationRepository,
    WorkerMetricsRepository,
)
from services.dispatch.src.dispatch.db.schemas import IssueRecord
from services.dispatch.src.dispatch.schemas.enums import IssueStatus, ReviewAction

logger = logging.getLogger(__name__)


class VerificationWorkflow:
    def __init__(self, lifecycle: IssueLifecycle):
        self.lifecycle = lifecycle
        self.engine = lifecycle.engine
        self.clock = lifecycle.clock
        self.records = VerificationRepository(self.engine)
        self.assignments = AssignmentRepository(self.engine)
        self.metrics = WorkerMetricsRepository(self.engine)
        self.ratings = RatingRepository(self.engine)

    def review(
        self,
        issue_id: str,
        reviewer_id: str,
        action: ReviewAction | str,
        comment: str | None = None,
        rating: int | None = None,
    ) -> IssueRecord:
        """Approve or reject an issue awaiting verification.

        A rejection needs a non-blank comment. A rating only counts on
        approval; on rejection it is ignored.
        """
        action = ReviewAction(action)
        if action == ReviewAction.REJECTED and not (comment or "").strip():
            raise CommentRequired(issue_id)
        if action == ReviewAction.APPROVED and rating is not None:
            if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
                raise InvalidRating(issue_id, rating)
        if action == ReviewAction.REJECTED:
            rating = None

        issue = self.lifecycle.load(issue_id)
        current = IssueStatus(issue["status"])
        if current == IssueStatus.CLOSED:
            raise IssueLocked(issue_id, f"review ({action.value})")
        target = IssueStatus.CLOSED if action == ReviewAction.APPROVED else IssueStatus.REOPENED
        check_transition(issue_id, current, target)

        now = self.clock()
        trace_id = new_trace_id()
        with self.engine.begin() as conn:
            active = self.assignments.get_active(issue_id, conn=conn)
            worker_id = active["worker_id"] if active else None

            if action == ReviewAction.APPROVED:
                updated = self.lifecycle.apply(
                    conn, issue, target, now=now, values={"resolved_at": now}
                )
            else:
                updated = self.lifecycle.apply(conn, issue, target, now=now)

            self.records.create(
                issue_id=issue_id,
                reviewer_id=reviewer_id,
                worker_id=worker_id,
                action=action.value,
                comment=comment,
                rating=rating,
                now=now,
                conn=conn,
            )

            if worker_id is not None:
                if action == ReviewAction.APPROVED:
                    self.assignments.deactivate_active(issue_id, conn=conn)
                    self.metrics.increment(worker_id, "total_resolved", now=now, conn=conn)
                    if rating is not None:
                        self.ratings.create(
                            issue_id=issue_id,
                            worker_id=worker_id,
                            rating=rating,
                            rated_by=reviewer_id,
                            remark=comment or "",
                            now=now,
                            conn=conn,
                        )
                        self.metrics.record_rating(worker_id, rating, now=now, conn=conn)
                else:
                    self.metrics.increment(worker_id, "rework_count", now=now, conn=conn)

            record_activity(
                self.lifecycle.activity, conn,
                issue_id=issue_id, trace_id=trace_id,
                step="REVIEW_APPROVED" if action == ReviewAction.APPROVED else "REVIEW_REJECTED",
                payload={"worker_id": worker_id, "comment": comment, "rating": rating},
                now=now, actor_id=reviewer_id,
            )

        logger.info("issue_reviewed", extra={
            "issue_id": issue_id,
            "action": action.value,
            "reviewer_id": reviewer_id,
            "worker_id": worker_id,
            "trace_id": trace_id,
        })
        self.lifecycle.announce(updated, current.value, trace_id)
        return IssueRecord(**updated)
