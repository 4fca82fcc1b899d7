"""Tests for the verification workflow."""

from unittest.mock import patch

import pytest

from services.dispatch.src.dispatch.core.errors import (
    CommentRequired,
    IllegalTransition,
    InvalidRating,
    IssueLocked,
)
from services.dispatch.src.dispatch.db.repository import (
    AssignmentRepository,
    RatingRepository,
    VerificationRepository,
)
from services.dispatch.src.dispatch.schemas.enums import EventType, IssueStatus, ReviewAction


@pytest.fixture
def awaiting(dispatch, reported_issue, worker):
    dispatch.assign_worker(reported_issue.id, worker.id)
    dispatch.transition_status(reported_issue.id, IssueStatus.IN_PROGRESS)
    dispatch.submit_completion(reported_issue.id, worker.id, notes="Patched")
    return dispatch.get_issue(reported_issue.id)


class TestReject:
    @pytest.mark.parametrize("comment", ["", "   ", None])
    def test_blank_comment_required(self, dispatch, engine, awaiting, comment):
        """Scenario C: nothing changes when the comment is missing."""
        with pytest.raises(CommentRequired):
            dispatch.submit_review(awaiting.id, "rev-1", ReviewAction.REJECTED, comment=comment)

        issue = dispatch.get_issue(awaiting.id)
        assert issue.status == IssueStatus.AWAITING_VERIFICATION
        assert issue.version == awaiting.version
        assert VerificationRepository(engine).list_by_issue(awaiting.id) == []

    def test_comment_required_checked_before_lookup(self, dispatch):
        with pytest.raises(CommentRequired):
            dispatch.submit_review("missing", "rev-1", "Rejected", comment="")

    def test_reject_reopens(self, dispatch, engine, awaiting, worker):
        issue = dispatch.submit_review(
            awaiting.id, "rev-1", "Rejected", comment="Edges still crumbling", rating=5
        )

        assert issue.status == IssueStatus.REOPENED
        assert issue.sla_deadline == awaiting.sla_deadline
        assert issue.resolved_at is None
        metrics = dispatch.worker_metrics(worker.id)
        assert metrics.rework_count == 1
        assert metrics.total_resolved == 0
        assert metrics.rating_count == 0
        records = VerificationRepository(engine).list_by_issue(awaiting.id)
        assert len(records) == 1
        assert records[0]["action"] == "Rejected"
        assert records[0]["rating"] is None
        assert records[0]["worker_id"] == worker.id
        # Assignment stays active so the worker can resume
        assert AssignmentRepository(engine).get_active(awaiting.id)["worker_id"] == worker.id

    def test_resume_after_reject(self, dispatch, awaiting, worker):
        dispatch.submit_review(awaiting.id, "rev-1", "Rejected", comment="Redo")
        issue = dispatch.transition_status(awaiting.id, IssueStatus.IN_PROGRESS)
        assert issue.status == IssueStatus.IN_PROGRESS
        issue = dispatch.submit_completion(awaiting.id, worker.id, notes="Redone")
        assert issue.status == IssueStatus.AWAITING_VERIFICATION


class TestApprove:
    def test_approve_closes(self, dispatch, engine, awaiting, worker, clock):
        """Scenario D."""
        clock.advance(hours=3)

        issue = dispatch.submit_review(awaiting.id, "rev-1", "Approved", rating=5)

        assert issue.status == IssueStatus.CLOSED
        assert issue.resolved_at == clock()
        metrics = dispatch.worker_metrics(worker.id)
        assert metrics.total_resolved == 1
        assert metrics.rating_count == 1
        assert metrics.rating_avg == 5.0
        rating = RatingRepository(engine).get_for_issue(awaiting.id)
        assert rating["rating"] == 5
        assert rating["rated_by"] == "rev-1"
        assert AssignmentRepository(engine).get_active(awaiting.id) is None

    def test_rating_average_accumulates(self, dispatch, worker, clock):
        for rating in (5, 2):
            issue = dispatch.create_issue("Pothole", "hole", risk=20)
            dispatch.assign_worker(issue.id, worker.id)
            dispatch.transition_status(issue.id, IssueStatus.IN_PROGRESS)
            dispatch.submit_completion(issue.id, worker.id)
            dispatch.submit_review(issue.id, "rev-1", "Approved", rating=rating)
            clock.advance(hours=72)

        metrics = dispatch.worker_metrics(worker.id)
        assert metrics.rating_count == 2
        assert metrics.rating_avg == pytest.approx(3.5)
        assert metrics.total_resolved == 2

    @pytest.mark.parametrize("rating", [0, 6, -1])
    def test_invalid_rating(self, dispatch, awaiting, rating):
        with pytest.raises(InvalidRating):
            dispatch.submit_review(awaiting.id, "rev-1", "Approved", rating=rating)
        assert dispatch.get_issue(awaiting.id).status == IssueStatus.AWAITING_VERIFICATION

    def test_closed_issue_is_immutable(self, dispatch, awaiting, worker):
        closed = dispatch.submit_review(awaiting.id, "rev-1", "Approved")

        with pytest.raises(IssueLocked):
            dispatch.submit_review(awaiting.id, "rev-2", "Rejected", comment="changed my mind")
        with pytest.raises(IssueLocked):
            dispatch.transition_status(awaiting.id, IssueStatus.IN_PROGRESS)
        with pytest.raises(IssueLocked):
            dispatch.submit_completion(awaiting.id, worker.id)
        with pytest.raises(IssueLocked):
            dispatch.escalate(awaiting.id, "late complaint")

        after = dispatch.get_issue(awaiting.id)
        assert after.model_dump() == closed.model_dump()


def test_review_requires_awaiting_verification(dispatch, reported_issue):
    with pytest.raises(IllegalTransition):
        dispatch.submit_review(reported_issue.id, "rev-1", "Approved")


class TestHistory:
    def test_reviews_are_listed_in_order(self, dispatch, awaiting, worker, clock):
        dispatch.submit_review(awaiting.id, "rev-1", "Rejected", comment="Edges crumbling")
        clock.advance(hours=2)
        dispatch.transition_status(awaiting.id, IssueStatus.IN_PROGRESS)
        dispatch.submit_completion(awaiting.id, worker.id, notes="Resurfaced")
        dispatch.submit_review(awaiting.id, "rev-2", "Approved", rating=4)

        history = dispatch.verification_history(awaiting.id)

        assert [v.action for v in history] == [ReviewAction.REJECTED, ReviewAction.APPROVED]
        assert [v.reviewer_id for v in history] == ["rev-1", "rev-2"]
        assert history[0].comment == "Edges crumbling"
        assert history[1].rating == 4
        assert {v.worker_id for v in history} == {worker.id}


class TestRollback:
    @pytest.mark.parametrize("action,comment", [
        ("Approved", None),
        ("Rejected", "Still leaking"),
    ])
    def test_metrics_failure_leaves_no_trace(
        self, dispatch, awaiting, worker, notifier, action, comment
    ):
        with patch.object(
            dispatch.verification.metrics, "increment", side_effect=RuntimeError("db gone")
        ):
            with pytest.raises(RuntimeError):
                dispatch.submit_review(awaiting.id, "rev-1", action, comment=comment)

        issue = dispatch.get_issue(awaiting.id)
        assert issue.status == IssueStatus.AWAITING_VERIFICATION
        assert issue.version == awaiting.version
        assert issue.resolved_at is None
        assert dispatch.verification_history(awaiting.id) == []
        metrics = dispatch.worker_metrics(worker.id)
        assert metrics.total_resolved == 0
        assert metrics.rework_count == 0
        assert notifier.of_type(EventType.ISSUE_UPDATED)[-1].payload["to"] == "AwaitingVerification"

    def test_rating_failure_keeps_issue_open(self, dispatch, engine, awaiting, worker):
        with patch.object(
            dispatch.verification.metrics, "record_rating", side_effect=RuntimeError("db gone")
        ):
            with pytest.raises(RuntimeError):
                dispatch.submit_review(awaiting.id, "rev-1", "Approved", rating=5)

        assert dispatch.get_issue(awaiting.id).status == IssueStatus.AWAITING_VERIFICATION
        assert RatingRepository(engine).get_for_issue(awaiting.id) is None
        assert AssignmentRepository(engine).get_active(awaiting.id)["worker_id"] == worker.id
