"""Caller-visible errors raised by the dispatch engine.

Every error carries a ``context`` dict (issue id, current status, requested
status or action, worker id) so callers can render an actionable message.
The engine never retries an operation that raised one of these.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any


class DispatchError(Exception):
    """Base class for recoverable engine errors."""

    code = "dispatch_error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = {k: _plain(v) for k, v in context.items() if v is not None}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, **self.context}


def _plain(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    return value


class IssueNotFound(DispatchError):
    code = "issue_not_found"

    def __init__(self, issue_id: str):
        super().__init__(f"Issue {issue_id} not found", issue_id=issue_id)


class WorkerNotFound(DispatchError):
    code = "worker_not_found"

    def __init__(self, worker_id: str):
        super().__init__(f"Worker {worker_id} not found", worker_id=worker_id)


class IllegalTransition(DispatchError):
    """Requested move is not in the lifecycle transition table."""

    code = "illegal_transition"

    def __init__(self, issue_id: str, current, requested, hint: str = ""):
        message = f"Issue {issue_id}: cannot move from {_plain(current)} to {_plain(requested)}"
        if hint:
            message = f"{message} ({hint})"
        super().__init__(
            message, issue_id=issue_id, current_status=current, requested_status=requested
        )


class IssueLocked(DispatchError):
    """Mutation attempted on a Closed issue."""

    code = "issue_locked"

    def __init__(self, issue_id: str, action: str):
        super().__init__(
            f"Issue {issue_id} is closed; {action} is not allowed",
            issue_id=issue_id,
            current_status="Closed",
            requested_action=action,
        )


class StaleIssue(DispatchError):
    """The issue changed between read and write (lost compare-and-swap)."""

    code = "stale_issue"

    def __init__(self, issue_id: str, expected_status, expected_version: int):
        super().__init__(
            f"Issue {issue_id} was modified concurrently; retry with fresh state",
            issue_id=issue_id,
            expected_status=expected_status,
            expected_version=expected_version,
        )


class AssignmentConflict(DispatchError):
    """Lost a race for the same issue during assignment."""

    code = "assignment_conflict"

    def __init__(self, issue_id: str, worker_id: str | None = None, reason: str = ""):
        super().__init__(
            f"Assignment of issue {issue_id} conflicted with a concurrent change"
            + (f": {reason}" if reason else ""),
            issue_id=issue_id,
            worker_id=worker_id,
        )


class WorkerOnCooldown(DispatchError):
    code = "worker_on_cooldown"

    def __init__(self, worker_id: str, eligible_at: datetime | None = None, issue_id: str | None = None):
        message = f"Worker {worker_id} is on cooldown"
        if eligible_at is not None:
            message = f"{message} until {eligible_at.isoformat()}"
        super().__init__(
            message, worker_id=worker_id, eligible_at=eligible_at, issue_id=issue_id
        )


class WorkerUnavailable(DispatchError):
    code = "worker_unavailable"

    def __init__(self, worker_id: str, issue_id: str | None = None):
        super().__init__(
            f"Worker {worker_id} is not available for dispatch",
            worker_id=worker_id,
            issue_id=issue_id,
        )


class NoEligibleWorker(DispatchError):
    code = "no_eligible_worker"

    def __init__(self, issue_id: str, category: str | None = None):
        super().__init__(
            f"No eligible worker for issue {issue_id}", issue_id=issue_id, category=category
        )


class NotAssignedWorker(DispatchError):
    code = "not_assigned_worker"

    def __init__(self, issue_id: str, worker_id: str):
        super().__init__(
            f"Worker {worker_id} does not hold the active assignment for issue {issue_id}",
            issue_id=issue_id,
            worker_id=worker_id,
        )


class CommentRequired(DispatchError):
    """Rejection submitted without rework instructions."""

    code = "comment_required"

    def __init__(self, issue_id: str):
        super().__init__(
            f"Issue {issue_id}: a comment is required when rejecting",
            issue_id=issue_id,
            requested_action="Rejected",
        )


class InvalidRating(DispatchError):
    code = "invalid_rating"

    def __init__(self, issue_id: str, rating: int):
        super().__init__(
            f"Issue {issue_id}: rating must be between 1 and 5, got {rating}",
            issue_id=issue_id,
            rating=rating,
        )


class ClassifierUnavailable(DispatchError):
    """Upstream risk classifier timed out or failed."""

    code = "classifier_unavailable"

    def __init__(self, reason: str):
        super().__init__(f"Risk classifier unavailable: {reason}", reason=reason)


class InvalidIntake(DispatchError):
    """Issue creation had neither an image nor a risk assessment."""

    code = "invalid_intake"

    def __init__(self, reason: str):
        super().__init__(f"Invalid intake: {reason}", reason=reason)
