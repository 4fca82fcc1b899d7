"""Enums for the issue lifecycle and dispatch engine."""

from enum import Enum


class IssueStatus(str, Enum):
    """Canonical lifecycle states for a reported issue."""
    REPORTED = "Reported"
    ASSIGNED = "Assigned"
    IN_PROGRESS = "InProgress"
    AWAITING_VERIFICATION = "AwaitingVerification"
    CLOSED = "Closed"          # Terminal
    REOPENED = "Reopened"


class PriorityTier(str, Enum):
    """Priority derived from the risk score at creation time."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class WorkerAvailability(str, Enum):
    """Availability of a worker.

    Only AVAILABLE and UNAVAILABLE are stored. ON_COOLDOWN is derived from
    last_assigned_at and never written to the workers table.
    """
    AVAILABLE = "Available"
    ON_COOLDOWN = "OnCooldown"
    UNAVAILABLE = "Unavailable"


class ReviewAction(str, Enum):
    """Outcome of a completion review."""
    APPROVED = "Approved"
    REJECTED = "Rejected"


class EscalationSeverity(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class EventType(str, Enum):
    """Events published to the notification collaborator."""
    NEW_ISSUE = "new_issue"
    ISSUE_UPDATED = "issue_updated"
    OVERDUE_ISSUE = "overdue_issue"
