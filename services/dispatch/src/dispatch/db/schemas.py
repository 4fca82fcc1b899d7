"""Pydantic records returned by the engine to its callers."""

from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field

from services.dispatch.src.dispatch.schemas.enums import (
    EscalationSeverity,
    IssueStatus,
    PriorityTier,
    ReviewAction,
    WorkerAvailability,
)


# ============================================================================
# Issue
# ============================================================================

class IssueRecord(BaseModel):
    """One reported incident as seen by callers."""
    id: str
    category: str
    description: str
    risk_score: int = Field(..., ge=0, le=100)
    priority_tier: PriorityTier
    status: IssueStatus
    is_auto_escalated: bool
    needs_manual_review: bool = False
    classifier_confidence: int | None = None
    sla_deadline: datetime | None = None
    resolved_at: datetime | None = None
    version: int
    created_at: datetime
    updated_at: datetime


class RiskAssessment(BaseModel):
    """Classifier output consumed at intake."""
    category: str
    risk_score: int = Field(..., ge=0, le=100)
    confidence: int = Field(0, ge=0, le=100)


# ============================================================================
# Workers
# ============================================================================

class WorkerRecord(BaseModel):
    id: str
    name: str
    department: str | None = None
    availability: WorkerAvailability
    last_assigned_at: datetime | None = None
    eligible_at: datetime | None = None


class WorkerMetricsRecord(BaseModel):
    worker_id: str
    total_assigned: int = 0
    total_resolved: int = 0
    rework_count: int = 0
    rating_count: int = 0
    rating_avg: float | None = None
    last_updated: datetime


# ============================================================================
# Dispatch / verification
# ============================================================================

class AssignmentRecord(BaseModel):
    id: str
    issue_id: str
    worker_id: str
    assigned_at: datetime
    deadline: datetime
    priority: PriorityTier
    is_active: bool


class VerificationRecord(BaseModel):
    """Append-only audit of one completion review."""
    id: str
    issue_id: str
    reviewer_id: str
    worker_id: str | None = None
    action: ReviewAction
    comment: str | None = None
    rating: int | None = Field(None, ge=1, le=5)
    created_at: datetime


class EscalationEntry(BaseModel):
    id: str
    issue_id: str
    reason: str
    severity: EscalationSeverity
    triggered_by: str | None = None
    created_at: datetime


class OverdueIssue(BaseModel):
    """Derived overdue fact for one open issue."""
    issue_id: str
    status: IssueStatus
    sla_deadline: datetime
    overdue_duration: timedelta


class ActivityEvent(BaseModel):
    id: str
    issue_id: str
    trace_id: str
    step: str
    actor_id: str | None = None
    payload_json: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class OperationsStats(BaseModel):
    total_issues: int = 0
    closed_issues: int = 0
    overdue_issues: int = 0
    avg_resolution_hours: float | None = None
    sla_compliance_pct: float = 100.0
