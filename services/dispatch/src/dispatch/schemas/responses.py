"""Pydantic request/response models for the dispatch API endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field


# -- Requests ---------------------------------------------------------------

class CreateIssueRequest(BaseModel):
    category: str | None = None
    description: str = Field(..., min_length=1)
    risk_score: int = Field(..., ge=0, le=100)


class AssignWorkerRequest(BaseModel):
    worker_id: str | None = None


class TransitionRequest(BaseModel):
    status: str
    actor_id: str | None = None


class CompletionRequest(BaseModel):
    worker_id: str
    notes: str = ""
    before_image_url: str | None = None
    after_image_url: str | None = None


class ReviewRequest(BaseModel):
    reviewer_id: str
    action: str
    comment: str | None = None
    rating: int | None = None


class EscalateRequest(BaseModel):
    reason: str = Field(..., min_length=1)
    severity: str = "High"
    triggered_by: str | None = None


class RegisterWorkerRequest(BaseModel):
    name: str = Field(..., min_length=1)
    department: str | None = None


class AvailabilityRequest(BaseModel):
    available: bool


# -- Responses ---------------------------------------------------------------

class IssueResponse(BaseModel):
    id: str
    category: str
    description: str
    risk_score: int
    priority_tier: str
    status: str
    is_auto_escalated: bool
    needs_manual_review: bool
    sla_deadline: str | None
    resolved_at: str | None
    version: int
    created_at: str
    updated_at: str


class AssignmentResponse(BaseModel):
    id: str
    issue_id: str
    worker_id: str
    assigned_at: str
    deadline: str
    priority: str
    is_active: bool


class OverdueResponse(BaseModel):
    issue_id: str
    status: str
    sla_deadline: str
    overdue_seconds: int


class EscalationResponse(BaseModel):
    id: str
    issue_id: str
    reason: str
    severity: str
    triggered_by: str | None
    created_at: str


class ActivityEventResponse(BaseModel):
    id: str
    issue_id: str
    trace_id: str
    step: str
    actor_id: str | None
    payload_json: dict
    created_at: str


class VerificationResponse(BaseModel):
    id: str
    issue_id: str
    reviewer_id: str
    worker_id: str | None
    action: str
    comment: str | None
    rating: int | None
    created_at: str


class TimelineResponse(BaseModel):
    issue_id: str
    events: list[ActivityEventResponse]
    escalations: list[EscalationResponse]
    assignments: list[AssignmentResponse]
    verifications: list[VerificationResponse]


class WorkerResponse(BaseModel):
    id: str
    name: str
    department: str | None
    availability: str
    last_assigned_at: str | None
    eligible_at: str | None


class WorkerMetricsResponse(BaseModel):
    worker_id: str
    total_assigned: int
    total_resolved: int
    rework_count: int
    rating_count: int
    rating_avg: float | None


class StatsResponse(BaseModel):
    total_issues: int
    closed_issues: int
    overdue_issues: int
    avg_resolution_hours: float | None
    sla_compliance_pct: float
