"""Issue API endpoints."""

import logging

from fastapi import APIRouter, Depends, Form, HTTPException, UploadFile
from sqlalchemy.engine import Engine

from services.dispatch.src.dispatch.core.engine import DispatchEngine
from services.dispatch.src.dispatch.db.engine import get_engine
from services.dispatch.src.dispatch.db.schemas import AssignmentRecord, IssueRecord
from services.dispatch.src.dispatch.schemas.enums import IssueStatus
from services.dispatch.src.dispatch.schemas.responses import (
    ActivityEventResponse,
    AssignmentResponse,
    AssignWorkerRequest,
    CompletionRequest,
    CreateIssueRequest,
    EscalateRequest,
    EscalationResponse,
    IssueResponse,
    OverdueResponse,
    ReviewRequest,
    StatsResponse,
    TimelineResponse,
    TransitionRequest,
    VerificationResponse,
)

MAX_IMAGE_BYTES = 10 * 1024 * 1024  # 10 MB

logger = logging.getLogger(__name__)

router = APIRouter()


def _engine() -> Engine:
    return get_engine()


def _dispatch(engine: Engine = Depends(_engine)) -> DispatchEngine:
    return DispatchEngine.from_settings(engine)


def _str_dt(dt) -> str | None:
    """Convert a datetime to ISO string."""
    if dt is None:
        return None
    return dt.isoformat() if hasattr(dt, "isoformat") else str(dt)


def _issue_response(issue: IssueRecord) -> IssueResponse:
    return IssueResponse(
        id=issue.id,
        category=issue.category,
        description=issue.description,
        risk_score=issue.risk_score,
        priority_tier=issue.priority_tier.value,
        status=issue.status.value,
        is_auto_escalated=issue.is_auto_escalated,
        needs_manual_review=issue.needs_manual_review,
        sla_deadline=_str_dt(issue.sla_deadline),
        resolved_at=_str_dt(issue.resolved_at),
        version=issue.version,
        created_at=_str_dt(issue.created_at),
        updated_at=_str_dt(issue.updated_at),
    )


def _assignment_response(a: AssignmentRecord) -> AssignmentResponse:
    return AssignmentResponse(
        id=a.id,
        issue_id=a.issue_id,
        worker_id=a.worker_id,
        assigned_at=_str_dt(a.assigned_at),
        deadline=_str_dt(a.deadline),
        priority=a.priority.value,
        is_active=a.is_active,
    )


# ---------------------------------------------------------------------------
# Intake
# ---------------------------------------------------------------------------

@router.post("", response_model=IssueResponse)
def create_issue(
    body: CreateIssueRequest,
    dispatch: DispatchEngine = Depends(_dispatch),
) -> IssueResponse:
    """Create an issue from a caller-supplied risk score."""
    issue = dispatch.create_issue(body.category, body.description, risk=body.risk_score)
    return _issue_response(issue)


@router.post("/upload", response_model=IssueResponse)
async def create_issue_from_image(
    image: UploadFile,
    description: str = Form(...),
    category: str = Form(""),
    dispatch: DispatchEngine = Depends(_dispatch),
) -> IssueResponse:
    """Create an issue from a photo; the classifier supplies the risk score."""
    image_bytes = await image.read()
    if not image_bytes:
        raise HTTPException(422, "Image is empty")
    if len(image_bytes) > MAX_IMAGE_BYTES:
        raise HTTPException(413, "Image too large (max 10 MB)")
    logger.info("issue_image_received", extra={
        "size_bytes": len(image_bytes), "content_type": image.content_type,
    })

    from starlette.concurrency import run_in_threadpool

    issue = await run_in_threadpool(
        dispatch.create_issue,
        category or None,
        description,
        image_bytes=image_bytes,
        mime_type=image.content_type or "image/jpeg",
    )
    return _issue_response(issue)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

@router.get("", response_model=list[IssueResponse])
def list_issues(
    status: str | None = None,
    category: str | None = None,
    limit: int = 100,
    dispatch: DispatchEngine = Depends(_dispatch),
) -> list[IssueResponse]:
    if status and status not in {s.value for s in IssueStatus}:
        raise HTTPException(422, f"Unknown status: {status}")
    return [_issue_response(i) for i in dispatch.list_issues(status, category, limit)]


@router.get("/overdue", response_model=list[OverdueResponse])
def list_overdue(dispatch: DispatchEngine = Depends(_dispatch)) -> list[OverdueResponse]:
    return [
        OverdueResponse(
            issue_id=o.issue_id,
            status=o.status.value,
            sla_deadline=_str_dt(o.sla_deadline),
            overdue_seconds=int(o.overdue_duration.total_seconds()),
        )
        for o in dispatch.list_overdue()
    ]


@router.get("/stats", response_model=StatsResponse)
def stats(dispatch: DispatchEngine = Depends(_dispatch)) -> StatsResponse:
    return StatsResponse(**dispatch.stats().model_dump())


@router.get("/{issue_id}", response_model=IssueResponse)
def get_issue(issue_id: str, dispatch: DispatchEngine = Depends(_dispatch)) -> IssueResponse:
    return _issue_response(dispatch.get_issue(issue_id))


@router.get("/{issue_id}/timeline", response_model=TimelineResponse)
def get_timeline(
    issue_id: str,
    dispatch: DispatchEngine = Depends(_dispatch),
) -> TimelineResponse:
    """Activity, escalations, assignments and reviews for one issue."""
    events = [
        ActivityEventResponse(
            id=e.id,
            issue_id=e.issue_id,
            trace_id=e.trace_id,
            step=e.step,
            actor_id=e.actor_id,
            payload_json=e.payload_json,
            created_at=_str_dt(e.created_at),
        )
        for e in dispatch.timeline(issue_id)
    ]
    escalations = [
        EscalationResponse(
            id=x.id,
            issue_id=x.issue_id,
            reason=x.reason,
            severity=x.severity.value,
            triggered_by=x.triggered_by,
            created_at=_str_dt(x.created_at),
        )
        for x in dispatch.escalations(issue_id)
    ]
    assignments = [_assignment_response(a) for a in dispatch.assignment_history(issue_id)]
    verifications = [
        VerificationResponse(
            id=v.id,
            issue_id=v.issue_id,
            reviewer_id=v.reviewer_id,
            worker_id=v.worker_id,
            action=v.action.value,
            comment=v.comment,
            rating=v.rating,
            created_at=_str_dt(v.created_at),
        )
        for v in dispatch.verification_history(issue_id)
    ]
    return TimelineResponse(
        issue_id=issue_id,
        events=events,
        escalations=escalations,
        assignments=assignments,
        verifications=verifications,
    )


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

@router.post("/{issue_id}/assign", response_model=AssignmentResponse)
def assign_worker(
    issue_id: str,
    body: AssignWorkerRequest,
    dispatch: DispatchEngine = Depends(_dispatch),
) -> AssignmentResponse:
    return _assignment_response(dispatch.assign_worker(issue_id, body.worker_id))


@router.post("/{issue_id}/status", response_model=IssueResponse)
def transition_status(
    issue_id: str,
    body: TransitionRequest,
    dispatch: DispatchEngine = Depends(_dispatch),
) -> IssueResponse:
    if body.status not in {s.value for s in IssueStatus}:
        raise HTTPException(422, f"Unknown status: {body.status}")
    issue = dispatch.transition_status(issue_id, body.status, actor_id=body.actor_id)
    return _issue_response(issue)


@router.post("/{issue_id}/completion", response_model=IssueResponse)
def submit_completion(
    issue_id: str,
    body: CompletionRequest,
    dispatch: DispatchEngine = Depends(_dispatch),
) -> IssueResponse:
    issue = dispatch.submit_completion(
        issue_id, body.worker_id, body.notes, body.before_image_url, body.after_image_url
    )
    return _issue_response(issue)


@router.post("/{issue_id}/review", response_model=IssueResponse)
def submit_review(
    issue_id: str,
    body: ReviewRequest,
    dispatch: DispatchEngine = Depends(_dispatch),
) -> IssueResponse:
    if body.action not in ("Approved", "Rejected"):
        raise HTTPException(422, f"Unknown review action: {body.action}")
    issue = dispatch.submit_review(
        issue_id, body.reviewer_id, body.action, body.comment, body.rating
    )
    return _issue_response(issue)


@router.post("/{issue_id}/escalate", response_model=EscalationResponse)
def escalate(
    issue_id: str,
    body: EscalateRequest,
    dispatch: DispatchEngine = Depends(_dispatch),
) -> EscalationResponse:
    if body.severity not in ("Low", "Medium", "High", "Critical"):
        raise HTTPException(422, f"Unknown severity: {body.severity}")
    entry = dispatch.escalate(issue_id, body.reason, body.severity, body.triggered_by)
    return EscalationResponse(
        id=entry.id,
        issue_id=entry.issue_id,
        reason=entry.reason,
        severity=entry.severity.value,
        triggered_by=entry.triggered_by,
        created_at=_str_dt(entry.created_at),
    )
