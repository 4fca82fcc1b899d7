"""SQLAlchemy table definitions for the dispatch engine."""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    false,
    text,
    true,
)

metadata = MetaData()

_STATUSES = "('Reported', 'Assigned', 'InProgress', 'AwaitingVerification', 'Closed', 'Reopened')"
_TIERS = "('Low', 'Medium', 'High', 'Critical')"

issues = Table(
    "issues",
    metadata,
    Column("id", String, primary_key=True),
    Column("category", String(64), nullable=False),
    Column("description", Text, nullable=False, server_default=""),
    Column("risk_score", Integer, nullable=False),
    Column("priority_tier", String(16), nullable=False),
    Column("status", String(32), nullable=False, server_default="Reported"),
    Column("is_auto_escalated", Boolean, nullable=False, server_default=false()),
    Column("needs_manual_review", Boolean, nullable=False, server_default=false()),
    Column("classifier_confidence", Integer, nullable=True),
    Column("sla_deadline", DateTime(timezone=True), nullable=True),
    Column("resolved_at", DateTime(timezone=True), nullable=True),
    Column("version", Integer, nullable=False, server_default="1"),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    CheckConstraint(f"status IN {_STATUSES}", name="ck_issues_status"),
    CheckConstraint(f"priority_tier IN {_TIERS}", name="ck_issues_priority"),
    CheckConstraint("risk_score >= 0 AND risk_score <= 100", name="ck_issues_risk_score"),
    Index("ix_issues_status", "status"),
    Index("ix_issues_category", "category"),
    Index("ix_issues_created", "created_at"),
)

workers = Table(
    "workers",
    metadata,
    Column("id", String, primary_key=True),
    Column("name", String, nullable=False),
    Column("department", String(64), nullable=True),
    Column("availability", String(16), nullable=False, server_default="Available"),
    Column("last_assigned_at", DateTime(timezone=True), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    CheckConstraint(
        "availability IN ('Available', 'Unavailable')", name="ck_workers_availability"
    ),
    Index("ix_workers_department", "department"),
)

assignments = Table(
    "assignments",
    metadata,
    Column("id", String, primary_key=True),
    Column("issue_id", String, ForeignKey("issues.id"), nullable=False),
    Column("worker_id", String, ForeignKey("workers.id"), nullable=False),
    Column("assigned_at", DateTime(timezone=True), nullable=False),
    Column("deadline", DateTime(timezone=True), nullable=False),
    Column("priority", String(16), nullable=False),
    Column("is_active", Boolean, nullable=False, server_default=true()),
    Index("ix_assignments_issue", "issue_id"),
    Index("ix_assignments_worker", "worker_id"),
    # At most one active assignment per issue
    Index(
        "uq_assignments_active_issue",
        "issue_id",
        unique=True,
        sqlite_where=text("is_active"),
        postgresql_where=text("is_active"),
    ),
)

verification_records = Table(
    "verification_records",
    metadata,
    Column("id", String, primary_key=True),
    Column("issue_id", String, ForeignKey("issues.id"), nullable=False),
    Column("reviewer_id", String, nullable=False),
    Column("worker_id", String, ForeignKey("workers.id"), nullable=True),
    Column("action", String(16), nullable=False),
    Column("comment", Text, nullable=True),
    Column("rating", Integer, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    CheckConstraint("action IN ('Approved', 'Rejected')", name="ck_verification_action"),
    Index("ix_verification_issue", "issue_id"),
)

worker_metrics = Table(
    "worker_metrics",
    metadata,
    Column("worker_id", String, ForeignKey("workers.id"), primary_key=True),
    Column("total_assigned", Integer, nullable=False, server_default="0"),
    Column("total_resolved", Integer, nullable=False, server_default="0"),
    Column("rework_count", Integer, nullable=False, server_default="0"),
    Column("rating_count", Integer, nullable=False, server_default="0"),
    Column("rating_avg", Float, nullable=True),
    Column("last_updated", DateTime(timezone=True), nullable=False),
)

worker_ratings = Table(
    "worker_ratings",
    metadata,
    Column("id", String, primary_key=True),
    Column("issue_id", String, ForeignKey("issues.id"), nullable=False),
    Column("worker_id", String, ForeignKey("workers.id"), nullable=False),
    Column("rating", Integer, nullable=False),
    Column("remark", Text, nullable=False, server_default=""),
    Column("rated_by", String, nullable=False),
    Column("rated_at", DateTime(timezone=True), nullable=False),
    CheckConstraint("rating >= 1 AND rating <= 5", name="ck_worker_ratings_rating"),
    UniqueConstraint("issue_id", name="uq_worker_ratings_issue"),
    Index("ix_worker_ratings_worker", "worker_id"),
)

resolution_proofs = Table(
    "resolution_proofs",
    metadata,
    Column("id", String, primary_key=True),
    Column("issue_id", String, ForeignKey("issues.id"), nullable=False),
    Column("worker_id", String, ForeignKey("workers.id"), nullable=False),
    Column("notes", Text, nullable=False, server_default=""),
    Column("before_image_url", String, nullable=True),
    Column("after_image_url", String, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Index("ix_resolution_proofs_issue", "issue_id"),
)

escalations = Table(
    "escalations",
    metadata,
    Column("id", String, primary_key=True),
    Column("issue_id", String, ForeignKey("issues.id"), nullable=False),
    Column("reason", Text, nullable=False),
    Column("severity", String(16), nullable=False),
    Column("triggered_by", String, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    CheckConstraint(f"severity IN {_TIERS}", name="ck_escalations_severity"),
    Index("ix_escalations_issue", "issue_id"),
    Index("ix_escalations_created", "created_at"),
)

sla_rules = Table(
    "sla_rules",
    metadata,
    Column("id", String, primary_key=True),
    Column("category", String(64), nullable=True),
    Column("priority", String(16), nullable=True),
    Column("max_hours", Float, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    CheckConstraint("max_hours > 0", name="ck_sla_rules_max_hours"),
    UniqueConstraint("category", "priority", name="uq_sla_rules_scope"),
)

activity_events = Table(
    "activity_events",
    metadata,
    Column("id", String, primary_key=True),
    Column("issue_id", String, ForeignKey("issues.id"), nullable=False),
    Column("trace_id", String, nullable=False),
    Column("step", String(64), nullable=False),
    Column("actor_id", String, nullable=True),
    Column("payload_json", Text, nullable=False, server_default="{}"),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Index("ix_activity_issue", "issue_id"),
    Index("ix_activity_trace", "trace_id"),
    Index("ix_activity_created", "created_at"),
)
