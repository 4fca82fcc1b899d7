"""Append-only escalation ledger."""

import logging
from datetime import datetime

from sqlalchemy.engine import Connection, Engine

from services.dispatch.src.dispatch.db.repository import EscalationRepository
from services.dispatch.src.dispatch.db.schemas import EscalationEntry
from services.dispatch.src.dispatch.schemas.enums import EscalationSeverity

logger = logging.getLogger(__name__)


class EscalationLedger:
    """Records why an issue was escalated. Entries are never edited."""

    def __init__(self, engine: Engine):
        self.repo = EscalationRepository(engine)

    def record(
        self,
        issue_id: str,
        reason: str,
        severity: EscalationSeverity | str,
        triggered_by: str | None = None,
        *,
        now: datetime | None = None,
        conn: Connection | None = None,
    ) -> EscalationEntry:
        severity = EscalationSeverity(severity)
        row = self.repo.append(
            issue_id=issue_id,
            reason=reason,
            severity=severity.value,
            triggered_by=triggered_by,
            now=now,
            conn=conn,
        )
        logger.info("escalation_recorded", extra={
            "issue_id": issue_id, "severity": severity.value, "triggered_by": triggered_by,
        })
        return EscalationEntry(**row)

    def list_for_issue(self, issue_id: str) -> list[EscalationEntry]:
        return [EscalationEntry(**row) for row in self.repo.list_by_issue(issue_id)]
