"""SLA deadlines and the overdue monitor.

Overdue is a derived fact (now > sla_deadline on an open issue), never a
status. The monitor only reads and publishes; it writes nothing.
"""

import logging
import threading
from collections.abc import Iterator
from datetime import datetime, timedelta

from sqlalchemy.engine import Connection, Engine

from services.dispatch.src.dispatch.core.lifecycle import Clock, utcnow
from services.dispatch.src.dispatch.core.notify import Event, Notifier, publish
from services.dispatch.src.dispatch.db.repository import IssueRepository, SlaRuleRepository
from services.dispatch.src.dispatch.db.schemas import OperationsStats, OverdueIssue
from services.dispatch.src.dispatch.schemas.enums import EventType, IssueStatus

logger = logging.getLogger(__name__)

# Statuses in which the SLA clock is running
WATCHED_STATUSES = (IssueStatus.ASSIGNED, IssueStatus.IN_PROGRESS, IssueStatus.REOPENED)


def resolve_sla_hours(
    rules: list[dict],
    category: str,
    priority: str,
    default_hours: float,
) -> float:
    """Pick the most specific rule for (category, priority).

    Precedence: category+priority, category only, priority only, a global
    rule with neither set, then ``default_hours``.
    """
    best: dict | None = None
    best_rank = -1
    for rule in rules:
        if rule["category"] not in (None, category):
            continue
        if rule["priority"] not in (None, priority):
            continue
        rank = (2 if rule["category"] else 0) + (1 if rule["priority"] else 0)
        if rank > best_rank:
            best, best_rank = rule, rank
    return float(best["max_hours"]) if best else float(default_hours)


class SlaPolicy:
    """Computes the deadline an assignment starts with."""

    def __init__(self, engine: Engine, default_hours: float = 24):
        self.rules = SlaRuleRepository(engine)
        self.default_hours = default_hours

    def hours_for(self, category: str, priority: str, conn: Connection | None = None) -> float:
        rules = self.rules.list_matching(category, priority, conn=conn)
        return resolve_sla_hours(rules, category, priority, self.default_hours)

    def deadline_for(
        self,
        category: str,
        priority: str,
        assigned_at: datetime,
        conn: Connection | None = None,
    ) -> datetime:
        return assigned_at + timedelta(hours=self.hours_for(category, priority, conn=conn))


def compute_overdue(issue: dict, now: datetime) -> OverdueIssue | None:
    """Overdue fact for one issue row, or None if it is within its SLA."""
    deadline = issue.get("sla_deadline")
    if deadline is None or IssueStatus(issue["status"]) not in WATCHED_STATUSES:
        return None
    if now <= deadline:
        return None
    return OverdueIssue(
        issue_id=issue["id"],
        status=issue["status"],
        sla_deadline=deadline,
        overdue_duration=now - deadline,
    )


class SlaMonitor:
    """Periodic read-only sweep that notifies once per deadline crossing."""

    def __init__(
        self,
        engine: Engine,
        *,
        clock: Clock = utcnow,
        notifier: Notifier | None = None,
        interval_s: float = 60.0,
    ):
        self.issues = IssueRepository(engine)
        self.clock = clock
        self.notifier = notifier
        self.interval_s = interval_s
        # issue_id -> deadline we already notified for
        self._notified: dict[str, datetime] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def overdue(self) -> Iterator[OverdueIssue]:
        """Lazily yield currently overdue issues, recomputed on every call."""
        now = self.clock()
        for row in self.issues.list_with_deadline([s.value for s in WATCHED_STATUSES]):
            item = compute_overdue(row, now)
            if item is not None:
                yield item

    def sweep(self) -> list[OverdueIssue]:
        """Run one sweep. Returns the issues notified during this sweep."""
        now = self.clock()
        rows = self.issues.list_with_deadline([s.value for s in WATCHED_STATUSES])
        notified: list[OverdueIssue] = []
        seen: set[str] = set()
        completed = True

        with self._lock:
            for row in rows:
                if self._stop.is_set():
                    completed = False
                    break
                item = compute_overdue(row, now)
                if item is None:
                    continue
                seen.add(item.issue_id)
                if self._notified.get(item.issue_id) == item.sla_deadline:
                    continue
                self._notified[item.issue_id] = item.sla_deadline
                notified.append(item)

            # Forget issues that left the overdue set so a later crossing
            # notifies again. Only safe after a full pass.
            if completed:
                for issue_id in list(self._notified):
                    if issue_id not in seen:
                        del self._notified[issue_id]

        # Notify after releasing the lock.
        for item in notified:
            overdue_s = int(item.overdue_duration.total_seconds())
            logger.warning("sla_overdue", extra={
                "issue_id": item.issue_id,
                "status": item.status.value,
                "overdue_s": overdue_s,
            })
            publish(self.notifier, Event(
                type=EventType.OVERDUE_ISSUE,
                issue_id=item.issue_id,
                payload={
                    "status": item.status.value,
                    "sla_deadline": item.sla_deadline.isoformat(),
                    "overdue_seconds": overdue_s,
                },
                ts=now,
            ))

        return notified

    # ------------------------------------------------------------------
    # Background thread
    # ------------------------------------------------------------------

    def _run(self) -> None:
        logger.info("sla_monitor_started", extra={"interval_s": self.interval_s})
        while not self._stop.is_set():
            try:
                self.sweep()
            except Exception as exc:
                logger.error("sla_sweep_failed", extra={"error": str(exc)})
            self._stop.wait(self.interval_s)
        logger.info("sla_monitor_stopped")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="sla-monitor", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None


def operations_stats(engine: Engine, now: datetime) -> OperationsStats:
    """Resolution time and SLA compliance across all issues."""
    issues = IssueRepository(engine)
    total = issues.count()
    closed = issues.list_closed()
    overdue = sum(
        1
        for row in issues.list_with_deadline([s.value for s in WATCHED_STATUSES])
        if compute_overdue(row, now) is not None
    )

    avg_hours = None
    if closed:
        seconds = sum((r["resolved_at"] - r["created_at"]).total_seconds() for r in closed)
        avg_hours = round(seconds / len(closed) / 3600, 1)

    compliance = 100.0
    if total:
        compliance = round((total - overdue) / total * 100, 1)

    return OperationsStats(
        total_issues=total,
        closed_issues=len(closed),
        overdue_issues=overdue,
        avg_resolution_hours=avg_hours,
        sla_compliance_pct=compliance,
    )
