"""Tests for repository classes using in-memory SQLite."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from services.dispatch.src.dispatch.db.repository import (
    ActivityRepository,
    AssignmentRepository,
    EscalationRepository,
    IssueRepository,
    SlaRuleRepository,
    WorkerMetricsRepository,
    WorkerRepository,
    as_utc,
)

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def issue(engine):
    return IssueRepository(engine).create(
        category="Pothole", description="hole", risk_score=40, priority_tier="Medium", now=NOW,
    )


@pytest.fixture
def worker_row(engine):
    return WorkerRepository(engine).create("Asha", department="Roads", now=NOW)


def test_as_utc_normalises_naive():
    naive = datetime(2026, 1, 1, 12, 0)
    assert as_utc(naive).tzinfo == timezone.utc
    assert as_utc(None) is None


class TestIssueRepository:
    def test_create_and_get(self, engine, issue):
        row = IssueRepository(engine).get(issue["id"])
        assert row["status"] == "Reported"
        assert row["version"] == 1
        assert row["created_at"] == NOW

    def test_get_missing(self, engine):
        assert IssueRepository(engine).get("nope") is None

    def test_compare_and_set(self, engine, issue):
        repo = IssueRepository(engine)
        assert repo.compare_and_set(
            issue["id"], expected_status="Reported", expected_version=1,
            values={"status": "Assigned"}, now=NOW,
        )
        # Second writer with the same snapshot loses
        assert not repo.compare_and_set(
            issue["id"], expected_status="Reported", expected_version=1,
            values={"status": "Assigned"}, now=NOW,
        )
        row = repo.get(issue["id"])
        assert row["status"] == "Assigned"
        assert row["version"] == 2

    def test_risk_range_enforced(self, engine):
        with pytest.raises(IntegrityError):
            IssueRepository(engine).create(
                category="Pothole", description="x", risk_score=150, priority_tier="Critical",
            )

    def test_list_filters(self, engine, issue):
        repo = IssueRepository(engine)
        repo.create(category="Fallen Tree", description="tree", risk_score=10, priority_tier="Low")
        assert len(repo.list_all()) == 2
        assert [r["category"] for r in repo.list_all(category="Fallen Tree")] == ["Fallen Tree"]
        assert repo.list_all(status="Closed") == []
        assert repo.count() == 2


class TestWorkerRepository:
    def test_create_seeds_metrics(self, engine, worker_row):
        metrics = WorkerMetricsRepository(engine).get(worker_row["id"])
        assert metrics["total_assigned"] == 0
        assert metrics["rating_avg"] is None

    def test_claim_respects_cooldown(self, engine, worker_row):
        repo = WorkerRepository(engine)
        cooldown = timedelta(hours=72)
        assert repo.claim(worker_row["id"], now=NOW, cooldown=cooldown)
        assert not repo.claim(worker_row["id"], now=NOW + timedelta(hours=71), cooldown=cooldown)
        assert repo.claim(worker_row["id"], now=NOW + timedelta(hours=72), cooldown=cooldown)
        assert repo.get(worker_row["id"])["last_assigned_at"] == NOW + timedelta(hours=72)

    def test_claim_unavailable(self, engine, worker_row):
        repo = WorkerRepository(engine)
        repo.set_availability(worker_row["id"], "Unavailable")
        assert not repo.claim(worker_row["id"], now=NOW, cooldown=timedelta(hours=72))

    def test_cooldown_is_never_stored(self, engine, worker_row):
        with pytest.raises(IntegrityError):
            WorkerRepository(engine).set_availability(worker_row["id"], "OnCooldown")


class TestAssignmentRepository:
    def test_single_active_per_issue(self, engine, issue, worker_row):
        repo = AssignmentRepository(engine)
        kwargs = dict(
            issue_id=issue["id"], worker_id=worker_row["id"], assigned_at=NOW,
            deadline=NOW + timedelta(hours=24), priority="Medium",
        )
        repo.create(**kwargs)
        with pytest.raises(IntegrityError):
            repo.create(**kwargs)

    def test_deactivate_then_create(self, engine, issue, worker_row):
        repo = AssignmentRepository(engine)
        repo.create(
            issue_id=issue["id"], worker_id=worker_row["id"], assigned_at=NOW,
            deadline=NOW + timedelta(hours=24), priority="Medium",
        )
        assert repo.deactivate_active(issue["id"]) == 1
        repo.create(
            issue_id=issue["id"], worker_id=worker_row["id"], assigned_at=NOW + timedelta(hours=1),
            deadline=NOW + timedelta(hours=24), priority="Medium",
        )
        assert len(repo.list_by_issue(issue["id"])) == 2
        assert repo.count_active_by_worker() == {worker_row["id"]: 1}


class TestMetrics:
    def test_increment_unknown_counter(self, engine, worker_row):
        with pytest.raises(ValueError):
            WorkerMetricsRepository(engine).increment(worker_row["id"], "rating_avg")

    def test_increment_missing_worker(self, engine):
        with pytest.raises(LookupError):
            WorkerMetricsRepository(engine).increment("ghost", "total_assigned")

    def test_record_rating_running_average(self, engine, worker_row):
        repo = WorkerMetricsRepository(engine)
        for rating in (4, 5, 3):
            repo.record_rating(worker_row["id"], rating, now=NOW)
        row = repo.get(worker_row["id"])
        assert row["rating_count"] == 3
        assert row["rating_avg"] == pytest.approx(4.0)


class TestSlaRules:
    def test_list_matching(self, engine):
        repo = SlaRuleRepository(engine)
        repo.create(6, category="Pothole", priority="High")
        repo.create(36, category="Pothole")
        repo.create(12, priority="Low")
        repo.create(2, category="Fallen Tree")
        hours = sorted(r["max_hours"] for r in repo.list_matching("Pothole", "High"))
        assert hours == [6, 36]

    def test_duplicate_scope_rejected(self, engine):
        repo = SlaRuleRepository(engine)
        repo.create(6, category="Pothole", priority="High")
        with pytest.raises(IntegrityError):
            repo.create(8, category="Pothole", priority="High")


class TestAppendOnly:
    def test_escalations_have_no_update_api(self):
        assert not hasattr(EscalationRepository, "update")
        assert not hasattr(EscalationRepository, "delete")

    def test_activity_payload_round_trip(self, engine, issue):
        repo = ActivityRepository(engine)
        repo.append(
            issue_id=issue["id"], trace_id="t-1", step="ISSUE_CREATED",
            payload_json={"risk_score": 40, "at": NOW}, now=NOW,
        )
        events = repo.list_by_issue(issue["id"])
        assert events[0]["payload_json"] == {"risk_score": 40, "at": str(NOW)}
