"""
Report, worker roster and operations summary tests.
"""

import pytest

from civictrack.core.exceptions import ActorForbidden, InvalidInput, InvalidTransition, NotFound
from civictrack.models.report import ReportCreate, ReportPriority
from civictrack.models.user import WorkerCreate, WorkerStatus
from civictrack.services.report_service import clamp_risk_score

from conftest import backdate_report, get_doc, timeline


class TestRiskScore:
    @pytest.mark.parametrize("value,expected", [
        (None, 0),
        (-5, 0),
        (0, 0),
        (72.4, 72),
        (72.6, 73),
        (100, 100),
        (180, 100),
        ("55", 55),
        ("high", 0),
        (float("nan"), 0),
    ])
    def test_clamp(self, value, expected):
        assert clamp_risk_score(value) == expected


class TestReports:
    def test_create_starts_reported(self, services, make_report, citizen, db):
        report = make_report(risk_score=140)

        assert report["status"] == "reported"
        assert report["risk_score"] == 100
        assert report["resolved_at"] is None
        assert report["reporter_id"] == citizen.id
        assert report["sla"]["state"] == "on_track"

        entries = timeline(db, report["id"])
        assert [e["action_type"] for e in entries] == ["report_created"]

    def test_worker_cannot_file_reports(self, services, worker):
        data = ReportCreate(title="Broken bench", description="Bench slats missing")
        with pytest.raises(ActorForbidden):
            services.reports.create_report(data, worker)

    def test_get_unknown_report(self, services):
        with pytest.raises(NotFound):
            services.reports.get_report("missing")

    def test_list_filters(self, services, make_report, other_citizen, registered_workers, admin):
        first = make_report(priority=ReportPriority.URGENT, title="Open manhole")
        second = make_report(priority=ReportPriority.LOW, title="Faded zebra crossing")
        third = make_report(reporter=other_citizen, title="Overflowing bin")
        services.assignments.assign(second["id"], "worker-1", admin)

        assert [r["id"] for r in services.reports.list_reports()] == [third["id"], second["id"], first["id"]]
        assert [r["id"] for r in services.reports.list_reports(priority="Urgent")] == [first["id"]]
        assert [r["id"] for r in services.reports.list_reports(status="assigned")] == [second["id"]]
        assert [r["id"] for r in services.reports.list_reports(reporter_id=other_citizen.id)] == [third["id"]]
        assert [r["id"] for r in services.reports.list_reports(assigned_worker="worker-1")] == [second["id"]]
        assert len(services.reports.list_reports(limit=2)) == 2

    def test_breached_report_shows_in_sla_block(self, services, make_report, db):
        report = make_report(priority=ReportPriority.URGENT)
        backdate_report(db, report["id"], hours=30)
        assert services.reports.get_report(report["id"])["sla"]["state"] == "breached"

    def test_timeline_of_full_lifecycle(self, services, awaiting_report, admin):
        report_id, proof_id = awaiting_report
        services.proofs.verify(report_id, proof_id, admin, "approved", rating=4)

        actions = [e["action_type"] for e in services.reports.get_timeline(report_id)]
        assert actions == ["report_created", "worker_assigned", "status_changed", "proof_submitted", "verification"]


class TestArchive:
    def test_archive_closed_report(self, services, awaiting_report, admin, db):
        report_id, proof_id = awaiting_report
        services.proofs.verify(report_id, proof_id, admin, "approved", rating=4)

        services.reports.archive_report(report_id, admin)

        assert get_doc(db, "reports", report_id)["archived"] is True
        assert report_id not in [r["id"] for r in services.reports.list_reports()]
        assert report_id in [r["id"] for r in services.reports.list_reports(include_archived=True)]
        assert timeline(db, report_id)[-1]["action_type"] == "report_archived"

    def test_open_report_cannot_be_archived(self, services, make_report, admin):
        report = make_report()
        with pytest.raises(InvalidTransition):
            services.reports.archive_report(report["id"], admin)

    def test_archive_twice(self, services, awaiting_report, admin):
        report_id, proof_id = awaiting_report
        services.proofs.verify(report_id, proof_id, admin, "approved", rating=4)
        services.reports.archive_report(report_id, admin)
        with pytest.raises(InvalidInput):
            services.reports.archive_report(report_id, admin)

    def test_only_admin_archives(self, services, make_report, citizen):
        report = make_report()
        with pytest.raises(ActorForbidden):
            services.reports.archive_report(report["id"], citizen)


class TestWorkers:
    def test_register_and_list(self, services, registered_workers):
        workers = services.workers.list_workers()
        assert [w["id"] for w in workers] == ["worker-1", "worker-2", "worker-3"]
        assert all(w["status"] == "available" for w in workers)

    def test_register_logged_for_admin(self, services, registered_workers):
        entries = services.activity.get_admin_activity()
        assert {e["target_id"] for e in entries} == set(registered_workers)

    def test_duplicate_registration(self, services, registered_workers, admin):
        with pytest.raises(InvalidInput):
            services.workers.register_worker(WorkerCreate(worker_id="worker-1", full_name="Someone Else"), admin)

    def test_only_admin_registers(self, services, citizen):
        with pytest.raises(ActorForbidden):
            services.workers.register_worker(WorkerCreate(worker_id="worker-9", full_name="Nine"), citizen)

    def test_worker_sets_own_status(self, services, registered_workers, worker, db):
        services.workers.set_status("worker-1", WorkerStatus.ON_LEAVE, worker)
        assert get_doc(db, "workers", "worker-1")["status"] == "on_leave"

    def test_worker_cannot_set_other_status(self, services, registered_workers, worker):
        with pytest.raises(ActorForbidden):
            services.workers.set_status("worker-2", WorkerStatus.ON_LEAVE, worker)

    def test_my_assignments(self, services, assigned_report, worker):
        items = services.workers.get_my_assignments(worker)
        assert [a["report_id"] for a in items] == [assigned_report]
        assert items[0]["report"]["status"] == "assigned"

    def test_inactive_worker_cannot_be_assigned(self, services, make_report, registered_workers, admin, db):
        services.workers.set_active("worker-3", False, admin)
        report = make_report()
        with pytest.raises(InvalidInput):
            services.assignments.assign(report["id"], "worker-3", admin)
        assert "worker-3" not in [w["id"] for w in services.workers.list_workers()]

    def test_deactivation_recorded(self, services, registered_workers, admin, db):
        worker = services.workers.set_active("worker-3", False, admin)

        assert worker["is_active"] is False
        assert get_doc(db, "workers", "worker-3")["is_active"] is False
        roster = services.workers.list_workers(include_inactive=True)
        assert {w["id"]: w["is_active"] for w in roster}["worker-3"] is False
        actions = [e["action"] for e in services.activity.get_admin_activity() if e["target_id"] == "worker-3"]
        assert "Deactivated worker" in actions

    def test_busy_worker_cannot_be_deactivated(self, services, assigned_report, admin, db):
        with pytest.raises(InvalidInput):
            services.workers.set_active("worker-1", False, admin)
        assert get_doc(db, "workers", "worker-1")["is_active"] is True

    def test_reactivated_worker_can_be_assigned(self, services, make_report, registered_workers, admin, db):
        services.workers.set_active("worker-3", False, admin)
        services.workers.set_active("worker-3", True, admin)

        report = make_report()
        services.assignments.assign(report["id"], "worker-3", admin)
        assert get_doc(db, "reports", report["id"])["assigned_worker"] == "worker-3"

    def test_only_admin_deactivates(self, services, registered_workers, worker):
        with pytest.raises(ActorForbidden):
            services.workers.set_active("worker-1", False, worker)

    def test_deactivate_unknown_worker(self, services, admin):
        with pytest.raises(NotFound):
            services.workers.set_active("worker-9", False, admin)


class TestOperationsSummary:
    def test_empty_store(self, services):
        summary = services.operations.get_summary()
        assert summary["total_reports"] == 0
        assert summary["avg_resolution_hours"] is None
        assert summary["sla_compliance_pct"] is None

    def test_summary_counts(self, services, awaiting_report, make_report, admin, citizen, db):
        report_id, proof_id = awaiting_report
        services.proofs.verify(report_id, proof_id, admin, "approved", rating=5)

        late = make_report(priority=ReportPriority.URGENT, title="Collapsed drain")
        backdate_report(db, late["id"], hours=30)
        services.escalations.escalate(late["id"], "Road closed", "critical", citizen)

        summary = services.operations.get_summary()
        assert summary["total_reports"] == 2
        assert summary["by_status"] == {"closed": 1, "reported": 1}
        assert summary["by_priority"] == {"Medium": 1, "Urgent": 1}
        assert summary["sla_compliance_pct"] == 100.0
        assert summary["avg_resolution_hours"] is not None
        assert summary["overdue_open"] == 1
        assert summary["open_escalations"] == 1
        assert {w["worker_id"]: w["active_assignments"] for w in summary["worker_load"]}["worker-1"] == 0
