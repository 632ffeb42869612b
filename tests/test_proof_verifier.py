"""
Resolution proof tests: submission rules, the three verification
decisions and the decide-exactly-once contract.
"""

import pytest
from google.api_core.exceptions import ServiceUnavailable

from civictrack.core.exceptions import (
    ActorForbidden,
    AlreadyVerified,
    InvalidInput,
    InvalidTransition,
    NotAssignedWorker,
    NotFound,
    ReportLocked,
)

from conftest import active_assignments, dump, get_doc, timeline

EVIDENCE = ["https://storage.example.com/fix-1.jpg"]


def _verification_entries(db, report_id):
    return [e for e in timeline(db, report_id) if e["action_type"] == "verification"]


class TestSubmitProof:
    def test_submit_moves_to_awaiting_verification(self, services, in_progress_report, worker, db):
        result = services.proofs.submit_proof(in_progress_report, worker, EVIDENCE, notes="Filled and levelled")

        assert result["proof"]["outcome"] == "pending"
        assert result["proof"]["cycle"] == 0
        assert get_doc(db, "reports", in_progress_report)["status"] == "awaiting_verification"
        assert get_doc(db, "resolution_proofs", result["proof"]["id"])["notes"] == "Filled and levelled"

        entries = [e for e in timeline(db, in_progress_report) if e["action_type"] == "proof_submitted"]
        assert len(entries) == 1
        assert entries[0]["details"]["proof_id"] == result["proof"]["id"]

    def test_other_worker_rejected(self, services, in_progress_report, worker2, db):
        before = dump(db)
        with pytest.raises(NotAssignedWorker):
            services.proofs.submit_proof(in_progress_report, worker2, EVIDENCE)
        assert dump(db) == before

    def test_admin_cannot_submit(self, services, in_progress_report, admin):
        with pytest.raises(NotAssignedWorker):
            services.proofs.submit_proof(in_progress_report, admin, EVIDENCE)

    def test_work_must_be_started(self, services, assigned_report, worker):
        with pytest.raises(InvalidTransition):
            services.proofs.submit_proof(assigned_report, worker, EVIDENCE)

    def test_second_submission_while_pending(self, services, awaiting_report, worker):
        report_id, _ = awaiting_report
        with pytest.raises(InvalidTransition):
            services.proofs.submit_proof(report_id, worker, EVIDENCE)

    @pytest.mark.parametrize("evidence", [[], ["", "   "], None])
    def test_evidence_required(self, services, in_progress_report, worker, evidence):
        with pytest.raises(InvalidInput):
            services.proofs.submit_proof(in_progress_report, worker, evidence)

    def test_unknown_report(self, services, worker):
        with pytest.raises(NotFound):
            services.proofs.submit_proof("missing", worker, EVIDENCE)

    def test_closed_report_locked(self, services, awaiting_report, admin, worker):
        report_id, proof_id = awaiting_report
        services.proofs.verify(report_id, proof_id, admin, "approved", rating=5)
        with pytest.raises(ReportLocked):
            services.proofs.submit_proof(report_id, worker, EVIDENCE)


class TestVerify:
    def test_approve_closes_report(self, services, awaiting_report, admin, db):
        report_id, proof_id = awaiting_report
        result = services.proofs.verify(report_id, proof_id, admin, "approved", comment="Good job", rating=4)

        report = get_doc(db, "reports", report_id)
        assert report["status"] == "closed"
        assert report["resolved_at"] is not None
        assert report["assigned_worker"] is None
        assert result["proof"]["outcome"] == "approved"
        assert active_assignments(db, report_id) == []
        assert get_doc(db, "workers", "worker-1")["status"] == "available"

        proofs = services.proofs.list_proofs(report_id)
        assert [p["outcome"] for p in proofs] == ["approved"]
        assert len(_verification_entries(db, report_id)) == 1

    def test_approve_records_worker_rating(self, services, awaiting_report, admin, db):
        report_id, proof_id = awaiting_report
        services.proofs.verify(report_id, proof_id, admin, "approved", comment="Neat", rating=5)

        ratings = [doc.to_dict() for doc in db.collection("worker_ratings").stream()]
        assert len(ratings) == 1
        assert ratings[0]["worker_id"] == "worker-1"
        assert ratings[0]["rating"] == 5
        assert ratings[0]["remark"] == "Neat"

    def test_reject_reopens_with_same_worker(self, services, awaiting_report, admin, db):
        """Rejection keeps the same worker on the report."""
        report_id, proof_id = awaiting_report
        services.proofs.verify(report_id, proof_id, admin, "rejected", comment="redo edge")

        report = get_doc(db, "reports", report_id)
        assert report["status"] == "reopened"
        assert report["resolved_at"] is None
        assert report["proof_cycle"] == 1
        assert get_doc(db, "resolution_proofs", proof_id)["outcome"] == "rejected"
        assert [a["worker_id"] for a in active_assignments(db, report_id)] == ["worker-1"]

    def test_reassign_reopens_without_assignee(self, services, awaiting_report, admin, db):
        """Reassign decision leaves the report waiting for a new assignment."""
        report_id, proof_id = awaiting_report
        services.proofs.verify(report_id, proof_id, admin, "reassign", comment="needs specialist")

        report = get_doc(db, "reports", report_id)
        assert report["status"] == "reopened"
        assert report["assigned_worker"] is None
        assert active_assignments(db, report_id) == []
        history = services.assignments.get_assignment_history(report_id)
        assert len(history) == 1
        assert history[0]["is_active"] is False

    def test_second_verify_rejected(self, services, awaiting_report, admin, db):
        """A decided proof cannot be decided again."""
        report_id, proof_id = awaiting_report
        services.proofs.verify(report_id, proof_id, admin, "rejected", comment="redo edge")

        before = dump(db)
        with pytest.raises(AlreadyVerified):
            services.proofs.verify(report_id, proof_id, admin, "approved", rating=5)
        assert dump(db) == before
        assert len(_verification_entries(db, report_id)) == 1

    def test_second_verify_after_approval(self, services, awaiting_report, admin, db):
        report_id, proof_id = awaiting_report
        services.proofs.verify(report_id, proof_id, admin, "approved", rating=3)
        with pytest.raises(AlreadyVerified):
            services.proofs.verify(report_id, proof_id, admin, "rejected", comment="changed my mind")

    def test_resubmission_after_rejection(self, services, awaiting_report, admin, worker, db):
        report_id, proof_id = awaiting_report
        services.proofs.verify(report_id, proof_id, admin, "rejected", comment="redo edge")

        second = services.proofs.submit_proof(report_id, worker, ["https://storage.example.com/fix-2.jpg"])
        assert second["proof"]["cycle"] == 1
        services.proofs.verify(report_id, second["proof"]["id"], admin, "approved", rating=4)

        assert [p["outcome"] for p in services.proofs.list_proofs(report_id)] == ["rejected", "approved"]
        assert get_doc(db, "reports", report_id)["status"] == "closed"
        assert len(_verification_entries(db, report_id)) == 2

    @pytest.mark.parametrize("rating", [None, 0, 6, True, "5"])
    def test_approval_needs_valid_rating(self, services, awaiting_report, admin, rating):
        report_id, proof_id = awaiting_report
        with pytest.raises(InvalidInput):
            services.proofs.verify(report_id, proof_id, admin, "approved", rating=rating)

    @pytest.mark.parametrize("decision", ["rejected", "reassign"])
    def test_comment_required(self, services, awaiting_report, admin, decision):
        report_id, proof_id = awaiting_report
        with pytest.raises(InvalidInput):
            services.proofs.verify(report_id, proof_id, admin, decision, comment=" ")

    def test_unknown_decision(self, services, awaiting_report, admin):
        report_id, proof_id = awaiting_report
        with pytest.raises(InvalidInput):
            services.proofs.verify(report_id, proof_id, admin, "maybe", comment="hmm")

    def test_only_admin_verifies(self, services, awaiting_report, worker):
        report_id, proof_id = awaiting_report
        with pytest.raises(ActorForbidden):
            services.proofs.verify(report_id, proof_id, worker, "approved", rating=5)

    def test_proof_from_other_report(self, services, awaiting_report, make_report, admin):
        _, proof_id = awaiting_report
        other = make_report(title="Fallen tree")
        with pytest.raises(NotFound):
            services.proofs.verify(other["id"], proof_id, admin, "approved", rating=5)

    def test_audit_failure_leaves_proof_pending(self, services, awaiting_report, admin, db):
        report_id, proof_id = awaiting_report
        before = dump(db)

        db.fail_writes_to("report_activity_logs")
        with pytest.raises(ServiceUnavailable):
            services.proofs.verify(report_id, proof_id, admin, "approved", rating=5)
        db.clear_write_failures()

        assert dump(db) == before
        assert get_doc(db, "resolution_proofs", proof_id)["outcome"] == "pending"
        assert get_doc(db, "reports", report_id)["status"] == "awaiting_verification"


class TestDecisionNotifications:
    def test_approval_notifies_reporter_and_worker(self, services, awaiting_report, admin):
        report_id, proof_id = awaiting_report
        services.proofs.verify(report_id, proof_id, admin, "approved", rating=5)

        assert "resolution" in [n["type"] for n in services.notifier.list_for_user("citizen-1")]
        assert "resolution" in [n["type"] for n in services.notifier.list_for_user("worker-1")]

    def test_rejection_notifies_worker(self, services, awaiting_report, admin):
        report_id, proof_id = awaiting_report
        services.proofs.verify(report_id, proof_id, admin, "rejected", comment="redo edge")
        assert "rework" in [n["type"] for n in services.notifier.list_for_user("worker-1")]

    def test_notification_failure_does_not_undo_decision(self, services, awaiting_report, admin, db):
        report_id, proof_id = awaiting_report
        db.fail_writes_to("notifications")

        result = services.proofs.verify(report_id, proof_id, admin, "approved", rating=5)
        db.clear_write_failures()

        assert result["report"]["status"] == "closed"
        assert get_doc(db, "reports", report_id)["status"] == "closed"
        assert services.notifier.list_for_user("citizen-1") == []
