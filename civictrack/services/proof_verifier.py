"""
Resolution Proof Verifier - worker evidence and the admin decision on it.

DESIGN PRINCIPLES:
- Only the active assignee can submit proof, and only while working
  (in_progress) or reworking (reopened)
- A proof is decided EXACTLY ONCE: approved, rejected or reassign
- Every decision writes exactly one verification audit entry in the same
  transaction as the proof and report changes
- Notifications go out after commit; their failure never undoes a decision

DECISIONS:
✅ approved  → report closed, assignment deactivated, worker rated
✅ rejected  → report reopened, same worker keeps the assignment
✅ reassign  → report reopened with no assignee, awaiting a new assignment
"""

from civictrack.config.firebase import get_db
from civictrack.core.exceptions import (
    ActorForbidden,
    AlreadyVerified,
    InvalidInput,
    InvalidTransition,
    NotAssignedWorker,
    NotFound,
    ReportLocked,
)
from civictrack.models.report import ReportStatus
from civictrack.models.user import Actor
from civictrack.models.workflow import ActionType, ProofOutcome, VerificationDecision
from civictrack.services.assignment_manager import AssignmentManager
from civictrack.services.notification_service import NotificationService, NotificationType
from civictrack.services.status_workflow import StatusWorkflowEngine, TransitionTrigger
from civictrack.utils.firestore_helpers import run_in_transaction, utcnow
from civictrack.utils.records import (
    PROOFS,
    WORKER_RATINGS,
    active_worker_id,
    load_active_assignments,
    load_proof,
    load_proofs,
    load_report,
)
from typing import Dict, List, Optional
import logging

logger = logging.getLogger(__name__)


class ProofVerifier:
    """
    Submission and verification of resolution proofs.
    """

    SUBMITTABLE_STATUSES = [ReportStatus.IN_PROGRESS.value, ReportStatus.REOPENED.value]

    def __init__(self, db=None, notifier: Optional[NotificationService] = None):
        self.db = db or get_db()
        self.notifier = notifier or NotificationService(self.db)
        self.workflow = StatusWorkflowEngine(self.db)
        self.assignments = AssignmentManager(self.db, self.notifier)

    def submit_proof(self, report_id: str, worker: Actor, evidence_refs: List[str], notes: Optional[str] = None) -> Dict:
        """
        Submit resolution evidence for review.

        Args:
            report_id: Report being resolved
            worker: Submitting worker (must be the active assignee)
            evidence_refs: Image references from external storage, non-empty
            notes: Optional worker notes

        Returns:
            Dict with the pending proof and the updated report

        Raises:
            NotFound: If the report does not exist
            ReportLocked: If the report is closed
            NotAssignedWorker: If the worker is not the active assignee
            InvalidTransition: If the report is not in_progress or reopened
            InvalidInput: If no evidence is given
        """
        evidence = [ref.strip() for ref in (evidence_refs or []) if ref and ref.strip()]

        def _run(transaction):
            _, report = load_report(self.db, report_id, transaction)
            active = load_active_assignments(self.db, report_id, transaction)

            if report.get("status") == ReportStatus.CLOSED.value:
                raise ReportLocked(report_id)
            if not worker.is_worker or active_worker_id(active) != worker.id:
                raise NotAssignedWorker(report_id, worker.id)
            if report.get("status") not in self.SUBMITTABLE_STATUSES:
                raise InvalidTransition(
                    report.get("status"),
                    ReportStatus.AWAITING_VERIFICATION.value,
                    "Proof can only be submitted while work is in progress or reopened",
                )
            if not evidence:
                raise InvalidInput("At least one evidence reference is required", field="evidence_refs")

            now = utcnow()
            proof_ref = self.db.collection(PROOFS).document()
            proof = {
                "report_id": report_id,
                "worker_id": worker.id,
                "evidence_refs": evidence,
                "notes": notes,
                "outcome": ProofOutcome.PENDING.value,
                "decision": None,
                "admin_comment": None,
                "rating": None,
                "verified_by": None,
                "verified_at": None,
                "cycle": int(report.get("proof_cycle", 0)),
                "created_at": now,
            }
            transaction.create(proof_ref, proof)

            updated_report = self.workflow.apply(
                transaction,
                report,
                ReportStatus.AWAITING_VERIFICATION,
                TransitionTrigger.PROOF_SUBMISSION,
                worker.id,
                ActionType.PROOF_SUBMITTED,
                details={"proof_id": proof_ref.id, "evidence_count": len(evidence), "cycle": proof["cycle"]},
            )
            proof["id"] = proof_ref.id
            return {"proof": proof, "report": updated_report}

        result = run_in_transaction(self.db, _run)
        logger.info(f"📎 Worker {worker.id} submitted proof {result['proof']['id']} for report {report_id}")
        return result

    @staticmethod
    def _validate_decision(decision: VerificationDecision, comment: Optional[str], rating: Optional[int]) -> None:
        if decision == VerificationDecision.APPROVED:
            if rating is None or isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
                raise InvalidInput("Approval requires a rating between 1 and 5", field="rating")
        elif not comment or not comment.strip():
            raise InvalidInput(f"A comment is required to {decision.value} a proof", field="comment")

    def verify(
        self,
        report_id: str,
        proof_id: str,
        admin: Actor,
        decision: VerificationDecision,
        comment: Optional[str] = None,
        rating: Optional[int] = None,
    ) -> Dict:
        """
        Decide a pending proof.

        Args:
            report_id: Report the proof belongs to
            proof_id: Proof to decide
            admin: Deciding admin
            decision: approved, rejected or reassign
            comment: Required for rejected and reassign
            rating: 1-5, required for approved

        Returns:
            Dict with the decided proof and the updated report

        Raises:
            ActorForbidden: If the actor is not an admin
            NotFound: If the proof does not exist or belongs to another report
            AlreadyVerified: If the proof was already decided
            ReportLocked: If the report is closed
            InvalidInput: If rating or comment is missing/invalid
            InvalidTransition: If the report is not awaiting verification
        """
        if not admin.is_admin:
            raise ActorForbidden(admin.id, admin.role.value, "verify")
        try:
            decision = VerificationDecision(decision)
        except ValueError:
            raise InvalidInput(f"Unknown decision: {decision}", field="decision")

        def _run(transaction):
            _, report = load_report(self.db, report_id, transaction)
            proof_ref, proof = load_proof(self.db, proof_id, transaction)
            active = load_active_assignments(self.db, report_id, transaction)

            if proof.get("report_id") != report_id:
                raise NotFound("Resolution proof", proof_id)
            if proof.get("outcome") != ProofOutcome.PENDING.value:
                raise AlreadyVerified(proof_id, proof.get("outcome"))
            if report.get("status") == ReportStatus.CLOSED.value:
                raise ReportLocked(report_id)
            self._validate_decision(decision, comment, rating)
            if report.get("status") != ReportStatus.AWAITING_VERIFICATION.value:
                raise InvalidTransition(
                    report.get("status"),
                    ReportStatus.CLOSED.value if decision == VerificationDecision.APPROVED else ReportStatus.REOPENED.value,
                    "Report is not awaiting verification",
                )

            release_plan = []
            if decision != VerificationDecision.REJECTED:
                release_plan = self.assignments.read_release_plan(transaction, active)

            now = utcnow()
            proof_update = {
                "outcome": ProofOutcome.APPROVED.value if decision == VerificationDecision.APPROVED else ProofOutcome.REJECTED.value,
                "decision": decision.value,
                "admin_comment": comment,
                "rating": rating if decision == VerificationDecision.APPROVED else None,
                "verified_by": admin.id,
                "verified_at": now,
            }
            transaction.update(proof_ref, proof_update)

            details = {
                "proof_id": proof_id,
                "decision": decision.value,
                "worker_id": proof.get("worker_id"),
                "comment": comment,
            }

            if decision == VerificationDecision.APPROVED:
                self.assignments.stage_deactivation(transaction, active, release_plan, now)
                transaction.create(self.db.collection(WORKER_RATINGS).document(), {
                    "report_id": report_id,
                    "worker_id": proof.get("worker_id"),
                    "rating": rating,
                    "remark": comment,
                    "rated_by": admin.id,
                    "rated_at": now,
                })
                details["rating"] = rating
                updated_report = self.workflow.apply(
                    transaction,
                    report,
                    ReportStatus.CLOSED,
                    TransitionTrigger.PROOF_APPROVAL,
                    admin.id,
                    ActionType.VERIFICATION,
                    details=details,
                    extra_updates={"assigned_worker": None},
                )
            elif decision == VerificationDecision.REJECTED:
                updated_report = self.workflow.apply(
                    transaction,
                    report,
                    ReportStatus.REOPENED,
                    TransitionTrigger.PROOF_REJECTION,
                    admin.id,
                    ActionType.VERIFICATION,
                    details=details,
                )
            else:
                self.assignments.stage_deactivation(transaction, active, release_plan, now)
                updated_report = self.workflow.apply(
                    transaction,
                    report,
                    ReportStatus.REOPENED,
                    TransitionTrigger.PROOF_REJECTION,
                    admin.id,
                    ActionType.VERIFICATION,
                    details=details,
                    extra_updates={"assigned_worker": None},
                )

            proof.update(proof_update)
            return {"proof": proof, "report": updated_report}

        result = run_in_transaction(self.db, _run)
        logger.info(f"🧾 Proof {proof_id} on report {report_id}: {decision.value} by {admin.id}")
        self._notify_decision(result, decision, comment)
        return result

    def _notify_decision(self, result: Dict, decision: VerificationDecision, comment: Optional[str]) -> None:
        report = result["report"]
        worker_id = result["proof"].get("worker_id")
        title = report.get("title", report["id"])

        if decision == VerificationDecision.APPROVED:
            self.notifier.dispatch_many(
                [report.get("reporter_id"), worker_id],
                "Issue resolved",
                f"{title} has been verified and closed",
                NotificationType.RESOLUTION,
                link=f"/reports/{report['id']}",
            )
        elif decision == VerificationDecision.REJECTED:
            self.notifier.dispatch(
                worker_id,
                "Rework needed",
                f"Proof for {title} was rejected: {comment}",
                NotificationType.REWORK,
                link=f"/worker/reports/{report['id']}",
            )
        else:
            self.notifier.dispatch(
                worker_id,
                "Assignment withdrawn",
                f"{title} will be reassigned: {comment}",
                NotificationType.REASSIGNMENT,
            )

    def list_proofs(self, report_id: str) -> List[Dict]:
        """Every proof of a report, oldest first."""
        load_report(self.db, report_id)
        return [data for _, data in load_proofs(self.db, report_id)]


# Global service instance (singleton pattern)
_proof_verifier = None


def get_proof_verifier() -> ProofVerifier:
    """Get or create ProofVerifier singleton instance."""
    global _proof_verifier
    if _proof_verifier is None:
        _proof_verifier = ProofVerifier()
    return _proof_verifier
