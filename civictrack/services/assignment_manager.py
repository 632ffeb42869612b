"""
Assignment Manager - binds reports to field workers.

DESIGN PRINCIPLES:
- At most ONE active assignment per report, checked and written inside the
  same transaction
- Assignment history is never deleted; replaced assignments are deactivated
- Worker load is ADVISORY: counts are reported, never capped
- Voluntary and escalation-driven reassignment share one write path

Every public operation is split in two phases so other engines can compose
it into their own transaction: load_context() performs all reads, the
_stage_* methods perform all writes.
"""

from civictrack.config.firebase import get_db
from civictrack.core.exceptions import ActorForbidden, AlreadyAssigned, InvalidInput, InvalidTransition, ReportLocked
from civictrack.models.report import ReportStatus
from civictrack.models.user import Actor, WorkerStatus
from civictrack.models.workflow import ActionType
from civictrack.services.notification_service import NotificationService, NotificationType
from civictrack.services.sla import SLARuleService, compute_deadline
from civictrack.services.status_workflow import StatusWorkflowEngine, TransitionTrigger
from civictrack.utils.firestore_helpers import run_in_transaction, utcnow, where_filter
from civictrack.utils.records import (
    ASSIGNMENTS,
    WORKERS,
    load_active_assignments,
    load_assignments,
    load_report,
    load_worker,
    load_worker_active_assignments,
)
from datetime import datetime
from typing import Dict, List, Optional, Tuple
import logging

logger = logging.getLogger(__name__)


class AssignmentManager:
    """
    Report ↔ worker binding.
    """

    def __init__(self, db=None, notifier: Optional[NotificationService] = None):
        self.db = db or get_db()
        self.workflow = StatusWorkflowEngine(self.db)
        self.sla_rules = SLARuleService(self.db)
        self.notifier = notifier or NotificationService(self.db)

    # ------------------------------------------------------------------
    # Read phase
    # ------------------------------------------------------------------

    def read_release_plan(self, transaction, active: List[Tuple], keep_worker_id: Optional[str] = None) -> List[Tuple]:
        """
        Decide which displaced workers go back to available.

        A worker is released when every one of their active assignments is
        among those being deactivated, unless they are on leave.

        Returns:
            List of (worker_ref, worker_id) to mark available
        """
        deactivating = {ref.path for ref, _ in active}
        plan = []
        for worker_id in {data["worker_id"] for _, data in active}:
            if worker_id == keep_worker_id:
                continue
            worker_ref = self.db.collection(WORKERS).document(worker_id)
            worker_doc = worker_ref.get(transaction=transaction)
            if not worker_doc.exists:
                continue
            if worker_doc.to_dict().get("status") == WorkerStatus.ON_LEAVE.value:
                continue
            remaining = [
                ref for ref, _ in load_worker_active_assignments(self.db, worker_id, transaction)
                if ref.path not in deactivating
            ]
            if not remaining:
                plan.append((worker_ref, worker_id))
        return plan

    def load_context(self, transaction, report_id: str, worker_id: Optional[str] = None) -> Dict:
        """
        Read everything an assignment change needs.

        Returns:
            Dict with report, worker, active assignments, SLA table and the
            release plan for workers that would be displaced
        """
        _, report = load_report(self.db, report_id, transaction)
        worker = None
        if worker_id is not None:
            _, worker = load_worker(self.db, worker_id, transaction)
        active = load_active_assignments(self.db, report_id, transaction)
        return {
            "report": report,
            "worker": worker,
            "active": active,
            "sla_table": self.sla_rules.get_sla_table(transaction),
            "release_plan": self.read_release_plan(transaction, active, keep_worker_id=worker_id),
        }

    # ------------------------------------------------------------------
    # Write phase
    # ------------------------------------------------------------------

    def stage_deactivation(self, transaction, active: List[Tuple], release_plan: List[Tuple], now: Optional[datetime] = None) -> List[str]:
        """Deactivate assignments and release workers that have nothing left."""
        now = now or utcnow()
        for ref, _ in active:
            transaction.update(ref, {"is_active": False, "deactivated_at": now})
        for worker_ref, _ in release_plan:
            transaction.update(worker_ref, {"status": WorkerStatus.AVAILABLE.value})
        return [data["worker_id"] for _, data in active]

    def _stage_new_assignment(
        self,
        transaction,
        ctx: Dict,
        worker_id: str,
        assigner: Actor,
        reason: Optional[str],
        deadline: Optional[datetime],
        now: datetime,
    ) -> Dict:
        report = ctx["report"]
        if deadline is None:
            deadline = compute_deadline(report.get("priority"), report["created_at"], ctx["sla_table"])

        assignment_ref = self.db.collection(ASSIGNMENTS).document()
        assignment = {
            "report_id": report["id"],
            "worker_id": worker_id,
            "assigned_by": assigner.id,
            "is_active": True,
            "created_at": now,
            "deactivated_at": None,
            "deadline": deadline,
            "reason": reason,
        }
        transaction.create(assignment_ref, assignment)
        transaction.update(
            self.db.collection(WORKERS).document(worker_id),
            {"status": WorkerStatus.BUSY.value, "last_assigned_at": now},
        )
        assignment["id"] = assignment_ref.id
        return assignment

    def stage_reassignment(
        self,
        transaction,
        ctx: Dict,
        worker_id: str,
        assigner: Actor,
        reason: str,
        deadline: Optional[datetime] = None,
        event_id: Optional[str] = None,
        extra_report_updates: Optional[Dict] = None,
    ) -> Dict:
        """
        Validate and stage a reassignment using a context from load_context().

        Raises:
            ReportLocked, InvalidTransition, InvalidInput
        """
        report = ctx["report"]
        status = report.get("status")
        active = ctx["active"]

        if status == ReportStatus.CLOSED.value:
            raise ReportLocked(report["id"])
        if status == ReportStatus.AWAITING_VERIFICATION.value:
            raise InvalidTransition(status, ReportStatus.ASSIGNED.value, "Decide the pending proof before reassigning")
        if not active and status != ReportStatus.REOPENED.value:
            raise InvalidTransition(status, ReportStatus.ASSIGNED.value, "Report has no active assignment to replace")
        if not reason or not reason.strip():
            raise InvalidInput("A reason is required for reassignment", field="reason")
        self._check_worker(ctx["worker"])

        previous_worker_id = active[0][1]["worker_id"] if active else None
        if previous_worker_id == worker_id:
            raise InvalidInput(f"Report is already assigned to worker {worker_id}", field="worker_id")

        # Validate the transition before writing anything
        self.workflow.check_transition(report, ReportStatus.ASSIGNED, TransitionTrigger.REASSIGNMENT)

        now = utcnow()
        self.stage_deactivation(transaction, active, ctx["release_plan"], now)
        assignment = self._stage_new_assignment(transaction, ctx, worker_id, assigner, reason, deadline, now)

        details = {
            "worker_id": worker_id,
            "previous_worker_id": previous_worker_id,
            "assignment_id": assignment["id"],
            "reason": reason,
        }
        if event_id:
            details["event_id"] = event_id

        report_updates = {"assigned_worker": worker_id}
        report_updates.update(extra_report_updates or {})

        updated_report = self.workflow.apply(
            transaction,
            report,
            ReportStatus.ASSIGNED,
            TransitionTrigger.REASSIGNMENT,
            assigner.id,
            ActionType.WORKER_REASSIGNED,
            details=details,
            extra_updates=report_updates,
        )
        return {
            "report": updated_report,
            "assignment": assignment,
            "previous_worker_id": previous_worker_id,
        }

    @staticmethod
    def _check_worker(worker: Optional[Dict]) -> None:
        if worker is not None and worker.get("is_active") is False:
            raise InvalidInput(f"Worker {worker['id']} is deactivated", field="worker_id")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def assign(self, report_id: str, worker_id: str, assigner: Actor, deadline: Optional[datetime] = None) -> Dict:
        """
        Bind a worker to a report that has no active assignment.

        Args:
            report_id: Report to assign
            worker_id: Worker to bind
            assigner: Acting admin
            deadline: Work deadline; defaults to the report's SLA deadline

        Returns:
            Dict with the updated report and the new assignment

        Raises:
            ActorForbidden: If the assigner is not an admin
            NotFound: If the report or worker does not exist
            ReportLocked: If the report is closed
            AlreadyAssigned: If an active assignment exists
            InvalidTransition: If the report status does not accept assignment
        """
        if not assigner.is_admin:
            raise ActorForbidden(assigner.id, assigner.role.value, "assign")

        def _run(transaction):
            ctx = self.load_context(transaction, report_id, worker_id)
            report = ctx["report"]

            if report.get("status") == ReportStatus.CLOSED.value:
                raise ReportLocked(report_id)
            if ctx["active"]:
                raise AlreadyAssigned(report_id, ctx["active"][0][1]["worker_id"])
            self._check_worker(ctx["worker"])
            self.workflow.check_transition(report, ReportStatus.ASSIGNED, TransitionTrigger.ASSIGNMENT)

            now = utcnow()
            assignment = self._stage_new_assignment(transaction, ctx, worker_id, assigner, None, deadline, now)
            updated_report = self.workflow.apply(
                transaction,
                report,
                ReportStatus.ASSIGNED,
                TransitionTrigger.ASSIGNMENT,
                assigner.id,
                ActionType.WORKER_ASSIGNED,
                details={"worker_id": worker_id, "assignment_id": assignment["id"]},
                extra_updates={"assigned_worker": worker_id},
            )
            return {"report": updated_report, "assignment": assignment}

        result = run_in_transaction(self.db, _run)
        logger.info(f"✅ Report {report_id} assigned to worker {worker_id} by {assigner.id}")

        self.notifier.dispatch(
            worker_id,
            "New assignment",
            f"You have been assigned: {result['report'].get('title', report_id)}",
            NotificationType.ASSIGNMENT,
            link=f"/worker/reports/{report_id}",
        )
        return result

    def reassign(self, report_id: str, worker_id: str, assigner: Actor, reason: str, deadline: Optional[datetime] = None) -> Dict:
        """
        Move a report from its current worker to another one.

        Allowed when the report has an active assignment, or is reopened
        after a reassign decision left it without one.

        Returns:
            Dict with the updated report, the new assignment and the
            previous worker id

        Raises:
            ActorForbidden, NotFound, ReportLocked, InvalidTransition, InvalidInput
        """
        if not assigner.is_admin:
            raise ActorForbidden(assigner.id, assigner.role.value, "reassign")

        def _run(transaction):
            ctx = self.load_context(transaction, report_id, worker_id)
            return self.stage_reassignment(transaction, ctx, worker_id, assigner, reason, deadline)

        result = run_in_transaction(self.db, _run)
        logger.info(
            f"🔁 Report {report_id} reassigned from {result['previous_worker_id']} to {worker_id} "
            f"by {assigner.id}: {reason}"
        )
        self.notify_reassignment(result)
        return result

    def notify_reassignment(self, result: Dict) -> None:
        """Tell the new worker about the job and the displaced one that it moved."""
        report = result["report"]
        worker_id = result["assignment"]["worker_id"]
        self.notifier.dispatch(
            worker_id,
            "New assignment",
            f"You have been assigned: {report.get('title', report['id'])}",
            NotificationType.ASSIGNMENT,
            link=f"/worker/reports/{report['id']}",
        )
        if result.get("previous_worker_id"):
            self.notifier.dispatch(
                result["previous_worker_id"],
                "Assignment moved",
                f"{report.get('title', report['id'])} was reassigned to another worker",
                NotificationType.REASSIGNMENT,
            )

    def get_active_assignment(self, report_id: str) -> Optional[Dict]:
        active = load_active_assignments(self.db, report_id)
        return active[0][1] if active else None

    def get_assignment_history(self, report_id: str) -> List[Dict]:
        """All assignments of a report, oldest first, active or not."""
        return [data for _, data in load_assignments(self.db, report_id)]

    def get_worker_workloads(self) -> List[Dict]:
        """
        Active assignment count per worker.

        Advisory only: nothing prevents assigning a worker with a high count.
        """
        counts: Dict[str, int] = {}
        for doc in where_filter(self.db.collection(ASSIGNMENTS), "is_active", "==", True).stream():
            worker_id = doc.to_dict().get("worker_id")
            counts[worker_id] = counts.get(worker_id, 0) + 1

        workloads = []
        for doc in self.db.collection(WORKERS).stream():
            worker = doc.to_dict()
            workloads.append({
                "worker_id": doc.id,
                "full_name": worker.get("full_name"),
                "status": worker.get("status", WorkerStatus.AVAILABLE.value),
                "active_assignments": counts.get(doc.id, 0),
                "last_assigned_at": worker.get("last_assigned_at"),
            })

        workloads.sort(key=lambda w: (-w["active_assignments"], w["worker_id"]))
        return workloads


# Global service instance (singleton pattern)
_assignment_manager = None


def get_assignment_manager() -> AssignmentManager:
    """Get or create AssignmentManager singleton instance."""
    global _assignment_manager
    if _assignment_manager is None:
        _assignment_manager = AssignmentManager()
    return _assignment_manager
