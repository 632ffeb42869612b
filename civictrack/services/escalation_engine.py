"""
Escalation Engine - SLA breach detection and manual escalations.

DESIGN PRINCIPLES:
- At most ONE open escalation per report; a second one is rejected
- Automatic escalations come only from SLA breaches and are idempotent:
  scanning twice never creates a second escalation
- Escalation is a PARALLEL signal to the status workflow; raising one never
  changes report status
- Resolving an escalation may close the report or hand it to another worker,
  always inside one transaction with its audit entries
"""

from civictrack.config.firebase import get_db
from civictrack.core.exceptions import (
    ActorForbidden,
    DuplicateEscalation,
    EscalationAlreadyResolved,
    InvalidInput,
    ReportLocked,
)
from civictrack.core.settings import settings
from civictrack.models.report import ReportPriority, ReportStatus
from civictrack.models.user import Actor
from civictrack.models.workflow import ESCALATION_CLOSURE_DECISION, ActionType, EscalationSeverity, ProofOutcome
from civictrack.services.activity_log import ActivityLogService
from civictrack.services.assignment_manager import AssignmentManager
from civictrack.services.notification_service import NotificationService, NotificationType
from civictrack.services.sla import SLARuleService, compute_deadline, is_overdue
from civictrack.services.status_workflow import OPEN_STATUSES, StatusWorkflowEngine, TransitionTrigger
from civictrack.utils.firestore_helpers import run_in_transaction, utcnow, where_filter
from civictrack.utils.records import (
    ESCALATIONS,
    REPORTS,
    load_active_assignments,
    load_escalation,
    load_open_escalations,
    load_proofs,
    load_report,
)
from datetime import datetime
from typing import Dict, List, Optional
import logging
import uuid

logger = logging.getLogger(__name__)


class EscalationEngine:
    """
    Raises, detects and resolves escalations.

    Escalation sources:
    1. Automatic: now > created_at + sla_hours(priority) on an open report
    2. Manual: any actor, with a reason and a severity
    """

    # Severity of automatic escalations, derived from priority
    PRIORITY_SEVERITY = {
        ReportPriority.URGENT.value: EscalationSeverity.CRITICAL,
        ReportPriority.HIGH.value: EscalationSeverity.HIGH,
        ReportPriority.MEDIUM.value: EscalationSeverity.MEDIUM,
        ReportPriority.LOW.value: EscalationSeverity.LOW,
    }

    def __init__(self, db=None, notifier: Optional[NotificationService] = None):
        self.db = db or get_db()
        self.notifier = notifier or NotificationService(self.db)
        self.workflow = StatusWorkflowEngine(self.db)
        self.activity_log = ActivityLogService(self.db)
        self.assignments = AssignmentManager(self.db, self.notifier)
        self.sla_rules = SLARuleService(self.db)

    def _stage_escalation(
        self,
        transaction,
        report: Dict,
        reason: str,
        severity: EscalationSeverity,
        escalated_by: Optional[str],
        auto: bool,
    ) -> Dict:
        now = utcnow()
        escalation_ref = self.db.collection(ESCALATIONS).document()
        escalation = {
            "report_id": report["id"],
            "reason": reason,
            "severity": EscalationSeverity(severity).value,
            "escalated_by": escalated_by,
            "is_auto": auto,
            "resolved": False,
            "created_at": now,
            "resolved_at": None,
            "resolved_by": None,
            "resolution_note": None,
        }
        transaction.create(escalation_ref, escalation)
        transaction.update(
            self.db.collection(REPORTS).document(report["id"]),
            {"is_escalated": True, "is_auto_escalated": auto, "updated_at": now},
        )
        self.activity_log.append(
            transaction,
            report["id"],
            escalated_by,
            ActionType.ESCALATED,
            {
                "escalation_id": escalation_ref.id,
                "reason": reason,
                "severity": escalation["severity"],
                "is_auto_escalated": auto,
            },
        )
        escalation["id"] = escalation_ref.id
        return escalation

    def _escalate_in_transaction(self, report_id: str, reason: str, severity: EscalationSeverity, escalated_by: Optional[str], auto: bool) -> Dict:
        def _run(transaction):
            _, report = load_report(self.db, report_id, transaction)
            open_escalations = load_open_escalations(self.db, report_id, transaction)

            if report.get("status") == ReportStatus.CLOSED.value:
                raise ReportLocked(report_id)
            if open_escalations:
                raise DuplicateEscalation(report_id, open_escalations[0][1]["id"])

            escalation = self._stage_escalation(transaction, report, reason, severity, escalated_by, auto)
            return escalation, report

        return run_in_transaction(self.db, _run)

    def escalate(
        self,
        report_id: str,
        reason: str,
        severity: EscalationSeverity = EscalationSeverity.MEDIUM,
        triggered_by: Optional[Actor] = None,
    ) -> Dict:
        """
        Raise a manual escalation.

        Any actor may escalate; triggered_by None means the system.

        Args:
            report_id: Report to escalate
            reason: Why attention is needed
            severity: low/medium/high/critical
            triggered_by: Acting identity

        Returns:
            The created escalation

        Raises:
            NotFound: If the report does not exist
            ReportLocked: If the report is closed
            DuplicateEscalation: If an escalation is already open
            InvalidInput: If the reason is empty
        """
        if not reason or not reason.strip():
            raise InvalidInput("An escalation reason is required", field="reason")
        try:
            severity = EscalationSeverity(severity)
        except ValueError:
            raise InvalidInput(f"Unknown severity: {severity}", field="severity")

        actor_id = triggered_by.id if triggered_by else None
        escalation, report = self._escalate_in_transaction(report_id, reason.strip(), severity, actor_id, auto=False)
        logger.warning(f"🚨 Report {report_id} escalated by {actor_id or 'system'} ({severity.value}): {reason}")

        self.notifier.dispatch(
            report.get("assigned_worker"),
            "Report escalated",
            f"{report.get('title', report_id)} was escalated: {reason}",
            NotificationType.ESCALATION,
            link=f"/worker/reports/{report_id}",
        )
        return escalation

    def detect_sla_breaches(self, now: Optional[datetime] = None) -> List[Dict]:
        """
        Create one automatic escalation for every open report past its SLA deadline.

        Reports that already have an open escalation are skipped, so the scan
        can run as often as needed. Open reports are read oldest first in
        pages of ESCALATION_SCAN_LIMIT until every one has been checked.

        Args:
            now: Evaluation time (defaults to current UTC time)

        Returns:
            Escalations created by this scan
        """
        now = now or utcnow()
        sla_table = self.sla_rules.get_sla_table()
        page_size = max(1, settings.ESCALATION_SCAN_LIMIT)

        open_reports = where_filter(self.db.collection(REPORTS), "status", "in", [s.value for s in OPEN_STATUSES])
        open_reports = open_reports.order_by("created_at")

        created = []
        scanned = 0
        last_doc = None
        while True:
            query = open_reports.limit(page_size)
            if last_doc is not None:
                query = query.start_after(last_doc)
            page = list(query.stream())

            for doc in page:
                scanned += 1
                escalation = self._escalate_if_breached(doc, sla_table, now)
                if escalation:
                    created.append(escalation)

            if len(page) < page_size:
                break
            last_doc = page[-1]

        logger.info(f"SLA scan: {scanned} open reports checked, {len(created)} escalations created")
        return created

    def _escalate_if_breached(self, doc, sla_table: Dict[str, int], now: datetime) -> Optional[Dict]:
        report = doc.to_dict()
        priority = report.get("priority", ReportPriority.MEDIUM.value)
        deadline = compute_deadline(priority, report["created_at"], sla_table)
        if not is_overdue(deadline, now):
            return None

        severity = self.PRIORITY_SEVERITY.get(priority, EscalationSeverity.MEDIUM)
        reason = f"SLA breached: {priority} priority deadline {deadline.isoformat()} passed"
        try:
            escalation, _ = self._escalate_in_transaction(doc.id, reason, severity, None, auto=True)
        except (DuplicateEscalation, ReportLocked):
            return None
        logger.warning(f"⏰ Auto-escalated report {doc.id} ({severity.value})")
        return escalation

    def resolve_escalation(
        self,
        escalation_id: str,
        admin: Actor,
        close_report: bool = False,
        note: Optional[str] = None,
    ) -> Dict:
        """
        Mark an escalation resolved, optionally closing its report.

        The report's escalated flag is cleared only when no other open
        escalation remains. Closing deactivates the active assignment, stamps
        resolved_at and withdraws a proof still awaiting verification as
        rejected, so it can never be decided afterwards.

        Raises:
            ActorForbidden, NotFound, EscalationAlreadyResolved, ReportLocked
        """
        if not admin.is_admin:
            raise ActorForbidden(admin.id, admin.role.value, "resolve_escalation")

        def _run(transaction):
            escalation_ref, escalation = load_escalation(self.db, escalation_id, transaction)
            if escalation.get("resolved"):
                raise EscalationAlreadyResolved(escalation_id)

            report_id = escalation["report_id"]
            _, report = load_report(self.db, report_id, transaction)
            others_open = [
                data for _, data in load_open_escalations(self.db, report_id, transaction)
                if data["id"] != escalation_id
            ]
            active = []
            release_plan = []
            pending_proofs = []
            if close_report:
                if report.get("status") == ReportStatus.CLOSED.value:
                    raise ReportLocked(report_id)
                active = load_active_assignments(self.db, report_id, transaction)
                release_plan = self.assignments.read_release_plan(transaction, active)
                pending_proofs = [
                    (ref, data) for ref, data in load_proofs(self.db, report_id, transaction)
                    if data.get("outcome") == ProofOutcome.PENDING.value
                ]

            now = utcnow()
            resolution = {
                "resolved": True,
                "resolved_at": now,
                "resolved_by": admin.id,
                "resolution_note": note,
            }
            flags = {"is_escalated": bool(others_open)}
            if not others_open:
                flags["is_auto_escalated"] = False
            details = {
                "escalation_id": escalation_id,
                "note": note,
                "close_report": close_report,
            }
            if pending_proofs:
                details["withdrawn_proof_ids"] = [data["id"] for _, data in pending_proofs]

            transaction.update(escalation_ref, resolution)
            if close_report:
                self.assignments.stage_deactivation(transaction, active, release_plan, now)
                for proof_ref, _ in pending_proofs:
                    transaction.update(proof_ref, {
                        "outcome": ProofOutcome.REJECTED.value,
                        "decision": ESCALATION_CLOSURE_DECISION,
                        "admin_comment": note,
                        "verified_by": admin.id,
                        "verified_at": now,
                    })
                flags["assigned_worker"] = None
                updated_report = self.workflow.apply(
                    transaction,
                    report,
                    ReportStatus.CLOSED,
                    TransitionTrigger.ESCALATION_CLOSURE,
                    admin.id,
                    ActionType.ESCALATION_RESOLVED,
                    details=details,
                    extra_updates=flags,
                )
            else:
                flags["updated_at"] = now
                transaction.update(self.db.collection(REPORTS).document(report_id), flags)
                self.activity_log.append(transaction, report_id, admin.id, ActionType.ESCALATION_RESOLVED, details)
                updated_report = dict(report)
                updated_report.update(flags)

            escalation.update(resolution)
            return {"escalation": escalation, "report": updated_report}

        result = run_in_transaction(self.db, _run)
        logger.info(
            f"✅ Escalation {escalation_id} resolved by {admin.id}"
            + (" (report closed)" if close_report else "")
        )
        if close_report:
            self.notifier.dispatch(
                result["report"].get("reporter_id"),
                "Issue resolved",
                f"{result['report'].get('title', 'Your report')} has been closed",
                NotificationType.RESOLUTION,
                link=f"/reports/{result['report']['id']}",
            )
        return result

    def reassign_from_escalation(self, escalation_id: str, worker_id: str, admin: Actor, reason: Optional[str] = None) -> Dict:
        """
        Resolve an escalation by handing its report to another worker.

        Runs the Assignment Manager's reassignment write path, resolves the
        escalation and appends a combined audit entry, all in one
        transaction. Both audit entries carry the same event_id.

        Raises:
            ActorForbidden, NotFound, EscalationAlreadyResolved, ReportLocked,
            InvalidTransition, InvalidInput
        """
        if not admin.is_admin:
            raise ActorForbidden(admin.id, admin.role.value, "reassign_from_escalation")

        def _run(transaction):
            escalation_ref, escalation = load_escalation(self.db, escalation_id, transaction)
            if escalation.get("resolved"):
                raise EscalationAlreadyResolved(escalation_id)

            report_id = escalation["report_id"]
            ctx = self.assignments.load_context(transaction, report_id, worker_id)
            others_open = [
                data for _, data in load_open_escalations(self.db, report_id, transaction)
                if data["id"] != escalation_id
            ]

            event_id = uuid.uuid4().hex
            note = reason or f"Reassigned after escalation: {escalation.get('reason')}"
            flags = {"is_escalated": bool(others_open)}
            if not others_open:
                flags["is_auto_escalated"] = False

            result = self.assignments.stage_reassignment(
                transaction,
                ctx,
                worker_id,
                admin,
                note,
                event_id=event_id,
                extra_report_updates=flags,
            )

            now = utcnow()
            resolution = {
                "resolved": True,
                "resolved_at": now,
                "resolved_by": admin.id,
                "resolution_note": note,
            }
            transaction.update(escalation_ref, resolution)
            self.activity_log.append(
                transaction,
                report_id,
                admin.id,
                ActionType.ESCALATION_REASSIGNED,
                {
                    "event_id": event_id,
                    "escalation_id": escalation_id,
                    "worker_id": worker_id,
                    "previous_worker_id": result["previous_worker_id"],
                    "reason": note,
                },
            )

            escalation.update(resolution)
            result["escalation"] = escalation
            result["event_id"] = event_id
            return result

        result = run_in_transaction(self.db, _run)
        logger.info(f"🔁 Escalation {escalation_id} resolved by reassigning to {worker_id} (event {result['event_id']})")
        self.assignments.notify_reassignment(result)
        return result

    def list_escalations(self, open_only: bool = True, report_id: Optional[str] = None) -> List[Dict]:
        """Escalations newest first, optionally only unresolved ones or one report's."""
        query = self.db.collection(ESCALATIONS)
        if open_only:
            query = where_filter(query, "resolved", "==", False)
        if report_id:
            query = where_filter(query, "report_id", "==", report_id)

        escalations = []
        for doc in query.stream():
            data = doc.to_dict()
            data["id"] = doc.id
            escalations.append(data)
        escalations.sort(key=lambda e: e["created_at"], reverse=True)
        return escalations


# Global service instance (singleton pattern)
_escalation_engine = None


def get_escalation_engine() -> EscalationEngine:
    """Get or create EscalationEngine singleton instance."""
    global _escalation_engine
    if _escalation_engine is None:
        _escalation_engine = EscalationEngine()
    return _escalation_engine
