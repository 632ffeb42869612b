"""
Status Workflow Engine - the report lifecycle state machine.

DESIGN PRINCIPLES:
- The transition table below is the only definition of legal status moves
- Every move names the trigger that is allowed to cause it; a status that is
  reachable only through proof submission can never be set by a direct call
- A closed report is locked: every transition attempt fails with ReportLocked
- Validation happens before anything is written, so a rejected transition
  never leaves a partial mutation behind
- Each applied transition stages exactly one activity log entry in the same
  transaction as the status write
"""

from enum import Enum
from typing import Dict, List, Optional, Set

from civictrack.config.firebase import get_db
from civictrack.core.exceptions import ActorForbidden, InvalidTransition, NotAssignedWorker, ReportLocked
from civictrack.models.report import ReportStatus
from civictrack.models.user import Actor
from civictrack.models.workflow import ActionType
from civictrack.services.activity_log import ActivityLogService
from civictrack.utils.firestore_helpers import run_in_transaction, utcnow
from civictrack.utils.records import REPORTS, active_worker_id, load_active_assignments, load_report
import logging

logger = logging.getLogger(__name__)


class TransitionTrigger(str, Enum):
    """What caused a status change."""
    ASSIGNMENT = "assignment"                  # worker bound to an unassigned report
    WORK_STARTED = "work_started"              # assigned worker starts work
    PROOF_SUBMISSION = "proof_submission"      # worker submits resolution proof
    PROOF_APPROVAL = "proof_approval"          # admin approves proof
    PROOF_REJECTION = "proof_rejection"        # admin rejects proof or pulls the worker
    REASSIGNMENT = "reassignment"              # active assignment handed to another worker
    ESCALATION_CLOSURE = "escalation_closure"  # admin closes the report while resolving an escalation


S = ReportStatus
T = TransitionTrigger

OPEN_STATUSES = [S.REPORTED, S.ASSIGNED, S.IN_PROGRESS, S.AWAITING_VERIFICATION, S.REOPENED]


class StatusWorkflowEngine:
    """
    State machine for report status transitions.

    Rules:
    - Only the transitions in ALLOWED_TRANSITIONS exist
    - Each transition may only be caused by its listed triggers
    - Closed is terminal
    """

    # {from_status: {to_status: {allowed triggers}}}
    ALLOWED_TRANSITIONS: Dict[ReportStatus, Dict[ReportStatus, Set[TransitionTrigger]]] = {
        S.REPORTED: {
            S.ASSIGNED: {T.ASSIGNMENT},
            S.CLOSED: {T.ESCALATION_CLOSURE},
        },
        S.ASSIGNED: {
            S.IN_PROGRESS: {T.WORK_STARTED},
            S.ASSIGNED: {T.REASSIGNMENT},
            S.CLOSED: {T.ESCALATION_CLOSURE},
        },
        S.IN_PROGRESS: {
            S.AWAITING_VERIFICATION: {T.PROOF_SUBMISSION},
            S.ASSIGNED: {T.REASSIGNMENT},
            S.CLOSED: {T.ESCALATION_CLOSURE},
        },
        S.AWAITING_VERIFICATION: {
            S.CLOSED: {T.PROOF_APPROVAL, T.ESCALATION_CLOSURE},
            S.REOPENED: {T.PROOF_REJECTION},
        },
        S.REOPENED: {
            S.ASSIGNED: {T.ASSIGNMENT, T.REASSIGNMENT},
            S.AWAITING_VERIFICATION: {T.PROOF_SUBMISSION},
            S.CLOSED: {T.ESCALATION_CLOSURE},
        },
        S.CLOSED: {},  # Terminal state, no transitions allowed
    }

    # Targets a caller may request directly through transition()
    DIRECT_TRIGGERS: Dict[ReportStatus, TransitionTrigger] = {
        S.ASSIGNED: T.ASSIGNMENT,
        S.IN_PROGRESS: T.WORK_STARTED,
    }

    def __init__(self, db=None):
        self.db = db or get_db()
        self.activity_log = ActivityLogService(self.db)

    @classmethod
    def is_valid_transition(cls, from_status: str, to_status: str, trigger: Optional[TransitionTrigger] = None) -> bool:
        """
        Check if a status transition is valid.

        Args:
            from_status: Current status
            to_status: Desired new status
            trigger: Cause of the transition; None accepts any trigger

        Returns:
            True if transition is allowed, False otherwise
        """
        try:
            from_enum = ReportStatus(from_status)
            to_enum = ReportStatus(to_status)
        except ValueError:
            return False

        triggers = cls.ALLOWED_TRANSITIONS.get(from_enum, {}).get(to_enum)
        if not triggers:
            return False
        return trigger is None or TransitionTrigger(trigger) in triggers

    @classmethod
    def get_allowed_transitions(cls, current_status: str) -> List[str]:
        """
        Get list of statuses reachable from the current status by any trigger.

        Args:
            current_status: Current status string

        Returns:
            List of allowed next status strings
        """
        try:
            current_enum = ReportStatus(current_status)
        except ValueError:
            return []
        return [status.value for status in cls.ALLOWED_TRANSITIONS.get(current_enum, {})]

    @classmethod
    def check_transition(cls, report: Dict, to_status: ReportStatus, trigger: TransitionTrigger) -> None:
        """
        Validate a transition without applying it.

        Raises:
            ReportLocked: If the report is closed
            InvalidTransition: If the move or its trigger is not allowed
        """
        current = report.get("status", S.REPORTED.value)
        if current == S.CLOSED.value:
            raise ReportLocked(report["id"])
        if not cls.is_valid_transition(current, ReportStatus(to_status).value, trigger):
            allowed = cls.get_allowed_transitions(current)
            raise InvalidTransition(
                current,
                ReportStatus(to_status).value,
                f"Not allowed via {TransitionTrigger(trigger).value}. Reachable from {current}: {allowed}",
            )

    @classmethod
    def build_status_update(cls, report: Dict, to_status: ReportStatus, now=None) -> Dict:
        """
        Field updates for a status change.

        resolved_at is stamped only when closing and cleared otherwise, which
        keeps `resolved_at is set iff status is closed`. Entering reopened
        starts a new proof cycle.
        """
        now = now or utcnow()
        to_status = ReportStatus(to_status)
        update = {
            "status": to_status.value,
            "updated_at": now,
            "resolved_at": now if to_status == S.CLOSED else None,
        }
        if to_status == S.REOPENED:
            update["proof_cycle"] = int(report.get("proof_cycle", 0)) + 1
        return update

    def apply(
        self,
        transaction,
        report: Dict,
        to_status: ReportStatus,
        trigger: TransitionTrigger,
        actor_id: Optional[str],
        action_type: ActionType,
        details: Optional[Dict] = None,
        extra_updates: Optional[Dict] = None,
    ) -> Dict:
        """
        Validate and stage a transition plus its single audit entry.

        Must be called after all reads of the enclosing transaction.

        Args:
            transaction: Transaction of the calling operation
            report: Current report dict (with id)
            to_status: Target status
            trigger: Cause of the transition
            actor_id: Acting identity (None for system)
            action_type: Audit action type recorded for this transition
            details: Extra audit details
            extra_updates: Other report fields written with the status

        Returns:
            The report dict as it will be after commit
        """
        self.check_transition(report, to_status, trigger)

        from_status = report.get("status", S.REPORTED.value)
        update = self.build_status_update(report, to_status)
        if extra_updates:
            update.update(extra_updates)

        report_ref = self.db.collection(REPORTS).document(report["id"])
        transaction.update(report_ref, update)

        audit_details = {
            "status_from": from_status,
            "status_to": update["status"],
            "trigger": TransitionTrigger(trigger).value,
        }
        audit_details.update(details or {})
        self.activity_log.append(transaction, report["id"], actor_id, action_type, audit_details)

        updated = dict(report)
        updated.update(update)
        return updated

    def transition(self, report_id: str, to_status: str, actor: Actor) -> Dict:
        """
        Caller-facing status change.

        Only two moves can be requested directly:
        - reported|reopened → assigned, by an admin, when an active assignment exists
        - assigned → in_progress, by the currently assigned worker
        Everything else is reachable only through the operation that owns it
        (proof submission, verification, reassignment, escalation).

        Raises:
            NotFound, ReportLocked, InvalidTransition, NotAssignedWorker, ActorForbidden
        """
        try:
            target = ReportStatus(to_status)
        except ValueError:
            raise InvalidTransition("?", str(to_status), "Unknown status")

        def _run(transaction):
            _, report = load_report(self.db, report_id, transaction)
            active = load_active_assignments(self.db, report_id, transaction)

            if report.get("status") == S.CLOSED.value:
                raise ReportLocked(report_id)

            trigger = self.DIRECT_TRIGGERS.get(target)
            if trigger is None:
                raise InvalidTransition(
                    report.get("status"),
                    target.value,
                    "This status can only be reached through its workflow operation",
                )

            if target == S.ASSIGNED:
                if not actor.is_admin:
                    raise ActorForbidden(actor.id, actor.role.value, "transition:assigned")
                if not active:
                    raise InvalidTransition(report.get("status"), target.value, "Report has no active assignment")
            elif target == S.IN_PROGRESS:
                if not actor.is_worker or active_worker_id(active) != actor.id:
                    raise NotAssignedWorker(report_id, actor.id)

            action = ActionType.WORKER_ASSIGNED if target == S.ASSIGNED else ActionType.STATUS_CHANGED
            return self.apply(
                transaction,
                report,
                target,
                trigger,
                actor.id,
                action,
                details={"worker_id": active_worker_id(active)},
            )

        updated = run_in_transaction(self.db, _run)
        logger.info(f"✅ {actor.role.value} {actor.id} moved report {report_id} to {target.value}")
        return updated


# Global service instance (singleton pattern)
_status_workflow = None


def get_status_workflow() -> StatusWorkflowEngine:
    """
    Get or create StatusWorkflowEngine singleton instance.

    Returns:
        StatusWorkflowEngine: The global workflow engine instance
    """
    global _status_workflow
    if _status_workflow is None:
        _status_workflow = StatusWorkflowEngine()
    return _status_workflow
