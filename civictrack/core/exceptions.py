"""
Workflow exception hierarchy.

Every rejected engine operation raises one of these. Each kind carries a
stable ``code`` and the HTTP status the API layer maps it to, so the calling
UI can render a specific message instead of a generic failure.

Usage:
    from civictrack.core.exceptions import NotFound, InvalidTransition

    raise NotFound("Report", report_id)
    raise InvalidTransition("reported", "closed")
"""

from typing import Dict, Optional


class WorkflowError(Exception):
    """Base class for all synchronous engine validation failures."""

    code = "workflow_error"
    http_status = 400

    def __init__(self, message: str, details: Optional[Dict] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict:
        payload = {"error": self.code, "detail": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFound(WorkflowError):
    """A report, worker, proof, escalation or assignment reference does not exist."""

    code = "not_found"
    http_status = 404

    def __init__(self, resource: str, resource_id: Optional[str] = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" {resource_id}"
        msg += " not found"
        super().__init__(msg, {"resource": resource, "resource_id": resource_id})


class InvalidTransition(WorkflowError):
    """The requested status change is not allowed from the current status."""

    code = "invalid_transition"
    http_status = 409

    def __init__(self, from_status: str, to_status: str, reason: Optional[str] = None) -> None:
        self.from_status = from_status
        self.to_status = to_status
        msg = f"Invalid status transition: {from_status} → {to_status}"
        if reason:
            msg += f". {reason}"
        super().__init__(msg, {"from_status": from_status, "to_status": to_status})


class ReportLocked(WorkflowError):
    """The report is closed; no status-changing operation may succeed."""

    code = "report_locked"
    http_status = 423

    def __init__(self, report_id: str) -> None:
        self.report_id = report_id
        super().__init__(f"Report {report_id} is closed and locked", {"report_id": report_id})


class AlreadyAssigned(WorkflowError):
    code = "already_assigned"
    http_status = 409

    def __init__(self, report_id: str, worker_id: str) -> None:
        self.report_id = report_id
        self.worker_id = worker_id
        super().__init__(
            f"Report {report_id} already has an active assignment (worker {worker_id}). "
            f"Use reassignment instead.",
            {"report_id": report_id, "worker_id": worker_id},
        )


class NotAssignedWorker(WorkflowError):
    code = "not_assigned_worker"
    http_status = 403

    def __init__(self, report_id: str, actor_id: str) -> None:
        self.report_id = report_id
        self.actor_id = actor_id
        super().__init__(
            f"Actor {actor_id} is not the active assignee of report {report_id}",
            {"report_id": report_id, "actor_id": actor_id},
        )


class DuplicateEscalation(WorkflowError):
    code = "duplicate_escalation"
    http_status = 409

    def __init__(self, report_id: str, escalation_id: str) -> None:
        self.report_id = report_id
        self.escalation_id = escalation_id
        super().__init__(
            f"Report {report_id} already has an open escalation ({escalation_id})",
            {"report_id": report_id, "escalation_id": escalation_id},
        )


class EscalationAlreadyResolved(WorkflowError):
    code = "escalation_already_resolved"
    http_status = 409

    def __init__(self, escalation_id: str) -> None:
        self.escalation_id = escalation_id
        super().__init__(f"Escalation {escalation_id} is already resolved", {"escalation_id": escalation_id})


class AlreadyVerified(WorkflowError):
    """A second decision was attempted on a proof that is no longer pending."""

    code = "already_verified"
    http_status = 409

    def __init__(self, proof_id: str, outcome: str) -> None:
        self.proof_id = proof_id
        self.outcome = outcome
        super().__init__(
            f"Proof {proof_id} was already verified (outcome: {outcome})",
            {"proof_id": proof_id, "outcome": outcome},
        )


class ChannelForbidden(WorkflowError):
    code = "channel_forbidden"
    http_status = 403

    def __init__(self, channel: str, actor_id: str, action: str = "write") -> None:
        self.channel = channel
        self.actor_id = actor_id
        self.action = action
        super().__init__(
            f"Actor {actor_id} may not {action} the {channel} channel of this report",
            {"channel": channel, "actor_id": actor_id, "action": action},
        )


class ActorForbidden(WorkflowError):
    """The acting role lacks the capability for a non-channel operation."""

    code = "actor_forbidden"
    http_status = 403

    def __init__(self, actor_id: str, role: str, operation: str) -> None:
        self.actor_id = actor_id
        self.role = role
        self.operation = operation
        super().__init__(
            f"Role '{role}' may not perform '{operation}'",
            {"actor_id": actor_id, "role": role, "operation": operation},
        )


class InvalidInput(WorkflowError):
    """Well-formed input that violates a business rule (missing comment, bad rating...)."""

    code = "invalid_input"
    http_status = 422

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        self.field = field
        super().__init__(message, {"field": field} if field else None)
