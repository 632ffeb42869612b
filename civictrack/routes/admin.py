"""
Admin endpoints - assignment, verification, escalation handling and
operational configuration.

SCOPE OF ADMIN:
✅ Assign and reassign workers
✅ Approve, reject or reassign resolution proofs
✅ Resolve escalations (optionally closing the report or reassigning it)
✅ Edit SLA windows per priority
✅ Manage the worker roster
✅ View operations metrics and the admin audit log

❌ NOT edit report content
❌ NOT delete reports, assignments or audit entries
❌ NOT set arbitrary report statuses
"""

from fastapi import APIRouter, Depends, Query, status
from typing import Optional
import logging

from civictrack.core.exceptions import ActorForbidden
from civictrack.models.report import ReportPriority
from civictrack.models.user import Actor, WorkerActiveUpdate, WorkerCreate, WorkerStatusUpdate
from civictrack.models.workflow import (
    AssignRequest,
    EscalationReassignRequest,
    ReassignRequest,
    ResolveEscalationRequest,
    SLARuleUpdate,
    VerifyRequest,
)
from civictrack.services.activity_log import get_activity_log_service
from civictrack.services.assignment_manager import get_assignment_manager
from civictrack.services.escalation_engine import get_escalation_engine
from civictrack.services.operations_service import get_operations_service
from civictrack.services.proof_verifier import get_proof_verifier
from civictrack.services.report_service import get_report_service
from civictrack.services.sla import get_sla_rule_service
from civictrack.services.worker_service import get_worker_service
from civictrack.utils.security import get_current_actor, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


# ----------------------------------------------------------------------
# Assignment
# ----------------------------------------------------------------------

@router.post("/reports/{report_id}/assign", status_code=status.HTTP_201_CREATED)
async def assign_worker(report_id: str, request: AssignRequest, actor: Actor = Depends(get_current_actor)):
    """
    Assign a worker to a report without an active assignment.

    Returns 409 `already_assigned` when one exists; use reassign instead.
    """
    result = get_assignment_manager().assign(report_id, request.worker_id, actor, deadline=request.deadline)
    return {
        "success": True,
        "message": f"Report assigned to {request.worker_id}",
        **result,
    }


@router.post("/reports/{report_id}/reassign")
async def reassign_worker(report_id: str, request: ReassignRequest, actor: Actor = Depends(get_current_actor)):
    result = get_assignment_manager().reassign(
        report_id, request.worker_id, actor, request.reason, deadline=request.deadline
    )
    return {
        "success": True,
        "message": f"Report reassigned to {request.worker_id}",
        **result,
    }


@router.get("/reports/{report_id}/assignments")
async def assignment_history(report_id: str, actor: Actor = Depends(require_admin)):
    manager = get_assignment_manager()
    return {
        "report_id": report_id,
        "active": manager.get_active_assignment(report_id),
        "history": manager.get_assignment_history(report_id),
    }


# ----------------------------------------------------------------------
# Verification
# ----------------------------------------------------------------------

@router.post("/reports/{report_id}/proofs/{proof_id}/verify")
async def verify_proof(report_id: str, proof_id: str, request: VerifyRequest, actor: Actor = Depends(get_current_actor)):
    """
    Decide a pending resolution proof.

    - approved: rating 1-5 required; report closes
    - rejected: comment required; same worker reworks
    - reassign: comment required; report reopens without an assignee
    """
    result = get_proof_verifier().verify(
        report_id,
        proof_id,
        actor,
        request.decision,
        comment=request.comment,
        rating=request.rating,
    )
    return {
        "success": True,
        "message": f"Proof {request.decision.value}",
        **result,
    }


@router.post("/reports/{report_id}/archive")
async def archive_report(report_id: str, actor: Actor = Depends(get_current_actor)):
    report = get_report_service().archive_report(report_id, actor)
    return {"success": True, "report": report}


# ----------------------------------------------------------------------
# Escalations
# ----------------------------------------------------------------------

@router.get("/escalations")
async def list_escalations(
    open_only: bool = Query(True, description="Only unresolved escalations"),
    report_id: Optional[str] = Query(None),
    actor: Actor = Depends(require_admin),
):
    escalations = get_escalation_engine().list_escalations(open_only=open_only, report_id=report_id)
    return {"count": len(escalations), "escalations": escalations}


@router.post("/escalations/scan")
async def scan_sla_breaches(actor: Actor = Depends(get_current_actor)):
    """
    Run SLA breach detection now.

    Normally triggered by a scheduler; safe to call repeatedly.
    """
    if not actor.is_admin:
        raise ActorForbidden(actor.id, actor.role.value, "scan_sla_breaches")
    created = get_escalation_engine().detect_sla_breaches()
    return {"created": len(created), "escalations": created}


@router.post("/escalations/{escalation_id}/resolve")
async def resolve_escalation(
    escalation_id: str,
    request: ResolveEscalationRequest,
    actor: Actor = Depends(get_current_actor),
):
    result = get_escalation_engine().resolve_escalation(
        escalation_id, actor, close_report=request.close_report, note=request.note
    )
    return {"success": True, **result}


@router.post("/escalations/{escalation_id}/reassign")
async def reassign_from_escalation(
    escalation_id: str,
    request: EscalationReassignRequest,
    actor: Actor = Depends(get_current_actor),
):
    result = get_escalation_engine().reassign_from_escalation(
        escalation_id, request.worker_id, actor, reason=request.reason
    )
    return {"success": True, **result}


# ----------------------------------------------------------------------
# SLA rules
# ----------------------------------------------------------------------

@router.get("/sla-rules")
async def list_sla_rules(actor: Actor = Depends(require_admin)):
    return {"rules": get_sla_rule_service().list_rules()}


@router.put("/sla-rules/{priority}")
async def update_sla_rule(priority: ReportPriority, request: SLARuleUpdate, actor: Actor = Depends(get_current_actor)):
    """
    Change the SLA window of one priority.

    Affects deadlines computed from now on; closed reports are untouched.
    """
    rule = get_sla_rule_service().update_rule(priority.value, request.max_hours, actor)
    return {"success": True, "rule": rule}


# ----------------------------------------------------------------------
# Workers
# ----------------------------------------------------------------------

@router.get("/workers")
async def list_workers(include_inactive: bool = Query(False), actor: Actor = Depends(require_admin)):
    workers = get_worker_service().list_workers(include_inactive=include_inactive)
    return {"count": len(workers), "workers": workers}


@router.post("/workers", status_code=status.HTTP_201_CREATED)
async def register_worker(request: WorkerCreate, actor: Actor = Depends(get_current_actor)):
    worker = get_worker_service().register_worker(request, actor)
    return {"success": True, "worker": worker}


@router.patch("/workers/{worker_id}/status")
async def set_worker_status(worker_id: str, request: WorkerStatusUpdate, actor: Actor = Depends(get_current_actor)):
    worker = get_worker_service().set_status(worker_id, request.status, actor)
    return {"success": True, "worker": worker}


@router.patch("/workers/{worker_id}/active")
async def set_worker_active(worker_id: str, request: WorkerActiveUpdate, actor: Actor = Depends(get_current_actor)):
    """
    Deactivate or reactivate a worker.

    Deactivation is refused while the worker holds active assignments.
    """
    worker = get_worker_service().set_active(worker_id, request.is_active, actor)
    return {"success": True, "worker": worker}


@router.get("/workloads")
async def worker_workloads(actor: Actor = Depends(require_admin)):
    """Active assignment count per worker. Advisory: no cap is enforced."""
    return {"workloads": get_assignment_manager().get_worker_workloads()}


# ----------------------------------------------------------------------
# Operations
# ----------------------------------------------------------------------

@router.get("/operations/summary")
async def operations_summary(actor: Actor = Depends(require_admin)):
    return get_operations_service().get_summary()


@router.get("/activity")
async def admin_activity(limit: int = Query(50, ge=1, le=500), actor: Actor = Depends(require_admin)):
    entries = get_activity_log_service().get_admin_activity(limit=limit)
    return {"count": len(entries), "entries": entries}
