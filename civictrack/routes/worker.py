"""
Worker endpoints - what a field worker does on their assignments.
"""

from fastapi import APIRouter, Depends, status

from civictrack.models.report import ReportStatus
from civictrack.models.user import Actor
from civictrack.models.workflow import ProofSubmitRequest
from civictrack.services.proof_verifier import get_proof_verifier
from civictrack.services.status_workflow import get_status_workflow
from civictrack.services.worker_service import get_worker_service
from civictrack.utils.security import get_current_actor

router = APIRouter(prefix="/worker", tags=["Worker"])


@router.get("/assignments")
async def my_assignments(actor: Actor = Depends(get_current_actor)):
    """Active assignments of the calling worker."""
    assignments = get_worker_service().get_my_assignments(actor)
    return {"count": len(assignments), "assignments": assignments}


@router.post("/reports/{report_id}/start")
async def start_work(report_id: str, actor: Actor = Depends(get_current_actor)):
    """assigned → in_progress, by the assigned worker."""
    report = get_status_workflow().transition(report_id, ReportStatus.IN_PROGRESS.value, actor)
    return {"success": True, "report": report}


@router.post("/reports/{report_id}/proofs", status_code=status.HTTP_201_CREATED)
async def submit_proof(report_id: str, request: ProofSubmitRequest, actor: Actor = Depends(get_current_actor)):
    """
    Submit resolution evidence.

    Moves the report to awaiting_verification until an admin decides.
    """
    result = get_proof_verifier().submit_proof(report_id, actor, request.evidence_refs, notes=request.notes)
    return {"success": True, **result}
