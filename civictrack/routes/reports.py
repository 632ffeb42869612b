"""
Report endpoints - citizen report submission, lookup and lifecycle actions
that any actor may request.

Workflow errors raised by the services propagate to the exception handler
in main.py, which maps each error kind to its HTTP status.
"""

from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
import logging

from civictrack.core.exceptions import WorkflowError
from civictrack.models.report import ReportCreate, ReportPriority, ReportResponse, ReportStatus
from civictrack.models.user import Actor
from civictrack.models.workflow import EscalateRequest, TransitionRequest
from civictrack.services.escalation_engine import get_escalation_engine
from civictrack.services.proof_verifier import get_proof_verifier
from civictrack.services.report_service import get_report_service
from civictrack.services.status_workflow import get_status_workflow
from civictrack.utils.security import get_current_actor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["Reports"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=ReportResponse)
async def submit_report(report: ReportCreate, actor: Actor = Depends(get_current_actor)):
    """
    Submit a new citizen report.

    The report starts in `reported`; its SLA deadline follows from its priority.
    """
    try:
        logger.info(f"📝 POST /reports - {actor.id} filing '{report.title}' ({report.priority.value})")
        return get_report_service().create_report(report, actor)
    except WorkflowError:
        raise
    except Exception as e:
        logger.error(f"❌ POST /reports - Report creation failed: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Report creation failed: {str(e)}",
        )


@router.get("", response_model=List[ReportResponse])
async def list_reports(
    status_filter: Optional[ReportStatus] = Query(None, alias="status", description="Filter by status"),
    priority: Optional[ReportPriority] = Query(None, description="Filter by priority"),
    reporter_id: Optional[str] = Query(None, description="Filter by reporter"),
    escalated: Optional[bool] = Query(None, description="Only escalated / non-escalated reports"),
    include_archived: bool = Query(False),
    limit: int = Query(100, ge=1, le=500, description="Maximum number of reports"),
):
    try:
        return get_report_service().list_reports(
            status=status_filter.value if status_filter else None,
            priority=priority.value if priority else None,
            reporter_id=reporter_id,
            escalated=escalated,
            include_archived=include_archived,
            limit=limit,
        )
    except WorkflowError:
        raise
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to retrieve reports: {str(e)}",
        )


@router.get("/{report_id}", response_model=ReportResponse)
async def get_report(report_id: str):
    return get_report_service().get_report(report_id)


@router.get("/{report_id}/timeline")
async def get_report_timeline(report_id: str, newest_first: bool = Query(False)):
    """Audit trail of every state-changing action on the report."""
    entries = get_report_service().get_timeline(report_id, newest_first=newest_first)
    return {"report_id": report_id, "count": len(entries), "entries": entries}


@router.get("/{report_id}/proofs")
async def list_report_proofs(report_id: str):
    proofs = get_proof_verifier().list_proofs(report_id)
    return {"report_id": report_id, "count": len(proofs), "proofs": proofs}


@router.post("/{report_id}/transition")
async def transition_report(
    report_id: str,
    request: TransitionRequest,
    actor: Actor = Depends(get_current_actor),
):
    """
    Request a direct status change.

    Only `assigned` (admin, with an active assignment) and `in_progress`
    (the assigned worker) can be requested here; every other status is
    reached through its own workflow action.
    """
    report = get_status_workflow().transition(report_id, request.status.value, actor)
    return {
        "success": True,
        "message": f"Status updated to {report['status']}",
        "report": report,
    }


@router.post("/{report_id}/escalate", status_code=status.HTTP_201_CREATED)
async def escalate_report(
    report_id: str,
    request: EscalateRequest,
    actor: Actor = Depends(get_current_actor),
):
    """Raise a manual escalation. Any actor may escalate an open report."""
    escalation = get_escalation_engine().escalate(report_id, request.reason, request.severity, triggered_by=actor)
    return {
        "success": True,
        "message": "Report escalated",
        "escalation": escalation,
    }
