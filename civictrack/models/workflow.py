"""
Workflow models: assignments, escalations, resolution proofs and the
activity log, plus the request bodies of the workflow endpoints.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List
from enum import Enum

from civictrack.models.report import ReportPriority, ReportStatus


class EscalationSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ProofOutcome(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class VerificationDecision(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    REASSIGN = "reassign"


# Decision stamped on a pending proof withdrawn because its report was
# closed from an escalation. Not accepted as an admin verification decision.
ESCALATION_CLOSURE_DECISION = "escalation_closure"


class ActionType(str, Enum):
    """Audit log action types."""
    REPORT_CREATED = "report_created"
    WORKER_ASSIGNED = "worker_assigned"
    WORKER_REASSIGNED = "worker_reassigned"
    STATUS_CHANGED = "status_changed"
    PROOF_SUBMITTED = "proof_submitted"
    VERIFICATION = "verification"
    ESCALATED = "escalated"
    ESCALATION_RESOLVED = "escalation_resolved"
    ESCALATION_REASSIGNED = "escalation_reassigned"
    REPORT_ARCHIVED = "report_archived"


# Request models

class TransitionRequest(BaseModel):
    status: ReportStatus = Field(..., description="Target status")


class AssignRequest(BaseModel):
    worker_id: str = Field(..., min_length=1)
    deadline: Optional[datetime] = Field(None, description="Optional work deadline; defaults to the SLA deadline")


class ReassignRequest(BaseModel):
    worker_id: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1, max_length=500)
    deadline: Optional[datetime] = None


class EscalateRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)
    severity: EscalationSeverity = Field(default=EscalationSeverity.MEDIUM)


class ResolveEscalationRequest(BaseModel):
    close_report: bool = Field(default=False, description="Also close the underlying report as resolved")
    note: Optional[str] = Field(None, max_length=500)


class EscalationReassignRequest(BaseModel):
    worker_id: str = Field(..., min_length=1)
    reason: Optional[str] = Field(None, max_length=500)


class ProofSubmitRequest(BaseModel):
    evidence_refs: List[str] = Field(..., min_length=1, description="Image references from external storage")
    notes: Optional[str] = Field(None, max_length=1000)


class VerifyRequest(BaseModel):
    decision: VerificationDecision
    comment: Optional[str] = Field(None, max_length=1000)
    rating: Optional[int] = Field(None, description="1-5, required on approval")


class SLARuleUpdate(BaseModel):
    max_hours: int = Field(..., gt=0, le=24 * 365)


class SLARule(BaseModel):
    priority: ReportPriority
    max_hours: int
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None
