"""
Pydantic models for citizen reports.
These models handle validation for report submission and responses.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, Dict
from enum import Enum


class ReportStatus(str, Enum):
    """
    Report lifecycle.

    reported → assigned → in_progress → awaiting_verification → closed | reopened
    reopened → assigned (re-entry)
    """
    REPORTED = "reported"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    AWAITING_VERIFICATION = "awaiting_verification"
    REOPENED = "reopened"
    CLOSED = "closed"


class ReportPriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    URGENT = "Urgent"


class ReportCreate(BaseModel):
    """
    Model for creating a new report (incoming POST request).
    risk_score and category come from the external AI scorer and are
    treated as opaque inputs.
    """
    title: str = Field(..., min_length=3, max_length=200)
    description: str = Field(..., min_length=5, max_length=2000, description="What the citizen observed")
    category: Optional[str] = Field(None, max_length=100, description="Category (AI-supplied or user-selected)")
    priority: ReportPriority = Field(default=ReportPriority.MEDIUM)
    risk_score: Optional[float] = Field(None, description="AI risk score, clamped to 0-100")
    address: Optional[str] = Field(None, max_length=500)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    image_url: Optional[str] = Field(None, description="Evidence reference from external storage")

    class Config:
        json_schema_extra = {
            "example": {
                "title": "Pothole near bus stop",
                "description": "Deep pothole in the left lane next to the Sector 12 bus stop.",
                "category": "pothole",
                "priority": "High",
                "risk_score": 72,
                "address": "MG Road, Sector 12",
                "latitude": 18.5074,
                "longitude": 73.8077,
                "image_url": "https://storage.example.com/issues/abc.jpg",
            }
        }
        extra = "ignore"


class ReportResponse(BaseModel):
    """Report as returned by the API, with SLA information computed at read time."""
    id: str
    title: str
    description: str
    category: Optional[str] = None
    priority: ReportPriority
    status: ReportStatus
    risk_score: int = Field(default=0, ge=0, le=100)
    created_at: datetime
    updated_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    is_escalated: bool = False
    is_auto_escalated: bool = False
    reporter_id: str
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    image_url: Optional[str] = None
    assigned_worker: Optional[str] = None
    proof_cycle: int = 0
    archived: bool = False
    sla: Optional[Dict] = Field(default=None, description="Deadline, remaining hours and SLA state")
