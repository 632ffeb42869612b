"""
Actor and worker models.

Authentication is handled upstream; the engine only needs a stable identity
and a role for every caller.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional
from enum import Enum


class Role(str, Enum):
    CITIZEN = "citizen"
    WORKER = "worker"
    ADMIN = "admin"


class Actor(BaseModel):
    """The identity performing an engine operation."""
    id: str = Field(..., min_length=1, description="Stable actor identity")
    role: Role = Field(..., description="Actor role")

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_worker(self) -> bool:
        return self.role == Role.WORKER

    @property
    def is_citizen(self) -> bool:
        return self.role == Role.CITIZEN


class WorkerStatus(str, Enum):
    AVAILABLE = "available"
    BUSY = "busy"
    ON_LEAVE = "on_leave"


class WorkerCreate(BaseModel):
    """Model for onboarding a field worker (admin action)."""
    worker_id: str = Field(..., min_length=1, description="Actor identity of the worker")
    full_name: str = Field(..., min_length=1, max_length=120)
    department: Optional[str] = Field(None, max_length=120)
    phone: Optional[str] = Field(None, max_length=20)


class WorkerStatusUpdate(BaseModel):
    status: WorkerStatus


class WorkerActiveUpdate(BaseModel):
    is_active: bool = Field(..., description="False deactivates the worker; True reactivates")


class WorkerResponse(BaseModel):
    id: str
    full_name: str
    department: Optional[str] = None
    phone: Optional[str] = None
    status: WorkerStatus = WorkerStatus.AVAILABLE
    is_active: bool = True
    joined_at: datetime
    last_assigned_at: Optional[datetime] = None
    active_assignments: int = Field(default=0, description="Advisory load: active assignment count")
