"""
Message models for the per-report communication channels.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum


class Channel(str, Enum):
    """
    Visibility scope of a message.

    PUBLIC: reporter + admins write; any citizen may read; workers excluded
    ADMIN_CITIZEN: private between the reporter and admins
    WORKER: private between assigned worker(s) and admins
    """
    PUBLIC = "public"
    ADMIN_CITIZEN = "admin_citizen"
    WORKER = "worker"


class MessageCreate(BaseModel):
    text: str = Field(..., min_length=1, max_length=2000)


class MessageResponse(BaseModel):
    id: str
    report_id: str
    sender_id: str
    sender_role: str
    channel: Channel
    text: str
    created_at: datetime
