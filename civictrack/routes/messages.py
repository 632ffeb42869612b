"""
Message endpoints - per-report channels (public, admin_citizen, worker).

Capabilities are enforced by the channel router; a caller without access
gets 403 `channel_forbidden`.
"""

from fastapi import APIRouter, Depends, status
from typing import List

from civictrack.models.message import Channel, MessageCreate, MessageResponse
from civictrack.models.user import Actor
from civictrack.services.channel_router import get_channel_router
from civictrack.utils.security import get_current_actor

router = APIRouter(prefix="/reports/{report_id}/messages", tags=["Messages"])


@router.get("")
async def visible_messages(report_id: str, actor: Actor = Depends(get_current_actor)):
    """Every channel the caller may read, grouped by channel."""
    return {"report_id": report_id, "channels": get_channel_router().list_visible_messages(report_id, actor)}


@router.get("/{channel}", response_model=List[MessageResponse])
async def read_channel(report_id: str, channel: Channel, actor: Actor = Depends(get_current_actor)):
    return get_channel_router().read(report_id, actor, channel)


@router.post("/{channel}", status_code=status.HTTP_201_CREATED, response_model=MessageResponse)
async def write_message(report_id: str, channel: Channel, message: MessageCreate, actor: Actor = Depends(get_current_actor)):
    return get_channel_router().write(report_id, actor, channel, message.text)
