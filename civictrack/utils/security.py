"""
Actor identity for API requests.

Session management and authentication happen upstream (gateway or auth
service). The upstream layer forwards the authenticated identity in two
headers, which this dependency turns into an Actor for the engine:

    X-Actor-Id:   stable identity of the caller
    X-Actor-Role: citizen | worker | admin

Workflow role checks happen inside the engine; require_admin only guards the
read-only admin views.
"""

from fastapi import Depends, Header, HTTPException, status
from typing import Optional
import logging

from civictrack.core.exceptions import ActorForbidden
from civictrack.models.user import Actor, Role

logger = logging.getLogger(__name__)


async def get_current_actor(
    x_actor_id: Optional[str] = Header(None, description="Authenticated actor identity"),
    x_actor_role: Optional[str] = Header(None, description="Actor role: citizen, worker or admin"),
) -> Actor:
    """
    FastAPI dependency resolving the calling actor.

    Raises:
        401: Identity headers missing
        400: Unknown role
    """
    if not x_actor_id or not x_actor_id.strip() or not x_actor_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing actor identity (X-Actor-Id and X-Actor-Role headers are required)",
        )

    try:
        role = Role(x_actor_role.strip().lower())
    except ValueError:
        logger.warning(f"Rejected request with unknown role '{x_actor_role}'")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown actor role: {x_actor_role}",
        )

    return Actor(id=x_actor_id.strip(), role=role)


async def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    """Dependency for read-only admin views that have no engine-side role check."""
    if not actor.is_admin:
        raise ActorForbidden(actor.id, actor.role.value, "admin_view")
    return actor
