from typing import Optional

import structlog
from fastapi import Header, HTTPException, status

from app.models.appointment import ActorRole
from app.schemas.actor import Actor

logger = structlog.get_logger(__name__)

# Roles a caller may assert through the gateway; "system" is internal only
_CALLER_ROLES = {ActorRole.SUBJECT.value, ActorRole.PROVIDER.value}


async def get_current_actor(
    x_actor_role: Optional[str] = Header(None),
    x_actor_id: Optional[str] = Header(None),
) -> Actor:
    """
    Identify the caller from the headers set by the upstream gateway.

    Sessions are verified before the request reaches this service; here the
    asserted role and id are only parsed.
    """
    role = (x_actor_role or "").strip().lower()
    if role not in _CALLER_ROLES or not x_actor_id:
        logger.warning("Missing or invalid actor headers", role=x_actor_role)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )

    try:
        actor_id = int(x_actor_id)
    except ValueError:
        logger.warning("Non-numeric actor id", actor_id=x_actor_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid actor id",
        )

    return Actor(role=ActorRole(role), id=actor_id)
