from fastapi import HTTPException, Header, status
from typing import Optional
import uuid
import logging

from app.core.security import Actor, Role

logger = logging.getLogger(__name__)


# =====================================================
# Get Current actor
# =====================================================
async def get_current_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Actor:
    """
    Dependency that reads the caller's identity from the headers set
    by the upstream gateway.

    Raises:
        HTTPException 401: If either header is missing or malformed
    """
    if not x_user_id or not x_user_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-Id and X-User-Role headers are required",
        )

    try:
        actor_id = uuid.UUID(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-Id must be a UUID",
        )

    try:
        role = Role(x_user_role.strip().lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-Role must be 'student' or 'instructor'",
        )

    return Actor(id=actor_id, role=role)
