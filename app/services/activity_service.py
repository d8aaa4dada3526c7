"""
Activity Service

Informational record of attempt activity. Never blocks or fails the
action it describes.
"""

import logging
from typing import Optional
from uuid import UUID

from app.models.activity_log import ActivityLog

logger = logging.getLogger(__name__)


async def record_activity(
    db,
    action: str,
    attempt_id: Optional[UUID] = None,
    actor_id: Optional[UUID] = None,
    details: Optional[dict] = None,
) -> None:
    try:
        db.add(ActivityLog(
            actor_id=actor_id,
            action=action,
            attempt_id=attempt_id,
            details=details,
        ))
        await db.commit()
    except Exception as e:
        logger.warning("Failed to record activity %s for attempt %s: %s", action, attempt_id, e)
        await db.rollback()
