"""
Expiry Tasks

Background job that auto-submits overdue attempts whose students
closed the tab, went offline, or never polled the timer again.
"""

import logging
from typing import Any, Dict

from app.db.database import AsyncSessionLocal
from app.services.attempt_service import AttemptService

logger = logging.getLogger(__name__)


async def sweep_expired_attempts(ctx: Dict[str, Any]) -> Dict[str, Any]:
    """
    Submit every in-progress attempt past its deadline, from the
    answers already persisted.

    Safe to overlap with manual submits and with other sweeps: each
    attempt is finalized at most once.
    """
    job_id = ctx.get("job_id", "unknown")

    async with AsyncSessionLocal() as db:
        submitted = await AttemptService(db).expire_overdue()

    if submitted:
        logger.info(f"[Job {job_id}] Expiry sweep submitted {submitted} attempt(s)")
    else:
        logger.debug(f"[Job {job_id}] Expiry sweep found nothing overdue")
    return {"submitted": submitted}
