"""
ARQ Worker Configuration

Runs the expiry sweeper on a cron schedule so overdue attempts are
submitted even when no client is left to observe the deadline.

Running the Worker:
------------------
    # From project root directory
    arq app.worker.WorkerSettings

    # With verbose logging
    arq app.worker.WorkerSettings --verbose

Several workers can run side by side; overlapping sweeps are safe
because each attempt is finalized by a single conditional update.
"""

import logging
from typing import Any, Dict, Set

from arq import cron

from app.core.config import settings
from app.db.database import check_db_connection
from app.db.redis import get_arq_redis_settings
from app.tasks.expiry_tasks import sweep_expired_attempts

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def sweep_seconds(interval: int) -> Set[int]:
    """Seconds of each minute on which the sweep fires."""
    return set(range(0, 60, interval))


# ============================================================
# Startup and Shutdown Hooks
# ============================================================

async def startup(ctx: Dict[str, Any]) -> None:
    logger.info("ARQ Worker starting up...")
    if await check_db_connection():
        logger.info("Database connection established successfully")
    else:
        logger.warning("Database connection check failed; sweeps will retry on schedule")
    logger.info("ARQ Worker ready")


async def shutdown(ctx: Dict[str, Any]) -> None:
    logger.info("ARQ Worker shutdown complete")


def _cron_jobs():
    if not settings.EXPIRY_SWEEP_ENABLED:
        return []
    return [
        cron(
            sweep_expired_attempts,
            second=sweep_seconds(settings.EXPIRY_SWEEP_INTERVAL_SECONDS),
            run_at_startup=True,
            unique=True,
        )
    ]


# ============================================================
# Worker Configuration Class
# ============================================================

class WorkerSettings:
    """
    ARQ Worker settings.

    Discovered by ARQ when you run:
        arq app.worker.WorkerSettings
    """

    functions = [
        sweep_expired_attempts,
    ]
    cron_jobs = _cron_jobs()

    redis_settings = get_arq_redis_settings()

    on_startup = startup
    on_shutdown = shutdown

    job_timeout = 120
    keep_result = 600
    max_tries = 3

    max_jobs = 5
    poll_delay = 0.5
    health_check_interval = 10
