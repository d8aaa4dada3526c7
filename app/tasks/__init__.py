"""
Background Tasks Module

Task definitions run by the arq worker (see app.worker).

Task Organization:
-----------------
- expiry_tasks.py: auto-submit attempts whose time limit has passed

Task functions receive arq's ``ctx`` dict (job_id, job_try, redis).

Running Workers:
---------------
    arq app.worker.WorkerSettings
"""

from app.tasks.expiry_tasks import sweep_expired_attempts

__all__ = [
    "sweep_expired_attempts",
]
