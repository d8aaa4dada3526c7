from app.engine.states import AttemptStatus
from app.services.attempt_service import AttemptService
from app.tasks import expiry_tasks
from app.worker import WorkerSettings, sweep_seconds

from factories import mc, minutes_ago


def test_sweep_seconds():
    assert sweep_seconds(15) == {0, 15, 30, 45}
    assert sweep_seconds(60) == {0}


def test_worker_registers_sweeper():
    assert expiry_tasks.sweep_expired_attempts in WorkerSettings.functions
    assert len(WorkerSettings.cron_jobs) == 1


async def test_sweep_job_submits_overdue_attempts(session_factory, make_quiz, student, monkeypatch):
    quiz, _ = await make_quiz([mc()], time_limit_minutes=5)
    async with session_factory() as session:
        state, _ = await AttemptService(session).start_attempt(quiz.id, student, now=minutes_ago(30))

    monkeypatch.setattr(expiry_tasks, "AsyncSessionLocal", session_factory)
    result = await expiry_tasks.sweep_expired_attempts({"job_id": "cron:sweep"})

    assert result == {"submitted": 1}
    async with session_factory() as session:
        after = await AttemptService(session).get_attempt_state(state.id, student)
    assert after.status != AttemptStatus.IN_PROGRESS
    assert after.completed_at is not None
