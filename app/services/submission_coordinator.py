"""
Submission Coordinator

End-to-end submit flow, safe to run concurrently for the same attempt
(manual click racing a timer auto-submit, or a retried request):

1. fold every live capture into one answer set (merge_all)
2. write it through the AnswerStore as a critical, verified write
3. in_progress -> completed through the AttemptStateMachine
4. hand back the resulting attempt state

Whoever loses the race sees the attempt already completed and returns
that state as success.
"""

import logging
from datetime import datetime
from typing import Iterable, Mapping, Optional, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import AttemptClosedError, AttemptNotFoundError
from app.engine.answers import answered_count, merge_all
from app.engine.states import AttemptStatus, SubmitTrigger
from app.engine.timer import TimerReading, utcnow
from app.models.quiz_attempt import QuizAttempt
from app.repositories.quiz_repo import QuizRepository, QuizAttemptRepository
from app.services.answer_store import AnswerStore
from app.services.attempt_state_machine import AttemptStateMachine, TransitionResult
from app.utils.retry import RetryPolicy, run_with_retry

logger = logging.getLogger(__name__)


class SubmissionCoordinator:

    def __init__(self, db: AsyncSession):
        self.db = db
        self.quiz_repo = QuizRepository(db)
        self.attempt_repo = QuizAttemptRepository(db)
        self.answer_store = AnswerStore(db)
        self.state_machine = AttemptStateMachine(db)

    async def submit(
        self,
        attempt_id: UUID,
        captures: Iterable[Optional[Mapping[str, Optional[str]]]] = (),
        trigger: SubmitTrigger = SubmitTrigger.MANUAL,
        now: Optional[datetime] = None,
    ) -> TransitionResult:
        captured = merge_all(captures)

        if captured:
            try:
                written = await self.answer_store.write(attempt_id, captured, critical=True)
                logger.debug(
                    f"Pre-submit write for attempt {attempt_id}: {written.answered_count} answers persisted"
                )
            except AttemptClosedError:
                # Lost the race to another submitter; fall through to the no-op path
                logger.info(f"Attempt {attempt_id} closed before pre-submit write ({trigger.value})")

        return await self.state_machine.submit(
            attempt_id,
            final_answers=captured,
            trigger=trigger,
            now=now,
        )

    async def read_timer(self, attempt_id: UUID, now: Optional[datetime] = None) -> TimerReading:
        _, reading = await self._timer_snapshot(attempt_id, now or utcnow())
        return reading

    async def enforce_expiry(
        self,
        attempt_id: UUID,
        trigger: SubmitTrigger = SubmitTrigger.EXPIRY,
        now: Optional[datetime] = None,
    ) -> Optional[TransitionResult]:
        """
        Auto-submit from persisted answers if the attempt's time is up.

        Returns the transition result when a submit was attempted
        (applied or no-op), None when the attempt is not yet due.
        """
        now = now or utcnow()
        attempt, reading = await self._timer_snapshot(attempt_id, now)
        if not reading.expired:
            return None
        if attempt.status != AttemptStatus.IN_PROGRESS:
            return None

        logger.info(
            f"Attempt {attempt_id} expired at {reading.deadline.isoformat()}; "
            f"auto-submitting {answered_count(attempt.answers)} saved answers"
        )
        return await self.submit(attempt_id, (), trigger=trigger, now=now)

    async def _timer_snapshot(self, attempt_id: UUID, now: datetime) -> Tuple[QuizAttempt, TimerReading]:
        async def _read():
            attempt = await self.attempt_repo.get_by_id(attempt_id, fresh=True)
            if not attempt:
                raise AttemptNotFoundError("Attempt not found")
            quiz = await self.quiz_repo.get_by_id(attempt.quiz_id)
            return attempt, quiz

        attempt, quiz = await run_with_retry(
            _read,
            policy=RetryPolicy.critical(),
            label=f"Timer read for attempt {attempt_id}",
            db=self.db,
        )
        return attempt, TimerReading(
            started_at=attempt.started_at,
            now=now,
            duration_minutes=quiz.time_limit_minutes,
        )
