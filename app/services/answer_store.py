"""
Answer Store

Durable ``question_id -> answer`` map for one attempt.

Writes are always read-modify-write through merge_answers and land
with a CAS on (status = in_progress, version), so:
- a blank incoming value never erases a saved answer
- two overlapping autosaves cannot drop each other's keys
- a write arriving after submission is rejected, never applied

Critical writes (right before submit or expiry) also read the record
back and retry if fewer answers landed than were intended.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    AnswerVerificationError,
    AttemptClosedError,
    AttemptNotFoundError,
    PersistenceUnavailableError,
    StaleAttemptError,
)
from app.engine.answers import answered_count, merge_answers
from app.engine.states import AttemptStatus
from app.repositories.quiz_repo import QuizAttemptRepository
from app.utils.retry import RetryPolicy, run_with_retry

logger = logging.getLogger(__name__)


@dataclass
class AnswerWriteResult:
    attempt_id: UUID
    answers: Dict[str, str] = field(default_factory=dict)
    saved: bool = True
    warning: Optional[str] = None

    @property
    def answered_count(self) -> int:
        return answered_count(self.answers)


class AnswerStore:
    """Merge-on-write answer persistence for attempts."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.attempt_repo = QuizAttemptRepository(db)

    async def load(self, attempt_id: UUID) -> Dict[str, str]:
        attempt = await self.attempt_repo.get_by_id(attempt_id, fresh=True)
        if not attempt:
            raise AttemptNotFoundError("Attempt not found")
        return dict(attempt.answers or {})

    async def write(
        self,
        attempt_id: UUID,
        incoming: Mapping[str, Optional[str]],
        critical: bool = False,
    ) -> AnswerWriteResult:
        """
        Merge ``incoming`` into the persisted answers.

        Raises AttemptClosedError if the attempt already left
        in_progress. When retries run out, an autosave returns a
        degraded result with ``saved=False``; a critical write raises
        PersistenceUnavailableError.
        """
        policy = RetryPolicy.critical() if critical else RetryPolicy.standard()

        async def _write_once() -> Dict[str, str]:
            attempt = await self.attempt_repo.get_by_id(attempt_id, fresh=True)
            if not attempt:
                raise AttemptNotFoundError("Attempt not found")
            if attempt.status != AttemptStatus.IN_PROGRESS:
                raise AttemptClosedError(attempt_id, attempt.status)

            current = dict(attempt.answers or {})
            merged = merge_answers(current, incoming)
            if merged != current:
                applied = await self.attempt_repo.compare_and_set(
                    attempt_id,
                    AttemptStatus.IN_PROGRESS,
                    attempt.version,
                    answers=merged,
                )
                if not applied:
                    raise StaleAttemptError(f"Attempt {attempt_id} changed during answer write")

            if critical:
                await self._verify(attempt_id, merged)
            return merged

        try:
            answers = await run_with_retry(
                _write_once,
                policy=policy,
                label=f"Answer write for attempt {attempt_id}",
                db=self.db,
            )
        except PersistenceUnavailableError as e:
            if critical:
                logger.error("Critical answer write lost for attempt %s: %s", attempt_id, e)
                raise
            logger.warning("Autosave degraded for attempt %s: %s", attempt_id, e)
            return AnswerWriteResult(
                attempt_id=attempt_id,
                answers=merge_answers({}, incoming),
                saved=False,
                warning="Answers could not be saved right now; they will be retried on the next save.",
            )

        return AnswerWriteResult(attempt_id=attempt_id, answers=answers)

    async def _verify(self, attempt_id: UUID, intended: Dict[str, str]) -> None:
        attempt = await self.attempt_repo.get_by_id(attempt_id, fresh=True)
        if attempt.status != AttemptStatus.IN_PROGRESS:
            # Submitted concurrently; the submitter merged from the same row
            return
        persisted = answered_count(attempt.answers)
        expected = answered_count(intended)
        if persisted < expected:
            raise AnswerVerificationError(
                f"Read-back found {persisted} answers for attempt {attempt_id}, expected {expected}"
            )
