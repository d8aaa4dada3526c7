"""
Attempt State Machine Service

Owns every change to an attempt's status and score.

- submit: in_progress -> completed (idempotent; the CAS loser
  returns the winner's state with applied=False)
- refresh_grading: recompute after each manual grade; completed ->
  graded once every manual question has a grade
- force_finalize: explicit early finalize, zeroing ungraded
  manual questions

Each transition is one conditional UPDATE carrying status, score and
timestamps together. If the write fails or loses the race, the whole
decision is recomputed from the persisted row (via run_with_retry),
never resumed from the in-memory copy.

Notifications and activity logging run after the commit and can
never undo it.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Mapping, Optional, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    AttemptNotFoundError,
    IllegalTransition,
    IncompletePrerequisite,
    StaleAttemptError,
)
from app.engine.answers import merge_answers
from app.engine.scoring import ScoreResult, compute_score
from app.engine.state_machine import (
    Outcome,
    plan_grading,
    provisional_score,
    resolve,
    submit_follow_up,
)
from app.engine.states import AttemptStatus, SubmitTrigger
from app.engine.timer import utcnow
from app.models.quiz_attempt import QuizAttempt
from app.models.quiz_question import QuizQuestion
from app.repositories.quiz_repo import (
    QuizRepository,
    QuizAttemptRepository,
    QuizQuestionRepository,
    QuizQuestionGradeRepository,
)
from app.services import notification_service
from app.services.activity_service import record_activity
from app.services.grade_ledger import ManualGradeLedger
from app.utils.retry import RetryPolicy, run_with_retry

logger = logging.getLogger(__name__)

FORCED_ZERO_FEEDBACK = "Not graded before finalization; scored 0."


@dataclass
class TransitionResult:
    attempt: QuizAttempt
    score: ScoreResult
    applied: bool
    questions: List[QuizQuestion] = field(default_factory=list)
    grades: List[Any] = field(default_factory=list)


class AttemptStateMachine:

    def __init__(self, db: AsyncSession):
        self.db = db
        self.quiz_repo = QuizRepository(db)
        self.attempt_repo = QuizAttemptRepository(db)
        self.question_repo = QuizQuestionRepository(db)
        self.grade_repo = QuizQuestionGradeRepository(db)

    async def transition(self, attempt_id: UUID, target: AttemptStatus, **kwargs) -> TransitionResult:
        """Generic entry point; nothing ever transitions back to in_progress."""
        target = AttemptStatus(target)
        if target == AttemptStatus.COMPLETED:
            return await self.submit(attempt_id, **kwargs)
        if target == AttemptStatus.GRADED:
            return await self.refresh_grading(attempt_id)
        attempt = await self._load(attempt_id)
        raise IllegalTransition(attempt.status, target)

    # ============================================================
    # SUBMIT: in_progress -> completed
    # ============================================================

    async def submit(
        self,
        attempt_id: UUID,
        final_answers: Optional[Mapping[str, Optional[str]]] = None,
        trigger: SubmitTrigger = SubmitTrigger.MANUAL,
        now: Optional[datetime] = None,
    ) -> TransitionResult:
        now = now or utcnow()
        _, questions = await self._snapshot(attempt_id, RetryPolicy.critical())

        async def _submit_once():
            current = await self._load(attempt_id)
            if resolve(current.status, AttemptStatus.COMPLETED) == Outcome.NOOP:
                return None

            merged = merge_answers(current.answers, final_answers)
            result = compute_score(questions, merged, (), current.answer_key)
            applied = await self.attempt_repo.compare_and_set(
                attempt_id,
                AttemptStatus.IN_PROGRESS,
                current.version,
                status=AttemptStatus.COMPLETED,
                answers=merged,
                score=provisional_score(result),
                completed_at=now,
            )
            if not applied:
                raise StaleAttemptError(f"Attempt {attempt_id} changed during submit")
            return result

        result = await run_with_retry(
            _submit_once,
            policy=RetryPolicy.critical(),
            label=f"Submit of attempt {attempt_id}",
            db=self.db,
        )

        if result is None:
            logger.info(f"Submit no-op for attempt {attempt_id} ({trigger.value}): already finalized")
            return await self._current_state(attempt_id, questions, applied=False)

        logger.info(
            f"Attempt {attempt_id} submitted ({trigger.value}): "
            f"auto={result.auto_points} pending_manual={len(result.pending_question_ids)}"
        )

        graded_now = False
        follow_up = submit_follow_up(result)
        if follow_up is not None:
            graded_now = await self._grade_without_manual_questions(attempt_id, follow_up.score, now)

        state = await self._current_state(attempt_id, questions, applied=True)
        await self._after_submit(state, trigger, graded_now)
        return state

    async def _grade_without_manual_questions(self, attempt_id: UUID, score: int, now: datetime) -> bool:
        async def _grade_once():
            current = await self._load(attempt_id)
            if resolve(current.status, AttemptStatus.GRADED) == Outcome.NOOP:
                return False
            applied = await self.attempt_repo.compare_and_set(
                attempt_id,
                AttemptStatus.COMPLETED,
                current.version,
                status=AttemptStatus.GRADED,
                score=score,
                graded_at=now,
            )
            if not applied:
                raise StaleAttemptError(f"Attempt {attempt_id} changed during auto-grade")
            return True

        graded = await run_with_retry(
            _grade_once,
            policy=RetryPolicy.critical(),
            label=f"Auto-grade of attempt {attempt_id}",
            db=self.db,
        )
        if graded:
            logger.info(f"Attempt {attempt_id} graded automatically (no manual questions): score={score}")
        return graded

    # ============================================================
    # GRADING: completed -> graded
    # ============================================================

    async def refresh_grading(
        self,
        attempt_id: UUID,
        force: bool = False,
        actor_id: Optional[UUID] = None,
        now: Optional[datetime] = None,
    ) -> TransitionResult:
        """
        Recompute the score from the grade ledger and persist it.

        Moves completed -> graded when grading is complete (or when
        forced); otherwise stores the partial running total.
        """
        now = now or utcnow()
        _, questions = await self._snapshot(attempt_id, RetryPolicy.standard())

        async def _refresh_once():
            current = await self._load(attempt_id)
            grades = await self.grade_repo.get_by_attempt(attempt_id)
            result = compute_score(questions, current.answers, grades, current.answer_key)
            decision = plan_grading(current.status, result, force=force)

            values = {}
            if decision.score != current.score:
                values["score"] = decision.score
            newly_graded = decision.finalizes and current.status != AttemptStatus.GRADED
            if newly_graded:
                values["status"] = AttemptStatus.GRADED
                values["graded_at"] = now
            if decision.forced and not current.force_finalized:
                values["force_finalized"] = True
                values["finalized_by"] = actor_id
            if not values:
                return False

            applied = await self.attempt_repo.compare_and_set(
                attempt_id,
                current.status,
                current.version,
                **values,
            )
            if not applied:
                raise StaleAttemptError(f"Attempt {attempt_id} changed during grading")
            return newly_graded

        newly_graded = await run_with_retry(
            _refresh_once,
            policy=RetryPolicy.standard(),
            label=f"Grading refresh of attempt {attempt_id}",
            db=self.db,
        )

        state = await self._current_state(attempt_id, questions, applied=newly_graded)
        if newly_graded:
            logger.info(
                f"Attempt {attempt_id} graded: score={state.attempt.score}/{state.score.max_points}"
                + (" (force-finalized)" if force else "")
            )
            await self._after_graded(state, actor_id, forced=force)
        return state

    async def force_finalize(
        self,
        attempt_id: UUID,
        actor_id: UUID,
        confirm: bool = False,
    ) -> TransitionResult:
        """
        Early finalize: every ungraded manual question is recorded as a
        0-point grade and the attempt is marked force_finalized.

        Without ``confirm`` this refuses to zero anything and raises
        IncompletePrerequisite listing the ungraded questions. With
        nothing left to zero the attempt is graded normally and is not
        flagged.
        """
        _, questions = await self._snapshot(attempt_id, RetryPolicy.standard())
        state = await self._current_state(attempt_id, questions, applied=False)
        if state.attempt.status == AttemptStatus.IN_PROGRESS:
            raise IllegalTransition(state.attempt.status, AttemptStatus.GRADED)
        if state.attempt.status == AttemptStatus.GRADED:
            return state

        pending = state.score.pending_question_ids
        if pending and not confirm:
            raise IncompletePrerequisite(
                f"{len(pending)} question(s) still need grading; confirm to score them as 0",
                pending,
            )

        ledger = ManualGradeLedger(self.db)
        for question_id in pending:
            await ledger.upsert(
                attempt_id,
                UUID(question_id),
                0,
                FORCED_ZERO_FEEDBACK,
                actor_id,
            )
        if pending:
            logger.warning(
                f"Attempt {attempt_id} force-finalized by {actor_id}: "
                f"{len(pending)} ungraded question(s) scored 0"
            )

        return await self.refresh_grading(attempt_id, force=bool(pending), actor_id=actor_id)

    # ============================================================
    # PRIVATE HELPERS
    # ============================================================

    async def _load(self, attempt_id: UUID) -> QuizAttempt:
        attempt = await self.attempt_repo.get_by_id(attempt_id, fresh=True)
        if not attempt:
            raise AttemptNotFoundError("Attempt not found")
        return attempt

    async def _snapshot(
        self,
        attempt_id: UUID,
        policy: RetryPolicy,
    ) -> Tuple[QuizAttempt, List[QuizQuestion]]:
        """Attempt row plus its quiz's questions, read through the retry primitive."""
        async def _read():
            attempt = await self._load(attempt_id)
            questions = await self.question_repo.get_by_quiz(attempt.quiz_id)
            return attempt, questions

        return await run_with_retry(
            _read,
            policy=policy,
            label=f"Load of attempt {attempt_id}",
            db=self.db,
        )

    async def _current_state(
        self,
        attempt_id: UUID,
        questions: List[QuizQuestion],
        applied: bool,
    ) -> TransitionResult:
        async def _read():
            attempt = await self._load(attempt_id)
            grades = await self.grade_repo.get_by_attempt(attempt_id)
            return attempt, grades

        attempt, grades = await run_with_retry(
            _read,
            policy=RetryPolicy.critical(),
            label=f"Read-back of attempt {attempt_id}",
            db=self.db,
        )
        result = compute_score(questions, attempt.answers, grades, attempt.answer_key)
        return TransitionResult(
            attempt=attempt,
            score=result,
            applied=applied,
            questions=questions,
            grades=grades,
        )

    async def _after_submit(self, state: TransitionResult, trigger: SubmitTrigger, graded_now: bool):
        attempt = state.attempt
        try:
            quiz = await self.quiz_repo.get_by_id(attempt.quiz_id)
            await notification_service.notify_quiz_completed(
                self.db,
                instructor_id=quiz.instructor_id,
                quiz_title=quiz.title,
                attempt_id=attempt.id,
                student_id=attempt.student_id,
                needs_grading=not graded_now,
            )
            if graded_now:
                await notification_service.notify_quiz_graded(
                    self.db,
                    student_id=attempt.student_id,
                    quiz_title=quiz.title,
                    attempt_id=attempt.id,
                    score=attempt.score,
                    max_score=state.score.max_points,
                )
        except Exception as e:
            logger.warning(f"Submit notifications failed for attempt {attempt.id}: {e}")

        await record_activity(
            self.db,
            "attempt_submitted",
            attempt_id=attempt.id,
            actor_id=attempt.student_id if trigger == SubmitTrigger.MANUAL else None,
            details={"trigger": trigger.value, "score": attempt.score},
        )

    async def _after_graded(self, state: TransitionResult, actor_id: Optional[UUID], forced: bool):
        attempt = state.attempt
        try:
            quiz = await self.quiz_repo.get_by_id(attempt.quiz_id)
            await notification_service.notify_quiz_graded(
                self.db,
                student_id=attempt.student_id,
                quiz_title=quiz.title,
                attempt_id=attempt.id,
                score=attempt.score,
                max_score=state.score.max_points,
            )
        except Exception as e:
            logger.warning(f"Graded notification failed for attempt {attempt.id}: {e}")

        await record_activity(
            self.db,
            "attempt_force_finalized" if forced else "attempt_graded",
            attempt_id=attempt.id,
            actor_id=actor_id,
            details={"score": attempt.score},
        )
