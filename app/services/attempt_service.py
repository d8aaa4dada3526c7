"""
Attempt Service

Student-facing attempt operations and the read models shared with
grading:
- Start or resume an attempt
- Autosave answers, submit, read the timer
- Attempt state and score breakdown
- Instructor grading queue
- Expiry sweep for overdue attempts
"""

import logging
from datetime import datetime
from typing import Iterable, List, Mapping, Optional, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    AttemptNotFoundError,
    InvalidAnswer,
    MaxAttemptsReachedError,
    PermissionDeniedError,
    QuizEngineError,
    QuizNotFoundError,
    QuizUnavailableError,
)
from app.core.security import Actor, require_instructor, require_student
from app.engine.scoring import ScoreResult, compute_score
from app.engine.state_machine import plan_grading
from app.engine.states import AttemptStatus, QuizStatus, SubmitTrigger, as_question_type
from app.engine.timer import ensure_aware, is_expired, remaining_seconds, utcnow
from app.models.quiz import Quiz
from app.models.quiz_attempt import QuizAttempt
from app.models.quiz_question import QuizQuestion
from app.repositories.quiz_repo import (
    QuizRepository,
    QuizAttemptRepository,
    QuizQuestionRepository,
    QuizQuestionGradeRepository,
)
from app.schemas.attempt import (
    AnswerWriteResponse,
    AttemptStateResponse,
    GradingQueueItem,
    GradingQueueResponse,
    QuestionScoreResponse,
    ScoreBreakdownResponse,
    SubmitRequest,
    SubmitResponse,
    TimerResponse,
)
from app.services.activity_service import record_activity
from app.services.answer_store import AnswerStore
from app.services.attempt_state_machine import TransitionResult
from app.services.submission_coordinator import SubmissionCoordinator
from app.utils.retry import RetryPolicy, run_with_retry

logger = logging.getLogger(__name__)


# ============================================================
# SHARED HELPERS
# ============================================================

async def load_attempt_for(
    db: AsyncSession,
    attempt_id: UUID,
    actor: Actor,
) -> Tuple[QuizAttempt, Quiz]:
    """
    Load an attempt and its quiz, enforcing ownership.

    Students see only their own attempts; instructors see attempts on
    quizzes they own. Anything else looks like a missing attempt.
    """
    attempt = await QuizAttemptRepository(db).get_by_id(attempt_id, fresh=True)
    if not attempt:
        raise AttemptNotFoundError("Attempt not found")
    quiz = await QuizRepository(db).get_by_id(attempt.quiz_id)

    if actor.is_student and attempt.student_id != actor.id:
        raise AttemptNotFoundError("Attempt not found")
    if actor.is_instructor and quiz.instructor_id != actor.id:
        raise AttemptNotFoundError("Attempt not found")
    return attempt, quiz


def build_breakdown(attempt: QuizAttempt, result: ScoreResult) -> ScoreBreakdownResponse:
    """Per-question breakdown plus stored-vs-calculated comparison."""
    status = AttemptStatus(attempt.status)
    if status == AttemptStatus.IN_PROGRESS:
        expected = None
        finalizes = False
    else:
        decision = plan_grading(status, result)
        expected = decision.score
        finalizes = decision.finalizes and status == AttemptStatus.COMPLETED

    scores_match = attempt.score == expected
    return ScoreBreakdownResponse(
        auto_points=result.auto_points,
        manual_points=result.manual_points,
        total=result.total,
        max_points=result.max_points,
        is_complete=result.is_complete,
        pending_question_ids=result.pending_question_ids,
        questions=[QuestionScoreResponse(**q.to_dict()) for q in result.breakdown],
        stored_score=attempt.score,
        scores_match=scores_match,
        needs_update=(not scores_match) or finalizes,
    )


def build_attempt_state(
    attempt: QuizAttempt,
    quiz: Quiz,
    result: ScoreResult,
    now: Optional[datetime] = None,
) -> AttemptStateResponse:
    status = AttemptStatus(attempt.status)
    remaining = None
    if status == AttemptStatus.IN_PROGRESS:
        remaining = remaining_seconds(attempt.started_at, quiz.time_limit_minutes, now or utcnow())

    return AttemptStateResponse(
        id=attempt.id,
        quiz_id=attempt.quiz_id,
        student_id=attempt.student_id,
        status=status,
        score=attempt.score,
        max_score=result.max_points,
        answers=dict(attempt.answers or {}),
        started_at=attempt.started_at,
        completed_at=attempt.completed_at,
        graded_at=attempt.graded_at,
        remaining_seconds=remaining,
        force_finalized=bool(attempt.force_finalized),
        # Correctness stays hidden until the attempt is submitted
        breakdown=None if status == AttemptStatus.IN_PROGRESS else build_breakdown(attempt, result),
    )


def validate_answer_keys(
    questions: Iterable[QuizQuestion],
    answer_sets: Iterable[Optional[Mapping[str, Optional[str]]]],
) -> None:
    known = {str(q.id) for q in questions}
    for answers in answer_sets:
        if not answers:
            continue
        unknown = [k for k in answers if str(k) not in known]
        if unknown:
            raise InvalidAnswer(f"Unknown question id(s) for this quiz: {', '.join(map(str, unknown))}")
        for key, value in answers.items():
            if value is not None and not isinstance(value, str):
                raise InvalidAnswer(f"Answer for question {key} must be text")


class AttemptService:
    """Service for taking quizzes: start, autosave, submit, timer."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.quiz_repo = QuizRepository(db)
        self.question_repo = QuizQuestionRepository(db)
        self.attempt_repo = QuizAttemptRepository(db)
        self.grade_repo = QuizQuestionGradeRepository(db)
        self.answer_store = AnswerStore(db)
        self.coordinator = SubmissionCoordinator(db)

    # ============================================================
    # START / RESUME
    # ============================================================

    async def start_attempt(
        self,
        quiz_id: UUID,
        actor: Actor,
        now: Optional[datetime] = None,
    ) -> Tuple[AttemptStateResponse, bool]:
        """
        Start a new attempt, or resume the student's open one.

        Returns (state, created).
        """
        require_student(actor)
        now = now or utcnow()

        quiz = await self.quiz_repo.get_by_id(quiz_id)
        if not quiz or quiz.status == QuizStatus.DRAFT:
            raise QuizNotFoundError("Quiz not found")

        questions = await self.question_repo.get_by_quiz(quiz_id)

        existing = await self.attempt_repo.get_in_progress(actor.id, quiz_id)
        if existing:
            logger.info(f"Resuming attempt {existing.id} for student {actor.id}")
            # Time keeps running while away; an overdue resume submits now
            if is_expired(existing.started_at, quiz.time_limit_minutes, now):
                state = await self.coordinator.enforce_expiry(existing.id, now=now)
                if state is not None:
                    return self._state_from(state, quiz, now), False
            result = compute_score(questions, existing.answers, (), existing.answer_key)
            return build_attempt_state(existing, quiz, result, now), False

        if quiz.status != QuizStatus.PUBLISHED:
            raise QuizUnavailableError("Quiz is closed")
        if quiz.due_date is not None and ensure_aware(now) > ensure_aware(quiz.due_date):
            raise QuizUnavailableError("Quiz is past its due date")

        used = await self.attempt_repo.count_user_attempts(actor.id, quiz_id)
        if used >= quiz.max_attempts:
            raise MaxAttemptsReachedError(
                f"Maximum attempts ({quiz.max_attempts}) reached for this quiz"
            )

        answer_key = None
        if settings.PIN_ANSWER_KEY_AT_START:
            answer_key = {
                str(q.id): q.correct_answer
                for q in questions
                if as_question_type(q.question_type).is_auto_gradable
            }

        attempt = await self.attempt_repo.create(
            quiz_id=quiz_id,
            student_id=actor.id,
            status=AttemptStatus.IN_PROGRESS,
            version=0,
            answers={},
            answer_key=answer_key,
            started_at=now,
        )
        logger.info(
            f"Attempt {attempt.id} started by student {actor.id} on quiz {quiz_id} "
            f"(attempt {used + 1}/{quiz.max_attempts})"
        )
        await record_activity(
            self.db,
            "attempt_started",
            attempt_id=attempt.id,
            actor_id=actor.id,
            details={"quiz_id": str(quiz_id)},
        )

        result = compute_score(questions, attempt.answers, (), attempt.answer_key)
        return build_attempt_state(attempt, quiz, result, now), True

    # ============================================================
    # READ
    # ============================================================

    async def get_attempt_state(
        self,
        attempt_id: UUID,
        actor: Actor,
        now: Optional[datetime] = None,
    ) -> AttemptStateResponse:
        attempt, quiz = await load_attempt_for(self.db, attempt_id, actor)
        questions = await self.question_repo.get_by_quiz(quiz.id)
        grades = await self.grade_repo.get_by_attempt(attempt_id)
        result = compute_score(questions, attempt.answers, grades, attempt.answer_key)
        return build_attempt_state(attempt, quiz, result, now)

    async def get_score_breakdown(self, attempt_id: UUID, actor: Actor) -> ScoreBreakdownResponse:
        attempt, quiz = await load_attempt_for(self.db, attempt_id, actor)
        if actor.is_student and attempt.status == AttemptStatus.IN_PROGRESS:
            raise PermissionDeniedError("Score is available after submission")

        questions = await self.question_repo.get_by_quiz(quiz.id)
        grades = await self.grade_repo.get_by_attempt(attempt_id)
        result = compute_score(questions, attempt.answers, grades, attempt.answer_key)
        return build_breakdown(attempt, result)

    # ============================================================
    # AUTOSAVE
    # ============================================================

    async def save_answers(
        self,
        attempt_id: UUID,
        actor: Actor,
        answers: Mapping[str, Optional[str]],
        now: Optional[datetime] = None,
    ) -> AnswerWriteResponse:
        require_student(actor)
        attempt, quiz = await load_attempt_for(self.db, attempt_id, actor)
        if quiz.status == QuizStatus.CLOSED:
            raise QuizUnavailableError("Quiz is closed; answers can no longer be saved")

        questions = await self.question_repo.get_by_quiz(quiz.id)
        validate_answer_keys(questions, [answers])

        written = await self.answer_store.write(attempt_id, answers, critical=False)
        if written.saved:
            await record_activity(
                self.db,
                "answers_saved",
                attempt_id=attempt_id,
                actor_id=actor.id,
                details={"answered": written.answered_count},
            )

        return AnswerWriteResponse(
            attempt_id=attempt_id,
            status=AttemptStatus.IN_PROGRESS,
            saved=written.saved,
            answered_count=written.answered_count,
            answers=written.answers,
            warning=written.warning,
            remaining_seconds=remaining_seconds(
                attempt.started_at, quiz.time_limit_minutes, now or utcnow()
            ),
        )

    # ============================================================
    # SUBMIT
    # ============================================================

    async def submit(
        self,
        attempt_id: UUID,
        actor: Actor,
        request: SubmitRequest,
        now: Optional[datetime] = None,
    ) -> SubmitResponse:
        """
        Submit as the student, or as the quiz's instructor closing a
        stuck attempt. Instructors submit the saved answers only.
        """
        trigger = request.trigger
        captures = list(request.captures) + [request.answers]
        if actor.is_instructor:
            if any(captures):
                raise PermissionDeniedError("Instructors can only submit the answers already saved")
            trigger = SubmitTrigger.INSTRUCTOR
        elif trigger == SubmitTrigger.INSTRUCTOR:
            raise PermissionDeniedError("Only instructors can use the instructor trigger")

        async def _lookup():
            _, quiz = await load_attempt_for(self.db, attempt_id, actor)
            return quiz, await self.question_repo.get_by_quiz(quiz.id)

        quiz, questions = await run_with_retry(
            _lookup,
            policy=RetryPolicy.critical(),
            label=f"Submit lookup for attempt {attempt_id}",
            db=self.db,
        )
        validate_answer_keys(questions, captures)

        state = await self.coordinator.submit(
            attempt_id,
            captures,
            trigger=trigger,
            now=now,
        )
        if actor.is_instructor and state.applied:
            logger.info(f"Attempt {attempt_id} submitted by instructor {actor.id}")
        return SubmitResponse(
            **self._state_from(state, quiz, now).model_dump(),
            applied=state.applied,
        )

    # ============================================================
    # TIMER
    # ============================================================

    async def get_timer(
        self,
        attempt_id: UUID,
        actor: Actor,
        now: Optional[datetime] = None,
    ) -> TimerResponse:
        """
        Read the attempt clock. Observing expiry on an in-progress
        attempt submits it from the persisted answers.
        """
        now = now or utcnow()
        attempt, quiz = await load_attempt_for(self.db, attempt_id, actor)
        reading = await self.coordinator.read_timer(attempt_id, now)

        auto_submitted = False
        status = AttemptStatus(attempt.status)
        if reading.expired and status == AttemptStatus.IN_PROGRESS:
            state = await self.coordinator.enforce_expiry(attempt_id, SubmitTrigger.EXPIRY, now)
            if state is not None:
                auto_submitted = state.applied
                status = AttemptStatus(state.attempt.status)

        return TimerResponse(
            attempt_id=attempt_id,
            status=status,
            started_at=ensure_aware(attempt.started_at),
            deadline=reading.deadline,
            remaining_seconds=reading.remaining if status == AttemptStatus.IN_PROGRESS else None,
            untimed=reading.untimed,
            expired=reading.expired,
            auto_submitted=auto_submitted,
            autosave_interval_seconds=settings.AUTOSAVE_INTERVAL_SECONDS,
            poll_interval_seconds=settings.EXPIRY_POLL_SECONDS,
        )

    # ============================================================
    # GRADING QUEUE
    # ============================================================

    async def get_grading_queue(self, quiz_id: UUID, actor: Actor) -> GradingQueueResponse:
        """Submitted attempts still waiting on manual grades."""
        require_instructor(actor)
        quiz = await self.quiz_repo.get_by_id(quiz_id)
        if not quiz or quiz.instructor_id != actor.id:
            raise QuizNotFoundError("Quiz not found")

        questions = await self.question_repo.get_by_quiz(quiz_id)
        attempts = await self.attempt_repo.get_by_quiz_and_status(quiz_id, [AttemptStatus.COMPLETED])

        items: List[GradingQueueItem] = []
        for attempt in attempts:
            grades = await self.grade_repo.get_by_attempt(attempt.id)
            result = compute_score(questions, attempt.answers, grades, attempt.answer_key)
            items.append(GradingQueueItem(
                attempt_id=attempt.id,
                student_id=attempt.student_id,
                status=attempt.status,
                score=attempt.score,
                completed_at=attempt.completed_at,
                pending_question_count=len(result.pending_question_ids),
            ))
        return GradingQueueResponse(attempts=items, total=len(items))

    # ============================================================
    # EXPIRY SWEEP
    # ============================================================

    async def expire_overdue(self, now: Optional[datetime] = None) -> int:
        """Auto-submit every overdue in-progress attempt. Returns how many were submitted."""
        now = now or utcnow()
        submitted = 0
        for attempt_id, started_at, time_limit in await self.attempt_repo.get_timed_in_progress():
            if not is_expired(started_at, time_limit, now):
                continue
            try:
                state = await self.coordinator.enforce_expiry(attempt_id, SubmitTrigger.SWEEPER, now)
            except QuizEngineError as e:
                logger.error(f"Expiry sweep failed for attempt {attempt_id}: {e}")
                continue
            if state is not None and state.applied:
                submitted += 1
        if submitted:
            logger.info(f"Expiry sweep submitted {submitted} overdue attempt(s)")
        return submitted

    # ============================================================
    # PRIVATE HELPERS
    # ============================================================

    def _state_from(
        self,
        state: TransitionResult,
        quiz: Quiz,
        now: Optional[datetime] = None,
    ) -> AttemptStateResponse:
        return build_attempt_state(state.attempt, quiz, state.score, now)
