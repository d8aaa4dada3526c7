"""
Grading Service

Instructor-facing grading operations:
- Record a manual grade and refresh the attempt's running score
- List an attempt's grades
- Early finalize (zeroing ungraded questions, with confirmation)
- Rescore every submitted attempt of a quiz
"""

import logging
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import QuizEngineError, QuizNotFoundError
from app.core.security import Actor, require_instructor
from app.engine.scoring import manual_question_ids
from app.engine.states import AttemptStatus
from app.repositories.quiz_repo import (
    QuizRepository,
    QuizAttemptRepository,
    QuizQuestionRepository,
)
from app.schemas.attempt import (
    AttemptStateResponse,
    GradeListResponse,
    GradeRecordResponse,
    GradeRequest,
    GradeResponse,
    RescoreResponse,
)
from app.services.activity_service import record_activity
from app.services.attempt_service import build_attempt_state, load_attempt_for
from app.services.attempt_state_machine import AttemptStateMachine
from app.services.grade_ledger import ManualGradeLedger

logger = logging.getLogger(__name__)


class GradingService:
    """Service for manual grading and finalization."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.quiz_repo = QuizRepository(db)
        self.question_repo = QuizQuestionRepository(db)
        self.attempt_repo = QuizAttemptRepository(db)
        self.ledger = ManualGradeLedger(db)
        self.state_machine = AttemptStateMachine(db)

    # ============================================================
    # RECORD GRADE
    # ============================================================

    async def record_grade(
        self,
        attempt_id: UUID,
        actor: Actor,
        request: GradeRequest,
    ) -> GradeRecordResponse:
        require_instructor(actor)
        _, quiz = await load_attempt_for(self.db, attempt_id, actor)

        grade = await self.ledger.upsert(
            attempt_id,
            request.question_id,
            request.points,
            request.feedback,
            actor.id,
        )
        await record_activity(
            self.db,
            "grade_recorded",
            attempt_id=attempt_id,
            actor_id=actor.id,
            details={"question_id": str(request.question_id), "points": request.points},
        )

        state = await self.state_machine.refresh_grading(attempt_id, actor_id=actor.id)
        return GradeRecordResponse(
            grade=GradeResponse.model_validate(grade),
            attempt=build_attempt_state(state.attempt, quiz, state.score),
        )

    # ============================================================
    # LIST GRADES
    # ============================================================

    async def list_grades(self, attempt_id: UUID, actor: Actor) -> GradeListResponse:
        attempt, quiz = await load_attempt_for(self.db, attempt_id, actor)
        questions = await self.question_repo.get_by_quiz(quiz.id)
        grades = await self.ledger.list_by_attempt(attempt_id)
        complete = await self.ledger.is_complete(attempt_id, manual_question_ids(questions))
        return GradeListResponse(
            grades=[GradeResponse.model_validate(g) for g in grades],
            is_complete=complete,
        )

    # ============================================================
    # EARLY FINALIZE
    # ============================================================

    async def finalize(
        self,
        attempt_id: UUID,
        actor: Actor,
        confirm: bool = False,
    ) -> AttemptStateResponse:
        require_instructor(actor)
        _, quiz = await load_attempt_for(self.db, attempt_id, actor)
        state = await self.state_machine.force_finalize(attempt_id, actor.id, confirm=confirm)
        return build_attempt_state(state.attempt, quiz, state.score)

    # ============================================================
    # RESCORE
    # ============================================================

    async def rescore_quiz(self, quiz_id: UUID, actor: Actor) -> RescoreResponse:
        """
        Recompute every submitted attempt of a quiz from its answers and
        grades, repairing stored scores and promoting attempts whose
        manual grading is already complete.
        """
        require_instructor(actor)
        quiz = await self.quiz_repo.get_by_id(quiz_id)
        if not quiz or quiz.instructor_id != actor.id:
            raise QuizNotFoundError("Quiz not found")

        attempts = await self.attempt_repo.get_by_quiz_and_status(
            quiz_id, [AttemptStatus.COMPLETED, AttemptStatus.GRADED]
        )
        # Snapshot before refresh_grading reloads the same identities
        before = [(a.id, a.score) for a in attempts]

        updated = 0
        graded = 0
        errors = []
        for attempt_id, previous_score in before:
            try:
                state = await self.state_machine.refresh_grading(attempt_id, actor_id=actor.id)
            except QuizEngineError as e:
                logger.error(f"Rescore failed for attempt {attempt_id}: {e}")
                errors.append(f"{attempt_id}: {e}")
                continue
            if state.applied:
                graded += 1
            if state.applied or state.attempt.score != previous_score:
                updated += 1

        logger.info(
            f"Rescored quiz {quiz_id}: checked={len(before)} updated={updated} "
            f"graded={graded} errors={len(errors)}"
        )
        return RescoreResponse(
            checked=len(before),
            updated=updated,
            graded=graded,
            errors=errors,
        )
