"""
Manual Grade Ledger

One grade per (attempt, free-response question); upserts overwrite.
Points are re-validated against the question's max on every write.
"""

import logging
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import AttemptNotFoundError, InvalidGrade
from app.engine.scoring import index_grades
from app.engine.states import AttemptStatus, as_question_type
from app.engine.timer import utcnow
from app.models.quiz_question_grade import QuizQuestionGrade
from app.repositories.quiz_repo import (
    QuizAttemptRepository,
    QuizQuestionRepository,
    QuizQuestionGradeRepository,
)
from app.utils.retry import RetryPolicy, run_with_retry

logger = logging.getLogger(__name__)


class ManualGradeLedger:

    def __init__(self, db: AsyncSession):
        self.db = db
        self.attempt_repo = QuizAttemptRepository(db)
        self.question_repo = QuizQuestionRepository(db)
        self.grade_repo = QuizQuestionGradeRepository(db)

    async def upsert(
        self,
        attempt_id: UUID,
        question_id: UUID,
        points: int,
        feedback: Optional[str],
        grader_id: UUID,
    ) -> QuizQuestionGrade:
        attempt = await self.attempt_repo.get_by_id(attempt_id, fresh=True)
        if not attempt:
            raise AttemptNotFoundError("Attempt not found")
        if attempt.status == AttemptStatus.IN_PROGRESS:
            raise InvalidGrade("Attempt has not been submitted yet")

        questions = {str(q.id): q for q in await self.question_repo.get_by_quiz(attempt.quiz_id)}
        question = questions.get(str(question_id))
        if question is None:
            raise InvalidGrade("Question does not belong to this attempt's quiz")
        if not as_question_type(question.question_type).is_manual:
            raise InvalidGrade("Only short answer and essay questions are graded manually")
        validate_points(points, question.points)

        async def _upsert():
            return await self.grade_repo.upsert(
                attempt_id=attempt_id,
                question_id=question.id,
                points_awarded=points,
                feedback=feedback,
                graded_by=grader_id,
                graded_at=utcnow(),
            )

        grade = await run_with_retry(
            _upsert,
            policy=RetryPolicy.standard(),
            label=f"Grade upsert for attempt {attempt_id}",
            db=self.db,
        )
        logger.info(
            f"Grade recorded: attempt={attempt_id} question={question_id} "
            f"points={points}/{question.points} grader={grader_id}"
        )
        return grade

    async def list_by_attempt(self, attempt_id: UUID) -> List[QuizQuestionGrade]:
        grades = await self.grade_repo.get_by_attempt(attempt_id)
        return list(index_grades(grades).values())

    async def grades_by_question(self, attempt_id: UUID) -> Dict[str, QuizQuestionGrade]:
        return index_grades(await self.grade_repo.get_by_attempt(attempt_id))

    async def is_complete(self, attempt_id: UUID, manual_question_ids: Iterable) -> bool:
        graded = await self.grades_by_question(attempt_id)
        return all(str(qid) in graded for qid in manual_question_ids)


def validate_points(points: int, max_points: int) -> None:
    if isinstance(points, bool) or not isinstance(points, int):
        raise InvalidGrade("Points must be a whole number")
    if points < 0:
        raise InvalidGrade("Points awarded cannot be negative")
    if points > max_points:
        raise InvalidGrade(
            f"Points awarded ({points}) cannot exceed the question's maximum points ({max_points})"
        )
