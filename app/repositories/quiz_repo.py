"""
Quiz Repository

Data access layer for Quiz, QuizQuestion, QuizAttempt and
QuizQuestionGrade models.

QuizAttemptRepository.compare_and_set is the only way attempt status,
score and answers change after creation: one UPDATE guarded by the
expected status (and optionally version), so concurrent submitters
resolve to exactly one winner.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from app.engine.states import AttemptStatus
from app.repositories.base import BaseRepository, translate_db_errors
from app.models.quiz import Quiz
from app.models.quiz_question import QuizQuestion
from app.models.quiz_attempt import QuizAttempt
from app.models.quiz_question_grade import QuizQuestionGrade


class QuizRepository(BaseRepository[Quiz]):
    """Repository for Quiz model."""

    def __init__(self, db: AsyncSession):
        super().__init__(Quiz, db)

    @translate_db_errors
    async def get_with_questions(self, quiz_id: UUID) -> Optional[Quiz]:
        stmt = (
            select(self.model)
            .options(selectinload(self.model.questions))
            .where(self.model.id == quiz_id)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()


class QuizQuestionRepository(BaseRepository[QuizQuestion]):
    """Repository for QuizQuestion model."""

    def __init__(self, db: AsyncSession):
        super().__init__(QuizQuestion, db)

    @translate_db_errors
    async def get_by_quiz(self, quiz_id: UUID) -> List[QuizQuestion]:
        stmt = (
            select(self.model)
            .where(self.model.quiz_id == quiz_id)
            .order_by(self.model.order_index)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())


class QuizAttemptRepository(BaseRepository[QuizAttempt]):
    """Repository for QuizAttempt model."""

    def __init__(self, db: AsyncSession):
        super().__init__(QuizAttempt, db)

    @translate_db_errors
    async def get_in_progress(self, student_id: UUID, quiz_id: UUID) -> Optional[QuizAttempt]:
        stmt = (
            select(self.model)
            .where(
                self.model.student_id == student_id,
                self.model.quiz_id == quiz_id,
                self.model.status == AttemptStatus.IN_PROGRESS,
            )
            .order_by(self.model.started_at.desc())
            .limit(1)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    @translate_db_errors
    async def count_user_attempts(self, student_id: UUID, quiz_id: UUID) -> int:
        stmt = (
            select(func.count(self.model.id))
            .where(
                self.model.student_id == student_id,
                self.model.quiz_id == quiz_id
            )
        )
        result = await self.db.execute(stmt)
        return result.scalar() or 0

    @translate_db_errors
    async def get_by_quiz_and_status(
        self,
        quiz_id: UUID,
        statuses: List[AttemptStatus],
    ) -> List[QuizAttempt]:
        stmt = (
            select(self.model)
            .where(
                self.model.quiz_id == quiz_id,
                self.model.status.in_(statuses),
            )
            .order_by(self.model.completed_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    @translate_db_errors
    async def get_timed_in_progress(self) -> List[tuple]:
        """(attempt_id, started_at, time_limit_minutes) for timed in-progress attempts."""
        stmt = (
            select(self.model.id, self.model.started_at, Quiz.time_limit_minutes)
            .join(Quiz, Quiz.id == self.model.quiz_id)
            .where(
                self.model.status == AttemptStatus.IN_PROGRESS,
                Quiz.time_limit_minutes.isnot(None),
            )
        )
        result = await self.db.execute(stmt)
        return [tuple(row) for row in result.all()]

    @translate_db_errors
    async def compare_and_set(
        self,
        attempt_id: UUID,
        expected_status: AttemptStatus,
        expected_version: Optional[int] = None,
        **values,
    ) -> bool:
        """
        Apply ``values`` in one UPDATE only if the attempt is still in
        ``expected_status`` (and at ``expected_version`` when given).

        Returns False when the precondition no longer held.
        """
        stmt = update(self.model).where(
            self.model.id == attempt_id,
            self.model.status == expected_status,
        )
        if expected_version is not None:
            stmt = stmt.where(self.model.version == expected_version)
        stmt = (
            stmt.values(version=self.model.version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        applied = result.rowcount == 1
        await self.db.commit()
        return applied


class QuizQuestionGradeRepository(BaseRepository[QuizQuestionGrade]):
    """Repository for QuizQuestionGrade model."""

    def __init__(self, db: AsyncSession):
        super().__init__(QuizQuestionGrade, db)

    @translate_db_errors
    async def get_by_attempt(self, attempt_id: UUID) -> List[QuizQuestionGrade]:
        stmt = (
            select(self.model)
            .where(self.model.attempt_id == attempt_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    @translate_db_errors
    async def get_one(self, attempt_id: UUID, question_id: UUID) -> Optional[QuizQuestionGrade]:
        stmt = (
            select(self.model)
            .where(
                self.model.attempt_id == attempt_id,
                self.model.question_id == question_id,
            )
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    @translate_db_errors
    async def upsert(
        self,
        attempt_id: UUID,
        question_id: UUID,
        points_awarded: int,
        feedback: Optional[str],
        graded_by: UUID,
        graded_at: datetime,
    ) -> QuizQuestionGrade:
        """Insert or overwrite the grade for (attempt, question)."""
        values = dict(
            points_awarded=points_awarded,
            feedback=feedback,
            graded_by=graded_by,
            graded_at=graded_at,
        )
        grade = await self.get_one(attempt_id, question_id)
        if grade is None:
            grade = QuizQuestionGrade(attempt_id=attempt_id, question_id=question_id, **values)
            self.db.add(grade)
            try:
                await self.db.commit()
            except IntegrityError:
                # Another grader inserted first; overwrite theirs
                await self.db.rollback()
                grade = await self.get_one(attempt_id, question_id)
                for key, value in values.items():
                    setattr(grade, key, value)
                await self.db.commit()
        else:
            for key, value in values.items():
                setattr(grade, key, value)
            await self.db.commit()
        await self.db.refresh(grade)
        return grade
