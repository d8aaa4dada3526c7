"""
Quiz Service

Business logic for quiz authoring:
- Create a quiz together with its questions
- Read a quiz (answer key only for the owning instructor)
- Move a quiz through draft -> published -> closed
"""

import logging
from typing import List
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import QuizNotFoundError, QuizValidationError
from app.core.security import Actor, require_instructor
from app.engine.states import QuizStatus
from app.models.quiz import Quiz
from app.models.quiz_question import QuizQuestion
from app.repositories.quiz_repo import QuizRepository, QuizQuestionRepository
from app.schemas.quiz import (
    QuizCreateRequest,
    QuizDetailResponse,
    QuizResponse,
    QuestionWithAnswerResponse,
)

logger = logging.getLogger(__name__)

# Forward-only; a closed quiz stays closed
STATUS_ORDER = [QuizStatus.DRAFT, QuizStatus.PUBLISHED, QuizStatus.CLOSED]


class QuizService:
    """Service for quiz authoring and retrieval."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.quiz_repo = QuizRepository(db)
        self.question_repo = QuizQuestionRepository(db)

    # ============================================================
    # CREATE QUIZ
    # ============================================================

    async def create_quiz(
        self,
        actor: Actor,
        request: QuizCreateRequest,
    ) -> QuizDetailResponse:
        require_instructor(actor)
        if request.status == QuizStatus.CLOSED:
            raise QuizValidationError("A new quiz cannot start out closed")

        quiz = Quiz(
            course_id=request.course_id,
            instructor_id=actor.id,
            title=request.title,
            description=request.description,
            status=request.status,
            time_limit_minutes=request.time_limit_minutes,
            max_attempts=request.max_attempts,
            due_date=request.due_date,
        )
        self.db.add(quiz)
        await self.db.flush()

        questions = []
        for i, q in enumerate(request.questions):
            question = QuizQuestion(
                quiz_id=quiz.id,
                question_type=q.question_type,
                prompt=q.prompt,
                options=q.options,
                correct_answer=q.correct_answer,
                points=q.points,
                order_index=q.order_index if q.order_index is not None else i,
            )
            self.db.add(question)
            questions.append(question)

        await self.db.commit()
        await self.db.refresh(quiz)

        logger.info(
            f"Quiz {quiz.id} created by {actor.id}: "
            f"{len(questions)} questions, {sum(q.points for q in questions)} points"
        )
        questions.sort(key=lambda q: q.order_index)
        return self._build_quiz_detail_response(quiz, questions, include_answers=True)

    # ============================================================
    # GET QUIZ
    # ============================================================

    async def get_quiz(self, quiz_id: UUID, actor: Actor) -> QuizDetailResponse:
        quiz = await self.quiz_repo.get_with_questions(quiz_id)
        if not quiz:
            raise QuizNotFoundError("Quiz not found")

        is_owner = actor.is_instructor and quiz.instructor_id == actor.id
        # Drafts are invisible to everyone but their author
        if quiz.status == QuizStatus.DRAFT and not is_owner:
            raise QuizNotFoundError("Quiz not found")

        return self._build_quiz_detail_response(quiz, quiz.questions, include_answers=is_owner)

    # ============================================================
    # STATUS
    # ============================================================

    async def set_status(
        self,
        quiz_id: UUID,
        actor: Actor,
        new_status: QuizStatus,
    ) -> QuizResponse:
        require_instructor(actor)
        quiz = await self.quiz_repo.get_with_questions(quiz_id)
        if not quiz or quiz.instructor_id != actor.id:
            raise QuizNotFoundError("Quiz not found")

        current = QuizStatus(quiz.status)
        new_status = QuizStatus(new_status)
        if STATUS_ORDER.index(new_status) < STATUS_ORDER.index(current):
            raise QuizValidationError(
                f"Quiz status cannot move from {current.value} back to {new_status.value}"
            )

        if new_status != current:
            quiz = await self.quiz_repo.update(quiz_id, status=new_status)
            logger.info(f"Quiz {quiz_id} status {current.value} -> {new_status.value}")

        questions = await self.question_repo.get_by_quiz(quiz_id)
        return self._build_quiz_response(quiz, questions)

    # ============================================================
    # PRIVATE HELPERS
    # ============================================================

    def _build_quiz_response(self, quiz: Quiz, questions: List[QuizQuestion]) -> QuizResponse:
        return QuizResponse(
            id=quiz.id,
            course_id=quiz.course_id,
            instructor_id=quiz.instructor_id,
            title=quiz.title,
            description=quiz.description,
            status=quiz.status,
            time_limit_minutes=quiz.time_limit_minutes,
            max_attempts=quiz.max_attempts,
            due_date=quiz.due_date,
            question_count=len(questions),
            total_points=sum(q.points for q in questions),
            created_at=quiz.created_at,
        )

    def _build_quiz_detail_response(
        self,
        quiz: Quiz,
        questions: List[QuizQuestion],
        include_answers: bool,
    ) -> QuizDetailResponse:
        q_responses = [
            QuestionWithAnswerResponse(
                id=q.id,
                question_type=q.question_type,
                prompt=q.prompt,
                options=q.options,
                points=q.points,
                order_index=q.order_index,
                correct_answer=q.correct_answer if include_answers else None,
            )
            for q in questions
        ]
        base = self._build_quiz_response(quiz, questions)
        return QuizDetailResponse(**base.model_dump(), questions=q_responses)
