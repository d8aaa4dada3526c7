"""
Quiz Schemas

Pydantic models for quiz authoring requests and responses.
"""

from datetime import datetime
from typing import Optional, List
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from app.engine.states import QuestionType, QuizStatus


# ============================================================
# Request Schemas
# ============================================================

class QuestionCreate(BaseModel):
    """A question to add to a new quiz."""
    question_type: QuestionType
    prompt: str = Field(..., min_length=1)
    options: Optional[List[str]] = Field(
        None,
        description="Ordered options (multiple choice only)"
    )
    correct_answer: Optional[str] = Field(
        None,
        description="Required for multiple choice and true/false; advisory otherwise"
    )
    points: int = Field(..., ge=1, description="Point value (positive integer)")
    order_index: Optional[int] = Field(None, ge=0)

    @model_validator(mode="after")
    def check_answer_key(self):
        if self.question_type == QuestionType.MULTIPLE_CHOICE:
            if not self.options or len(self.options) < 2:
                raise ValueError("Multiple choice questions need at least two options")
            if self.correct_answer is None:
                raise ValueError("Multiple choice questions need a correct answer")
            if self.correct_answer not in self.options:
                raise ValueError("Correct answer must be one of the options")
        elif self.question_type == QuestionType.TRUE_FALSE:
            if self.correct_answer is None or self.correct_answer.strip().lower() not in ("true", "false"):
                raise ValueError("True/false questions need a correct answer of 'True' or 'False'")
            if self.options:
                raise ValueError("Only multiple choice questions have options")
        elif self.options:
            raise ValueError("Only multiple choice questions have options")
        return self


class QuizCreateRequest(BaseModel):
    """Request to create a quiz with its questions."""
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    course_id: Optional[UUID] = None
    time_limit_minutes: Optional[int] = Field(
        None,
        ge=1,
        description="Time limit in minutes (omit for an untimed quiz)"
    )
    max_attempts: int = Field(default=1, ge=1)
    due_date: Optional[datetime] = None
    status: QuizStatus = QuizStatus.DRAFT
    questions: List[QuestionCreate] = Field(..., min_length=1)


class QuizStatusUpdate(BaseModel):
    status: QuizStatus


# ============================================================
# Response Schemas
# ============================================================

class QuestionResponse(BaseModel):
    """A quiz question returned to a student (no correct answer)."""
    id: UUID
    question_type: QuestionType
    prompt: str
    options: Optional[List[str]] = None
    points: int
    order_index: int

    class Config:
        from_attributes = True


class QuestionWithAnswerResponse(QuestionResponse):
    """A quiz question with its answer key (instructor view)."""
    correct_answer: Optional[str] = None


class QuizResponse(BaseModel):
    """Quiz metadata response."""
    id: UUID
    course_id: Optional[UUID] = None
    instructor_id: UUID
    title: str
    description: Optional[str] = None
    status: QuizStatus
    time_limit_minutes: Optional[int] = None
    max_attempts: int
    due_date: Optional[datetime] = None
    question_count: int
    total_points: int
    created_at: datetime

    class Config:
        from_attributes = True


class QuizDetailResponse(QuizResponse):
    """Quiz with questions."""
    questions: List[QuestionWithAnswerResponse]
