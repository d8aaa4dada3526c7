from sqlalchemy import Column, Integer, Boolean, ForeignKey, DateTime, Uuid, Enum
from sqlalchemy.orm import relationship

from app.engine.states import AttemptStatus
from .base import BaseModel, JSONType


class QuizAttempt(BaseModel):
    __tablename__ = "quiz_attempts"

    quiz_id = Column(Uuid(as_uuid=True), ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Uuid(as_uuid=True), nullable=False, index=True)

    # Lifecycle - only ever mutated through the attempt state machine
    status = Column(
        Enum(
            AttemptStatus,
            name="attempt_status",
            values_callable=lambda x: [e.value for e in x]
        ),
        default=AttemptStatus.IN_PROGRESS,
        nullable=False,
        index=True
    )
    # Bumped on every write; CAS precondition for answer merges
    version = Column(Integer, default=0, nullable=False)

    answers = Column(JSONType, nullable=False, default=dict)    # {question_id: answer}
    answer_key = Column(JSONType, nullable=True)                # pinned at start

    # Results (nullable because filled after completion)
    score = Column(Integer, nullable=True)
    force_finalized = Column(Boolean, default=False, nullable=False)
    finalized_by = Column(Uuid(as_uuid=True), nullable=True)

    # Timing - started_at is the single source of truth for the timer
    started_at = Column(DateTime(timezone=True), nullable=False, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    graded_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    quiz = relationship("Quiz", back_populates="attempts")
    grades = relationship("QuizQuestionGrade", back_populates="attempt", cascade="all, delete-orphan")
