from sqlalchemy import Column, Integer, ForeignKey, Text, DateTime, Uuid, UniqueConstraint, func
from sqlalchemy.orm import relationship

from .base import BaseModel


class QuizQuestionGrade(BaseModel):
    """Manual grade for one free-response question of one attempt."""
    __tablename__ = "quiz_question_grades"
    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_grade_attempt_question"),
    )

    attempt_id = Column(Uuid(as_uuid=True), ForeignKey("quiz_attempts.id", ondelete="CASCADE"), nullable=False, index=True)
    question_id = Column(Uuid(as_uuid=True), ForeignKey("quiz_questions.id", ondelete="CASCADE"), nullable=False, index=True)

    points_awarded = Column(Integer, nullable=False)
    feedback = Column(Text, nullable=True)
    graded_by = Column(Uuid(as_uuid=True), nullable=False)
    graded_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    attempt = relationship("QuizAttempt", back_populates="grades")
