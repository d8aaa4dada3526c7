from sqlalchemy import Column, String, Integer, Text, DateTime, Uuid, Enum
from sqlalchemy.orm import relationship

from app.engine.states import QuizStatus
from .base import BaseModel


class Quiz(BaseModel):
    __tablename__ = "quizzes"

    course_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    instructor_id = Column(Uuid(as_uuid=True), nullable=False, index=True)

    # Quiz info
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(
        Enum(
            QuizStatus,
            name="quiz_status",
            values_callable=lambda x: [e.value for e in x]
        ),
        default=QuizStatus.DRAFT,
        nullable=False,
        index=True
    )

    # Settings
    time_limit_minutes = Column(Integer, nullable=True)  # NULL = untimed
    max_attempts = Column(Integer, default=1, nullable=False)
    due_date = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    questions = relationship("QuizQuestion", back_populates="quiz", cascade="all, delete-orphan", order_by="QuizQuestion.order_index")
    attempts = relationship("QuizAttempt", back_populates="quiz", cascade="all, delete-orphan")
