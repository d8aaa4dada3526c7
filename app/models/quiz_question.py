from sqlalchemy import Column, Integer, ForeignKey, Text, Uuid, Enum
from sqlalchemy.orm import relationship

from app.engine.states import QuestionType
from .base import BaseModel, JSONType


class QuizQuestion(BaseModel):
    __tablename__ = "quiz_questions"

    quiz_id = Column(Uuid(as_uuid=True), ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False, index=True)

    # Question content
    question_type = Column(
        Enum(
            QuestionType,
            name="question_type",
            values_callable=lambda x: [e.value for e in x]
        ),
        nullable=False
    )
    prompt = Column(Text, nullable=False)

    # Answer options and correct answer
    options = Column(JSONType, nullable=True)        # ["A", "B", ...] for multiple_choice
    correct_answer = Column(Text, nullable=True)     # advisory only for manual types

    # Metadata
    points = Column(Integer, default=1, nullable=False)
    order_index = Column(Integer, default=0, nullable=False)

    # Relationships
    quiz = relationship("Quiz", back_populates="questions")
