from app.repositories.base import BaseRepository
from app.repositories.quiz_repo import (
    QuizRepository,
    QuizQuestionRepository,
    QuizAttemptRepository,
    QuizQuestionGradeRepository,
)

__all__ = [
    "BaseRepository",
    "QuizRepository",
    "QuizQuestionRepository",
    "QuizAttemptRepository",
    "QuizQuestionGradeRepository",
]
