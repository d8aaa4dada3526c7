from app.models.base import Base
from app.models.quiz import Quiz
from app.models.quiz_question import QuizQuestion
from app.models.quiz_attempt import QuizAttempt
from app.models.quiz_question_grade import QuizQuestionGrade
from app.models.notification import Notification
from app.models.activity_log import ActivityLog

__all__ = [
    "Base",
    "Quiz",
    "QuizQuestion",
    "QuizAttempt",
    "QuizQuestionGrade",
    "Notification",
    "ActivityLog",
]
