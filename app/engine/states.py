"""
Enumerations shared by the engine, ORM models and API schemas.
"""

import enum


class QuizStatus(str, enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    CLOSED = "closed"


class QuestionType(str, enum.Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    SHORT_ANSWER = "short_answer"
    ESSAY = "essay"

    @property
    def is_auto_gradable(self) -> bool:
        return self in AUTO_GRADED_TYPES

    @property
    def is_manual(self) -> bool:
        return self in MANUAL_GRADED_TYPES


AUTO_GRADED_TYPES = frozenset({QuestionType.MULTIPLE_CHOICE, QuestionType.TRUE_FALSE})
MANUAL_GRADED_TYPES = frozenset({QuestionType.SHORT_ANSWER, QuestionType.ESSAY})


class AttemptStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    GRADED = "graded"


class SubmitTrigger(str, enum.Enum):
    MANUAL = "manual"
    EXPIRY = "expiry"
    SWEEPER = "sweeper"
    INSTRUCTOR = "instructor"


def as_question_type(value) -> QuestionType:
    """Accept either the enum or its stored string value."""
    if isinstance(value, QuestionType):
        return value
    return QuestionType(value)
