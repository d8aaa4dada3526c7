"""
Auto-grading for objective question types.

Works on anything shaped like a question (``question_type``,
``correct_answer``, ``points``), ORM rows included.
"""

from typing import Optional

from app.engine.answers import is_blank
from app.engine.states import as_question_type


def normalize(value) -> str:
    return str(value).strip().lower()


def answers_match(student_answer: str, correct_answer) -> bool:
    if correct_answer is None:
        return False
    return normalize(student_answer) == normalize(correct_answer)


def grade(question, student_answer: Optional[str], correct_answer=None) -> Optional[int]:
    """
    Points earned for an objective question, or None when the
    question type is graded manually.

    ``correct_answer`` overrides the question's own key (used when the
    attempt pinned its answer key at start).
    """
    if not as_question_type(question.question_type).is_auto_gradable:
        return None
    if is_blank(student_answer):
        return 0
    key = correct_answer if correct_answer is not None else question.correct_answer
    return question.points if answers_match(student_answer, key) else 0
