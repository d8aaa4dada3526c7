"""Question builders and small helpers shared by the tests."""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
import uuid

from app.engine.states import QuestionType


def mc(prompt="Pick one", points=2, options=("A", "B", "C"), correct="B"):
    return dict(
        question_type=QuestionType.MULTIPLE_CHOICE,
        prompt=prompt,
        options=list(options),
        correct_answer=correct,
        points=points,
    )


def tf(prompt="True or false?", points=1, correct="True"):
    return dict(
        question_type=QuestionType.TRUE_FALSE,
        prompt=prompt,
        correct_answer=correct,
        points=points,
    )


def essay(prompt="Explain.", points=5):
    return dict(question_type=QuestionType.ESSAY, prompt=prompt, points=points)


def short_answer(prompt="Name it.", points=3):
    return dict(question_type=QuestionType.SHORT_ANSWER, prompt=prompt, points=points)


def question(**overrides):
    """In-memory question for the pure engine tests."""
    fields = {"id": uuid.uuid4(), "correct_answer": None, "options": None}
    fields.update(overrides)
    return SimpleNamespace(**fields)


def grade_row(question_id, points, feedback=None, graded_at=None):
    return SimpleNamespace(
        question_id=question_id,
        points_awarded=points,
        feedback=feedback,
        graded_at=graded_at or datetime.now(timezone.utc),
    )


def minutes_ago(minutes):
    return datetime.now(timezone.utc) - timedelta(minutes=minutes)
