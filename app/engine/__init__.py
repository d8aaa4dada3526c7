"""
Quiz attempt engine.

IO-free building blocks for the attempt lifecycle:

- timer: remaining time from a persisted start timestamp
- answers: merge reducer that never erases an answer
- auto_grader: objective question grading
- scoring: auto + manual score blending
- state_machine: transition legality and idempotency
"""

from app.engine.answers import merge_answers, merge_all, answered_count, is_blank
from app.engine.scoring import compute_score, ScoreResult, QuestionScore
from app.engine.states import AttemptStatus, QuestionType, QuizStatus, SubmitTrigger
from app.engine.timer import remaining_seconds, is_expired, TimerReading

__all__ = [
    "merge_answers",
    "merge_all",
    "answered_count",
    "is_blank",
    "compute_score",
    "ScoreResult",
    "QuestionScore",
    "AttemptStatus",
    "QuestionType",
    "QuizStatus",
    "SubmitTrigger",
    "remaining_seconds",
    "is_expired",
    "TimerReading",
]
