"""
Quiz Engine Exceptions

Error taxonomy shared by the engine, repositories, services and
endpoints.

- ValidationError: rejected locally, never partially applied
- TransientPersistenceError: retried by the calling layer
- PersistenceUnavailableError: retries exhausted
"""

from typing import Iterable, Optional


class QuizEngineError(Exception):
    pass


# ============================================================
# Validation
# ============================================================

class ValidationError(QuizEngineError):
    pass


class InvalidGrade(ValidationError):
    pass


class InvalidAnswer(ValidationError):
    pass


class QuizValidationError(ValidationError):
    pass


class IllegalTransition(ValidationError):
    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(
            f"Illegal attempt transition: {_label(current)} -> {_label(target)}"
        )


def _label(status) -> str:
    return getattr(status, "value", str(status))


# ============================================================
# Lookup / access
# ============================================================

class NotFoundError(QuizEngineError):
    pass


class QuizNotFoundError(NotFoundError):
    pass


class AttemptNotFoundError(NotFoundError):
    pass


class PermissionDeniedError(QuizEngineError):
    pass


class QuizUnavailableError(QuizEngineError):
    pass


class MaxAttemptsReachedError(QuizEngineError):
    pass


class AttemptClosedError(QuizEngineError):
    """An answer write arrived after the attempt left in_progress."""

    def __init__(self, attempt_id, status):
        self.attempt_id = attempt_id
        self.status = status
        super().__init__(
            f"Attempt {attempt_id} is {_label(status)}; answers are frozen"
        )


class IncompletePrerequisite(QuizEngineError):
    """Early finalize requested without confirming the zeroed questions."""

    def __init__(self, message: str, pending_question_ids: Iterable = ()):
        self.pending_question_ids = [str(q) for q in pending_question_ids]
        super().__init__(message)


# ============================================================
# Persistence
# ============================================================

class TransientPersistenceError(QuizEngineError):
    pass


class StaleAttemptError(TransientPersistenceError):
    """The CAS precondition no longer held when the update ran."""


class AnswerVerificationError(TransientPersistenceError):
    pass


class PersistenceUnavailableError(QuizEngineError):
    def __init__(self, label: str, last_error: Optional[BaseException] = None):
        self.label = label
        self.last_error = last_error
        detail = f": {last_error}" if last_error else ""
        super().__init__(f"{label} failed after retries{detail}")
