"""
Attempt State Machine (pure part)

    in_progress --submit--> completed --grade--> graded

Status only moves forward. Re-requesting a state the attempt has
already reached (or passed) is a successful no-op, which is what lets
a manual submit and a timer auto-submit race safely. Anything else
raises IllegalTransition and changes nothing.

The IO side (CAS writes, retries, notifications) lives in
app.services.attempt_state_machine.
"""

import enum
from dataclasses import dataclass
from typing import Optional

from app.core.exceptions import IllegalTransition
from app.engine.scoring import ScoreResult
from app.engine.states import AttemptStatus


class Outcome(enum.Enum):
    APPLY = "apply"
    NOOP = "noop"


_ORDER = {
    AttemptStatus.IN_PROGRESS: 0,
    AttemptStatus.COMPLETED: 1,
    AttemptStatus.GRADED: 2,
}

# (current, target) -> outcome; pairs not listed are illegal
TRANSITIONS = {
    (AttemptStatus.IN_PROGRESS, AttemptStatus.COMPLETED): Outcome.APPLY,
    (AttemptStatus.COMPLETED, AttemptStatus.COMPLETED): Outcome.NOOP,
    (AttemptStatus.GRADED, AttemptStatus.COMPLETED): Outcome.NOOP,
    (AttemptStatus.COMPLETED, AttemptStatus.GRADED): Outcome.APPLY,
    (AttemptStatus.GRADED, AttemptStatus.GRADED): Outcome.NOOP,
}


def resolve(current, target) -> Outcome:
    current = AttemptStatus(current)
    target = AttemptStatus(target)
    outcome = TRANSITIONS.get((current, target))
    if outcome is None:
        raise IllegalTransition(current, target)
    return outcome


def has_reached(current, target) -> bool:
    return _ORDER[AttemptStatus(current)] >= _ORDER[AttemptStatus(target)]


@dataclass(frozen=True)
class GradingDecision:
    """What a grading pass should persist for a submitted attempt."""
    target: AttemptStatus
    score: int
    forced: bool = False

    @property
    def finalizes(self) -> bool:
        return self.target == AttemptStatus.GRADED


def plan_grading(current, result: ScoreResult, force: bool = False) -> GradingDecision:
    """
    Decide the next state after the manual-grade ledger changed.

    - in_progress: illegal, the attempt has not been submitted
    - complete (or forced): graded with score = total
    - otherwise: stay completed with the partial running total
    """
    current = AttemptStatus(current)
    if current == AttemptStatus.IN_PROGRESS:
        raise IllegalTransition(current, AttemptStatus.GRADED)

    if force or result.is_complete:
        resolve(current, AttemptStatus.GRADED)
        return GradingDecision(AttemptStatus.GRADED, result.total, forced=force)

    if current == AttemptStatus.GRADED:
        # No regression; a question added after finalization counts as 0
        return GradingDecision(AttemptStatus.GRADED, result.total)
    return GradingDecision(AttemptStatus.COMPLETED, result.total)


def provisional_score(result: ScoreResult) -> int:
    """Score stored at submit time: the objective component only."""
    return result.auto_points


def submit_follow_up(result: ScoreResult) -> Optional[GradingDecision]:
    """Quizzes with no manual questions are graded immediately after submit."""
    if result.has_manual_questions:
        return None
    return GradingDecision(AttemptStatus.GRADED, result.total)
