"""
Score Calculator

Blends auto-graded objective questions with manually graded
free-response questions into one score.

``compute_score`` is pure: the same questions, answers and grades
always produce the same ScoreResult. It runs after every manual grade
(for the live running total) and once more at finalization.

Breakdown statuses:
-------------------
- correct / incorrect / unanswered: objective questions
- graded / pending: manual questions
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from app.engine import auto_grader
from app.engine.answers import is_blank
from app.engine.states import as_question_type


# ============================================================
# RESULT DATACLASSES
# ============================================================

@dataclass(frozen=True)
class QuestionScore:
    question_id: str
    question_type: str
    max_points: int
    points_earned: int
    status: str
    answer: Optional[str] = None
    feedback: Optional[str] = None

    @property
    def is_manual(self) -> bool:
        return self.status in ("graded", "pending")

    def to_dict(self) -> dict:
        return {
            "question_id": self.question_id,
            "question_type": self.question_type,
            "max_points": self.max_points,
            "points_earned": self.points_earned,
            "status": self.status,
            "answer": self.answer,
            "feedback": self.feedback,
        }


@dataclass(frozen=True)
class ScoreResult:
    auto_points: int
    manual_points: int
    max_points: int
    breakdown: List[QuestionScore] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.auto_points + self.manual_points

    @property
    def manual_question_ids(self) -> List[str]:
        return [q.question_id for q in self.breakdown if q.is_manual]

    @property
    def pending_question_ids(self) -> List[str]:
        return [q.question_id for q in self.breakdown if q.status == "pending"]

    @property
    def is_complete(self) -> bool:
        """Every manual question has a grade."""
        return not self.pending_question_ids

    @property
    def has_manual_questions(self) -> bool:
        return bool(self.manual_question_ids)


# ============================================================
# CALCULATION
# ============================================================

def index_grades(grades: Iterable[Any]) -> Dict[str, Any]:
    """Key grades by question id; the most recent grade wins."""
    indexed: Dict[str, Any] = {}
    for g in grades:
        key = str(g.question_id)
        current = indexed.get(key)
        if current is None or _graded_at(g) >= _graded_at(current):
            indexed[key] = g
    return indexed


def _graded_at(grade):
    value = getattr(grade, "graded_at", None)
    return value.timestamp() if value is not None else 0.0


def compute_score(
    questions: Iterable[Any],
    answers: Optional[Mapping[str, Optional[str]]],
    grades: Iterable[Any] = (),
    answer_key: Optional[Mapping[str, Any]] = None,
) -> ScoreResult:
    answers = answers or {}
    answer_key = answer_key or {}
    grades_by_question = index_grades(grades)

    auto_points = 0
    manual_points = 0
    max_points = 0
    breakdown: List[QuestionScore] = []

    for question in questions:
        qid = str(question.id)
        qtype = as_question_type(question.question_type)
        answer = answers.get(qid)
        max_points += question.points

        if qtype.is_auto_gradable:
            earned = auto_grader.grade(question, answer, answer_key.get(qid))
            auto_points += earned
            if is_blank(answer):
                status = "unanswered"
            else:
                status = "correct" if earned > 0 else "incorrect"
            breakdown.append(QuestionScore(
                question_id=qid,
                question_type=qtype.value,
                max_points=question.points,
                points_earned=earned,
                status=status,
                answer=answer,
            ))
            continue

        grade = grades_by_question.get(qid)
        if grade is None:
            breakdown.append(QuestionScore(
                question_id=qid,
                question_type=qtype.value,
                max_points=question.points,
                points_earned=0,
                status="pending",
                answer=answer,
            ))
            continue

        # Clamp in case the question's points were lowered after grading
        earned = max(0, min(grade.points_awarded, question.points))
        manual_points += earned
        breakdown.append(QuestionScore(
            question_id=qid,
            question_type=qtype.value,
            max_points=question.points,
            points_earned=earned,
            status="graded",
            answer=answer,
            feedback=grade.feedback,
        ))

    return ScoreResult(
        auto_points=auto_points,
        manual_points=manual_points,
        max_points=max_points,
        breakdown=breakdown,
    )


def manual_question_ids(questions: Iterable[Any]) -> List[str]:
    return [
        str(q.id) for q in questions
        if as_question_type(q.question_type).is_manual
    ]
