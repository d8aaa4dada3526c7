"""
Attempt Schemas

Pydantic models for the attempt lifecycle: answer writes, submit,
timer, manual grading and score breakdowns.
"""

from datetime import datetime
from typing import Optional, List, Dict
from uuid import UUID

from pydantic import BaseModel, Field

from app.engine.states import AttemptStatus, SubmitTrigger


# ============================================================
# Request Schemas
# ============================================================

class AnswerWriteRequest(BaseModel):
    """Answers to merge into the attempt (blank values never erase)."""
    answers: Dict[str, Optional[str]] = Field(..., description="question_id -> answer")


class SubmitRequest(BaseModel):
    """
    Final submit. ``answers`` is the client's live state; ``captures``
    are any other sources not yet flushed (queued autosaves, last-chance
    capture). Later sources win per key, ``answers`` last.
    """
    answers: Dict[str, Optional[str]] = Field(default_factory=dict)
    captures: List[Dict[str, Optional[str]]] = Field(default_factory=list)
    trigger: SubmitTrigger = SubmitTrigger.MANUAL


class GradeRequest(BaseModel):
    """Manual grade for one free-response question."""
    question_id: UUID
    points: int = Field(..., description="0 <= points <= question points")
    feedback: Optional[str] = Field(None, max_length=5000)


class FinalizeRequest(BaseModel):
    confirm: bool = Field(
        default=False,
        description="Required when ungraded questions would be scored 0"
    )


# ============================================================
# Response Schemas
# ============================================================

class QuestionScoreResponse(BaseModel):
    question_id: str
    question_type: str
    max_points: int
    points_earned: int
    status: str
    answer: Optional[str] = None
    feedback: Optional[str] = None


class ScoreBreakdownResponse(BaseModel):
    auto_points: int
    manual_points: int
    total: int
    max_points: int
    is_complete: bool
    pending_question_ids: List[str]
    questions: List[QuestionScoreResponse]
    stored_score: Optional[int] = None
    scores_match: bool = True
    needs_update: bool = False


class AttemptStateResponse(BaseModel):
    """Current attempt state: status, score so far, breakdown."""
    id: UUID
    quiz_id: UUID
    student_id: UUID
    status: AttemptStatus
    score: Optional[int] = None
    max_score: int
    answers: Dict[str, str]
    started_at: datetime
    completed_at: Optional[datetime] = None
    graded_at: Optional[datetime] = None
    remaining_seconds: Optional[int] = None
    force_finalized: bool = False
    breakdown: Optional[ScoreBreakdownResponse] = None


class SubmitResponse(AttemptStateResponse):
    applied: bool = Field(
        ...,
        description="False when another submit already finalized the attempt"
    )


class AnswerWriteResponse(BaseModel):
    attempt_id: UUID
    status: AttemptStatus
    saved: bool
    answered_count: int
    answers: Dict[str, str]
    warning: Optional[str] = None
    remaining_seconds: Optional[int] = None


class TimerResponse(BaseModel):
    attempt_id: UUID
    status: AttemptStatus
    started_at: datetime
    deadline: Optional[datetime] = None
    remaining_seconds: Optional[int] = None
    untimed: bool
    expired: bool
    auto_submitted: bool = False
    autosave_interval_seconds: int
    poll_interval_seconds: int


class GradeResponse(BaseModel):
    id: UUID
    attempt_id: UUID
    question_id: UUID
    points_awarded: int
    feedback: Optional[str] = None
    graded_by: UUID
    graded_at: datetime

    class Config:
        from_attributes = True


class GradeRecordResponse(BaseModel):
    grade: GradeResponse
    attempt: AttemptStateResponse


class GradeListResponse(BaseModel):
    grades: List[GradeResponse]
    is_complete: bool


class GradingQueueItem(BaseModel):
    attempt_id: UUID
    student_id: UUID
    status: AttemptStatus
    score: Optional[int] = None
    completed_at: Optional[datetime] = None
    pending_question_count: int


class GradingQueueResponse(BaseModel):
    attempts: List[GradingQueueItem]
    total: int


class RescoreResponse(BaseModel):
    checked: int
    updated: int
    graded: int
    errors: List[str] = Field(default_factory=list)
