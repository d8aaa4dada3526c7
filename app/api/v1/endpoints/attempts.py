"""
Attempt Endpoints

HTTP API for taking, submitting and grading an attempt.

Endpoints:
----------
- GET    /attempts/{attempt_id}           - Current status, score and breakdown
- POST   /attempts/{attempt_id}/answers   - Autosave (merge) answers
- POST   /attempts/{attempt_id}/submit    - Submit (idempotent)
- GET    /attempts/{attempt_id}/timer     - Remaining time; auto-submits on expiry
- POST   /attempts/{attempt_id}/grades    - Record a manual grade
- GET    /attempts/{attempt_id}/grades    - List manual grades
- POST   /attempts/{attempt_id}/finalize  - Early finalize
- GET    /attempts/{attempt_id}/score     - Score breakdown
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.database import get_db
from app.api.deps import get_current_actor
from app.core.exceptions import (
    AttemptClosedError,
    AttemptNotFoundError,
    IllegalTransition,
    IncompletePrerequisite,
    InvalidAnswer,
    InvalidGrade,
    PermissionDeniedError,
    PersistenceUnavailableError,
    QuizUnavailableError,
    TransientPersistenceError,
)
from app.core.security import Actor
from app.schemas.attempt import (
    AnswerWriteRequest,
    AnswerWriteResponse,
    AttemptStateResponse,
    FinalizeRequest,
    GradeListResponse,
    GradeRecordResponse,
    GradeRequest,
    ScoreBreakdownResponse,
    SubmitRequest,
    SubmitResponse,
    TimerResponse,
)
from app.services.attempt_service import AttemptService
from app.services.grading_service import GradingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/attempts", tags=["Attempts"])


def get_attempt_service(db: AsyncSession = Depends(get_db)) -> AttemptService:
    return AttemptService(db)


def get_grading_service(db: AsyncSession = Depends(get_db)) -> GradingService:
    return GradingService(db)


def _not_found() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail="Attempt not found",
    )


def _unavailable(e: Exception) -> HTTPException:
    logger.error(f"Persistence unavailable: {e}")
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Storage is temporarily unavailable; please retry",
    )


# ============================================================
# ATTEMPT STATE
# ============================================================

@router.get(
    "/{attempt_id}",
    response_model=AttemptStateResponse,
    summary="Get attempt state",
)
async def get_attempt(
    attempt_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: AttemptService = Depends(get_attempt_service),
):
    try:
        return await service.get_attempt_state(attempt_id=attempt_id, actor=actor)
    except AttemptNotFoundError:
        raise _not_found()


# ============================================================
# AUTOSAVE
# ============================================================

@router.post(
    "/{attempt_id}/answers",
    response_model=AnswerWriteResponse,
    summary="Save answers",
    description="""
    Merges the given answers into the attempt. Keys not sent are kept,
    and blank values never erase a saved answer.

    If storage is briefly unavailable the response has saved=false and
    a warning; the client should keep the answers and resend them.
    """,
)
async def save_answers(
    attempt_id: UUID,
    request: AnswerWriteRequest,
    actor: Actor = Depends(get_current_actor),
    service: AttemptService = Depends(get_attempt_service),
):
    try:
        return await service.save_answers(
            attempt_id=attempt_id,
            actor=actor,
            answers=request.answers,
        )
    except PermissionDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except AttemptNotFoundError:
        raise _not_found()
    except InvalidAnswer as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except (AttemptClosedError, QuizUnavailableError) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except TransientPersistenceError as e:
        raise _unavailable(e)


# ============================================================
# SUBMIT
# ============================================================

@router.post(
    "/{attempt_id}/submit",
    response_model=SubmitResponse,
    summary="Submit an attempt",
    description="""
    Finalizes the attempt's answers and moves it to completed.

    Safe to call more than once and safe to race with a timer
    auto-submit: only the first submit is applied, later ones return
    the existing result with applied=false.
    """,
)
async def submit_attempt(
    attempt_id: UUID,
    request: SubmitRequest,
    actor: Actor = Depends(get_current_actor),
    service: AttemptService = Depends(get_attempt_service),
):
    try:
        return await service.submit(attempt_id=attempt_id, actor=actor, request=request)
    except PermissionDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except AttemptNotFoundError:
        raise _not_found()
    except InvalidAnswer as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except IllegalTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except (PersistenceUnavailableError, TransientPersistenceError) as e:
        logger.error(f"Submit failed for attempt {attempt_id}: {e}")
        raise _unavailable(e)


# ============================================================
# TIMER
# ============================================================

@router.get(
    "/{attempt_id}/timer",
    response_model=TimerResponse,
    summary="Read the attempt timer",
    description="""
    Remaining time is computed from the attempt's start time on every
    call. Once it reaches zero on an in-progress attempt, this call
    submits the attempt from its saved answers.
    """,
)
async def get_timer(
    attempt_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: AttemptService = Depends(get_attempt_service),
):
    try:
        return await service.get_timer(attempt_id=attempt_id, actor=actor)
    except AttemptNotFoundError:
        raise _not_found()
    except (PersistenceUnavailableError, TransientPersistenceError) as e:
        raise _unavailable(e)


# ============================================================
# MANUAL GRADES
# ============================================================

@router.post(
    "/{attempt_id}/grades",
    response_model=GradeRecordResponse,
    summary="Record a manual grade",
    description="""
    Grades one short-answer or essay question (0..question points).
    Re-grading overwrites. The attempt moves to graded once every
    free-response question has a grade.
    """,
)
async def record_grade(
    attempt_id: UUID,
    request: GradeRequest,
    actor: Actor = Depends(get_current_actor),
    service: GradingService = Depends(get_grading_service),
):
    try:
        return await service.record_grade(attempt_id=attempt_id, actor=actor, request=request)
    except PermissionDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except AttemptNotFoundError:
        raise _not_found()
    except InvalidGrade as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except (PersistenceUnavailableError, TransientPersistenceError) as e:
        raise _unavailable(e)


@router.get(
    "/{attempt_id}/grades",
    response_model=GradeListResponse,
    summary="List manual grades",
)
async def list_grades(
    attempt_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: GradingService = Depends(get_grading_service),
):
    try:
        return await service.list_grades(attempt_id=attempt_id, actor=actor)
    except AttemptNotFoundError:
        raise _not_found()


# ============================================================
# EARLY FINALIZE
# ============================================================

@router.post(
    "/{attempt_id}/finalize",
    response_model=AttemptStateResponse,
    summary="Finalize grading early",
    description="""
    Finalizes a submitted attempt before every free-response question
    is graded. Ungraded questions are recorded as 0 points, which must
    be confirmed with confirm=true.
    """,
)
async def finalize_attempt(
    attempt_id: UUID,
    request: FinalizeRequest,
    actor: Actor = Depends(get_current_actor),
    service: GradingService = Depends(get_grading_service),
):
    try:
        return await service.finalize(attempt_id=attempt_id, actor=actor, confirm=request.confirm)
    except PermissionDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except AttemptNotFoundError:
        raise _not_found()
    except IncompletePrerequisite as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": str(e),
                "pending_question_ids": e.pending_question_ids,
            },
        )
    except IllegalTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except (PersistenceUnavailableError, TransientPersistenceError) as e:
        raise _unavailable(e)


# ============================================================
# SCORE BREAKDOWN
# ============================================================

@router.get(
    "/{attempt_id}/score",
    response_model=ScoreBreakdownResponse,
    summary="Get score breakdown",
    description="Per-question breakdown plus a check of the stored score against a fresh calculation.",
)
async def get_score(
    attempt_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: AttemptService = Depends(get_attempt_service),
):
    try:
        return await service.get_score_breakdown(attempt_id=attempt_id, actor=actor)
    except PermissionDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except AttemptNotFoundError:
        raise _not_found()
