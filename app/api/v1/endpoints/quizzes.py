"""
Quiz Endpoints

HTTP API for quiz authoring and quiz-level attempt operations.

Endpoints:
----------
- POST   /quizzes                          - Create a quiz with questions
- GET    /quizzes/{quiz_id}                - Get quiz with questions
- PATCH  /quizzes/{quiz_id}/status         - Publish or close a quiz
- POST   /quizzes/{quiz_id}/attempts       - Start (or resume) an attempt
- GET    /quizzes/{quiz_id}/grading-queue  - Attempts awaiting manual grading
- POST   /quizzes/{quiz_id}/rescore        - Recompute stored scores
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.database import get_db
from app.api.deps import get_current_actor
from app.core.exceptions import (
    MaxAttemptsReachedError,
    PermissionDeniedError,
    PersistenceUnavailableError,
    QuizNotFoundError,
    QuizUnavailableError,
    QuizValidationError,
    TransientPersistenceError,
)
from app.core.security import Actor
from app.schemas.attempt import AttemptStateResponse, GradingQueueResponse, RescoreResponse
from app.schemas.quiz import (
    QuizCreateRequest,
    QuizDetailResponse,
    QuizResponse,
    QuizStatusUpdate,
)
from app.services.attempt_service import AttemptService
from app.services.grading_service import GradingService
from app.services.quiz_service import QuizService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Quizzes"])


def get_quiz_service(db: AsyncSession = Depends(get_db)) -> QuizService:
    return QuizService(db)


def get_attempt_service(db: AsyncSession = Depends(get_db)) -> AttemptService:
    return AttemptService(db)


def get_grading_service(db: AsyncSession = Depends(get_db)) -> GradingService:
    return GradingService(db)


def _unavailable(e: Exception) -> HTTPException:
    logger.error(f"Persistence unavailable: {e}")
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Storage is temporarily unavailable; please retry",
    )


# ============================================================
# CREATE QUIZ
# ============================================================

@router.post(
    "/quizzes",
    response_model=QuizDetailResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a quiz",
    description="""
    Creates a quiz and its questions in one request (instructors only).

    Multiple-choice answers must be one of the options; true/false
    answers must be 'True' or 'False'. Every question is worth a
    positive number of points.
    """,
)
async def create_quiz(
    request: QuizCreateRequest,
    actor: Actor = Depends(get_current_actor),
    service: QuizService = Depends(get_quiz_service),
):
    try:
        return await service.create_quiz(actor=actor, request=request)
    except PermissionDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except QuizValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


# ============================================================
# GET QUIZ
# ============================================================

@router.get(
    "/quizzes/{quiz_id}",
    response_model=QuizDetailResponse,
    summary="Get quiz with questions",
    description="Correct answers are included only for the quiz's instructor.",
)
async def get_quiz(
    quiz_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: QuizService = Depends(get_quiz_service),
):
    try:
        return await service.get_quiz(quiz_id=quiz_id, actor=actor)
    except QuizNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Quiz not found",
        )


# ============================================================
# QUIZ STATUS
# ============================================================

@router.patch(
    "/quizzes/{quiz_id}/status",
    response_model=QuizResponse,
    summary="Change quiz status",
    description="Moves a quiz forward: draft -> published -> closed.",
)
async def update_quiz_status(
    quiz_id: UUID,
    request: QuizStatusUpdate,
    actor: Actor = Depends(get_current_actor),
    service: QuizService = Depends(get_quiz_service),
):
    try:
        return await service.set_status(quiz_id=quiz_id, actor=actor, new_status=request.status)
    except PermissionDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except QuizNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Quiz not found",
        )
    except QuizValidationError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


# ============================================================
# START ATTEMPT
# ============================================================

@router.post(
    "/quizzes/{quiz_id}/attempts",
    response_model=AttemptStateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start or resume an attempt",
    description="""
    Starts a new attempt for the calling student, or returns their
    open attempt (200) if one exists. The attempt's start time is
    fixed here and drives the timer from then on.
    """,
)
async def start_attempt(
    quiz_id: UUID,
    response: Response,
    actor: Actor = Depends(get_current_actor),
    service: AttemptService = Depends(get_attempt_service),
):
    try:
        state, created = await service.start_attempt(quiz_id=quiz_id, actor=actor)
    except PermissionDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except QuizNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Quiz not found",
        )
    except (QuizUnavailableError, MaxAttemptsReachedError) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except (PersistenceUnavailableError, TransientPersistenceError) as e:
        raise _unavailable(e)

    if not created:
        response.status_code = status.HTTP_200_OK
    return state


# ============================================================
# GRADING QUEUE
# ============================================================

@router.get(
    "/quizzes/{quiz_id}/grading-queue",
    response_model=GradingQueueResponse,
    summary="List attempts awaiting manual grading",
)
async def get_grading_queue(
    quiz_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: AttemptService = Depends(get_attempt_service),
):
    try:
        return await service.get_grading_queue(quiz_id=quiz_id, actor=actor)
    except PermissionDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except QuizNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Quiz not found",
        )


# ============================================================
# RESCORE
# ============================================================

@router.post(
    "/quizzes/{quiz_id}/rescore",
    response_model=RescoreResponse,
    summary="Recompute stored scores",
    description="""
    Recomputes every submitted attempt of the quiz from its answers and
    manual grades, repairing stored scores and finalizing attempts whose
    grading is already complete.
    """,
)
async def rescore_quiz(
    quiz_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: GradingService = Depends(get_grading_service),
):
    try:
        return await service.rescore_quiz(quiz_id=quiz_id, actor=actor)
    except PermissionDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except QuizNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Quiz not found",
        )
