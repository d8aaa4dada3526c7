from fastapi import APIRouter
from app.api.v1.endpoints import quizzes, attempts

# ============================================================
# Main API v1 Router
# ============================================================

api_router = APIRouter()

api_router.include_router(
    quizzes.router,
    prefix=""  # Routes define their own prefixes (/quizzes, /quizzes/{id}/...)
)

# Attempt routes at /attempts
api_router.include_router(
    attempts.router
)
