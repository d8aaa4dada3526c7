"""
Notification Service

Persists attempt notifications for in-app viewing and optionally
pushes them via Firebase Cloud Messaging (FCM).

Dispatch is fire-and-forget: callers invoke it after a transition has
been committed, and a failure here is logged, never raised.
"""

import json
import logging
from typing import Optional
from uuid import UUID

import firebase_admin
from firebase_admin import credentials, messaging

from app.core.config import settings
from app.models.notification import Notification

logger = logging.getLogger(__name__)

_firebase_initialized = False


def _ensure_firebase():
    """Initialize Firebase Admin SDK once."""
    global _firebase_initialized
    if _firebase_initialized:
        return
    try:
        key_path = settings.FIREBASE_SERVICE_ACCOUNT_KEY_PATH
        if key_path:
            cred = credentials.Certificate(key_path)
            firebase_admin.initialize_app(cred)
        else:
            firebase_admin.initialize_app()
        _firebase_initialized = True
        logger.info("Firebase Admin SDK initialized")
    except Exception as e:
        logger.warning("Firebase Admin SDK init failed (push disabled): %s", e)


async def save_notification(
    db,
    user_id: UUID,
    title: str,
    body: str,
    notification_type: str = "general",
    data: Optional[dict] = None,
):
    """Persist a notification to the database."""
    notif = Notification(
        user_id=user_id,
        title=title,
        body=body,
        type=notification_type,
        data=json.dumps(data) if data else None,
    )
    db.add(notif)
    await db.commit()


async def send_push_notification(
    user_id: UUID,
    title: str,
    body: str,
    data: Optional[dict] = None,
) -> bool:
    """Send a push notification to the user's FCM topic."""
    if not settings.PUSH_NOTIFICATIONS_ENABLED:
        return False
    _ensure_firebase()
    if not _firebase_initialized:
        return False

    try:
        message = messaging.Message(
            notification=messaging.Notification(title=title, body=body),
            data={k: str(v) for k, v in (data or {}).items()},
            topic=f"user-{user_id}",
        )
        messaging.send(message)
        logger.info("Push sent to user %s", user_id)
        return True
    except Exception as e:
        logger.error("Failed to send push: %s", e)
        return False


async def _dispatch(db, user_id: UUID, title: str, body: str, notification_type: str, data: dict):
    try:
        await save_notification(db, user_id, title, body, notification_type, data)
    except Exception as e:
        logger.warning("Failed to save %s notification: %s", notification_type, e)
        await db.rollback()
    await send_push_notification(user_id, title, body, data)


async def notify_quiz_completed(
    db,
    instructor_id: UUID,
    quiz_title: str,
    attempt_id: UUID,
    student_id: UUID,
    needs_grading: bool,
):
    """Tell the instructor a student submitted an attempt."""
    title = f"Quiz Submitted: {quiz_title}"
    body = "An attempt is waiting for manual grading." if needs_grading else "An attempt was submitted and auto-graded."
    await _dispatch(db, instructor_id, title, body, "quiz_completed", {
        "attempt_id": str(attempt_id),
        "student_id": str(student_id),
    })


async def notify_quiz_graded(
    db,
    student_id: UUID,
    quiz_title: str,
    attempt_id: UUID,
    score: int,
    max_score: int,
):
    """Tell the student their attempt has a final grade."""
    title = f"Quiz Graded: {quiz_title}"
    body = f"You scored {score}/{max_score}."
    await _dispatch(db, student_id, title, body, "quiz_graded", {
        "attempt_id": str(attempt_id),
        "score": score,
        "max_score": max_score,
    })
