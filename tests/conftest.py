import os
import uuid

# Must be set before app.core.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("PERSIST_RETRY_BASE_DELAY", "0.01")
os.environ.setdefault("PUSH_NOTIFICATIONS_ENABLED", "false")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.security import Actor, Role
from app.db.database import Base
from app.engine.states import QuizStatus
from app.models import Quiz, QuizQuestion


@pytest.fixture
async def engine(tmp_path):
    db_path = tmp_path / "quiz.db"
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{db_path}",
        connect_args={"timeout": 15},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def instructor():
    return Actor(id=uuid.uuid4(), role=Role.INSTRUCTOR)


@pytest.fixture
def student():
    return Actor(id=uuid.uuid4(), role=Role.STUDENT)


@pytest.fixture
def make_quiz(session_factory, instructor):
    """Create a quiz with questions directly; returns (quiz, questions)."""

    async def _make(
        questions,
        status=QuizStatus.PUBLISHED,
        time_limit_minutes=None,
        max_attempts=1,
        due_date=None,
        owner=None,
    ):
        async with session_factory() as session:
            quiz = Quiz(
                instructor_id=(owner or instructor).id,
                title="Unit 3 Check-in",
                status=status,
                time_limit_minutes=time_limit_minutes,
                max_attempts=max_attempts,
                due_date=due_date,
            )
            session.add(quiz)
            await session.flush()
            rows = []
            for i, values in enumerate(questions):
                row = QuizQuestion(quiz_id=quiz.id, order_index=i, **values)
                session.add(row)
                rows.append(row)
            await session.commit()
            await session.refresh(quiz)
            return quiz, rows

    return _make
