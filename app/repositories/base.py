"""
Base Repository

Abstract base class for all repositories.
Provides common database operations.

Driver-level failures (dropped connections, lock timeouts) are
translated into TransientPersistenceError so callers can retry them
through app.utils.retry.
"""

import functools
import logging
from typing import Generic, TypeVar, Type, Optional, List, Any

from sqlalchemy.exc import InterfaceError, OperationalError, DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.core.exceptions import TransientPersistenceError
from app.db.database import Base

logger = logging.getLogger(__name__)

ModelType = TypeVar("ModelType", bound=Base)


def translate_db_errors(func):
    """Re-raise retryable driver errors as TransientPersistenceError."""
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except (OperationalError, InterfaceError) as e:
            raise TransientPersistenceError(str(e)) from e
        except DBAPIError as e:
            if e.connection_invalidated:
                raise TransientPersistenceError(str(e)) from e
            raise
    return wrapper


class BaseRepository(Generic[ModelType]):
    """
    Base repository class with common CRUD operations.

    All repositories should inherit from this class.
    """
    def __init__(self, model: Type[ModelType], db: AsyncSession):
        """
        Initialize repository.

        Args:
            model: SQLAlchemy model class
            db: Database session
        """
        self.model = model
        self.db = db

    # -----------------------------
    # Get Element By id
    # -----------------------------
    @translate_db_errors
    async def get_by_id(self, id: Any, fresh: bool = False) -> Optional[ModelType]:
        """
        Get a record by ID.

        fresh=True bypasses the session identity map so the row
        reflects what is currently persisted.
        """
        stmt = select(self.model).where(self.model.id == id)
        if fresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    # -----------------------------
    # Get all Records
    # -----------------------------
    @translate_db_errors
    async def get_all(
        self,
        skip: int = 0,
        limit: int = 100,
        order_by=None
    ) -> List[ModelType]:
        """Get all records with pagination."""
        query = select(self.model)

        if order_by is not None:
            query = query.order_by(order_by)

        query = query.offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    # -----------------------------
    # Create Single Record
    # -----------------------------
    @translate_db_errors
    async def create(self, **kwargs) -> ModelType:
        """Create a new record."""
        instance = self.model(**kwargs)
        self.db.add(instance)
        await self.db.commit()
        await self.db.refresh(instance)
        return instance

    # -----------------------------
    # Update record
    # -----------------------------
    @translate_db_errors
    async def update(self, id: Any, **kwargs) -> Optional[ModelType]:
        """Update a record by ID."""
        instance = await self.get_by_id(id)
        if not instance:
            return None

        for key, value in kwargs.items():
            setattr(instance, key, value)

        await self.db.commit()
        await self.db.refresh(instance)
        return instance
