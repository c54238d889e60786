"""
Base repository implementing common operations using SQLAlchemy 2.0.

This module provides a generic repository pattern that can be extended
by specific model repositories. Besides plain CRUD it offers the
conditional insert (``INSERT ... ON CONFLICT DO NOTHING ... RETURNING``)
the engine relies on for exactly-once decisions and matches.
"""

from __future__ import annotations
from typing import Generic, TypeVar, Type, Optional, Sequence, Any
from uuid import UUID
from sqlalchemy import select, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
import logging

logger = logging.getLogger(__name__)

# Generic type variable for the model
T = TypeVar("T")

# Dialect name → insert construct supporting ON CONFLICT
_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class BaseRepository(Generic[T]):
    """
    Generic base repository.

    Type Parameters:
        T: The SQLAlchemy model type this repository manages

    Example:
        class MatchRepository(BaseRepository[Match]):
            def __init__(self):
                super().__init__(Match)
    """

    def __init__(self, model: Type[T]):
        """
        Initialize the repository with a model class.

        Args:
            model: The SQLAlchemy model class to manage
        """
        self.model = model

    async def get(
        self,
        db: AsyncSession,
        id: UUID,
        for_update: bool = False
    ) -> Optional[T]:
        """
        Retrieve a single record by ID.

        Args:
            db: Active database session
            id: UUID of the record to retrieve
            for_update: Lock the row until the transaction ends and refresh
                any instance already loaded in the session

        Returns:
            Model instance if found, None otherwise
        """
        try:
            stmt = select(self.model).where(self.model.id == id)
            if for_update:
                stmt = stmt.with_for_update().execution_options(populate_existing=True)
            result = await db.execute(stmt)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error fetching {self.model.__name__} by id {id}: {e}")
            raise

    async def create(
        self,
        db: AsyncSession,
        obj_in: dict
    ) -> T:
        """
        Create a new record.

        Args:
            db: Active database session
            obj_in: Dictionary of field values for the new record

        Returns:
            Created model instance

        Raises:
            IntegrityError: If constraints are violated (e.g., duplicate unique field)
        """
        try:
            db_obj = self.model(**obj_in)
            db.add(db_obj)
            await db.flush()
            await db.refresh(db_obj)
            return db_obj
        except IntegrityError as e:
            logger.warning(f"Integrity error creating {self.model.__name__}: {e}")
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error creating {self.model.__name__}: {e}")
            raise

    async def insert_if_absent(
        self,
        db: AsyncSession,
        obj_in: dict,
        index_elements: Sequence[str],
        index_where: Optional[Any] = None
    ) -> Optional[T]:
        """
        Insert a row unless it collides with an existing one on a unique key.

        The collision check and the insert are a single statement, so two
        concurrent callers can never both succeed: the loser gets ``None``
        instead of an exception.

        Args:
            db: Active database session
            obj_in: Column values for the new row (include the primary key)
            index_elements: Columns of the unique index used as conflict target
            index_where: Predicate of a partial unique index, if the target is one

        Returns:
            The inserted instance, or None if an equivalent row already existed

        Example:
            match = await repo.insert_if_absent(
                db, values, ["user_a", "user_b"], index_where=ACTIVE_MATCH_PREDICATE
            )
            if match is None:
                # somebody else created it first
        """
        dialect = db.get_bind().dialect.name
        insert = _UPSERT_INSERTS.get(dialect)
        if insert is None:
            raise NotImplementedError(f"Conditional insert is not supported on {dialect}")

        try:
            stmt = (
                insert(self.model)
                .values(**obj_in)
                .on_conflict_do_nothing(index_elements=list(index_elements), index_where=index_where)
                .returning(self.model)
            )
            result = await db.execute(stmt)
            return result.scalar_one_or_none()
        except IntegrityError as e:
            logger.warning(f"Integrity error inserting {self.model.__name__}: {e}")
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error inserting {self.model.__name__}: {e}")
            raise

    async def count(
        self,
        db: AsyncSession,
        *criteria
    ) -> int:
        """
        Count records matching optional filter criteria.

        Example:
            total = await repo.count(db, Notification.recipient_id == user_id)
        """
        try:
            stmt = select(func.count()).select_from(self.model)
            if criteria:
                stmt = stmt.where(*criteria)
            result = await db.execute(stmt)
            return result.scalar_one()
        except SQLAlchemyError as e:
            logger.error(f"Error counting {self.model.__name__}: {e}")
            raise
