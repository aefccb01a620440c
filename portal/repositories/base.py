"""
Base repository with common CRUD operations.

Every method returns a Result so services can propagate expected failures
(missing row, constraint violation, driver error) without try/except noise.
"""

from __future__ import annotations

import logging
from typing import Any, Generic, Mapping, Sequence, Type, TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from portal.core.result import (
    ConflictError,
    DatabaseError,
    NotFoundError,
    Result,
    failure,
    success,
)
from portal.domain.base import Base

logger = logging.getLogger(__name__)

T_Model = TypeVar("T_Model", bound=Base)


class BaseRepository(Generic[T_Model]):
    """
    Generic repository for any SQLAlchemy model with an integer `id`.

    Example:
        class DirectorRepository(BaseRepository[Director]):
            def __init__(self, session: AsyncSession):
                super().__init__(Director, session)
    """

    def __init__(self, model: Type[T_Model], session: AsyncSession):
        self.model = model
        self.session = session

    @property
    def model_name(self) -> str:
        return self.model.__name__

    def _db_error(self, operation: str, exc: Exception) -> DatabaseError:
        logger.error("Database error in %s.%s", self.model_name, operation, exc_info=True)
        return DatabaseError(
            operation=f"{self.model_name}.{operation}",
            message=str(exc),
            original_exception=exc,
        )

    async def get(self, id: int) -> Result[T_Model, NotFoundError | DatabaseError]:
        try:
            entity = await self.session.get(self.model, id)
        except SQLAlchemyError as exc:
            return failure(self._db_error("get", exc))
        if entity is None:
            return failure(NotFoundError(entity_type=self.model_name, entity_id=id))
        return success(entity)

    async def list(
        self,
        *criteria: Any,
        order_by: Any | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> Result[Sequence[T_Model], DatabaseError]:
        stmt = select(self.model)
        if criteria:
            stmt = stmt.where(*criteria)
        if order_by is not None:
            clauses = order_by if isinstance(order_by, (list, tuple)) else (order_by,)
            stmt = stmt.order_by(*clauses)
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset is not None:
            stmt = stmt.offset(offset)
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as exc:
            return failure(self._db_error("list", exc))
        return success(result.scalars().all())

    async def count(self, *criteria: Any) -> Result[int, DatabaseError]:
        stmt = select(func.count()).select_from(self.model)
        if criteria:
            stmt = stmt.where(*criteria)
        try:
            value = (await self.session.execute(stmt)).scalar()
        except SQLAlchemyError as exc:
            return failure(self._db_error("count", exc))
        return success(int(value or 0))

    async def add(self, entity: T_Model) -> Result[T_Model, ConflictError | DatabaseError]:
        try:
            self.session.add(entity)
            await self.session.flush()
            await self.session.refresh(entity)
        except IntegrityError as exc:
            logger.warning("Integrity error in %s.add: %s", self.model_name, exc.orig)
            await self.session.rollback()
            return failure(
                ConflictError(entity_type=self.model_name, message=f"Constraint violation: {exc.orig}")
            )
        except SQLAlchemyError as exc:
            return failure(self._db_error("add", exc))
        return success(entity)

    async def update(
        self, entity: T_Model, changes: Mapping[str, Any]
    ) -> Result[T_Model, ConflictError | DatabaseError]:
        try:
            for attribute, value in changes.items():
                setattr(entity, attribute, value)
            await self.session.flush()
            await self.session.refresh(entity)
        except IntegrityError as exc:
            logger.warning("Integrity error in %s.update: %s", self.model_name, exc.orig)
            await self.session.rollback()
            return failure(
                ConflictError(entity_type=self.model_name, message=f"Constraint violation: {exc.orig}")
            )
        except SQLAlchemyError as exc:
            return failure(self._db_error("update", exc))
        return success(entity)

    async def delete(self, entity: T_Model) -> Result[bool, DatabaseError]:
        try:
            await self.session.delete(entity)
            await self.session.flush()
        except SQLAlchemyError as exc:
            return failure(self._db_error("delete", exc))
        return success(True)


__all__ = ["BaseRepository"]
