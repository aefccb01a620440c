"""Directors (heads of directions and sub-directions) management."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from portal.core.result import (
    ConflictError,
    DatabaseError,
    Failure,
    NotFoundError,
    Result,
    Success,
    ValidationError,
    failure,
    success,
)
from portal.domain.models import Director
from portal.repositories import DirectorRepository

logger = logging.getLogger(__name__)

TITLE_CONFLICT = "DIRECTOR_TITLE_CONFLICT"
HAS_SUBDIRECTIONS = "DIRECTOR_HAS_SUBDIRECTIONS"

DirectorResult = Result[Director, NotFoundError | ConflictError | ValidationError | DatabaseError]


class DirectorService:
    """CRUD on directors with the title-uniqueness and hierarchy rules.

    Only one active director may hold a given title; a main direction
    (`key` set) cannot be deleted while sub-directions point at it.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.repository = DirectorRepository(session)

    async def list_directors(
        self, direction: str | None = None
    ) -> Result[Sequence[Director], DatabaseError]:
        criteria = [Director.direction == direction] if direction else []
        return await self.repository.list(
            *criteria, order_by=(Director.sort_order, Director.id)
        )

    async def get(self, director_id: int) -> Result[Director, NotFoundError | DatabaseError]:
        return await self.repository.get(director_id)

    async def _title_conflict(
        self, title: str, exclude_id: int | None = None
    ) -> Result[None, ConflictError | DatabaseError]:
        match await self.repository.find_active_by_title(title, exclude_id=exclude_id):
            case Failure() as error:
                return error
            case Success(None):
                return success(None)
            case Success(holder):
                return failure(
                    ConflictError(
                        entity_type="Director",
                        message=f"Le titre « {holder.title} » est déjà attribué à {holder.name}",
                        conflicting_field="titre",
                        code=TITLE_CONFLICT,
                        details={"existing_id": holder.id, "existing_name": holder.name},
                    )
                )

    async def create(self, data: Mapping[str, Any]) -> DirectorResult:
        try:
            director = Director(**data)
        except ValueError as exc:
            return failure(ValidationError(field="director", message=str(exc)))

        if director.active is not False:
            conflict = await self._title_conflict(director.title)
            if conflict.is_failure():
                return conflict

        result = await self.repository.add(director)
        if result.is_success():
            await self.session.commit()
            logger.info("Director created", extra={"director_id": director.id})
        return result

    async def update(self, director_id: int, changes: Mapping[str, Any]) -> DirectorResult:
        current = await self.repository.get(director_id)
        if current.is_failure():
            return current
        director = current.unwrap()

        title = changes.get("title", director.title)
        active = changes.get("active", director.active)
        if active:
            conflict = await self._title_conflict(title, exclude_id=director_id)
            if conflict.is_failure():
                return conflict

        try:
            result = await self.repository.update(director, changes)
        except ValueError as exc:
            await self.session.rollback()
            return failure(ValidationError(field="director", message=str(exc)))
        if result.is_success():
            await self.session.commit()
            logger.info("Director updated", extra={"director_id": director_id})
        return result

    async def delete(
        self, director_id: int
    ) -> Result[bool, NotFoundError | ConflictError | DatabaseError]:
        current = await self.repository.get(director_id)
        if current.is_failure():
            return current
        director = current.unwrap()

        if director.key:
            match await self.repository.count_subdirections(director.key):
                case Failure() as error:
                    return error
                case Success(count) if count > 0:
                    return failure(
                        ConflictError(
                            entity_type="Director",
                            message=(
                                f"Impossible de supprimer la direction {director.key} : "
                                f"{count} sous-direction(s) y sont rattachées"
                            ),
                            code=HAS_SUBDIRECTIONS,
                            details={"key": director.key, "subdirections": count},
                        )
                    )

        result = await self.repository.delete(director)
        if result.is_success():
            await self.session.commit()
            logger.info("Director deleted", extra={"director_id": director_id})
        return result


__all__ = ["DirectorService", "HAS_SUBDIRECTIONS", "TITLE_CONFLICT"]
