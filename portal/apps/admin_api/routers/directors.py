from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from portal.apps.admin_api.dependencies import get_session
from portal.apps.admin_api.responses import error_response, ok
from portal.apps.admin_api.schemas import DirectorPayload, DirectorUpdatePayload
from portal.core.result import Failure, Success
from portal.domain.directors import DirectorService

router = APIRouter(prefix="/api/directors", tags=["directors"])


@router.get("")
async def list_directors(
    direction: Optional[str] = Query(default=None),
    session: AsyncSession = Depends(get_session),
):
    match await DirectorService(session).list_directors(direction):
        case Success(directors):
            return ok(data=[director.to_dict() for director in directors])
        case Failure(error):
            return error_response(error)


@router.get("/{director_id}")
async def get_director(director_id: int, session: AsyncSession = Depends(get_session)):
    match await DirectorService(session).get(director_id):
        case Success(director):
            return ok(data=director.to_dict())
        case Failure(error):
            return error_response(error)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_director(payload: DirectorPayload, session: AsyncSession = Depends(get_session)):
    match await DirectorService(session).create(payload.values()):
        case Success(director):
            return ok(
                "Directeur créé avec succès",
                status_code=status.HTTP_201_CREATED,
                data=director.to_dict(),
            )
        case Failure(error):
            return error_response(error)


@router.put("/{director_id}")
async def update_director(
    director_id: int,
    payload: DirectorUpdatePayload,
    session: AsyncSession = Depends(get_session),
):
    match await DirectorService(session).update(director_id, payload.changes()):
        case Success(director):
            return ok("Directeur mis à jour avec succès", data=director.to_dict())
        case Failure(error):
            return error_response(error)


@router.delete("/{director_id}")
async def delete_director(director_id: int, session: AsyncSession = Depends(get_session)):
    match await DirectorService(session).delete(director_id):
        case Success(_):
            return ok("Directeur supprimé avec succès")
        case Failure(error):
            return error_response(error)
