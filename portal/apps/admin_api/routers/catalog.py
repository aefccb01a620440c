"""Establishments, documents, services, agenda events and site alerts.

All five share the same CRUD shape; payload validation (coordinates, http(s)
URLs, date ranges) happens in the schemas, before anything is written.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Optional, Type

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import or_
from sqlalchemy.ext.asyncio import AsyncSession

from portal.apps.admin_api.dependencies import get_session
from portal.apps.admin_api.responses import error_response, ok
from portal.apps.admin_api.schemas import (
    AlertPayload,
    DocumentPayload,
    EstablishmentPayload,
    EventPayload,
    ServicePayload,
)
from portal.core.result import Failure, Success, ValidationError, failure
from portal.core.time_utils import utc_now
from portal.domain.base import Base
from portal.domain.models import Alert, Document, Establishment, Event, Service
from portal.repositories import (
    AlertRepository,
    BaseRepository,
    DocumentRepository,
    EstablishmentRepository,
    EventRepository,
    ServiceRepository,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["catalog"])


def row_to_dict(entity: Base) -> dict[str, Any]:
    return {attr.key: getattr(entity, attr.key) for attr in entity.__mapper__.column_attrs}


async def create_entity(
    repository: BaseRepository, model: Type[Base], values: dict[str, Any], label: str
):
    try:
        entity = model(**values)
    except ValueError as exc:
        return error_response(ValidationError(field=label, message=str(exc)))
    match await repository.add(entity):
        case Success(created):
            await repository.session.commit()
            logger.info("%s created", model.__name__, extra={"entity_id": created.id})
            return ok(
                f"{label} créé avec succès",
                status_code=status.HTTP_201_CREATED,
                data=row_to_dict(created),
            )
        case Failure(error):
            return error_response(error)


async def update_entity(
    repository: BaseRepository, entity_id: int, changes: dict[str, Any], label: str
):
    current = await repository.get(entity_id)
    if current.is_failure():
        return error_response(current.error)
    try:
        result = await repository.update(current.unwrap(), changes)
    except ValueError as exc:
        await repository.session.rollback()
        result = failure(ValidationError(field=label, message=str(exc)))
    match result:
        case Success(updated):
            await repository.session.commit()
            return ok(f"{label} mis à jour avec succès", data=row_to_dict(updated))
        case Failure(error):
            return error_response(error)


async def delete_entity(repository: BaseRepository, entity_id: int, label: str):
    current = await repository.get(entity_id)
    if current.is_failure():
        return error_response(current.error)
    match await repository.delete(current.unwrap()):
        case Success(_):
            await repository.session.commit()
            return ok(f"{label} supprimé avec succès")
        case Failure(error):
            return error_response(error)


async def entity_detail(repository: BaseRepository, entity_id: int):
    match await repository.get(entity_id):
        case Success(entity):
            return ok(data=row_to_dict(entity))
        case Failure(error):
            return error_response(error)


# ----------------------------------------------------------------------
# Establishments
# ----------------------------------------------------------------------


@router.get("/api/establishments")
async def list_establishments(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    region: Optional[str] = None,
    type_filter: Optional[str] = Query(default=None, alias="type"),
    group_by_region: bool = Query(default=False, alias="groupByRegion"),
    session: AsyncSession = Depends(get_session),
):
    criteria = []
    if status_filter:
        criteria.append(Establishment.status == status_filter)
    if region:
        criteria.append(Establishment.region == region)
    if type_filter:
        criteria.append(Establishment.type == type_filter)
    result = await EstablishmentRepository(session).list(*criteria, order_by=Establishment.name)
    if result.is_failure():
        return error_response(result.error)

    rows = [row_to_dict(item) for item in result.unwrap()]
    if group_by_region:
        grouped: dict[str, list[dict[str, Any]]] = defaultdict(list)
        for row in rows:
            grouped[row["region"] or ""].append(row)
        return ok(data=dict(grouped))
    return ok(data=rows)


@router.get("/api/establishments/{establishment_id}")
async def get_establishment(establishment_id: int, session: AsyncSession = Depends(get_session)):
    return await entity_detail(EstablishmentRepository(session), establishment_id)


@router.post("/api/establishments", status_code=status.HTTP_201_CREATED)
async def create_establishment(
    payload: EstablishmentPayload, session: AsyncSession = Depends(get_session)
):
    return await create_entity(
        EstablishmentRepository(session), Establishment, payload.values(), "Établissement"
    )


@router.put("/api/establishments/{establishment_id}")
async def update_establishment(
    establishment_id: int,
    payload: EstablishmentPayload,
    session: AsyncSession = Depends(get_session),
):
    return await update_entity(
        EstablishmentRepository(session), establishment_id, payload.changes(), "Établissement"
    )


@router.delete("/api/establishments/{establishment_id}")
async def delete_establishment(
    establishment_id: int, session: AsyncSession = Depends(get_session)
):
    return await delete_entity(EstablishmentRepository(session), establishment_id, "Établissement")


# ----------------------------------------------------------------------
# Documents
# ----------------------------------------------------------------------


@router.get("/api/documents")
async def list_documents(
    category: Optional[str] = None,
    session: AsyncSession = Depends(get_session),
):
    criteria = [Document.status == "published"]
    if category:
        criteria.append(Document.category == category)
    result = await DocumentRepository(session).list(
        *criteria, order_by=(Document.published_at.desc(), Document.id.desc())
    )
    if result.is_failure():
        return error_response(result.error)
    return ok(data=[row_to_dict(item) for item in result.unwrap()])


@router.get("/api/documents/{document_id}")
async def get_document(document_id: int, session: AsyncSession = Depends(get_session)):
    return await entity_detail(DocumentRepository(session), document_id)


@router.post("/api/documents", status_code=status.HTTP_201_CREATED)
async def create_document(payload: DocumentPayload, session: AsyncSession = Depends(get_session)):
    return await create_entity(DocumentRepository(session), Document, payload.values(), "Document")


@router.put("/api/documents/{document_id}")
async def update_document(
    document_id: int,
    payload: DocumentPayload,
    session: AsyncSession = Depends(get_session),
):
    return await update_entity(DocumentRepository(session), document_id, payload.changes(), "Document")


@router.delete("/api/documents/{document_id}")
async def delete_document(document_id: int, session: AsyncSession = Depends(get_session)):
    return await delete_entity(DocumentRepository(session), document_id, "Document")


# ----------------------------------------------------------------------
# Services: public directory and admin management
# ----------------------------------------------------------------------


@router.get("/api/services")
async def list_public_services(
    category: Optional[str] = None,
    session: AsyncSession = Depends(get_session),
):
    criteria = [Service.active.is_(True), Service.status == "published"]
    if category:
        criteria.append(Service.category == category)
    result = await ServiceRepository(session).list(
        *criteria, order_by=(Service.sort_order, Service.name)
    )
    if result.is_failure():
        return error_response(result.error)
    return ok(data=[row_to_dict(item) for item in result.unwrap()])


@router.get("/api/admin/services")
async def list_admin_services(session: AsyncSession = Depends(get_session)):
    result = await ServiceRepository(session).list(order_by=(Service.sort_order, Service.name))
    if result.is_failure():
        return error_response(result.error)
    return ok(data=[row_to_dict(item) for item in result.unwrap()])


@router.get("/api/admin/services/{service_id}")
async def get_service(service_id: int, session: AsyncSession = Depends(get_session)):
    return await entity_detail(ServiceRepository(session), service_id)


@router.post("/api/admin/services", status_code=status.HTTP_201_CREATED)
async def create_service(payload: ServicePayload, session: AsyncSession = Depends(get_session)):
    return await create_entity(ServiceRepository(session), Service, payload.values(), "Service")


@router.put("/api/admin/services/{service_id}")
async def update_service(
    service_id: int,
    payload: ServicePayload,
    session: AsyncSession = Depends(get_session),
):
    return await update_entity(ServiceRepository(session), service_id, payload.changes(), "Service")


@router.delete("/api/admin/services/{service_id}")
async def delete_service(service_id: int, session: AsyncSession = Depends(get_session)):
    return await delete_entity(ServiceRepository(session), service_id, "Service")


# ----------------------------------------------------------------------
# Agenda
# ----------------------------------------------------------------------


@router.get("/api/events")
async def list_events(
    upcoming: bool = False,
    limit: int = Query(default=50, ge=1, le=200),
    session: AsyncSession = Depends(get_session),
):
    criteria = [Event.published.is_(True)]
    if upcoming:
        criteria.append(Event.starts_at >= utc_now())
    result = await EventRepository(session).list(
        *criteria, order_by=(Event.starts_at, Event.id), limit=limit
    )
    if result.is_failure():
        return error_response(result.error)
    return ok(data=[row_to_dict(item) for item in result.unwrap()])


@router.get("/api/events/{event_id}")
async def get_event(event_id: int, session: AsyncSession = Depends(get_session)):
    return await entity_detail(EventRepository(session), event_id)


@router.post("/api/events", status_code=status.HTTP_201_CREATED)
async def create_event(payload: EventPayload, session: AsyncSession = Depends(get_session)):
    return await create_entity(EventRepository(session), Event, payload.values(), "Événement")


@router.put("/api/events/{event_id}")
async def update_event(
    event_id: int,
    payload: EventPayload,
    session: AsyncSession = Depends(get_session),
):
    return await update_entity(EventRepository(session), event_id, payload.changes(), "Événement")


@router.delete("/api/events/{event_id}")
async def delete_event(event_id: int, session: AsyncSession = Depends(get_session)):
    return await delete_entity(EventRepository(session), event_id, "Événement")


# ----------------------------------------------------------------------
# Alerts
# ----------------------------------------------------------------------


@router.get("/api/alerts")
async def list_active_alerts(session: AsyncSession = Depends(get_session)):
    result = await AlertRepository(session).list(
        Alert.status == "active",
        or_(Alert.ends_at.is_(None), Alert.ends_at > utc_now()),
        order_by=(Alert.priority.desc(), Alert.starts_at.desc()),
    )
    if result.is_failure():
        return error_response(result.error)
    return ok(data=[row_to_dict(item) for item in result.unwrap()])


@router.get("/api/alerts/{alert_id}")
async def get_alert(alert_id: int, session: AsyncSession = Depends(get_session)):
    return await entity_detail(AlertRepository(session), alert_id)


@router.post("/api/alerts", status_code=status.HTTP_201_CREATED)
async def create_alert(payload: AlertPayload, session: AsyncSession = Depends(get_session)):
    return await create_entity(AlertRepository(session), Alert, payload.values(), "Alerte")


@router.put("/api/alerts/{alert_id}")
async def update_alert(
    alert_id: int,
    payload: AlertPayload,
    session: AsyncSession = Depends(get_session),
):
    return await update_entity(AlertRepository(session), alert_id, payload.changes(), "Alerte")


@router.delete("/api/alerts/{alert_id}")
async def delete_alert(alert_id: int, session: AsyncSession = Depends(get_session)):
    return await delete_entity(AlertRepository(session), alert_id, "Alerte")
