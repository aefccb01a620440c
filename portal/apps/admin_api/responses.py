"""JSON envelopes shared by the routers: `{success, message|error, code?}`."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from portal.core.result import (
    ConflictError,
    DatabaseError,
    NotFoundError,
    ServiceError,
    ValidationError,
)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictError: status.HTTP_409_CONFLICT,
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    DatabaseError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def ok(
    message: str | None = None, *, status_code: int = status.HTTP_200_OK, **payload: Any
) -> JSONResponse:
    body: dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    body.update(payload)
    return JSONResponse(jsonable_encoder(body), status_code=status_code)


def error_response(error: ServiceError) -> JSONResponse:
    status_code = _STATUS_BY_ERROR.get(type(error), status.HTTP_500_INTERNAL_SERVER_ERROR)
    if isinstance(error, DatabaseError):
        # Driver messages may carry SQL; keep them in the log only.
        logger.error("Request failed: %s", error)
        body: dict[str, Any] = {
            "success": False,
            "error": "Erreur de base de données",
            "code": error.code,
        }
    else:
        body = {"success": False, "error": str(error), "code": error.code}
    if isinstance(error, ConflictError) and error.details:
        body["details"] = dict(error.details)
    if isinstance(error, ValidationError):
        body["field"] = error.field
    return JSONResponse(jsonable_encoder(body), status_code=status_code)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        {
            "success": False,
            "error": "Données invalides",
            "code": "VALIDATION_ERROR",
            "details": jsonable_encoder(exc.errors()),
        },
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
    )


__all__ = ["error_response", "ok", "validation_exception_handler"]
