"""Exception handlers returning a consistent ``{error, message, details}`` body."""

import logging
from typing import Union

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from starlette.exceptions import HTTPException

from ..core.config import settings
from ..llm_backend import BackendConfigurationError, BackendError
from ..memory.documents import UnknownCollectionError
from .correlation import get_correlation_id


logger = logging.getLogger(__name__)


def _error_body(error: str, message: str, details=None) -> dict:
    return {"error": error, "message": message, "details": details}


async def validation_exception_handler(
    request: Request,
    exc: Union[RequestValidationError, ValidationError]
) -> ORJSONResponse:
    """
    Handle request validation errors with per-field messages.

    Args:
        request: FastAPI request
        exc: Validation error

    Returns:
        422 response listing each failing field
    """
    errors = []
    for error in exc.errors():
        field_path = ".".join(str(x) for x in error["loc"] if x != "body")
        errors.append({
            "field": field_path,
            "message": error["msg"],
            "type": error["type"],
        })

    logger.warning(f"Validation error on {request.url.path}: {errors}")

    return ORJSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_error_body("Validation Error", "The request data failed validation", errors),
    )


async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> ORJSONResponse:
    logger.error(
        f"Database error on {request.url.path} [{get_correlation_id(request)}]: {exc}",
        exc_info=True,
    )

    if isinstance(exc, IntegrityError):
        return ORJSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content=_error_body(
                "Database Constraint Violation",
                "The operation violates a database constraint",
                str(exc.orig) if hasattr(exc, "orig") else str(exc),
            ),
        )

    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(
            "Database Error",
            "An error occurred while accessing the document store",
            str(exc) if settings.DEBUG else None,
        ),
    )


async def unknown_collection_handler(request: Request, exc: UnknownCollectionError) -> ORJSONResponse:
    return ORJSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content=_error_body("Not Found", str(exc)),
    )


async def backend_exception_handler(request: Request, exc: BackendError) -> ORJSONResponse:
    """
    Backend errors that escape a single-agent endpoint.

    Missing configuration is a 503; exhausted transient failures are a 502
    (504 for timeouts).
    """
    logger.error(f"Backend error on {request.url.path} [{get_correlation_id(request)}]: {exc}")

    if isinstance(exc, BackendConfigurationError):
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif exc.kind == "timeout":
        status_code = status.HTTP_504_GATEWAY_TIMEOUT
    else:
        status_code = status.HTTP_502_BAD_GATEWAY

    return ORJSONResponse(
        status_code=status_code,
        content=_error_body("Generation Backend Error", str(exc), {"kind": exc.kind}),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> ORJSONResponse:
    detail = exc.detail
    if isinstance(detail, dict):
        content = _error_body(detail.get("error", "Error"), detail.get("message", ""), detail)
    else:
        content = _error_body(str(detail), str(detail))
    return ORJSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    logger.error(
        f"Unhandled exception on {request.url.path} [{get_correlation_id(request)}]: {exc}",
        exc_info=True
    )

    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(
            "Internal Server Error",
            "An unexpected error occurred",
            str(exc) if settings.DEBUG else "Please contact support if this persists",
        ),
    )
