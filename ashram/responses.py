# ashram/responses.py
"""Response envelopes and the exception handlers that produce them.

Success: ``{success: true, data, message?, timestamp}``; paginated responses
add ``pagination``. Errors: ``{success: false, message, code, errors?,
timestamp}``.
"""
import logging
import math
from typing import Any, List, Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import get_settings
from .errors import AppError, code_for_status
from .timeutils import utcnow

logger = logging.getLogger(__name__)


def success_response(data: Any = None, message: Optional[str] = None,
                     status_code: int = status.HTTP_200_OK) -> JSONResponse:
    body = {"success": True, "data": data, "timestamp": utcnow().isoformat()}
    if message:
        body["message"] = message
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def paginated_response(items: List[Any], total: int, page: int, limit: int,
                       message: Optional[str] = None) -> JSONResponse:
    total_pages = math.ceil(total / limit) if limit else 0
    body = {
        "success": True,
        "data": items,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": total_pages,
            "hasNext": page < total_pages,
            "hasPrev": page > 1,
        },
        "timestamp": utcnow().isoformat(),
    }
    if message:
        body["message"] = message
    return JSONResponse(content=jsonable_encoder(body))


def error_response(status_code: int, message: str, code: str,
                   errors: Optional[List[Any]] = None, headers: Optional[dict] = None,
                   details: Optional[str] = None) -> JSONResponse:
    body = {
        "success": False,
        "message": message,
        "code": code,
        "timestamp": utcnow().isoformat(),
    }
    if errors:
        body["errors"] = errors
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body), headers=headers)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return error_response(exc.status_code, exc.message, exc.code, exc.errors, exc.headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return error_response(exc.status_code, message, code_for_status(exc.status_code),
                          headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg"),
        }
        for err in exc.errors()
    ]
    return error_response(status.HTTP_400_BAD_REQUEST, "Validation failed", "VALIDATION_ERROR", errors)


async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    logger.warning(f"Integrity error on {request.url.path}: {exc.orig}")
    return error_response(status.HTTP_409_CONFLICT, "Resource already exists or violates a constraint", "CONFLICT")


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    details = None if get_settings().is_production else str(exc)
    code = "DATABASE_ERROR" if isinstance(exc, SQLAlchemyError) else "INTERNAL_ERROR"
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", code, details=details)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
