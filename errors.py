"""
Service errors and their HTTP mapping.

Handlers and services raise these; ``register_exception_handlers`` turns them
into ``{"detail": ...}`` JSON responses with the matching status code.
"""
from __future__ import annotations

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)


class ServiceError(Exception):
    status_code = 500
    default_detail = "Internal error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class ValidationError(ServiceError):
    status_code = 422
    default_detail = "Validation failed"


class Conflict(ServiceError):
    status_code = 422
    default_detail = "Resource already exists"


class Unauthenticated(ServiceError):
    status_code = 401
    default_detail = "Authentication required"


class InvalidCredential(ServiceError):
    status_code = 401
    default_detail = "Invalid credentials"


class Forbidden(ServiceError):
    status_code = 403
    default_detail = "Forbidden"


class NotFound(ServiceError):
    status_code = 404
    default_detail = "Not found"


class InvalidOperation(ServiceError):
    status_code = 422
    default_detail = "Invalid operation"


class UpstreamError(ServiceError):
    status_code = 502
    default_detail = "Upstream service failed"


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "service_error",
        error=type(exc).__name__,
        status=exc.status_code,
        detail=exc.detail,
        method=request.method,
        path=request.url.path,
    )
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)
