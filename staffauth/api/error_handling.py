from __future__ import annotations

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from staffauth.api.schemas import Envelope, ErrorBody
from staffauth.logging import get_correlation_id, get_logger
from staffauth.service.errors import DependencyError, ServiceError
from staffauth.storage.errors import ConstraintViolation, StorageUnavailable

logger = get_logger(__name__)

GENERIC_ERROR_MESSAGE = "internal error, try again"

# Stable error codes keyed by HTTP status
_STATUS_TO_CODE = {
    400: "validation_error",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    409: "conflict",
    500: "server_error",
}


def _error_code_for_status(status_code: int) -> str:
    """Map HTTP status to a stable error code."""
    return _STATUS_TO_CODE.get(status_code, "server_error")


def _error_response(
    status_code: int,
    message: str,
    details: dict | list | None = None,
    code: str | None = None,
) -> JSONResponse:
    """Build the error envelope response."""
    error_code = code or _error_code_for_status(status_code)
    error_body = ErrorBody(code=error_code, message=message, details=details)
    envelope = Envelope(status="error", error=error_body)
    request_id = get_correlation_id()
    if request_id:
        envelope.request_id = request_id
    return JSONResponse(status_code=status_code, content=envelope.model_dump())


def register_exception_handlers(app: FastAPI) -> None:
    """Install consistent exception handlers for domain and storage errors."""

    @app.exception_handler(ConstraintViolation)
    async def handle_constraint_violation(request: Request, exc: ConstraintViolation):
        logger.warning(
            "constraint_violation",
            path=request.url.path,
            method=request.method,
            message=exc.message,
            detail=exc.detail,
        )
        return _error_response(409, exc.message, exc.detail, code="conflict")

    @app.exception_handler(DependencyError)
    async def handle_dependency_error(request: Request, exc: DependencyError):
        # Full cause stays in the logs; callers only get the generic message
        logger.error(
            "dependency_error",
            path=request.url.path,
            method=request.method,
            dependency=exc.dependency,
            error_type=type(exc.cause).__name__ if exc.cause else None,
            error=str(exc.cause) if exc.cause else exc.message,
        )
        return _error_response(500, GENERIC_ERROR_MESSAGE, code="server_error")

    @app.exception_handler(StorageUnavailable)
    async def handle_storage_unavailable(request: Request, exc: StorageUnavailable):
        logger.error(
            "storage_unavailable",
            path=request.url.path,
            method=request.method,
            backend=exc.backend,
            error=exc.message,
        )
        return _error_response(500, GENERIC_ERROR_MESSAGE, code="server_error")

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        error_code = getattr(exc, "error_code", None)
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "service_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=error_code,
            message=exc.message,
            detail=exc.detail,
        )
        if exc.status_code >= 500:
            return _error_response(exc.status_code, GENERIC_ERROR_MESSAGE, code=error_code)
        return _error_response(
            exc.status_code, exc.message, exc.detail or None, code=error_code
        )

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "http error"
        details = exc.detail if isinstance(exc.detail, dict) else None
        if exc.status_code >= 500:
            logger.error(
                "http_error_fallback",
                path=request.url.path,
                method=request.method,
                status_code=exc.status_code,
                message=message,
            )
        return _error_response(exc.status_code, message, details)

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return _error_response(500, GENERIC_ERROR_MESSAGE, code="server_error")
