"""Error Handlers — global exception handlers for the diagnostics API.

Invariants:
    - BackboneError → its own http_status and to_response() envelope
    - RequestValidationError → 400 with field-level details
    - Exception (catch-all) → 500, never leaks internal details
    - Log level follows severity: LOW/MEDIUM warn, HIGH/CRITICAL error

Design Decisions:
    - Module-level handlers registered through add_exception_handler: testable without an app
    - Extracted from main.py (ADR: ExMA import fan-out < 10)
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from backbone.core.errors import BackboneError, ErrorSeverity

logger = logging.getLogger(__name__)

_WARN_ONLY = {ErrorSeverity.LOW, ErrorSeverity.MEDIUM}


def register_error_handlers(app: FastAPI) -> None:
    """Register all global error handlers on the FastAPI app."""
    app.add_exception_handler(BackboneError, backbone_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)


async def backbone_error_handler(request: Request, exc: BackboneError) -> JSONResponse:
    level = logging.WARNING if exc.severity in _WARN_ONLY else logging.ERROR
    logger.log(
        level, f"{type(exc).__name__}: {exc.message}",
        extra={
            "error_code": exc.code,
            "severity": exc.severity.value,
            "path": request.url.path,
        },
    )
    return JSONResponse(status_code=exc.http_status, content=exc.to_response())


async def validation_error_handler(
    request: Request, exc: RequestValidationError,
) -> JSONResponse:
    logger.warning(
        f"Rejected request parameters: {exc.errors()}",
        extra={"path": request.url.path},
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Invalid request data",
                "severity": ErrorSeverity.LOW.value,
                "details": [_field_error(e) for e in exc.errors()],
            },
        },
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all — never leaks internal details."""
    logger.error(
        f"Unhandled exception: {exc}",
        extra={"path": request.url.path},
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
                "severity": ErrorSeverity.CRITICAL.value,
            },
        },
    )


def _field_error(error: dict) -> dict:
    return {
        "field": ".".join(str(loc) for loc in error["loc"]),
        "message": error["msg"],
        "type": error["type"],
    }
