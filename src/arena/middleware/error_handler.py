"""Global error handlers: engine errors map to consistent JSON responses.

    ValidationError   -> 422
    NotFound          -> 404
    InvalidTransition -> 409 (ContestClosed included)
    StoreError        -> 503
    anything else     -> 500
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from arena.errors import ArenaError, InvalidTransition, NotFound, StoreError, ValidationError

logger = structlog.get_logger()

_STATUS_CODES: list[tuple[type[ArenaError], int]] = [
    (ValidationError, 422),
    (NotFound, 404),
    (InvalidTransition, 409),
    (StoreError, 503),
]


def status_for(exc: ArenaError) -> int:
    for error_type, status in _STATUS_CODES:
        if isinstance(exc, error_type):
            return status
    return 500


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "errors": exc.errors()},
        )

    @app.exception_handler(ArenaError)
    async def arena_exception_handler(request: Request, exc: ArenaError) -> JSONResponse:
        status = status_for(exc)
        logger.warning(
            "request_rejected",
            path=request.url.path,
            error_type=type(exc).__name__,
            error=str(exc),
            status=status,
        )
        return JSONResponse(
            status_code=status,
            content={"detail": str(exc), "error": type(exc).__name__},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions; always returns JSON."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )
