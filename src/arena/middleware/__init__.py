"""Middleware registration."""

from fastapi import FastAPI

from arena.config import Settings
from arena.middleware.error_handler import setup_error_handlers
from arena.middleware.logging import setup_logging
from arena.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register logging, error handlers and request ids."""
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
