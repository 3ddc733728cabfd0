"""Middleware registration."""

from fastapi import FastAPI

from puipr.config import Settings
from puipr.middleware.error_handler import setup_error_handlers
from puipr.middleware.logging import setup_logging
from puipr.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure logging, JSON error handlers and request-id/access logging."""
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
