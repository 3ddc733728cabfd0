"""Global error handlers — every error leaves as JSON ``{"detail": ...}``.

Domain exceptions raised by the ingestion engine are mapped here so routers
can let them propagate.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from puipr.ingest.schemas import InvalidObservations, PayloadError
from puipr.ingest.service import IngestFailure

logger = structlog.get_logger()


def _validation_response(errors: list) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"detail": "Validation error", "errors": jsonable_encoder(errors)},
    )


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return _validation_response(exc.errors())

    @app.exception_handler(InvalidObservations)
    async def observation_validation_handler(_request: Request, exc: InvalidObservations) -> JSONResponse:
        """An ingest item is missing required fields or has the wrong types."""
        return _validation_response(exc.errors)

    @app.exception_handler(PayloadError)
    async def payload_error_handler(_request: Request, exc: PayloadError) -> JSONResponse:
        logger.info("ingest_bad_payload", error=str(exc))
        return JSONResponse(status_code=400, content={"detail": "bad json"})

    @app.exception_handler(IngestFailure)
    async def ingest_failure_handler(request: Request, exc: IngestFailure) -> JSONResponse:
        """The batch was rolled back; report which item broke it."""
        logger.error("ingest_rolled_back", path=request.url.path, index=exc.index, error=str(exc.cause))
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions — always return JSON."""
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
