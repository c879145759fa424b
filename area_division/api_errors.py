"""Standardised JSON error envelope for the area division gateway.

All errors returned by the gateway share the same shape::

    {"error": "<human-readable message>", "code": "<ERROR_CODE>", "status": <http_status>}

Usage
-----
Raise ``AreaAPIError`` anywhere inside an endpoint to return a structured
error response::

    from area_division.api_errors import AreaAPIError

    raise AreaAPIError("NODE_NOT_RUNNING", "Area division node is not running", 503)

A :class:`~area_division.errors.NotReadyError` escaping an endpoint becomes a
503 with code ``NOT_READY`` and the list of missing inputs, so callers know to
retry.  Call ``register_error_handlers(app)`` once at application startup.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

from area_division.errors import InvalidInputError, NotReadyError

logger = logging.getLogger("AreaDivision.Gateway")


class AreaAPIError(Exception):
    """Raise this to return a structured JSON error from any endpoint."""

    def __init__(self, code: str, message: str, status: int = 400):
        self.code = code
        self.message = message
        self.status = status
        super().__init__(message)


def register_error_handlers(app) -> None:
    """Install global exception handlers on the FastAPI *app* instance."""

    @app.exception_handler(AreaAPIError)
    async def _area_error_handler(request: Request, exc: AreaAPIError):
        return JSONResponse(
            status_code=exc.status,
            content={"error": exc.message, "code": exc.code, "status": exc.status},
        )

    @app.exception_handler(NotReadyError)
    async def _not_ready_handler(request: Request, exc: NotReadyError):
        return JSONResponse(
            status_code=503,
            content={
                "error": str(exc),
                "code": "NOT_READY",
                "status": 503,
                "missing": exc.missing,
            },
            headers={"Retry-After": "1"},
        )

    @app.exception_handler(InvalidInputError)
    async def _invalid_input_handler(request: Request, exc: InvalidInputError):
        return JSONResponse(
            status_code=422,
            content={"error": str(exc), "code": "INVALID_INPUT", "status": 422},
        )

    @app.exception_handler(HTTPException)
    async def _http_error_handler(request: Request, exc: HTTPException):
        detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": detail,
                "code": f"HTTP_{exc.status_code}",
                "status": exc.status_code,
            },
        )

    @app.exception_handler(Exception)
    async def _unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled gateway error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "code": "INTERNAL_ERROR",
                "status": 500,
            },
        )
