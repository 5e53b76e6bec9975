"""Global exception handlers for structured JSON error responses."""

from __future__ import annotations

import logging
import traceback

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from medicare.formulary.exceptions import FormularyError

logger = logging.getLogger("medicare.errors")


def _error(status_code: int, detail) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": True, "status_code": status_code, "detail": detail},
    )


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Return structured JSON for all HTTP exceptions (4xx/5xx)."""
    return _error(exc.status_code, exc.detail)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return structured JSON for request validation errors (422)."""
    return _error(422, exc.errors())


async def formulary_exception_handler(
    request: Request, exc: FormularyError
) -> JSONResponse:
    """Map formulary failures to their status codes.

    Query errors are the caller's fault and logged at INFO; everything else
    means the data could not be reached and is logged as a warning.
    """
    level = logging.INFO if exc.status_code < 500 else logging.WARNING
    logger.log(
        level,
        "%s on %s %s: %s",
        type(exc).__name__,
        request.method,
        request.url.path,
        exc.detail,
    )
    return _error(exc.status_code, exc.detail)


async def unhandled_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """Catch-all for unhandled exceptions.

    Logs the full traceback server-side but returns a generic 500 response
    with no internal details leaked.
    """
    logger.error(
        "Unhandled exception on %s %s:\n%s",
        request.method,
        request.url.path,
        traceback.format_exc(),
    )
    return _error(500, "Internal server error")
