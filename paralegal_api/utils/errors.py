"""
JSON error responses shared by every route
"""
from typing import Any

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse


def error_response(status_code: int, message: Any, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": message, "status_code": status_code, **extra},
    )


def register_exception_handlers(app: FastAPI, logger: structlog.stdlib.BoundLogger) -> None:
    """
    Map exceptions to ``{"error": ..., "status_code": ...}`` bodies.

    ValueError covers malformed JSON and request models that fail validation.
    """

    @app.exception_handler(HTTPException)
    async def on_http_exception(request: Request, exc: HTTPException):
        logger.warning("HTTP exception", status_code=exc.status_code, detail=exc.detail, path=request.url.path)
        return error_response(exc.status_code, exc.detail)

    @app.exception_handler(ValueError)
    async def on_value_error(request: Request, exc: ValueError):
        logger.error("Invalid request", error=str(exc), path=request.url.path)
        return error_response(400, str(exc))

    @app.exception_handler(Exception)
    async def on_unhandled(request: Request, exc: Exception):
        logger.error("Unhandled exception", error=str(exc), path=request.url.path, exc_info=True)
        return error_response(500, "Internal server error", request_id=request.headers.get("X-Request-ID"))
