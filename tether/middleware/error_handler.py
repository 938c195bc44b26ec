"""
Global Error Handling
Maps the sync error taxonomy to HTTP responses, and catches everything else

MAPPING:
- AuthenticationError                -> 401
- UnsupportedProvider                -> 400
- LinkedAccountNotFound              -> 404
- ConfigurationError                 -> 500 (generic body, details only in logs)
- any other SyncError                -> 502 (an upstream provider or storage failed)
- anything unhandled                 -> 500 (ErrorHandlerMiddleware)
"""
import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from tether.core.errors import (
    AuthenticationError,
    ConfigurationError,
    LinkedAccountNotFound,
    SyncError,
    UnsupportedProvider,
)

logger = logging.getLogger(__name__)


def status_for(exc: SyncError) -> int:
    if isinstance(exc, AuthenticationError):
        return 401
    if isinstance(exc, UnsupportedProvider):
        return 400
    if isinstance(exc, LinkedAccountNotFound):
        return 404
    if isinstance(exc, ConfigurationError):
        return 500
    return 502


async def sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
    status_code = status_for(exc)

    if isinstance(exc, ConfigurationError):
        logger.error(f"Configuration error on {request.url.path}: {exc}")
        detail = "Server misconfigured"
    elif status_code == 502:
        logger.error(f"Upstream failure on {request.url.path}: {exc}")
        detail = "Sync failed"
    else:
        logger.warning(f"{type(exc).__name__} on {request.url.path}: {exc}")
        detail = str(exc) or type(exc).__name__

    return JSONResponse(
        status_code=status_code,
        content={"detail": detail, "error_type": type(exc).__name__},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SyncError, sync_error_handler)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Global error handler middleware.
    Catches all unhandled exceptions and returns JSON error responses.
    """

    async def dispatch(self, request: Request, call_next):
        try:
            response = await call_next(request)
            return response
        except Exception as exc:
            logger.error(
                "Unhandled exception during request",
                exc_info=True,
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "client_host": request.client.host if request.client else None
                }
            )

            return JSONResponse(
                status_code=500,
                content={
                    "detail": "Internal server error",
                    "error_type": type(exc).__name__,
                    "path": request.url.path
                }
            )
