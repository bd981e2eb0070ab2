"""
Shared API Middleware
=====================

Common middleware and exception handlers for the FastAPI application.
"""

import time
import uuid
from datetime import datetime, timezone
from typing import Callable

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from supportdesk.core.exceptions import (
    AgentNotAvailableException,
    AlertAlreadyResolvedException,
    ApplicationException,
    ConfigurationException,
    DomainException,
    EscalationNotAllowedException,
    InvalidStatusTransitionException,
    RateLimitExceededException,
    ResourceNotFoundException,
    SatisfactionAlreadySubmittedException,
    UnauthorizedAccessException,
    ValidationException,
)
from supportdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Adds a correlation ID to every request.

    Reuses the caller's X-Correlation-ID when present so logs can be joined
    across services.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    """Response time and request count headers."""

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.request_count = 0
        self.total_response_time = 0.0

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        self.request_count += 1

        response = await call_next(request)

        response_time = time.perf_counter() - start_time
        self.total_response_time += response_time

        response.headers["X-Response-Time"] = f"{response_time:.3f}s"
        response.headers["X-Request-Count"] = str(self.request_count)
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request with its outcome and latency."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = getattr(request.state, "correlation_id", "unknown")
        start_time = time.perf_counter()

        logger.info(
            "Request started",
            extra={
                "correlation_id": correlation_id,
                "method": request.method,
                "path": request.url.path,
                "client": request.client.host if request.client else None
            }
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                extra={
                    "correlation_id": correlation_id,
                    "method": request.method,
                    "path": request.url.path,
                    "error": str(e),
                    "response_time_ms": int((time.perf_counter() - start_time) * 1000)
                }
            )
            raise

        logger.info(
            "Request completed",
            extra={
                "correlation_id": correlation_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "response_time_ms": int((time.perf_counter() - start_time) * 1000)
            }
        )
        return response


# Most specific first
_STATUS_BY_EXCEPTION = [
    (ResourceNotFoundException, status.HTTP_404_NOT_FOUND),
    (UnauthorizedAccessException, status.HTTP_403_FORBIDDEN),
    (RateLimitExceededException, status.HTTP_429_TOO_MANY_REQUESTS),
    (ConfigurationException, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (ValidationException, status.HTTP_400_BAD_REQUEST),
    (InvalidStatusTransitionException, status.HTTP_409_CONFLICT),
    (SatisfactionAlreadySubmittedException, status.HTTP_409_CONFLICT),
    (AlertAlreadyResolvedException, status.HTTP_409_CONFLICT),
    (AgentNotAvailableException, status.HTTP_409_CONFLICT),
    (EscalationNotAllowedException, status.HTTP_409_CONFLICT),
    (DomainException, status.HTTP_400_BAD_REQUEST),
]


def status_for(exc: ApplicationException) -> int:
    for exc_type, code in _STATUS_BY_EXCEPTION:
        if isinstance(exc, exc_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def application_exception_handler(request: Request, exc: ApplicationException) -> JSONResponse:
    """Map the application exception hierarchy to HTTP responses."""
    correlation_id = getattr(request.state, "correlation_id", "unknown")
    status_code = status_for(exc)

    log = logger.error if status_code >= 500 else logger.info
    log(
        "Request rejected",
        extra={
            "correlation_id": correlation_id,
            "path": request.url.path,
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code
        }
    )

    headers = None
    if isinstance(exc, RateLimitExceededException):
        headers = {"Retry-After": "3600" if exc.details.get("window") == "hour" else "86400"}

    return JSONResponse(
        status_code=status_code,
        content={
            "detail": exc.message,
            "code": exc.code,
            "details": exc.details,
            "correlation_id": correlation_id
        },
        headers=headers
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handler for unhandled exceptions.

    Internal details are only exposed in development.
    """
    correlation_id = getattr(request.state, "correlation_id", "unknown")

    logger.error(
        "Unhandled exception",
        extra={
            "correlation_id": correlation_id,
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__,
            "error_message": str(exc)
        }
    )

    is_dev = getattr(getattr(request.app.state, "settings", None), "environment", None) == "development"

    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "correlation_id": correlation_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "debug_info": str(exc) if is_dev else None
        }
    )
