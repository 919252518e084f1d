# shared/middleware.py
"""
Request validation, security headers and standardized error responses
for the sweetmagic API.
"""

import logging
import time
from typing import Any, Callable, Optional

from fastapi import HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

logger = logging.getLogger(__name__)

SKIP_PATHS = ("/health", "/docs", "/redoc", "/openapi.json", "/favicon.ico")


def error_response(
    status_code: int, message: Any, details: Optional[Any] = None
) -> JSONResponse:
    """Standard error envelope shared by middleware and exception handlers"""
    content = {
        "error": True,
        "message": message,
        "status_code": status_code,
        "timestamp": time.time(),
    }
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


class RequestValidationMiddleware(BaseHTTPMiddleware):
    """
    Request size limits, content type checks and request logging.
    """

    def __init__(
        self,
        app: ASGIApp,
        max_request_size: int = 1024 * 1024,
        allowed_content_types: Optional[list] = None,
        log_requests: bool = True,
    ):
        super().__init__(app)
        self.max_request_size = max_request_size
        self.allowed_content_types = allowed_content_types or [
            "application/json",
            "application/x-www-form-urlencoded",
            "text/plain",
        ]
        self.log_requests = log_requests

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path.startswith(SKIP_PATHS):
            return await call_next(request)

        start_time = time.time()

        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > self.max_request_size:
            return error_response(
                413,
                f"Request too large. Maximum size: {self.max_request_size} bytes",
                {"max_size": self.max_request_size, "received_size": int(content_length)},
            )

        if request.method in ("POST", "PUT", "PATCH"):
            content_type = request.headers.get("content-type", "").split(";")[0]
            if content_type and content_type not in self.allowed_content_types:
                return error_response(
                    415,
                    f"Unsupported content type: {content_type}",
                    {"allowed_types": self.allowed_content_types},
                )

        if self.log_requests:
            client = request.client.host if request.client else "unknown"
            logger.info(f"{request.method} {request.url.path} - Client: {client}")

        response = await call_next(request)

        if self.log_requests:
            process_time = time.time() - start_time
            logger.info(
                f"{request.method} {request.url.path} - {response.status_code} - {process_time:.3f}s"
            )

        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses"""

    def __init__(self, app: ASGIApp, service_name: str = "sweetmagic"):
        super().__init__(app)
        self.service_name = service_name

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["X-Service-Name"] = self.service_name

        # Generation results are per-user, never let intermediaries cache them
        if "json" in response.headers.get("content-type", ""):
            response.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"
            response.headers["Pragma"] = "no-cache"

        return response


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors"""
    return error_response(422, "Validation error", exc.errors())


async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions"""
    return error_response(exc.status_code, exc.detail)


async def general_exception_handler(request: Request, exc: Exception):
    """Log the full error, return a sanitized 500"""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True)
    return error_response(500, "Internal server error")


def add_middleware_to_app(
    app,
    service_name: str,
    max_request_size: int = 1024 * 1024,
    log_requests: bool = True,
):
    """
    Add all standard middleware and exception handlers to a FastAPI app

    Args:
        app: FastAPI application instance
        service_name: Name of the service (for headers and logging)
        max_request_size: Maximum request size in bytes
        log_requests: Whether to log requests
    """
    # Last added runs first
    app.add_middleware(SecurityHeadersMiddleware, service_name=service_name)
    app.add_middleware(
        RequestValidationMiddleware,
        max_request_size=max_request_size,
        log_requests=log_requests,
    )

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
