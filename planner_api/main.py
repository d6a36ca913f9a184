"""College Planner API - FastAPI application entry point."""

import logging
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from planner_api import __version__
from planner_api.config.env import (
    get_cors_allowed_origins,
    get_log_level,
    is_development_env,
    json_logs_enabled,
)
from planner_api.context import payment_id_var, report_id_var, request_id_var
from planner_api.errors import AuthenticationError, PlannerError, RateLimitedError
from planner_api.rate_limiter import build_report_rate_limiter
from planner_api.routers import auth, health, payment, report
from planner_api.schemas import ErrorResponse
from planner_api.utils import configure_json_logging
from planner_api.utils.sanitize import sanitize_str

logger = logging.getLogger(__name__)

_STATUS_CODES = {
    400: "VALIDATION_ERROR",
    401: "AUTHENTICATION_REQUIRED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    429: "TOO_MANY_REQUESTS",
}


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request_id_var.get()


def _error_response(
    request: Request,
    status_code: int,
    *,
    message: str,
    error_code: str,
    detail: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Stable failure body: {success, message, errorCode, requestId[, detail]}."""
    body = ErrorResponse(
        message=message,
        error_code=error_code,
        request_id=_request_id(request) or None,
        detail=sanitize_str(detail) if detail and is_development_env() else None,
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(by_alias=True, exclude_none=True),
        headers=headers,
    )


async def planner_error_handler(request: Request, exc: PlannerError) -> JSONResponse:
    log_extra = {
        "event": "http.error",
        "error_code": exc.error_code,
        "status_code": exc.status_code,
        "path": request.url.path,
    }
    if exc.status_code >= 500:
        logger.error(exc.message, extra={**log_extra, "error": sanitize_str(exc.detail)})
    else:
        logger.info(exc.message, extra=log_extra)

    headers: dict[str, str] = {}
    if isinstance(exc, AuthenticationError):
        headers["WWW-Authenticate"] = "Bearer"
    if isinstance(exc, RateLimitedError):
        headers.update(exc.headers)
        headers["Retry-After"] = str(exc.retry_after)

    return _error_response(
        request,
        exc.status_code,
        message=exc.message,
        error_code=exc.error_code,
        detail=exc.detail,
        headers=headers or None,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Schema validation failures are caller errors: 400, not 422."""
    first_error = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(loc) for loc in first_error.get("loc", []) if loc != "body")
    msg = first_error.get("msg", "Validation error")
    message = f"Invalid field '{field}': {msg}" if field else "Invalid request body"

    return _error_response(request, 400, message=message, error_code="VALIDATION_ERROR")


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return _error_response(
        request,
        exc.status_code,
        message=message,
        error_code=_STATUS_CODES.get(exc.status_code, "HTTP_ERROR"),
        headers=getattr(exc, "headers", None),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled exception",
        extra={"event": "http.unhandled_exception", "path": request.url.path, "error_type": type(exc).__name__},
        exc_info=(type(exc), exc, exc.__traceback__),
    )
    return _error_response(
        request,
        500,
        message="An unexpected error occurred. Please try again later.",
        error_code="INTERNAL_ERROR",
        detail=str(exc),
    )


def create_app() -> FastAPI:
    """Application factory.

    Configures JSON logging (PLANNER_JSON_LOGS=false disables it), CORS,
    request-id propagation, completion logging, error handlers and routers.
    """
    if json_logs_enabled():
        configure_json_logging(log_level=get_log_level())

    new_app = FastAPI(
        title="College Planner API",
        description="College-planning reports with paid entitlement and payment reconciliation.",
        version=__version__,
    )

    new_app.add_middleware(
        CORSMiddleware,
        allow_origins=get_cors_allowed_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID", "RateLimit-Policy", "RateLimit", "Retry-After"],
    )

    @new_app.middleware("http")
    async def http_completion_logging_middleware(request: Request, call_next):
        """Log every request completion (status, duration); clears per-request context."""
        report_id_var.set("")
        payment_id_var.set("")

        start_time = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.info(
                "http.request.completed",
                extra={
                    "event": "http.request.completed",
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": status_code,
                    "duration_ms": round(duration_ms, 2),
                },
            )
            report_id_var.set("")
            payment_id_var.set("")

    # Registered last so it is the outermost middleware.
    @new_app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request_id_var.set(request_id)
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    new_app.add_exception_handler(PlannerError, planner_error_handler)
    new_app.add_exception_handler(RequestValidationError, validation_exception_handler)
    new_app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    new_app.add_exception_handler(Exception, general_exception_handler)

    new_app.include_router(health.router)
    new_app.include_router(report.router)
    new_app.include_router(payment.router)
    new_app.include_router(auth.router)

    new_app.state.rate_limiter = build_report_rate_limiter()

    return new_app


app = create_app()
