"""RentFlow Settlement API - FastAPI Application Entry Point."""

import logging
import os
import time
import uuid

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from rentflow_api import __version__
from rentflow_api.config.env import (
    get_cors_allowed_origins,
    is_production_env,
    validate_processing_window,
)
from rentflow_api.context import lease_id_var, payment_id_var, request_id_var, tenant_id_var
from rentflow_api.routers import health, leases, payments, wallets
from rentflow_api.schemas import ProblemDetail
from rentflow_api.settlement.errors import PROBLEM_TYPE_BASE, GatewayUnavailable, PaymentError
from rentflow_api.settlement.gateway import get_settlement_gateway
from rentflow_api.settlement.orchestrator import GATEWAY_RETRY_AFTER_SEC
from rentflow_api.settlement.promotion import get_role_promoter
from rentflow_api.utils import MoneyError, configure_json_logging

app = FastAPI(
    title="RentFlow Settlement API",
    description="Lease activation payments: required-payment tracking, USDC settlement, and guarded lease activation.",
    version=__version__,
)

# Structured JSON logging
# Set RENTFLOW_JSON_LOGS=false to disable (defaults to true)
if os.getenv("RENTFLOW_JSON_LOGS", "true").lower() != "false":
    configure_json_logging(log_level=os.getenv("LOG_LEVEL", "INFO"))
    logger = logging.getLogger(__name__)
    logger.info("Structured JSON logging enabled")

# CORS: explicit allowlist, never "*" with credentials
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_allowed_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    expose_headers=["X-Request-ID", "Retry-After"],
)


# ============================================================================
# Completion logging middleware
# ============================================================================


def _clear_settlement_context() -> None:
    lease_id_var.set("")
    payment_id_var.set("")
    tenant_id_var.set("")


@app.middleware("http")
async def http_completion_logging_middleware(request: Request, call_next):
    """Log every HTTP request completion.

    - Every HTTP request emits "http.request.completed"
    - Fields: request_id, method, path, status_code, duration_ms
    - Logs even on exceptions (status_code=500)
    - Per-request settlement contextvars are cleared before and after
    """
    _clear_settlement_context()

    start_time = time.perf_counter()
    status_code = 500  # Default to 500 in case of unhandled exception

    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        duration_ms = (time.perf_counter() - start_time) * 1000

        # TestClient may run the app in a separate async context, so tests
        # should read X-Request-ID from response headers rather than the log
        logging.getLogger(__name__).info(
            "http.request.completed",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )
        _clear_settlement_context()


# ============================================================================
# Request ID Middleware (MUST BE OUTERMOST)
# ============================================================================


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Generate and propagate request_id for observability.

    - Accepts X-Request-ID header from client (optional)
    - Generates new UUID if not provided
    - Returns X-Request-ID in response headers

    Registered last so it is the outermost middleware and the contextvar is
    set before inner middlewares run.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request_id_var.set(request_id)

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ============================================================================
# RFC 9457 Global Exception Handlers
# ============================================================================


def _trace_instance() -> str:
    request_id = request_id_var.get()
    return f"urn:rentflow:trace:{request_id}" if request_id else f"urn:rentflow:trace:{uuid.uuid4()}"


def _problem_response(problem: ProblemDetail, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=problem.status,
        content=problem.model_dump(exclude_none=True),
        media_type="application/problem+json",
        headers=headers,
    )


@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError) -> JSONResponse:
    """Render settlement errors as problem details.

    GatewayUnavailable carries Retry-After only when the transfer was
    certainly not accepted; an unknown outcome must be verified first.
    """
    problem = ProblemDetail(
        type=exc.error_type,
        title=exc.title,
        status=exc.status_code,
        detail=exc.detail,
        instance=_trace_instance(),
        error_code=exc.error_code,
    )

    headers = {}
    if isinstance(exc, GatewayUnavailable) and not exc.outcome_unknown:
        headers["Retry-After"] = str(GATEWAY_RETRY_AFTER_SEC)

    return _problem_response(problem, headers)


@app.exception_handler(MoneyError)
async def money_error_handler(request: Request, exc: MoneyError) -> JSONResponse:
    problem = ProblemDetail(
        type=f"{PROBLEM_TYPE_BASE}/invalid-amount",
        title="Invalid Amount",
        status=422,
        detail=str(exc),
        instance=_trace_instance(),
        error_code="INVALID_AMOUNT",
    )
    return _problem_response(problem)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions with RFC 9457 Problem Details format.

    Preserves dict detail fields for structured error responses.
    """
    detail_value = exc.detail if exc.detail is not None else _get_title_for_status(exc.status_code)

    problem = ProblemDetail(
        type=f"{PROBLEM_TYPE_BASE}/http-{exc.status_code}",
        title=_get_title_for_status(exc.status_code),
        status=exc.status_code,
        detail=detail_value,
        instance=_trace_instance(),
    )
    return _problem_response(problem, getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors (422, application/problem+json)."""
    first_error = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(loc) for loc in first_error.get("loc", []))
    msg = first_error.get("msg", "Validation error")

    problem = ProblemDetail(
        type=f"{PROBLEM_TYPE_BASE}/validation-error",
        title="Request Validation Failed",
        status=422,
        detail=f"Invalid field '{field}': {msg}",
        instance=_trace_instance(),
    )
    return _problem_response(problem)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions (500); the traceback is logged, never returned."""
    problem = ProblemDetail(
        type=f"{PROBLEM_TYPE_BASE}/internal-error",
        title="Internal Server Error",
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="An unexpected error occurred. Please try again later.",
        instance=_trace_instance(),
    )

    logging.getLogger(__name__).error(f"Unhandled exception: {exc}", exc_info=True)
    return _problem_response(problem)


def _get_title_for_status(status_code: int) -> str:
    """Get human-readable title for HTTP status code."""
    titles = {
        400: "Bad Request",
        401: "Unauthorized",
        402: "Payment Required",
        403: "Forbidden",
        404: "Not Found",
        405: "Method Not Allowed",
        409: "Conflict",
        422: "Unprocessable Content",
        500: "Internal Server Error",
        502: "Bad Gateway",
        503: "Service Unavailable",
    }
    return titles.get(status_code, f"HTTP {status_code}")


# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(leases.router)
app.include_router(payments.router)
app.include_router(wallets.router)


@app.get("/")
async def root() -> dict[str, str]:
    return {"service": "rentflow-settlement-api", "version": __version__, "docs": "/docs"}


# ============================================================================
# Application Lifecycle
# ============================================================================


@app.on_event("startup")
async def startup_event():
    """Validate timeouts and resolve external collaborators on startup.

    In production a missing CIRCLE_API_KEY or ACCOUNT_ROLE_SERVICE_URL
    stops the process here instead of failing the first payment.
    """
    validate_processing_window()
    if is_production_env():
        get_settlement_gateway()
        get_role_promoter()
