"""FastAPI application entry point."""
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from metering.api.v1 import charges, credits, health, usage
from metering.config import settings
from metering.errors import MeteringError, StoreUnavailable, UsageLimitExceeded
from metering.keystore import build_key_store
from metering.middleware.logging import LoggingMiddleware, setup_logging
from metering.middleware.metrics import MetricsMiddleware
from metering.schemas.error import REMEDIATION_HINTS, ErrorCode, ErrorDetail, ErrorResponse

# Setup structured logging
setup_logging()
logger = structlog.get_logger(__name__)

STORE_RETRY_AFTER_SECONDS = 30


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Bind the key-value store on startup and release it on shutdown."""
    logger.info("application_starting", env=settings.app_env, rolling_window=settings.usage_rolling_window)
    if not hasattr(app.state, "store"):
        app.state.store = build_key_store(settings)
    yield
    logger.info("application_shutting_down")
    close = getattr(app.state.store, "close", None)
    if close is not None:
        await close()


app = FastAPI(
    title="Usage Metering Service",
    description="Usage counters, monthly quotas and prepaid credit ledger",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(MetricsMiddleware)
app.add_middleware(LoggingMiddleware)

# Mount Prometheus metrics endpoint
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


def _request_id(request: Request) -> str:
    return request.headers.get("x-request-id", f"req_{uuid.uuid4().hex[:12]}")


@app.exception_handler(MeteringError)
async def metering_exception_handler(request: Request, exc: MeteringError) -> JSONResponse:
    """
    Map metering errors onto structured responses.

    402 and 429 are expected rejections and logged at info level; 503 carries
    a Retry-After header.
    """
    request_id = _request_id(request)
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "metering_error",
        path=request.url.path,
        method=request.method,
        request_id=request_id,
        error_code=exc.code,
        status_code=exc.status_code,
    )

    message = exc.message
    if exc.status_code >= 500 and settings.app_env == "production":
        message = "Metering temporarily unavailable"

    body = ErrorResponse(
        error=type(exc).__name__,
        message=message,
        details=[ErrorDetail(code=exc.code, message=message)],
        remediation=REMEDIATION_HINTS.get(exc.code),
        request_id=request_id,
    )

    headers = {}
    if isinstance(exc, StoreUnavailable):
        headers["Retry-After"] = str(STORE_RETRY_AFTER_SECONDS)
    elif isinstance(exc, UsageLimitExceeded):
        retry_after = exc.reset_at - int(datetime.now(timezone.utc).timestamp())
        headers["Retry-After"] = str(max(1, retry_after))

    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(body),
        headers=headers or None,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with field-level validation errors."""
    request_id = _request_id(request)

    details = [
        ErrorDetail(
            code="validation_error",
            message=error["msg"],
            field=".".join(str(loc) for loc in error["loc"]),
            value=error.get("input"),
        )
        for error in exc.errors()
    ]

    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        request_id=request_id,
        error_count=len(details),
    )

    body = ErrorResponse(
        error="ValidationError",
        message="Request validation failed",
        details=details,
        remediation="Check the API documentation for correct request format at /docs",
        request_id=request_id,
    )
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=jsonable_encoder(body))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return a safe 500 for anything unexpected; the stack trace goes to the log only."""
    request_id = _request_id(request)

    logger.exception(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        request_id=request_id,
        exception_type=type(exc).__name__,
    )

    message = str(exc) if settings.debug else "Internal server error"
    body = ErrorResponse(
        error="InternalServerError",
        message="An unexpected error occurred",
        details=[ErrorDetail(code=ErrorCode.INTERNAL_ERROR, message=message)],
        remediation="Please contact support with the request ID",
        request_id=request_id,
    )
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=jsonable_encoder(body))


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """Root endpoint with API information."""
    return {
        "service": "Usage Metering Service",
        "version": "0.1.0",
        "status": "operational",
        "docs": "/docs",
    }


app.include_router(health.router, tags=["Health"])
app.include_router(usage.router, prefix="/v1", tags=["Usage"])
app.include_router(charges.router, prefix="/v1", tags=["Charges"])
app.include_router(credits.router, prefix="/v1", tags=["Credits"])
