"""Health check endpoints for liveness and readiness probes."""
from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from metering.api.deps import get_store
from metering.errors import StoreUnavailable
from metering.keystore import KeyStore

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/health", status_code=status.HTTP_200_OK, tags=["Health"])
async def health_check() -> dict[str, str]:
    """
    Liveness probe.

    Does not check external dependencies.
    """
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": "0.1.0",
    }


@router.get("/health/ready", tags=["Health"])
async def readiness_check(store: Optional[KeyStore] = Depends(get_store)) -> JSONResponse:
    """
    Readiness probe.

    Reports the store as ``absent``, ``connected`` or ``disconnected``. The
    service stays ready without a store because usage checks fail open; only
    ledger operations need it.
    """
    checks = {"store": "absent"}
    ready = True

    if store is not None:
        try:
            await store.get("health:ready")
            checks["store"] = "connected"
        except StoreUnavailable as exc:
            logger.error("store_health_check_failed", error=exc.message)
            checks["store"] = "disconnected"
            ready = False

    status_code = status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE

    return JSONResponse(
        status_code=status_code,
        content={
            "ready": ready,
            "checks": checks,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )
