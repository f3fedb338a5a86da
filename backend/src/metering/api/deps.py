"""FastAPI dependencies for the store binding and metering services."""
from typing import Optional

from fastapi import Depends, Request

from metering.keystore import KeyStore
from metering.services.metering_service import MeteringService


async def get_store(request: Request) -> Optional[KeyStore]:
    """
    Store binding created at application startup.

    Returns:
        KeyStore, or None when the binding is not configured
    """
    return getattr(request.app.state, "store", None)


async def get_metering_service(store: Optional[KeyStore] = Depends(get_store)) -> MeteringService:
    """Metering service bound to the request's store."""
    return MeteringService(store)
