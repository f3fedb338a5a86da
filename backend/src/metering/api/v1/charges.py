"""Job charge API endpoints."""
from fastapi import APIRouter, Depends

from metering.api.deps import get_metering_service
from metering.schemas.ledger import ChargeReceipt, ChargeRequest
from metering.services.metering_service import MeteringService

router = APIRouter(prefix="/charges", tags=["charges"])


@router.post("", response_model=ChargeReceipt)
async def charge_job(
    payload: ChargeRequest,
    service: MeteringService = Depends(get_metering_service),
) -> ChargeReceipt:
    """
    Charge a job before it is requested from its provider.

    Credits are spent first, then the monthly quota. Repeating the call with
    the same ``external_job_id`` returns the original receipt without a second
    debit, so callers that time out must retry with the same job ID.

    Responds 402 when neither pool covers the charge and 429 when a guest
    reached the free-tier limit.
    """
    return await service.charge_job(payload.feature, payload.owner, payload.needed_tenths, payload.external_job_id)
