"""Usage counter API endpoints."""
from fastapi import APIRouter, Depends, Query, status

from metering.api.deps import get_metering_service
from metering.schemas.usage import Feature, IncrementResult, Owner, OwnerType, Plan, RateIncrementRequest, UsageSummary
from metering.services.metering_service import MeteringService

router = APIRouter(prefix="/usage", tags=["usage"])


@router.post("/{feature}/increment", response_model=IncrementResult)
async def increment_usage(
    feature: Feature,
    payload: RateIncrementRequest,
    service: MeteringService = Depends(get_metering_service),
) -> IncrementResult:
    """
    Count one attempt of a feature for an owner.

    The attempt is always counted; ``allowed`` tells the caller whether to
    proceed. When the store is unavailable the check fails open.
    """
    return await service.check_and_increment_rate(feature, payload.owner, payload.limit)


@router.get("/{feature}", response_model=UsageSummary)
async def get_usage(
    feature: Feature,
    owner_type: OwnerType = Query(...),
    owner_id: str = Query(..., min_length=1),
    plan: Plan = Query(default="free"),
    service: MeteringService = Depends(get_metering_service),
) -> UsageSummary:
    """Current usage, limit and reset time for display."""
    owner = Owner(owner_type=owner_type, owner_id=owner_id, plan=plan)
    return await service.get_usage(feature, owner)


@router.delete("/{feature}", status_code=status.HTTP_204_NO_CONTENT)
async def reset_usage(
    feature: Feature,
    owner_type: OwnerType = Query(...),
    owner_id: str = Query(..., min_length=1),
    service: MeteringService = Depends(get_metering_service),
) -> None:
    """Clear an owner's counters for a feature under both key layouts."""
    await service.reset_usage(feature, Owner(owner_type=owner_type, owner_id=owner_id))
