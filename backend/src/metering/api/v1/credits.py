"""Credit management API endpoints."""
from fastapi import APIRouter, Depends, Query, status

from metering.api.deps import get_metering_service
from metering.schemas.ledger import (
    BalanceSnapshot,
    CreditDeduction,
    CreditDeductRequest,
    CreditPackRequest,
    PackApplication,
)
from metering.schemas.usage import Feature, Owner, Plan
from metering.services.metering_service import MeteringService

router = APIRouter(tags=["credits"])


@router.post("/credits/packs", response_model=PackApplication, status_code=status.HTTP_200_OK)
async def apply_credit_pack(
    payload: CreditPackRequest,
    service: MeteringService = Depends(get_metering_service),
) -> PackApplication:
    """
    Apply a purchased credit pack.

    Called by the billing webhook processor. Redelivery of the same
    ``pack_id`` is a no-op and reports ``applied: false``.
    """
    return await service.apply_credit_pack(payload.owner_id, payload.pack_id, payload.tenths)


@router.post("/credits/deduct", response_model=CreditDeduction)
async def deduct_credits(
    payload: CreditDeductRequest,
    service: MeteringService = Depends(get_metering_service),
) -> CreditDeduction:
    """
    Manually deduct whole credits from a user.

    Disabled in production unless ``ADMIN_CREDIT_ADJUST_ENABLED`` is set.
    """
    return await service.deduct_credits(
        payload.owner_id,
        payload.amount_credits,
        idempotency_key=payload.idempotency_key,
        strict=payload.strict,
    )


@router.get("/balances/{owner_id}", response_model=BalanceSnapshot)
async def get_balance_snapshot(
    owner_id: str,
    plan: Plan = Query(default="free"),
    feature: Feature = Query(default="ai-video"),
    service: MeteringService = Depends(get_metering_service),
) -> BalanceSnapshot:
    """Credits and remaining monthly quota of a signed-in user."""
    owner = Owner(owner_type="user", owner_id=owner_id, plan=plan)
    return await service.get_balance_snapshot(owner, feature)
