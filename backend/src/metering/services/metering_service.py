"""Entry points used by request handlers and webhook processors."""
import math
import time
import uuid
from numbers import Real
from typing import Any, Callable, Optional

import structlog

from metering.config import Settings, settings
from metering.errors import CreditAdjustDisabled, StoreUnavailable
from metering.keys import (
    FEATURES,
    LEGACY_USAGE_NAMESPACE,
    QUOTA_NAMESPACE,
    USAGE_NAMESPACE,
    ledger_key,
    mask_owner_id,
)
from metering.keystore import KeyStore
from metering.schemas.ledger import BalanceSnapshot, ChargeReceipt, CreditDeduction, PackApplication
from metering.schemas.usage import IncrementResult, Owner, UsageSummary
from metering.services.charge_router import ChargeRouter
from metering.services.credit_ledger import CreditLedger
from metering.services.entitlements import get_entitlements
from metering.services.quota_ledger import MonthlyQuotaLedger
from metering.services.rate_counter import RateCounter
from metering.services.schema_shim import SchemaMigrationShim, rolling_window_flag

logger = structlog.get_logger(__name__)

MIN_DEDUCT_CREDITS = 1
MAX_DEDUCT_CREDITS = 100000
DEFAULT_DEDUCT_CREDITS = 1000


class MeteringService:
    """Service wiring the counters and ledgers onto one store binding."""

    def __init__(
        self,
        store: Optional[KeyStore],
        config: Settings = settings,
        clock: Callable[[], float] = time.time,
        rolling_flag: Callable[[], bool] = rolling_window_flag,
    ):
        """
        Initialize metering service.

        Args:
            store: Store binding, None when not configured
            config: Application settings
            clock: Unix-seconds clock shared by all components
            rolling_flag: Rollout flag for the rolling usage key layout
        """
        self.store = store
        self.config = config
        self.clock = clock
        self.shim = SchemaMigrationShim(rolling_flag, clock)
        self.rate_counter = RateCounter(store, self.shim, clock)
        self.credits = CreditLedger(store, clock)
        self.quota = MonthlyQuotaLedger(store, clock)
        self.router = ChargeRouter(self.credits, self.quota, self.rate_counter, config, clock)

    async def check_and_increment_rate(self, feature: str, owner: Owner, limit: Optional[int] = None) -> IncrementResult:
        """
        Count one attempt of a feature and report whether it is within the limit.

        Args:
            feature: Metered feature
            owner: Billing subject
            limit: Explicit limit; defaults to the plan's daily limit

        Returns:
            Increment result, allowed when the store is unavailable
        """
        entitlement = get_entitlements(owner.owner_type, owner.plan, feature, self.config)
        if limit is None:
            limit = entitlement.daily_limit

        return await self.rate_counter.check_and_increment(
            feature, owner.owner_type, owner.owner_id, limit, self.config.rolling_window_seconds
        )

    async def charge_job(self, feature: str, owner: Owner, needed_tenths: int, external_job_id: str) -> ChargeReceipt:
        return await self.router.charge_job(feature, owner, needed_tenths, external_job_id)

    async def apply_credit_pack(self, owner_id: str, pack_id: str, tenths: int) -> PackApplication:
        return await self.credits.add_pack_tenths(owner_id, pack_id, tenths)

    async def get_balance_snapshot(self, owner: Owner, feature: str = "ai-video") -> BalanceSnapshot:
        """
        Current credits and remaining monthly quota for display.

        Guests cannot hold either, so no store access happens for them.
        """
        entitlement = get_entitlements(owner.owner_type, owner.plan, feature, self.config)
        year_month = self.quota.current_year_month()

        if not owner.is_user:
            return BalanceSnapshot(
                owner_id=owner.owner_id, credits_tenths=0, quota_remaining_tenths=0, year_month=year_month
            )

        credits_tenths = await self.credits.balance_tenths(owner.owner_id)
        remaining = await self.quota.remaining_tenths(
            owner.owner_id, entitlement.monthly_tenths, year_month, feature
        )
        return BalanceSnapshot(
            owner_id=owner.owner_id,
            credits_tenths=credits_tenths,
            quota_remaining_tenths=remaining,
            year_month=year_month,
        )

    async def get_usage(self, feature: str, owner: Owner) -> UsageSummary:
        entitlement = get_entitlements(owner.owner_type, owner.plan, feature, self.config)
        usage = await self.rate_counter.get_usage(feature, owner.owner_type, owner.owner_id)
        if usage is None:
            return UsageSummary(used=0, limit=entitlement.daily_limit)
        return UsageSummary(used=usage.count, limit=entitlement.daily_limit, reset_at=usage.reset_at)

    async def reset_usage(self, feature: str, owner: Owner) -> None:
        get_entitlements(owner.owner_type, owner.plan, feature, self.config)
        await self.rate_counter.reset_usage(feature, owner.owner_type, owner.owner_id)

    async def deduct_credits(
        self,
        owner_id: str,
        amount_credits: Any = DEFAULT_DEDUCT_CREDITS,
        idempotency_key: Optional[str] = None,
        strict: bool = True,
    ) -> CreditDeduction:
        """
        Manually remove whole credits from a balance.

        Args:
            owner_id: User ID
            amount_credits: Whole credits; non-numeric values fall back to the default,
                values are floored and clamped to 1..100000
            idempotency_key: Caller key, truncated to 64 characters; generated when missing
            strict: Reject when the balance is short instead of deducting what is left

        Returns:
            Deduction result

        Raises:
            CreditAdjustDisabled: In production unless explicitly enabled
            InsufficientCredits: In strict mode when the balance is short
        """
        if self.config.app_env == "production" and not self.config.admin_credit_adjust_enabled:
            raise CreditAdjustDisabled("Credit adjust is disabled")

        credits = _parse_credit_amount(amount_credits)
        requested = credits * 10

        idem = (idempotency_key or "").strip()[:64]
        if not idem:
            idem = f"{int(self.clock() * 1000)}-{uuid.uuid4().hex[:8]}"
        full_key = f"admin-deduct:{idem}"

        # The ledger replays a known key before comparing against the balance
        balance = await self.credits.balance_tenths(owner_id)
        amount = requested if strict else min(requested, balance)
        if amount <= 0:
            return CreditDeduction(
                owner_id=owner_id,
                requested_tenths=requested,
                deducted_tenths=0,
                balance_tenths=balance,
                idempotency_key=full_key,
            )

        consumption = await self.credits.consume_tenths(owner_id, amount, full_key)
        logger.info(
            "credits_deducted",
            owner_id=mask_owner_id(owner_id),
            requested_tenths=requested,
            deducted_tenths=consumption.tenths,
            balance_tenths=consumption.new_balance_tenths,
            replayed=consumption.replayed,
        )
        return CreditDeduction(
            owner_id=owner_id,
            requested_tenths=requested,
            deducted_tenths=consumption.tenths,
            balance_tenths=consumption.new_balance_tenths,
            idempotency_key=full_key,
            replayed=consumption.replayed,
        )

    async def list_owner_keys(self, owner: Owner) -> list[str]:
        """All usage and quota keys held by an owner, across features."""
        if self.store is None:
            raise StoreUnavailable("Metering store binding is not configured", operation="list")

        keys = []
        for namespace in (USAGE_NAMESPACE, LEGACY_USAGE_NAMESPACE, QUOTA_NAMESPACE):
            for feature in FEATURES:
                base = ledger_key(namespace, feature, owner.owner_type, owner.owner_id)
                for key in await self.store.list(base):
                    if key == base or key.startswith(base + ":"):
                        keys.append(key)
        return sorted(keys)


def _parse_credit_amount(value: Any) -> int:
    if isinstance(value, str) and value.strip():
        try:
            value = float(value.strip())
        except ValueError:
            value = DEFAULT_DEDUCT_CREDITS
    if isinstance(value, bool) or not isinstance(value, Real) or not math.isfinite(value):
        value = DEFAULT_DEDUCT_CREDITS
    return max(MIN_DEDUCT_CREDITS, min(MAX_DEDUCT_CREDITS, math.floor(value)))
