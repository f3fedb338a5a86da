"""Route a job charge to the credit ledger or the monthly quota.

Credits are spent before quota: they were purchased explicitly, while quota
regenerates every month. Every debit is tied to ``<feature>:<externalJobId>``
so retries of the same job, including retries after a failed provider call,
never debit twice. The caller must obtain the receipt before requesting the
job from its provider.
"""
import time
from typing import Callable

import structlog

from metering import metrics
from metering.config import Settings, settings
from metering.errors import (
    InsufficientCredits,
    InsufficientFunds,
    InsufficientQuota,
    StoreUnavailable,
    UsageLimitExceeded,
)
from metering.keys import job_idempotency_key, mask_owner_id
from metering.records import validate_tenths
from metering.schemas.ledger import ChargeReceipt, IdempotentConsumptionRecord
from metering.schemas.usage import Owner
from metering.services.credit_ledger import CreditLedger
from metering.services.entitlements import FeatureEntitlement, get_entitlements
from metering.services.idempotency import ConsumptionRecords
from metering.services.quota_ledger import MonthlyQuotaLedger
from metering.services.rate_counter import RateCounter

logger = structlog.get_logger(__name__)


class ChargeRouter:
    """Pick the pool for a job charge and debit it exactly once."""

    def __init__(
        self,
        credits: CreditLedger,
        quota: MonthlyQuotaLedger,
        rate_counter: RateCounter,
        config: Settings = settings,
        clock: Callable[[], float] = time.time,
    ):
        self.credits = credits
        self.quota = quota
        self.rate_counter = rate_counter
        self.config = config
        self.clock = clock

    async def charge_job(self, feature: str, owner: Owner, needed_tenths: int, external_job_id: str) -> ChargeReceipt:
        """
        Charge a job before it is dispatched.

        Args:
            feature: Metered feature
            owner: Billing subject
            needed_tenths: Job cost in tenths
            external_job_id: Job identifier, stable across client retries

        Returns:
            Charge receipt; ``replayed`` is True when the job was charged before

        Raises:
            InvalidAmount: If needed_tenths is not a positive number
            UnknownFeature: If the feature is not metered
            UsageLimitExceeded: If a guest reached the free-tier limit
            InsufficientFunds: If neither credits nor quota cover the charge
            StoreUnavailable: If the store cannot be reached for a signed-in owner
        """
        needed = validate_tenths(needed_tenths)
        entitlement = get_entitlements(owner.owner_type, owner.plan, feature, self.config)
        idempotency_key = job_idempotency_key(feature, external_job_id)

        if not owner.is_user:
            return await self._charge_free_tier(feature, owner, entitlement, idempotency_key)

        store = self.credits.store
        if store is None:
            raise StoreUnavailable("Metering store binding is not configured", operation="charge")

        existing = await ConsumptionRecords(store, self.clock).get(owner.owner_type, owner.owner_id, idempotency_key)
        if existing is not None:
            return self._replay(feature, existing, entitlement)

        balance = await self.credits.balance_tenths(owner.owner_id)
        if balance >= needed:
            try:
                consumption = await self.credits.consume_tenths(owner.owner_id, needed, idempotency_key)
            except InsufficientCredits as e:
                # A concurrent debit drained the balance since the read
                logger.info("credits_raced", owner_id=mask_owner_id(owner.owner_id), balance_tenths=e.balance_tenths)
                balance = e.balance_tenths
            else:
                return self._receipt(
                    feature, owner, "credits", consumption.tenths, consumption.new_balance_tenths,
                    idempotency_key, consumption.replayed,
                )

        year_month = self.quota.current_year_month()
        remaining = await self.quota.remaining_tenths(
            owner.owner_id, entitlement.monthly_tenths, year_month, feature
        )
        if remaining >= needed:
            try:
                consumption = await self.quota.consume_tenths(
                    owner.owner_id, entitlement.monthly_tenths, needed, year_month, idempotency_key, feature
                )
            except InsufficientQuota as e:
                remaining = e.remaining_tenths
            else:
                return self._receipt(
                    feature, owner, "quota", consumption.tenths,
                    max(0, entitlement.monthly_tenths - consumption.consumed_tenths),
                    idempotency_key, consumption.replayed,
                )

        metrics.charge_rejections_total.labels(feature=feature, reason="insufficient_funds").inc()
        logger.info(
            "charge_rejected",
            feature=feature,
            owner_id=mask_owner_id(owner.owner_id),
            needed_tenths=needed,
            credits_tenths=balance,
            quota_remaining_tenths=remaining,
        )
        raise InsufficientFunds(credits_tenths=balance, quota_remaining_tenths=remaining, needed_tenths=needed)

    async def _charge_free_tier(
        self, feature: str, owner: Owner, entitlement: FeatureEntitlement, idempotency_key: str
    ) -> ChargeReceipt:
        """Guests hold neither credits nor entitlements; they only spend free-tier attempts."""
        store = self.rate_counter.store
        records = ConsumptionRecords(store, self.clock) if store is not None else None

        if records is not None:
            try:
                existing = await records.get(owner.owner_type, owner.owner_id, idempotency_key)
            except StoreUnavailable:
                existing = None
            if existing is not None:
                return self._replay(feature, existing, entitlement)

        result = await self.rate_counter.check_and_increment(
            feature,
            owner.owner_type,
            owner.owner_id,
            entitlement.daily_limit,
            self.config.rolling_window_seconds,
        )
        if not result.allowed:
            metrics.charge_rejections_total.labels(feature=feature, reason="usage_limit_exceeded").inc()
            raise UsageLimitExceeded(
                feature=feature,
                count=result.usage.count,
                limit=entitlement.daily_limit,
                reset_at=result.usage.reset_at,
            )

        remaining = max(0, entitlement.daily_limit - result.usage.count)
        if records is not None and result.usage.count > 0:
            ttl = max(1, result.usage.reset_at - int(self.clock()))
            try:
                await records.put(
                    owner.owner_type, owner.owner_id, idempotency_key, 0, "free", remaining, ttl_seconds=ttl
                )
            except StoreUnavailable as e:
                logger.warning("free_tier_record_skipped", feature=feature, error=e.message)

        return self._receipt(feature, owner, "free", 0, remaining, idempotency_key, False)

    def _replay(
        self, feature: str, record: IdempotentConsumptionRecord, entitlement: FeatureEntitlement
    ) -> ChargeReceipt:
        metrics.idempotent_replays_total.labels(pool=record.pool).inc()
        if record.pool == "quota":
            resulting = max(0, entitlement.monthly_tenths - record.result_tenths)
        else:
            resulting = record.result_tenths

        logger.info("charge_replayed", feature=feature, pool=record.pool, idempotency_key=record.idempotency_key)
        return ChargeReceipt(
            pool=record.pool,
            tenths=record.tenths,
            resulting_balance_or_remaining=resulting,
            idempotency_key=record.idempotency_key,
            replayed=True,
        )

    def _receipt(
        self,
        feature: str,
        owner: Owner,
        pool: str,
        tenths: int,
        resulting: int,
        idempotency_key: str,
        replayed: bool,
    ) -> ChargeReceipt:
        if not replayed:
            metrics.charges_total.labels(feature=feature, pool=pool).inc()
            metrics.charge_tenths_total.labels(feature=feature, pool=pool).inc(tenths)

        logger.info(
            "charge_routed",
            feature=feature,
            owner_type=owner.owner_type,
            owner_id=mask_owner_id(owner.owner_id),
            pool=pool,
            tenths=tenths,
            resulting=resulting,
            replayed=replayed,
        )
        return ChargeReceipt(
            pool=pool,
            tenths=tenths,
            resulting_balance_or_remaining=resulting,
            idempotency_key=idempotency_key,
            replayed=replayed,
        )
