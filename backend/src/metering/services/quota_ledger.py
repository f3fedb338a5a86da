"""Calendar-month entitlement ledger, in tenths of a unit."""
import time
from typing import Callable, Optional

import structlog

from metering import metrics
from metering.errors import InsufficientQuota, StoreUnavailable
from metering.keys import mask_owner_id, quota_key, year_month_from_timestamp
from metering.keystore import KeyStore
from metering.records import load_record, save_record, validate_tenths
from metering.schemas.ledger import QuotaConsumption, QuotaRecord
from metering.services.idempotency import ConsumptionRecords

logger = structlog.get_logger(__name__)


class MonthlyQuotaLedger:
    """Track consumption against a plan-derived monthly entitlement.

    Months are isolated by the ``YYYYMM`` component of the key; stale months
    are never deleted, they simply stop being read.
    """

    def __init__(self, store: Optional[KeyStore], clock: Callable[[], float] = time.time):
        self.store = store
        self.clock = clock

    def _require_store(self, operation: str) -> KeyStore:
        if self.store is None:
            raise StoreUnavailable("Metering store binding is not configured", operation=operation)
        return self.store

    def current_year_month(self) -> str:
        return year_month_from_timestamp(self.clock())

    async def consumed_tenths(self, owner_id: str, year_month: str, feature: str) -> int:
        store = self._require_store("quota_read")
        record = await load_record(store, quota_key(feature, owner_id, year_month), QuotaRecord)
        return record.consumed_tenths if record else 0

    async def remaining_tenths(self, owner_id: str, entitlement_tenths: int, year_month: str, feature: str) -> int:
        """
        Entitlement left for the month, never negative.

        Args:
            owner_id: User ID
            entitlement_tenths: Plan allotment for the month
            year_month: YYYYMM
            feature: Feature whose quota is read

        Returns:
            Remaining tenths, clamped at 0
        """
        consumed = await self.consumed_tenths(owner_id, year_month, feature)
        return max(0, entitlement_tenths - consumed)

    async def consume_tenths(
        self,
        owner_id: str,
        entitlement_tenths: int,
        needed_tenths: int,
        year_month: str,
        idempotency_key: str,
        feature: str,
    ) -> QuotaConsumption:
        """
        Debit the monthly quota once per idempotency key.

        The read-check-write sequence is not atomic: two concurrent calls
        with different keys can both pass the check before either writes.

        Raises:
            InvalidAmount: If needed_tenths is not a positive number
            InsufficientQuota: If the remaining quota does not cover the charge
        """
        needed = validate_tenths(needed_tenths)
        store = self._require_store("quota_consume")
        records = ConsumptionRecords(store, self.clock)

        existing = await records.get("user", owner_id, idempotency_key)
        if existing is not None:
            metrics.idempotent_replays_total.labels(pool=existing.pool).inc()
            if existing.pool == "quota":
                logger.info("quota_consume_replayed", idempotency_key=idempotency_key)
                return QuotaConsumption(tenths=existing.tenths, consumed_tenths=existing.result_tenths, replayed=True)

            # Already charged to another pool, never debit twice
            logger.warning(
                "idempotency_pool_mismatch",
                idempotency_key=idempotency_key,
                recorded_pool=existing.pool,
                requested_pool="quota",
            )
            consumed = await self.consumed_tenths(owner_id, year_month, feature)
            return QuotaConsumption(tenths=0, consumed_tenths=consumed, replayed=True)

        key = quota_key(feature, owner_id, year_month)
        record = await load_record(store, key, QuotaRecord)
        consumed = record.consumed_tenths if record else 0
        remaining = max(0, entitlement_tenths - consumed)
        if remaining < needed:
            raise InsufficientQuota(remaining_tenths=remaining, needed_tenths=needed)

        updated = QuotaRecord(consumed_tenths=consumed + needed)
        await save_record(store, key, updated)
        await records.put("user", owner_id, idempotency_key, needed, "quota", updated.consumed_tenths)

        logger.info(
            "quota_consumed",
            owner_id=mask_owner_id(owner_id),
            feature=feature,
            year_month=year_month,
            tenths=needed,
            consumed_tenths=updated.consumed_tenths,
            entitlement_tenths=entitlement_tenths,
        )
        return QuotaConsumption(tenths=needed, consumed_tenths=updated.consumed_tenths)
