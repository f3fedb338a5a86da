"""Prepaid credit ledger, in tenths of a credit."""
import time
from typing import Callable, Optional

import structlog

from metering import metrics
from metering.errors import InsufficientCredits, StoreUnavailable
from metering.keys import credit_balance_key, mask_owner_id, pack_marker_key
from metering.keystore import KeyStore
from metering.records import load_record, save_record, validate_tenths
from metering.schemas.ledger import (
    CreditBalance,
    CreditConsumption,
    PackApplication,
    PackApplicationRecord,
)
from metering.services.idempotency import ConsumptionRecords

logger = structlog.get_logger(__name__)


class CreditLedger:
    """Service for prepaid credit balances.

    Packs (one-time purchases) increase the balance at most once per pack ID;
    job charges decrease it at most once per idempotency key.
    """

    def __init__(self, store: Optional[KeyStore], clock: Callable[[], float] = time.time):
        """Initialize credit ledger with a store binding."""
        self.store = store
        self.clock = clock

    def _require_store(self, operation: str) -> KeyStore:
        if self.store is None:
            raise StoreUnavailable("Metering store binding is not configured", operation=operation)
        return self.store

    async def balance_tenths(self, owner_id: str) -> int:
        """
        Get the owner's credit balance.

        Args:
            owner_id: User ID

        Returns:
            Balance in tenths, 0 if no balance has been recorded
        """
        store = self._require_store("balance")
        balance = await load_record(store, credit_balance_key(owner_id), CreditBalance)
        return balance.total_tenths if balance else 0

    async def add_pack_tenths(self, owner_id: str, pack_id: str, tenths: int) -> PackApplication:
        """
        Apply a purchased credit pack once.

        The balance is written before the pack marker. A crash between the two
        writes lets a retried webhook apply the pack again; the store offers no
        transaction to close that window.

        Args:
            owner_id: User ID
            pack_id: Unique purchase identifier (e.g. checkout session ID)
            tenths: Pack size in tenths

        Returns:
            Application result; ``applied`` is False for a repeated pack ID

        Raises:
            InvalidAmount: If tenths is not a positive number
        """
        amount = validate_tenths(tenths)
        store = self._require_store("add_pack")

        marker_key = pack_marker_key(owner_id, pack_id)
        marker = await load_record(store, marker_key, PackApplicationRecord)
        if marker is not None:
            metrics.credit_packs_duplicate_total.inc()
            logger.info(
                "credit_pack_duplicate",
                owner_id=mask_owner_id(owner_id),
                pack_id=pack_id,
                applied_at=marker.applied_at,
            )
            return PackApplication(
                pack_id=pack_id,
                applied=False,
                balance_tenths=await self.balance_tenths(owner_id),
            )

        current = await self.balance_tenths(owner_id)
        updated = CreditBalance(total_tenths=current + amount)
        await save_record(store, credit_balance_key(owner_id), updated)
        await save_record(
            store,
            marker_key,
            PackApplicationRecord(pack_id=pack_id, tenths=amount, applied_at=int(self.clock() * 1000)),
        )

        metrics.credit_packs_applied_total.inc()
        logger.info(
            "credit_pack_applied",
            owner_id=mask_owner_id(owner_id),
            pack_id=pack_id,
            tenths=amount,
            balance_tenths=updated.total_tenths,
        )
        return PackApplication(pack_id=pack_id, applied=True, balance_tenths=updated.total_tenths)

    async def consume_tenths(self, owner_id: str, needed_tenths: int, idempotency_key: str) -> CreditConsumption:
        """
        Debit credits once per idempotency key.

        Args:
            owner_id: User ID
            needed_tenths: Charge in tenths
            idempotency_key: Conventionally ``<feature>:<externalJobId>``

        Returns:
            Balance after the debit; repeated keys return the recorded balance

        Raises:
            InvalidAmount: If needed_tenths is not a positive number
            InsufficientCredits: If the balance does not cover the charge
        """
        needed = validate_tenths(needed_tenths)
        store = self._require_store("credits_consume")
        records = ConsumptionRecords(store, self.clock)

        existing = await records.get("user", owner_id, idempotency_key)
        if existing is not None:
            metrics.idempotent_replays_total.labels(pool=existing.pool).inc()
            if existing.pool == "credits":
                logger.info("credits_consume_replayed", idempotency_key=idempotency_key)
                return CreditConsumption(tenths=existing.tenths, new_balance_tenths=existing.result_tenths, replayed=True)

            # Already charged to another pool, never debit twice
            logger.warning(
                "idempotency_pool_mismatch",
                idempotency_key=idempotency_key,
                recorded_pool=existing.pool,
                requested_pool="credits",
            )
            return CreditConsumption(tenths=0, new_balance_tenths=await self.balance_tenths(owner_id), replayed=True)

        balance = await self.balance_tenths(owner_id)
        if balance < needed:
            raise InsufficientCredits(balance_tenths=balance, needed_tenths=needed)

        updated = CreditBalance(total_tenths=max(0, balance - needed))
        await save_record(store, credit_balance_key(owner_id), updated)
        await records.put("user", owner_id, idempotency_key, needed, "credits", updated.total_tenths)

        logger.info(
            "credits_consumed",
            owner_id=mask_owner_id(owner_id),
            idempotency_key=idempotency_key,
            tenths=needed,
            balance_tenths=updated.total_tenths,
        )
        return CreditConsumption(tenths=needed, new_balance_tenths=updated.total_tenths)
