"""Idempotency records shared by the credit and quota ledgers."""
import time
from typing import Callable, Optional

from metering.keys import consumption_key
from metering.keystore import KeyStore
from metering.records import load_record, save_record
from metering.schemas.ledger import IdempotentConsumptionRecord, Pool


class ConsumptionRecords:
    """Read and write the single recorded outcome of a debit."""

    def __init__(self, store: KeyStore, clock: Callable[[], float] = time.time):
        self.store = store
        self.clock = clock

    async def get(self, owner_type: str, owner_id: str, idempotency_key: str) -> Optional[IdempotentConsumptionRecord]:
        key = consumption_key(owner_type, owner_id, idempotency_key)
        return await load_record(self.store, key, IdempotentConsumptionRecord)

    async def put(
        self,
        owner_type: str,
        owner_id: str,
        idempotency_key: str,
        tenths: int,
        pool: Pool,
        result_tenths: int,
        ttl_seconds: Optional[int] = None,
    ) -> IdempotentConsumptionRecord:
        record = IdempotentConsumptionRecord(
            idempotency_key=idempotency_key,
            tenths=tenths,
            pool=pool,
            applied_at=int(self.clock() * 1000),
            result_tenths=result_tenths,
        )
        key = consumption_key(owner_type, owner_id, idempotency_key)
        await save_record(self.store, key, record, ttl_seconds=ttl_seconds)
        return record
