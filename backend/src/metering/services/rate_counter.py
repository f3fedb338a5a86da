"""Per-feature, per-owner usage counters.

The counter never blocks an increment: ``allowed`` tells the caller whether
the attempt is within the limit, while the stored count keeps reflecting the
true attempted volume, which makes abuse visible.

Store unavailability fails open: reads report no usage and increments are
allowed. This trades strictness for availability.
"""
import time
from datetime import datetime, timezone
from typing import Callable, Optional

import structlog

from metering import metrics
from metering.errors import StoreUnavailable
from metering.keys import legacy_monthly_key, mask_owner_id, rolling_daily_key
from metering.keystore import KeyStore
from metering.records import load_record, save_record
from metering.schemas.usage import IncrementResult, UsageRecord
from metering.services.schema_shim import Schema, SchemaMigrationShim

logger = structlog.get_logger(__name__)

DEFAULT_WINDOW_SECONDS = 24 * 60 * 60


def start_of_next_month(ts: int) -> int:
    """Midnight UTC on the first day of the month after ``ts``."""
    start = datetime.fromtimestamp(ts, tz=timezone.utc)
    year, month = (start.year + 1, 1) if start.month == 12 else (start.year, start.month + 1)
    return int(datetime(year, month, 1, tzinfo=timezone.utc).timestamp())


class RateCounter:
    """Rolling-window and legacy monthly usage counters."""

    def __init__(
        self,
        store: Optional[KeyStore],
        shim: Optional[SchemaMigrationShim] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the counter.

        Args:
            store: Store binding, None when not configured
            shim: Key layout resolver (defaults to the settings flag)
            clock: Unix-seconds clock
        """
        self.store = store
        self.clock = clock
        self.shim = shim or SchemaMigrationShim(clock=clock)

    def _require_store(self, operation: str) -> KeyStore:
        if self.store is None:
            raise StoreUnavailable("Metering store binding is not configured", operation=operation)
        return self.store

    def _now(self) -> int:
        return int(self.clock())

    async def get_usage(
        self, feature: str, owner_type: str, owner_id: str, schema: Optional[Schema] = None
    ) -> Optional[UsageRecord]:
        """
        Read the current usage counter.

        Args:
            feature: Feature name
            owner_type: user or guest
            owner_id: Owner identifier
            schema: Key layout to read; defaults to the active one

        Returns:
            Usage record, or None if absent, expired or the store is unavailable
        """
        if schema is None:
            key = self.shim.resolve(feature, owner_type, owner_id).key
        else:
            key = self.shim.key_for(schema, feature, owner_type, owner_id)

        try:
            usage = await load_record(self._require_store("get_usage"), key, UsageRecord)
        except StoreUnavailable as e:
            metrics.store_unavailable_total.labels(operation="get_usage").inc()
            logger.warning("usage_read_fail_open", feature=feature, error=e.message)
            return None

        if usage is None or self._now() >= usage.reset_at:
            return None
        return usage

    async def increment_rolling_daily(
        self,
        feature: str,
        owner_type: str,
        owner_id: str,
        limit: int,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
    ) -> IncrementResult:
        """
        Count one attempt in a window that starts at first use.

        A missing or expired record starts a fresh window. The record is
        written with a native TTL covering the rest of the window.
        """
        key = rolling_daily_key(feature, owner_type, owner_id)
        now = self._now()

        try:
            store = self._require_store("increment")
            existing = await load_record(store, key, UsageRecord)
            if existing is None or now >= existing.reset_at:
                usage = UsageRecord(count=1, reset_at=now + window_seconds)
                ttl = window_seconds
            else:
                usage = UsageRecord(count=existing.count + 1, reset_at=existing.reset_at)
                ttl = max(1, existing.reset_at - now)
            await save_record(store, key, usage, ttl_seconds=ttl)
        except StoreUnavailable as e:
            return self._fail_open(feature, now + window_seconds, e)

        return self._result(feature, owner_type, owner_id, "rolling", usage, limit)

    async def increment_monthly_no_ttl(
        self, feature: str, owner_type: str, owner_id: str, limit: int
    ) -> IncrementResult:
        """
        Count one attempt in the legacy calendar-bucketed monthly layout.

        The key is bucketed by UTC ``YYYYMM`` and ``resetAt`` is the start of
        the next month, so the reported reset matches the moment the bucket
        rolls over. The record carries no TTL; expiry is checked against now
        on every read.
        """
        now = self._now()
        key = legacy_monthly_key(feature, owner_type, owner_id, now)

        try:
            store = self._require_store("increment")
            existing = await load_record(store, key, UsageRecord)
            if existing is None or now >= existing.reset_at:
                usage = UsageRecord(count=1, reset_at=start_of_next_month(now))
            else:
                usage = UsageRecord(count=existing.count + 1, reset_at=existing.reset_at)
            await save_record(store, key, usage)
        except StoreUnavailable as e:
            return self._fail_open(feature, start_of_next_month(now), e)

        return self._result(feature, owner_type, owner_id, "legacy", usage, limit)

    async def check_and_increment(
        self,
        feature: str,
        owner_type: str,
        owner_id: str,
        limit: int,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
    ) -> IncrementResult:
        """Increment under whichever layout the rollout flag currently selects."""
        if self.shim.active_schema() == "rolling":
            return await self.increment_rolling_daily(feature, owner_type, owner_id, limit, window_seconds)
        return await self.increment_monthly_no_ttl(feature, owner_type, owner_id, limit)

    async def reset_usage(self, feature: str, owner_type: str, owner_id: str) -> None:
        """Delete the owner's counters under both layouts."""
        store = self._require_store("reset_usage")
        for schema in ("rolling", "legacy"):
            await store.delete(self.shim.key_for(schema, feature, owner_type, owner_id))

        logger.info("usage_reset", feature=feature, owner_type=owner_type, owner_id=mask_owner_id(owner_id))

    def _result(
        self, feature: str, owner_type: str, owner_id: str, schema: str, usage: UsageRecord, limit: int
    ) -> IncrementResult:
        allowed = usage.count <= limit
        metrics.rate_checks_total.labels(
            feature=feature, owner_type=owner_type, schema=schema, allowed=str(allowed).lower()
        ).inc()

        if not allowed:
            logger.warning(
                "usage_limit_exceeded",
                feature=feature,
                owner_type=owner_type,
                owner_id=mask_owner_id(owner_id),
                count=usage.count,
                limit=limit,
            )
        else:
            logger.debug("usage_incremented", feature=feature, schema=schema, count=usage.count, limit=limit)

        return IncrementResult(usage=usage, allowed=allowed)

    def _fail_open(self, feature: str, reset_at: int, error: StoreUnavailable) -> IncrementResult:
        metrics.rate_fail_open_total.labels(feature=feature).inc()
        metrics.store_unavailable_total.labels(operation="increment").inc()
        logger.warning("rate_limit_fail_open", feature=feature, error=error.message)
        return IncrementResult(usage=UsageRecord(count=0, reset_at=reset_at), allowed=True)
