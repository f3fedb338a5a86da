"""Pytest configuration and fixtures for async testing."""
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from metering.config import Settings
from metering.keystore import InMemoryKeyStore
from metering.services.credit_ledger import CreditLedger
from metering.services.metering_service import MeteringService
from metering.services.quota_ledger import MonthlyQuotaLedger
from metering.services.rate_counter import RateCounter
from metering.services.schema_shim import SchemaMigrationShim

# 2025-01-15T12:00:00Z
JAN_15_2025 = 1736942400
# 2024-12-15T12:00:00Z
DEC_15_2024 = 1734264000


class FakeClock:
    """Controllable Unix-seconds clock shared by the store and the services."""

    def __init__(self, now: float = JAN_15_2025):
        self.now = float(now)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def set(self, now: float) -> None:
        self.now = float(now)


class RolloutFlag:
    """Mutable stand-in for the rolling-window rollout flag."""

    def __init__(self, enabled: bool = True):
        self.enabled = enabled

    def __call__(self) -> bool:
        return self.enabled


@pytest.fixture(scope="function")
def clock() -> FakeClock:
    """
    Fake clock set to mid-January 2025.

    Returns:
        FakeClock: Clock advanced explicitly by tests
    """
    return FakeClock()


@pytest.fixture(scope="function")
def rolling_flag() -> RolloutFlag:
    return RolloutFlag(enabled=True)


@pytest.fixture(scope="function")
def store(clock: FakeClock) -> InMemoryKeyStore:
    """
    In-memory store honoring TTLs against the fake clock.

    Returns:
        InMemoryKeyStore: Empty store
    """
    return InMemoryKeyStore(clock=clock)


@pytest.fixture(scope="function")
def test_settings() -> Settings:
    """
    Settings isolated from the environment's overrides.

    Returns:
        Settings: Test configuration
    """
    return Settings(
        redis_url=None,
        app_env="test",
        debug=False,
        usage_rolling_window=True,
        rolling_window_seconds=86400,
        guest_daily_limits={},
        user_daily_limits={},
        admin_credit_adjust_enabled=False,
    )


@pytest.fixture(scope="function")
def shim(rolling_flag: RolloutFlag, clock: FakeClock) -> SchemaMigrationShim:
    return SchemaMigrationShim(rolling_flag, clock)


@pytest.fixture(scope="function")
def rate_counter(store: InMemoryKeyStore, shim: SchemaMigrationShim, clock: FakeClock) -> RateCounter:
    return RateCounter(store, shim, clock)


@pytest.fixture(scope="function")
def credit_ledger(store: InMemoryKeyStore, clock: FakeClock) -> CreditLedger:
    return CreditLedger(store, clock)


@pytest.fixture(scope="function")
def quota_ledger(store: InMemoryKeyStore, clock: FakeClock) -> MonthlyQuotaLedger:
    return MonthlyQuotaLedger(store, clock)


@pytest.fixture(scope="function")
def metering_service(
    store: InMemoryKeyStore, test_settings: Settings, clock: FakeClock, rolling_flag: RolloutFlag
) -> MeteringService:
    """
    Metering service wired onto the in-memory store.

    Returns:
        MeteringService: Service under test
    """
    return MeteringService(store, config=test_settings, clock=clock, rolling_flag=rolling_flag)


@pytest_asyncio.fixture(scope="function")
async def async_client(
    store: InMemoryKeyStore, metering_service: MeteringService
) -> AsyncGenerator[AsyncClient, None]:
    """
    Create an async HTTP client with the store and service dependencies overridden.

    Yields:
        AsyncClient: Async HTTP client for API testing
    """
    from metering.api.deps import get_metering_service, get_store
    from metering.main import app

    async def override_get_store() -> InMemoryKeyStore:
        return store

    async def override_get_metering_service() -> MeteringService:
        return metering_service

    app.dependency_overrides[get_store] = override_get_store
    app.dependency_overrides[get_metering_service] = override_get_metering_service

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    # Clean up
    app.dependency_overrides.clear()
