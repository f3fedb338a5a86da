"""Unit tests for the metering service entry points and entitlements."""
import pytest

from metering.config import Settings
from metering.errors import CreditAdjustDisabled, InsufficientCredits, StoreUnavailable, UnknownFeature
from metering.schemas.usage import Owner
from metering.services.entitlements import get_entitlements
from metering.services.metering_service import MeteringService

PRO_USER = Owner(owner_type="user", owner_id="user-1", plan="pro")
GUEST = Owner(owner_type="guest", owner_id="203.0.113.7")


@pytest.mark.asyncio
async def test_rate_check_uses_plan_daily_limit(metering_service: MeteringService) -> None:
    results = [await metering_service.check_and_increment_rate("prompt", GUEST) for _ in range(6)]

    assert [r.allowed for r in results] == [True] * 5 + [False]


@pytest.mark.asyncio
async def test_rate_check_explicit_limit(metering_service: MeteringService) -> None:
    first = await metering_service.check_and_increment_rate("voice", PRO_USER, limit=1)
    second = await metering_service.check_and_increment_rate("voice", PRO_USER, limit=1)

    assert first.allowed is True
    assert second.allowed is False
    assert second.usage.count == 2


@pytest.mark.asyncio
async def test_get_usage_reports_limit_and_reset(metering_service: MeteringService, clock) -> None:
    empty = await metering_service.get_usage("voice", GUEST)
    assert empty.used == 0
    assert empty.limit == 3
    assert empty.reset_at is None

    await metering_service.check_and_increment_rate("voice", GUEST)
    usage = await metering_service.get_usage("voice", GUEST)

    assert usage.used == 1
    assert usage.reset_at == int(clock()) + 86400


@pytest.mark.asyncio
async def test_balance_snapshot(metering_service: MeteringService) -> None:
    await metering_service.apply_credit_pack("user-1", "cs_a", 500)
    await metering_service.charge_job("voice", PRO_USER, 600, "job-1")

    snapshot = await metering_service.get_balance_snapshot(PRO_USER, "voice")

    assert snapshot.credits_tenths == 500
    # pro voice allotment is 3000 tenths a month
    assert snapshot.quota_remaining_tenths == 2400
    assert snapshot.year_month == "202501"


@pytest.mark.asyncio
async def test_guest_balance_snapshot_without_store(test_settings, clock, rolling_flag) -> None:
    service = MeteringService(None, config=test_settings, clock=clock, rolling_flag=rolling_flag)

    snapshot = await service.get_balance_snapshot(GUEST, "voice")

    assert snapshot.credits_tenths == 0
    assert snapshot.quota_remaining_tenths == 0


@pytest.mark.asyncio
async def test_deduct_credits_clamps_and_converts(metering_service: MeteringService) -> None:
    """Test that manual deductions are whole credits converted to tenths."""
    await metering_service.apply_credit_pack("user-1", "cs_a", 1000)

    result = await metering_service.deduct_credits("user-1", 12.9, idempotency_key="ticket-42")

    assert result.requested_tenths == 120
    assert result.deducted_tenths == 120
    assert result.balance_tenths == 880
    assert result.idempotency_key == "admin-deduct:ticket-42"


@pytest.mark.asyncio
async def test_deduct_credits_is_idempotent(metering_service: MeteringService) -> None:
    await metering_service.apply_credit_pack("user-1", "cs_a", 100)

    await metering_service.deduct_credits("user-1", 10, idempotency_key="ticket-42")
    retry = await metering_service.deduct_credits("user-1", 10, idempotency_key="ticket-42")

    assert retry.replayed is True
    assert retry.deducted_tenths == 100
    assert retry.balance_tenths == 0


@pytest.mark.asyncio
async def test_deduct_credits_strict_rejects_short_balance(metering_service: MeteringService) -> None:
    await metering_service.apply_credit_pack("user-1", "cs_a", 50)

    with pytest.raises(InsufficientCredits):
        await metering_service.deduct_credits("user-1", 10, idempotency_key="ticket-42")

    assert await metering_service.credits.balance_tenths("user-1") == 50


@pytest.mark.asyncio
async def test_deduct_credits_lenient_takes_what_is_left(metering_service: MeteringService) -> None:
    await metering_service.apply_credit_pack("user-1", "cs_a", 50)

    result = await metering_service.deduct_credits("user-1", 10, idempotency_key="ticket-42", strict=False)
    empty = await metering_service.deduct_credits("user-1", 10, idempotency_key="ticket-43", strict=False)

    assert result.deducted_tenths == 50
    assert result.balance_tenths == 0
    assert empty.deducted_tenths == 0


@pytest.mark.asyncio
async def test_deduct_credits_truncates_key_and_clamps_amount(metering_service: MeteringService) -> None:
    await metering_service.apply_credit_pack("user-1", "cs_a", 2_000_000)

    result = await metering_service.deduct_credits("user-1", 10**9, idempotency_key="k" * 100)

    assert result.requested_tenths == 1_000_000
    assert result.idempotency_key == "admin-deduct:" + "k" * 64


@pytest.mark.asyncio
async def test_deduct_credits_disabled_in_production(store, clock, rolling_flag) -> None:
    config = Settings(redis_url=None, app_env="production", admin_credit_adjust_enabled=False)
    service = MeteringService(store, config=config, clock=clock, rolling_flag=rolling_flag)

    with pytest.raises(CreditAdjustDisabled):
        await service.deduct_credits("user-1", 10)


@pytest.mark.asyncio
async def test_list_owner_keys(metering_service: MeteringService, rolling_flag) -> None:
    """Test that listing returns only the owner's own keys across layouts."""
    other = Owner(owner_type="user", owner_id="user-10", plan="pro")
    await metering_service.check_and_increment_rate("voice", PRO_USER)
    await metering_service.check_and_increment_rate("voice", other)
    rolling_flag.enabled = False
    await metering_service.check_and_increment_rate("prompt", PRO_USER)
    await metering_service.charge_job("ai-image", PRO_USER, 10, "job-1")

    keys = await metering_service.list_owner_keys(PRO_USER)

    assert keys == [
        "quota:ai-image:user:user-1:202501",
        "usage-month:prompt:user:user-1:202501",
        "usage:voice:user:user-1",
    ]


@pytest.mark.asyncio
async def test_list_owner_keys_excludes_owner_with_colon_suffix(metering_service: MeteringService) -> None:
    prefixed = Owner(owner_type="user", owner_id="user-1:x", plan="pro")
    await metering_service.check_and_increment_rate("voice", PRO_USER)
    await metering_service.check_and_increment_rate("voice", prefixed)

    assert await metering_service.list_owner_keys(PRO_USER) == ["usage:voice:user:user-1"]
    assert await metering_service.list_owner_keys(prefixed) == ["usage:voice:user:user-1%3Ax"]


@pytest.mark.asyncio
async def test_list_owner_keys_requires_store(test_settings, clock, rolling_flag) -> None:
    service = MeteringService(None, config=test_settings, clock=clock, rolling_flag=rolling_flag)

    with pytest.raises(StoreUnavailable):
        await service.list_owner_keys(PRO_USER)


def test_entitlements_by_plan(test_settings: Settings) -> None:
    assert get_entitlements("user", "pro", "ai-video", test_settings).monthly_tenths == 1000
    assert get_entitlements("user", "free", "ai-video", test_settings).monthly_tenths == 0
    assert get_entitlements("guest", None, "ai-video", test_settings).daily_limit == 0


def test_unknown_plan_falls_back_to_free(test_settings: Settings) -> None:
    assert get_entitlements("user", "platinum", "voice", test_settings) == get_entitlements(
        "user", "free", "voice", test_settings
    )


def test_daily_limit_overrides(test_settings: Settings) -> None:
    config = test_settings.model_copy(update={"guest_daily_limits": {"voice": 1}, "user_daily_limits": {"voice": 7}})

    assert get_entitlements("guest", None, "voice", config).daily_limit == 1
    assert get_entitlements("user", "premium", "voice", config).daily_limit == 7
    assert get_entitlements("user", "premium", "voice", config).monthly_tenths == 8000


def test_unknown_feature(test_settings: Settings) -> None:
    with pytest.raises(UnknownFeature):
        get_entitlements("user", "pro", "telepathy", test_settings)
