"""Plan-derived entitlements per metered feature."""
from dataclasses import dataclass, replace
from typing import Optional

from metering.config import Settings, settings
from metering.errors import UnknownFeature
from metering.keys import FEATURES


@dataclass(frozen=True)
class FeatureEntitlement:
    daily_limit: int  # free-tier attempts per rolling window
    monthly_tenths: int  # monthly allotment charged through the quota ledger


# Guests never hold credits or monthly entitlements
GUEST_ENTITLEMENTS = {
    "voice": FeatureEntitlement(daily_limit=3, monthly_tenths=0),
    "ai-image": FeatureEntitlement(daily_limit=3, monthly_tenths=0),
    "ai-video": FeatureEntitlement(daily_limit=0, monthly_tenths=0),
    "prompt": FeatureEntitlement(daily_limit=5, monthly_tenths=0),
}

PLAN_ENTITLEMENTS = {
    "free": {
        "voice": FeatureEntitlement(daily_limit=10, monthly_tenths=0),
        "ai-image": FeatureEntitlement(daily_limit=20, monthly_tenths=0),
        "ai-video": FeatureEntitlement(daily_limit=2, monthly_tenths=0),
        "prompt": FeatureEntitlement(daily_limit=20, monthly_tenths=0),
    },
    "pro": {
        "voice": FeatureEntitlement(daily_limit=100, monthly_tenths=3000),
        "ai-image": FeatureEntitlement(daily_limit=200, monthly_tenths=4000),
        "ai-video": FeatureEntitlement(daily_limit=20, monthly_tenths=1000),
        "prompt": FeatureEntitlement(daily_limit=200, monthly_tenths=2000),
    },
    "premium": {
        "voice": FeatureEntitlement(daily_limit=300, monthly_tenths=8000),
        "ai-image": FeatureEntitlement(daily_limit=500, monthly_tenths=10000),
        "ai-video": FeatureEntitlement(daily_limit=50, monthly_tenths=3000),
        "prompt": FeatureEntitlement(daily_limit=500, monthly_tenths=5000),
    },
    "enterprise": {
        "voice": FeatureEntitlement(daily_limit=2000, monthly_tenths=50000),
        "ai-image": FeatureEntitlement(daily_limit=2000, monthly_tenths=60000),
        "ai-video": FeatureEntitlement(daily_limit=300, monthly_tenths=20000),
        "prompt": FeatureEntitlement(daily_limit=2000, monthly_tenths=30000),
    },
}


def get_entitlements(
    owner_type: str,
    plan: Optional[str],
    feature: str,
    config: Settings = settings,
) -> FeatureEntitlement:
    """
    Resolve the entitlement for an owner and feature.

    Unknown plans fall back to ``free``. Daily limits can be overridden per
    owner type through settings.

    Raises:
        UnknownFeature: If the feature is not metered
    """
    if feature not in FEATURES:
        raise UnknownFeature(feature)

    if owner_type != "user":
        entitlement = GUEST_ENTITLEMENTS[feature]
        override = config.guest_daily_limits.get(feature)
    else:
        entitlement = PLAN_ENTITLEMENTS.get(plan or "free", PLAN_ENTITLEMENTS["free"])[feature]
        override = config.user_daily_limits.get(feature)

    if override is not None:
        entitlement = replace(entitlement, daily_limit=max(0, override))
    return entitlement
