"""Key layout for metering records.

Keys follow ``<namespace>:<feature>:<ownerType>:<ownerId>[:<period>]`` so
distinct tools never share counters, even for the same owner. Every
component after the namespace is escaped, so identifiers containing ``:``
(guest IPv6 addresses, job IDs) cannot collide with another owner's keys.
"""
from datetime import datetime, timezone
from typing import Optional

FEATURES = ("voice", "ai-image", "ai-video", "prompt")

USAGE_NAMESPACE = "usage"
LEGACY_USAGE_NAMESPACE = "usage-month"
QUOTA_NAMESPACE = "quota"
CREDITS_NAMESPACE = "credits"
PACK_NAMESPACE = "credit-pack"
CONSUME_NAMESPACE = "consume"

# Credits are held per owner, not per feature
CREDIT_BALANCE_FEATURE = "balance"


def ledger_key(namespace: str, feature: str, owner_type: str, owner_id: str, period: Optional[str] = None) -> str:
    """
    Generate a consistent store key.

    Args:
        namespace: Record family (usage, quota, credits, ...)
        feature: Feature name or pseudo-feature
        owner_type: user or guest
        owner_id: Owner identifier
        period: Optional trailing component (YYYYMM, pack ID, job ID)

    Returns:
        Store key string
    """
    key = ":".join([namespace] + [escape_key_part(part) for part in (feature, owner_type, owner_id)])
    if period:
        return f"{key}:{escape_key_part(period)}"
    return key


def escape_key_part(part: str) -> str:
    """Percent-encode the key separator and the escape character itself."""
    return part.replace("%", "%25").replace(":", "%3A")


def year_month(moment: datetime) -> str:
    """UTC calendar month as YYYYMM."""
    moment = moment.astimezone(timezone.utc) if moment.tzinfo else moment
    return f"{moment.year:04d}{moment.month:02d}"


def year_month_from_timestamp(ts: float) -> str:
    return year_month(datetime.fromtimestamp(ts, tz=timezone.utc))


def rolling_daily_key(feature: str, owner_type: str, owner_id: str) -> str:
    return ledger_key(USAGE_NAMESPACE, feature, owner_type, owner_id)


def legacy_monthly_key(feature: str, owner_type: str, owner_id: str, now: float) -> str:
    return ledger_key(LEGACY_USAGE_NAMESPACE, feature, owner_type, owner_id, year_month_from_timestamp(now))


def quota_key(feature: str, owner_id: str, ym: str) -> str:
    return ledger_key(QUOTA_NAMESPACE, feature, "user", owner_id, ym)


def credit_balance_key(owner_id: str) -> str:
    return ledger_key(CREDITS_NAMESPACE, CREDIT_BALANCE_FEATURE, "user", owner_id)


def pack_marker_key(owner_id: str, pack_id: str) -> str:
    return ledger_key(PACK_NAMESPACE, CREDIT_BALANCE_FEATURE, "user", owner_id, pack_id)


def consumption_key(owner_type: str, owner_id: str, idempotency_key: str) -> str:
    """
    Key of the idempotency record for a debit.

    ``idempotency_key`` is conventionally ``<feature>:<externalJobId>``,
    which places the feature in the feature slot of the layout.
    """
    feature, sep, job_id = idempotency_key.partition(":")
    if not sep:
        feature, job_id = "adhoc", idempotency_key
    return ledger_key(CONSUME_NAMESPACE, feature, owner_type, owner_id, job_id)


def job_idempotency_key(feature: str, external_job_id: str) -> str:
    return f"{feature}:{external_job_id}"


def mask_owner_id(owner_id: Optional[str]) -> str:
    """Shorten an owner ID for log output, e.g. ``…a1b2(36)``."""
    if not owner_id:
        return ""
    return f"…{owner_id[-4:]}({len(owner_id)})"
