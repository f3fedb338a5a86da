"""Exception taxonomy for the metering layer.

Every exception carries a machine-readable ``code`` and the HTTP status the
API layer answers with. Payment rejections (402) and usage limit rejections
(429) are expected outcomes the caller surfaces to the end user; only
``StoreUnavailable`` signals degraded infrastructure.
"""
from typing import Any, Optional

from metering.schemas.error import ErrorCode


class MeteringError(Exception):
    """Base class for all metering errors."""

    code: str = ErrorCode.INTERNAL_ERROR
    status_code: int = 500

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class StoreUnavailable(MeteringError):
    """The key-value store binding is absent, misconfigured or unreachable."""

    code = ErrorCode.STORE_UNAVAILABLE
    status_code = 503

    def __init__(self, message: str = "Metering store unavailable", operation: Optional[str] = None):
        super().__init__(message, operation=operation)
        self.operation = operation


class InvalidAmount(MeteringError, ValueError):
    """A charge or pack amount is non-positive, non-finite or not a number."""

    code = ErrorCode.INVALID_AMOUNT
    status_code = 400

    def __init__(self, value: Any):
        super().__init__(f"Invalid amount: {value!r}", value=value)
        self.value = value


class PaymentRequired(MeteringError):
    """Caller must reject the paid action until the owner upgrades or waits."""

    status_code = 402


class InsufficientCredits(PaymentRequired):
    code = ErrorCode.INSUFFICIENT_CREDITS

    def __init__(self, balance_tenths: int, needed_tenths: int):
        super().__init__(
            f"Insufficient credits: balance {balance_tenths} tenths, needed {needed_tenths}",
            balance_tenths=balance_tenths,
            needed_tenths=needed_tenths,
        )
        self.balance_tenths = balance_tenths
        self.needed_tenths = needed_tenths


class InsufficientQuota(PaymentRequired):
    code = ErrorCode.INSUFFICIENT_QUOTA

    def __init__(self, remaining_tenths: int, needed_tenths: int):
        super().__init__(
            f"Insufficient monthly quota: remaining {remaining_tenths} tenths, needed {needed_tenths}",
            remaining_tenths=remaining_tenths,
            needed_tenths=needed_tenths,
        )
        self.remaining_tenths = remaining_tenths
        self.needed_tenths = needed_tenths


class InsufficientFunds(PaymentRequired):
    """Neither credits nor the monthly quota cover the charge."""

    code = ErrorCode.INSUFFICIENT_FUNDS

    def __init__(self, credits_tenths: int, quota_remaining_tenths: int, needed_tenths: int):
        super().__init__(
            f"Insufficient funds: credits {credits_tenths}, quota {quota_remaining_tenths}, needed {needed_tenths}",
            credits_tenths=credits_tenths,
            quota_remaining_tenths=quota_remaining_tenths,
            needed_tenths=needed_tenths,
        )
        self.credits_tenths = credits_tenths
        self.quota_remaining_tenths = quota_remaining_tenths
        self.needed_tenths = needed_tenths


class UsageLimitExceeded(MeteringError):
    """Free-tier usage limit reached for the current window."""

    code = ErrorCode.USAGE_LIMIT_EXCEEDED
    status_code = 429

    def __init__(self, feature: str, count: int, limit: int, reset_at: int):
        super().__init__(
            f"Usage limit exceeded for {feature}: used {count}/{limit}",
            feature=feature,
            count=count,
            limit=limit,
            reset_at=reset_at,
        )
        self.feature = feature
        self.count = count
        self.limit = limit
        self.reset_at = reset_at


class CreditAdjustDisabled(MeteringError):
    code = ErrorCode.FORBIDDEN
    status_code = 403


class MalformedRecord(MeteringError):
    """A stored value does not match the expected record schema.

    Raised by the record codec only; ``load_record`` turns it into an absent
    record.
    """

    code = ErrorCode.MALFORMED_RECORD

    def __init__(self, key: str, reason: str):
        super().__init__(f"Malformed record at {key}: {reason}", key=key, reason=reason)
        self.key = key
        self.reason = reason


class UnknownFeature(MeteringError, ValueError):
    code = ErrorCode.INVALID_FEATURE
    status_code = 400

    def __init__(self, feature: str):
        super().__init__(f"Unknown metered feature: {feature!r}", feature=feature)
        self.feature = feature
