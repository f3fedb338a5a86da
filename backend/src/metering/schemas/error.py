"""Structured error response schemas."""
from datetime import datetime, timezone
from typing import Any
from pydantic import BaseModel, ConfigDict, Field


class ErrorDetail(BaseModel):
    """Detailed error information."""

    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    field: str | None = Field(default=None, description="Field that caused the error (for validation errors)")
    value: Any | None = Field(default=None, description="Invalid value (for validation errors)")


class ErrorResponse(BaseModel):
    """Standard error response structure.

    Payment and usage rejections use the same envelope as infrastructure
    failures; clients branch on ``details[0].code``.
    """

    error: str = Field(..., description="Error type (e.g., 'InsufficientFunds', 'StoreUnavailable')")
    message: str = Field(..., description="Primary error message")
    details: list[ErrorDetail] | None = Field(default=None, description="Detailed error information")
    remediation: str | None = Field(default=None, description="Suggestion for fixing the error")
    request_id: str | None = Field(default=None, description="Request ID for tracing")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), description="Error timestamp"
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "InsufficientFunds",
                "message": "Insufficient funds: credits 0, quota 0, needed 10",
                "details": [
                    {
                        "code": "insufficient_funds",
                        "message": "Insufficient funds: credits 0, quota 0, needed 10",
                    }
                ],
                "remediation": "Buy a credit pack or upgrade your plan to continue.",
                "request_id": "req_1234567890",
                "timestamp": "2025-01-15T10:30:00Z",
            }
        }
    )


# Error codes enum for consistency
class ErrorCode:
    """Standard error codes used across the API."""

    # Validation errors (400)
    INVALID_AMOUNT = "invalid_amount"
    INVALID_FEATURE = "invalid_feature"

    # Payment required (402)
    INSUFFICIENT_CREDITS = "insufficient_credits"
    INSUFFICIENT_QUOTA = "insufficient_quota"
    INSUFFICIENT_FUNDS = "insufficient_funds"

    # Authorization errors (403)
    FORBIDDEN = "forbidden"

    # Rate limiting (429)
    USAGE_LIMIT_EXCEEDED = "usage_limit_exceeded"

    # Store errors (503)
    STORE_UNAVAILABLE = "store_unavailable"

    # Internal errors (500)
    MALFORMED_RECORD = "malformed_record"
    INTERNAL_ERROR = "internal_error"


# Remediation hints for common errors
REMEDIATION_HINTS = {
    ErrorCode.INVALID_AMOUNT: "Provide a positive amount in tenths of a credit (e.g., 10 for one credit)",
    ErrorCode.INSUFFICIENT_CREDITS: "Buy a credit pack to continue.",
    ErrorCode.INSUFFICIENT_QUOTA: "Your monthly allowance is used up. Wait for the next month or buy credits.",
    ErrorCode.INSUFFICIENT_FUNDS: "Buy a credit pack or upgrade your plan to continue.",
    ErrorCode.USAGE_LIMIT_EXCEEDED: "Daily free usage reached. Sign in or try again after the reset time.",
    ErrorCode.STORE_UNAVAILABLE: "Metering storage temporarily unavailable. Please try again in a few moments.",
}
