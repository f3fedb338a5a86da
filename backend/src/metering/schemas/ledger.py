"""Pydantic schemas for the credit and quota ledgers."""
from typing import Literal

from pydantic import BaseModel, Field

from metering.schemas.usage import Feature, Owner, StoredRecord

Pool = Literal["credits", "quota", "free"]


class QuotaRecord(StoredRecord):
    """Monthly entitlement consumption for one owner, feature and YYYYMM."""

    consumed_tenths: int = Field(..., ge=0)


class CreditBalance(StoredRecord):
    """Prepaid credit balance for one owner."""

    total_tenths: int = Field(..., ge=0)


class PackApplicationRecord(StoredRecord):
    """Dedupe marker proving a pack was applied to the balance."""

    pack_id: str
    tenths: int = Field(..., gt=0)
    applied_at: int = Field(..., description="Unix milliseconds")


class IdempotentConsumptionRecord(StoredRecord):
    """Dedupe marker holding the single outcome of a debit."""

    idempotency_key: str
    tenths: int = Field(..., ge=0)
    pool: Pool
    applied_at: int = Field(..., description="Unix milliseconds")
    result_tenths: int = Field(
        default=0,
        description="Credit balance after the debit, month consumption after it, or free-tier count",
    )


class CreditConsumption(BaseModel):
    tenths: int = Field(..., description="Amount debited by the original call")
    new_balance_tenths: int
    replayed: bool = False


class QuotaConsumption(BaseModel):
    tenths: int = Field(..., description="Amount debited by the original call")
    consumed_tenths: int
    replayed: bool = False


class PackApplication(BaseModel):
    """Result of applying a credit pack."""

    pack_id: str
    applied: bool = Field(..., description="False when the pack had already been applied")
    balance_tenths: int


class ChargeReceipt(BaseModel):
    """Proof of a routed debit, returned for display and webhook reconciliation."""

    pool: Pool
    tenths: int
    resulting_balance_or_remaining: int
    idempotency_key: str
    replayed: bool = False


class BalanceSnapshot(BaseModel):
    owner_id: str
    credits_tenths: int
    quota_remaining_tenths: int
    year_month: str


class ChargeRequest(BaseModel):
    """Schema for charging a job before it is dispatched to its provider."""

    feature: Feature
    owner: Owner
    needed_tenths: int = Field(..., description="Charge in tenths of a credit")
    external_job_id: str = Field(..., min_length=1, max_length=200)


class CreditPackRequest(BaseModel):
    """Schema for applying a purchased credit pack (billing webhook)."""

    owner_id: str = Field(..., min_length=1)
    pack_id: str = Field(..., min_length=1, description="Checkout session ID or other unique purchase ID")
    tenths: int


class CreditDeductRequest(BaseModel):
    """Schema for a manual credit deduction."""

    owner_id: str = Field(..., min_length=1)
    amount_credits: float = Field(default=1000, description="Whole credits, clamped to 1..100000")
    idempotency_key: str | None = Field(default=None)
    strict: bool = Field(default=True, description="Reject when the balance does not cover the amount")


class CreditDeduction(BaseModel):
    """Result of a manual credit deduction."""

    owner_id: str
    requested_tenths: int
    deducted_tenths: int
    balance_tenths: int
    idempotency_key: str
    replayed: bool = False
