"""Pydantic schemas for usage counters."""
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Feature = Literal["voice", "ai-image", "ai-video", "prompt"]
OwnerType = Literal["user", "guest"]
Plan = Literal["free", "pro", "premium", "enterprise"]


class StoredRecord(BaseModel):
    """Base for values persisted in the key-value store (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UsageRecord(StoredRecord):
    """Rolling or calendar usage counter."""

    count: int = Field(..., ge=0, description="Attempts counted in the current window")
    reset_at: int = Field(..., ge=0, description="Unix seconds at which the window ends")


class Owner(BaseModel):
    """Billing subject of a metered action."""

    owner_type: OwnerType = Field(..., description="Signed-in user or anonymous guest")
    owner_id: str = Field(..., min_length=1, max_length=128, description="User ID or guest identifier")
    plan: Plan = Field(default="free", description="Subscription plan (users only)")

    @property
    def is_user(self) -> bool:
        return self.owner_type == "user"


class IncrementResult(BaseModel):
    """Outcome of a counter increment. The increment happens even when not allowed."""

    usage: UsageRecord
    allowed: bool


class UsageSummary(BaseModel):
    """Usage as displayed to the owner."""

    used: int
    limit: int
    reset_at: Optional[int] = Field(default=None, description="Unix seconds, None when no usage recorded")


class RateIncrementRequest(BaseModel):
    """Schema for incrementing a feature counter."""

    owner: Owner
    limit: Optional[int] = Field(default=None, ge=0, description="Override the plan daily limit")
