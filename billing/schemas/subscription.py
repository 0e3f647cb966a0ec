"""Subscription and checkout Pydantic schemas."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, HttpUrl


class SubscriptionSummary(BaseModel):
    subscribed: bool
    has_active_plan: bool
    status: str | None = None
    product_id: str | None = None
    plan_key: str | None = None
    plan_name: str
    subscription_end: datetime | None = None
    cancel_at_period_end: bool = False
    days_until_renewal: int | None = None
    is_expiring_soon: bool = False
    is_expired: bool = False


class CheckoutRequest(BaseModel):
    plan: Literal["mensal", "semestral", "anual"]
    success_url: HttpUrl | None = None
    cancel_url: HttpUrl | None = None


class CheckoutResponse(BaseModel):
    url: str
    session_id: str = Field(serialization_alias="sessionId")
