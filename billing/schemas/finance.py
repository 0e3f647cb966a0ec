"""Financial dashboard and product catalog Pydantic schemas."""

from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class PlanRevenue(BaseModel):
    plan: str
    count: int
    revenue: float


class FinancialStats(BaseModel):
    total_mrr: float = Field(serialization_alias="totalMRR")
    monthly_revenue: float = Field(serialization_alias="monthlyRevenue")
    previous_month_revenue: float = Field(serialization_alias="previousMonthRevenue")
    active_subscriptions: int = Field(serialization_alias="activeSubscriptions")
    growth_rate: float = Field(serialization_alias="growthRate")
    plan_breakdown: list[PlanRevenue] = Field(serialization_alias="planBreakdown")


class ProductCreate(BaseModel):
    """Body sent by the admin console; amounts are in reais."""

    model_config = ConfigDict(populate_by_name=True)

    product_name: str = Field(alias="productName", min_length=1, max_length=250)
    product_description: str | None = Field(None, alias="productDescription", max_length=500)
    price_amount: Decimal = Field(alias="priceAmount", gt=0)
    price_currency: str = Field("brl", alias="priceCurrency", min_length=3, max_length=3)
    recurring_interval: Literal["day", "week", "month", "year"] | None = Field(None, alias="recurringInterval")


class ProductCreated(BaseModel):
    product_id: str = Field(serialization_alias="productId")
    price_id: str = Field(serialization_alias="priceId")
    name: str
    unit_amount: int = Field(serialization_alias="unitAmount")
    currency: str
    interval: str | None = None
