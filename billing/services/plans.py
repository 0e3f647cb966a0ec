"""Plan catalog — maps configured Stripe products and prices to readable plans."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Literal

from billing.config import Settings, get_settings

PlanKey = Literal["mensal", "semestral", "anual"]


@dataclass(frozen=True)
class Plan:
    key: str
    name: str
    product_id: str
    price_id: str
    price: int  # reais
    interval: Literal["month", "year"]
    discount: str | None = None


def get_plans(settings: Settings | None = None) -> dict[str, Plan]:
    """Build the catalog from the Stripe ids in settings."""
    settings = settings or get_settings()
    return {
        "mensal": Plan(
            key="mensal",
            name="Plano Mensal",
            product_id=settings.stripe_product_mensal,
            price_id=settings.stripe_price_mensal,
            price=490,
            interval="month",
        ),
        "semestral": Plan(
            key="semestral",
            name="Plano Semestral",
            product_id=settings.stripe_product_semestral,
            price_id=settings.stripe_price_semestral,
            price=2640,
            interval="month",
            discount="Economize 10% (R$ 440/mês)",
        ),
        "anual": Plan(
            key="anual",
            name="Plano Anual",
            product_id=settings.stripe_product_anual,
            price_id=settings.stripe_price_anual,
            price=4900,
            interval="year",
            discount="Economize 17% (R$ 408/mês)",
        ),
    }


def get_plan_by_product_id(product_id: str | None, settings: Settings | None = None) -> Plan | None:
    if not product_id:
        return None
    for plan in get_plans(settings).values():
        if plan.product_id == product_id:
            return plan
    return None


def get_plan_by_key(key: str, settings: Settings | None = None) -> Plan | None:
    return get_plans(settings).get(key.strip().lower())


def format_price(amount: int | float | Decimal) -> str:
    """Format a value in reais the pt-BR way, e.g. ``R$ 2.640,00``."""
    formatted = f"{Decimal(str(amount)):,.2f}"
    # 2,640.00 -> 2.640,00
    formatted = formatted.replace(",", "_").replace(".", ",").replace("_", ".")
    return f"R$ {formatted}"
