"""Financial dashboard — MRR, plan breakdown and revenue growth from Stripe."""

import logging
from collections import defaultdict
from datetime import timedelta
from typing import Any

import stripe

from billing.constants import REVENUE_WINDOW_DAYS, STRIPE_LIST_LIMIT
from billing.services.stripe_gateway import StripeGateway, first_item, stripe_field
from billing.utils import now_utc

logger = logging.getLogger(__name__)

UNKNOWN_PRODUCT = "Unknown"


def monthly_amount(price: Any) -> float:
    """Monthly value of a price in reais; yearly prices are spread over 12 months."""
    amount = stripe_field(price, "unit_amount", 0) or 0
    if stripe_field(stripe_field(price, "recurring"), "interval") == "year":
        amount = amount / 12
    return amount / 100


def _price_product_id(price: Any) -> str | None:
    product = stripe_field(price, "product")
    if product is None or isinstance(product, str):
        return product
    return stripe_field(product, "id")


def _invoice_total(invoices: list) -> float:
    return sum((stripe_field(invoice, "amount_paid", 0) or 0) / 100 for invoice in invoices)


async def _product_names(gateway: StripeGateway, product_ids: set[str]) -> dict[str, str]:
    names = {}
    for product_id in sorted(product_ids):
        try:
            names[product_id] = await gateway.retrieve_product_name(product_id) or UNKNOWN_PRODUCT
        except stripe.StripeError as e:
            logger.warning("Failed to fetch product %s: %s", product_id, e)
            names[product_id] = UNKNOWN_PRODUCT
    return names


async def get_financial_stats(gateway: StripeGateway) -> dict[str, Any]:
    """Aggregate active subscriptions and paid invoices into dashboard figures."""
    subscriptions = await gateway.list_active_subscriptions(limit=STRIPE_LIST_LIMIT)
    logger.info("Fetched %d active subscriptions", len(subscriptions))

    priced = []
    for sub in subscriptions:
        price = stripe_field(first_item(sub), "price")
        if price is not None:
            priced.append(price)

    total_mrr = sum(monthly_amount(price) for price in priced)
    names = await _product_names(
        gateway, {pid for pid in (_price_product_id(price) for price in priced) if pid}
    )

    breakdown: dict[str, dict[str, float]] = defaultdict(lambda: {"count": 0, "revenue": 0.0})
    for price in priced:
        name = names.get(_price_product_id(price) or "", UNKNOWN_PRODUCT)
        breakdown[name]["count"] += 1
        breakdown[name]["revenue"] += monthly_amount(price)

    now = int(now_utc().timestamp())
    window = int(timedelta(days=REVENUE_WINDOW_DAYS).total_seconds())
    current = await gateway.list_paid_invoices({"gte": now - window}, limit=STRIPE_LIST_LIMIT)
    previous = await gateway.list_paid_invoices(
        {"gte": now - 2 * window, "lt": now - window}, limit=STRIPE_LIST_LIMIT
    )
    monthly_revenue = _invoice_total(current)
    previous_revenue = _invoice_total(previous)

    growth_rate = 0.0
    if previous_revenue > 0:
        growth_rate = (monthly_revenue - previous_revenue) / previous_revenue * 100

    stats = {
        "total_mrr": round(total_mrr, 2),
        "monthly_revenue": round(monthly_revenue, 2),
        "previous_month_revenue": round(previous_revenue, 2),
        "active_subscriptions": len(subscriptions),
        "growth_rate": round(growth_rate, 2),
        "plan_breakdown": [
            {"plan": plan, "count": int(data["count"]), "revenue": round(data["revenue"], 2)}
            for plan, data in breakdown.items()
        ],
    }
    logger.info("Financial stats calculated: MRR %.2f, %d active", stats["total_mrr"], len(subscriptions))
    return stats
