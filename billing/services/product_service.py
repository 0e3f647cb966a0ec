"""Plan products — create Stripe products with a default price from the admin console."""

import logging
from decimal import ROUND_HALF_UP, Decimal

from billing.services.stripe_gateway import StripeGateway, stripe_field

logger = logging.getLogger(__name__)


def to_cents(amount: Decimal | float | str) -> int:
    """Reais to cents, rounding half up (``49.999`` -> ``5000``)."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


async def create_product(
    gateway: StripeGateway,
    name: str,
    price_amount: Decimal,
    currency: str = "brl",
    description: str | None = None,
    interval: str | None = None,
) -> dict:
    """Create a product priced in ``currency`` and return its ids and price details."""
    unit_amount = to_cents(price_amount)
    logger.info("Creating Stripe product %r (%d %s, interval=%s)", name, unit_amount, currency, interval)

    product, price = await gateway.create_product_with_price(
        name=name,
        description=description,
        unit_amount=unit_amount,
        currency=currency.lower(),
        interval=interval,
    )

    result = {
        "product_id": stripe_field(product, "id"),
        "price_id": stripe_field(price, "id"),
        "name": stripe_field(product, "name", name),
        "unit_amount": stripe_field(price, "unit_amount", unit_amount),
        "currency": stripe_field(price, "currency", currency.lower()),
        "interval": stripe_field(stripe_field(price, "recurring"), "interval"),
    }
    logger.info("Product %s created with default price %s", result["product_id"], result["price_id"])
    return result
