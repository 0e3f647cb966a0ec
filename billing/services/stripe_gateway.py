"""Thin async wrapper around the Stripe SDK.

The SDK is synchronous; every network call runs in a worker thread so the
event loop never blocks. The API key travels with each call instead of the
module-global ``stripe.api_key``, so several gateways can coexist (tests,
replays from the CLI).
"""

import asyncio
import json
import logging
from typing import Any

import stripe
from fastapi import HTTPException

from billing.config import get_settings

logger = logging.getLogger(__name__)


def stripe_field(obj: Any, key: str, default: Any = None) -> Any:
    """Read a key from a StripeObject or plain dict, returning default if absent."""
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError, IndexError, AttributeError):
        return default
    return default if value is None else value


def first_item(stripe_sub: Any) -> Any:
    """Return the first subscription item, or None."""
    items = stripe_field(stripe_field(stripe_sub, "items"), "data", [])
    try:
        return items[0]
    except (IndexError, KeyError, TypeError):
        return None


def get_period_timestamps(stripe_sub: Any) -> tuple[int | None, int | None]:
    """Extract current_period_start/end, handling Stripe API version differences.

    Newer API versions (2024-06-20+) moved these fields to items.data[0].
    """
    start = stripe_field(stripe_sub, "current_period_start")
    end = stripe_field(stripe_sub, "current_period_end")
    if start is not None or end is not None:
        return start, end
    item = first_item(stripe_sub)
    return stripe_field(item, "current_period_start"), stripe_field(item, "current_period_end")


def get_product_id(stripe_sub: Any) -> str | None:
    """Product of the first item's price; the price may carry an expanded product."""
    price = stripe_field(first_item(stripe_sub), "price")
    product = stripe_field(price, "product")
    if product is None or isinstance(product, str):
        return product
    return stripe_field(product, "id")


def get_invoice_subscription_id(invoice: Any) -> str | None:
    """Subscription an invoice belongs to (top-level on older API versions)."""
    subscription = stripe_field(invoice, "subscription")
    if subscription is None:
        details = stripe_field(stripe_field(invoice, "parent"), "subscription_details")
        subscription = stripe_field(details, "subscription")
    if subscription is None or isinstance(subscription, str):
        return subscription
    return stripe_field(subscription, "id")


def get_customer_id(obj: Any) -> str | None:
    customer = stripe_field(obj, "customer")
    if customer is None or isinstance(customer, str):
        return customer
    return stripe_field(customer, "id")


class StripeGateway:
    """Stripe operations used by billing, bound to one secret key."""

    def __init__(self, api_key: str):
        self.api_key = api_key

    @staticmethod
    def verify_event(payload: bytes, signature: str, secret: str, tolerance: int) -> dict:
        """Verify the raw body against the signature header and decode it.

        The bytes are checked exactly as received; decoding happens only after
        the signature matched. Raises stripe.SignatureVerificationError on a
        bad signature and ValueError on a body that is not UTF-8 JSON.
        """
        body = payload.decode("utf-8")
        stripe.WebhookSignature.verify_header(body, signature, secret, tolerance)
        return json.loads(body)

    async def retrieve_subscription(self, subscription_id: str) -> Any:
        return await asyncio.to_thread(
            stripe.Subscription.retrieve, subscription_id, api_key=self.api_key
        )

    async def retrieve_customer_email(self, customer_id: str) -> str | None:
        """Email on the Stripe customer, or None for unknown/deleted customers."""
        try:
            customer = await asyncio.to_thread(
                stripe.Customer.retrieve, customer_id, api_key=self.api_key
            )
        except stripe.InvalidRequestError as e:
            logger.info("Stripe customer %s not retrievable: %s", customer_id, e)
            return None
        if stripe_field(customer, "deleted", False):
            return None
        return stripe_field(customer, "email")

    async def create_checkout_session(self, **params) -> Any:
        return await asyncio.to_thread(
            stripe.checkout.Session.create, api_key=self.api_key, **params
        )

    async def list_active_subscriptions(self, limit: int) -> list:
        result = await asyncio.to_thread(
            stripe.Subscription.list,
            status="active",
            limit=limit,
            expand=["data.items.data.price"],
            api_key=self.api_key,
        )
        return list(stripe_field(result, "data", []))

    async def list_paid_invoices(self, created: dict, limit: int) -> list:
        result = await asyncio.to_thread(
            stripe.Invoice.list,
            created=created,
            status="paid",
            limit=limit,
            api_key=self.api_key,
        )
        return list(stripe_field(result, "data", []))

    async def retrieve_product_name(self, product_id: str) -> str | None:
        product = await asyncio.to_thread(
            stripe.Product.retrieve, product_id, api_key=self.api_key
        )
        return stripe_field(product, "name")

    async def create_product_with_price(
        self,
        name: str,
        description: str | None,
        unit_amount: int,
        currency: str,
        interval: str | None = None,
    ) -> tuple[Any, Any]:
        """Create a product and its price, then make that price the product default."""
        product_params: dict[str, Any] = {"name": name, "active": True}
        # Stripe rejects empty strings
        if description:
            product_params["description"] = description
        product = await asyncio.to_thread(
            stripe.Product.create, api_key=self.api_key, **product_params
        )

        price_params: dict[str, Any] = {
            "product": product["id"],
            "unit_amount": unit_amount,
            "currency": currency,
            "active": True,
        }
        if interval:
            price_params["recurring"] = {"interval": interval}
        price = await asyncio.to_thread(
            stripe.Price.create, api_key=self.api_key, **price_params
        )

        product = await asyncio.to_thread(
            stripe.Product.modify, product["id"], default_price=price["id"], api_key=self.api_key
        )
        return product, price


def get_gateway() -> StripeGateway:
    """FastAPI dependency: gateway bound to the configured secret key, or 500."""
    settings = get_settings()
    if not settings.stripe_secret_key:
        logger.error("STRIPE_SECRET_KEY is not set")
        raise HTTPException(status_code=500, detail="Server configuration error")
    return StripeGateway(settings.stripe_secret_key)
