"""Builders for signed Stripe payloads and database lookups shared by tests."""
import hashlib
import hmac
import json
import time

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from billing.models import SubscriptionStatus, WebhookLog
from billing.utils import from_unix

WEBHOOK_SECRET = "whsec_test_secret"


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a stripe-signature header for the given raw body."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_event(event_type: str, obj: dict, event_id: str = "evt_test_1", created: int | None = None) -> dict:
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": created or int(time.time()),
        "data": {"object": obj},
    }


def encode_event(event: dict) -> bytes:
    return json.dumps(event).encode()


def signed_event(event: dict, secret: str = WEBHOOK_SECRET) -> tuple[bytes, str]:
    body = encode_event(event)
    return body, sign_payload(body, secret)


def make_subscription(
    sub_id: str = "sub_123",
    customer: str = "cus_123",
    status: str = "active",
    product: str = "prod_mensal",
    period_start: int = 1_760_000_000,
    period_end: int = 1_762_592_000,
    cancel_at_period_end: bool = False,
) -> dict:
    """Subscription shaped like recent API versions (periods on the item)."""
    return {
        "id": sub_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "cancel_at_period_end": cancel_at_period_end,
        "items": {
            "data": [
                {
                    "id": "si_1",
                    "current_period_start": period_start,
                    "current_period_end": period_end,
                    "price": {"id": "price_mensal", "product": product},
                }
            ]
        },
    }


def make_checkout_session(
    email: str | None = "owner@clinic.com",
    customer: str = "cus_123",
    subscription: str = "sub_123",
    mode: str = "subscription",
) -> dict:
    return {
        "id": "cs_test_1",
        "object": "checkout.session",
        "mode": mode,
        "customer": customer,
        "subscription": subscription,
        "customer_details": {"email": email} if email else None,
        "customer_email": None,
    }


def make_invoice(customer: str = "cus_123", subscription: str | None = "sub_123") -> dict:
    return {
        "id": "in_test_1",
        "object": "invoice",
        "customer": customer,
        "subscription": subscription,
        "amount_paid": 49000,
    }


async def seed_subscription(
    db: AsyncSession,
    user_id: int,
    customer: str = "cus_123",
    status: str = "active",
    last_event_at: int | None = None,
    **overrides,
) -> SubscriptionStatus:
    row = SubscriptionStatus(
        user_id=user_id,
        stripe_customer_id=customer,
        stripe_subscription_id="sub_123",
        product_id="prod_mensal",
        status=status,
        last_event_at=from_unix(last_event_at),
        **overrides,
    )
    db.add(row)
    await db.commit()
    return row


async def get_subscription_row(db: AsyncSession, user_id: int) -> SubscriptionStatus | None:
    result = await db.execute(
        select(SubscriptionStatus)
        .where(SubscriptionStatus.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def count_subscription_rows(db: AsyncSession) -> int:
    result = await db.execute(select(SubscriptionStatus))
    return len(result.scalars().all())


async def get_webhook_row(db: AsyncSession, event_id: str) -> WebhookLog | None:
    result = await db.execute(
        select(WebhookLog)
        .where(WebhookLog.event_id == event_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def count_webhook_rows(db: AsyncSession) -> int:
    result = await db.execute(select(WebhookLog))
    return len(result.scalars().all())
