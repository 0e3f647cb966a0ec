"""Subscription access — gating summary and Stripe Checkout."""

import logging
import math
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from billing.config import get_settings
from billing.constants import ACTIVE_STATUSES, CHECKOUT_LOCALE, EXPIRING_SOON_DAYS, NO_PLAN_NAME
from billing.models.subscription_status import SubscriptionStatus
from billing.models.user import User
from billing.schemas.subscription import SubscriptionSummary
from billing.services.plans import get_plan_by_key, get_plan_by_product_id
from billing.services.stripe_gateway import StripeGateway, stripe_field
from billing.utils import as_utc, now_utc

logger = logging.getLogger(__name__)


async def get_subscription_status(db: AsyncSession, user_id: int) -> SubscriptionStatus | None:
    result = await db.execute(
        select(SubscriptionStatus)
        .where(SubscriptionStatus.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def days_until(end: datetime | None, now: datetime | None = None) -> int | None:
    """Whole days until ``end``, rounded up; negative once it has passed."""
    if end is None:
        return None
    delta = as_utc(end) - (now or now_utc())
    return math.ceil(delta.total_seconds() / 86400)


def is_subscription_active(sub: SubscriptionStatus | None, now: datetime | None = None) -> bool:
    """Active/trialing, or canceled but still within the paid period."""
    if sub is None:
        return False
    if sub.status in ACTIVE_STATUSES:
        return True
    if sub.status == "canceled" and sub.current_period_end:
        return as_utc(sub.current_period_end) > (now or now_utc())
    return False


async def get_subscription_summary(db: AsyncSession, user: User) -> SubscriptionSummary:
    """Everything the UI needs to decide whether to gate a feature."""
    sub = await get_subscription_status(db, user.id)
    now = now_utc()

    product_id = sub.product_id if sub else None
    plan = get_plan_by_product_id(product_id)
    end = as_utc(sub.current_period_end) if sub else None
    days = days_until(end, now)

    subscribed = is_subscription_active(sub, now)
    has_active_plan = subscribed and bool(product_id)
    if user.is_master_admin:
        subscribed = has_active_plan = True

    return SubscriptionSummary(
        subscribed=subscribed,
        has_active_plan=has_active_plan,
        status=sub.status if sub else None,
        product_id=product_id,
        plan_key=plan.key if plan else None,
        plan_name=plan.name if plan else NO_PLAN_NAME,
        subscription_end=end,
        cancel_at_period_end=bool(sub.cancel_at_period_end) if sub else False,
        days_until_renewal=days,
        is_expiring_soon=days is not None and 0 < days <= EXPIRING_SOON_DAYS,
        is_expired=days is not None and days <= 0,
    )


async def create_checkout_session(
    user: User,
    plan_key: str,
    gateway: StripeGateway,
    success_url: str | None = None,
    cancel_url: str | None = None,
) -> dict[str, str]:
    """Create a Stripe Checkout session for a plan; returns ``{url, session_id}``.

    The webhook later matches the checkout to the user through the email,
    so the session is opened with ``customer_email`` set.
    """
    settings = get_settings()
    plan = get_plan_by_key(plan_key)
    if plan is None:
        raise ValueError(f"Unknown plan: {plan_key}")

    session = await gateway.create_checkout_session(
        mode="subscription",
        line_items=[{"price": plan.price_id, "quantity": 1}],
        customer_email=user.email,
        client_reference_id=str(user.id),
        metadata={"user_id": str(user.id), "plan": plan.key},
        success_url=success_url or f"{settings.app_url}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=cancel_url or f"{settings.app_url}/plans",
        allow_promotion_codes=True,
        billing_address_collection="required",
        locale=CHECKOUT_LOCALE,
    )
    session_id = stripe_field(session, "id")
    logger.info("Checkout session %s created for user %s (%s)", session_id, user.id, plan.key)
    return {"url": stripe_field(session, "url"), "session_id": session_id}
