"""API routes — subscription status and checkout for clinic users."""

import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from billing.db.session import get_db
from billing.models.user import User
from billing.schemas.subscription import CheckoutRequest, CheckoutResponse, SubscriptionSummary
from billing.services.auth_service import get_current_user
from billing.services.stripe_gateway import StripeGateway, get_gateway
from billing.services.subscription_service import create_checkout_session, get_subscription_summary

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["api"])


@router.get("/subscription", response_model=SubscriptionSummary)
async def subscription_summary(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await get_subscription_summary(db, user)


# --- Billing endpoints ---


@router.post("/billing/checkout", response_model=CheckoutResponse)
async def billing_checkout(
    body: CheckoutRequest,
    user: User = Depends(get_current_user),
    gateway: StripeGateway = Depends(get_gateway),
):
    try:
        session = await create_checkout_session(
            user,
            body.plan,
            gateway,
            success_url=str(body.success_url) if body.success_url else None,
            cancel_url=str(body.cancel_url) if body.cancel_url else None,
        )
    except stripe.StripeError as e:
        logger.error("Checkout failed for user %s: %s", user.id, e)
        raise HTTPException(status_code=400, detail=e.user_message or "Checkout could not be created")
    return CheckoutResponse(url=session["url"], session_id=session["session_id"])
