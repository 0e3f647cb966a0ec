"""User directory lookups used to attach Stripe customers to local users."""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from billing.models.user import User
from billing.services.stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)


def _normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


async def list_users(db: AsyncSession) -> list[User]:
    result = await db.execute(select(User).order_by(User.id))
    return list(result.scalars().all())


async def find_user_by_email(db: AsyncSession, email: str | None) -> User | None:
    """Match a checkout email against every known user (case-insensitive)."""
    wanted = _normalize_email(email)
    if not wanted:
        return None
    for user in await list_users(db):
        if _normalize_email(user.email) == wanted:
            return user
    return None


async def find_user_for_customer(
    db: AsyncSession, gateway: StripeGateway, customer_id: str
) -> User | None:
    """Resolve a Stripe customer to a local user through the customer's email."""
    email = await gateway.retrieve_customer_email(customer_id)
    if not email:
        logger.info("Stripe customer %s has no email on file", customer_id)
        return None
    return await find_user_by_email(db, email)
