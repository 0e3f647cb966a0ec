"""Subscription reconciliation — applies Stripe events to SubscriptionStatus rows.

Every handler funnels into ``apply_transition``, a single conditional upsert
keyed on ``user_id``. Rows carry the provider timestamp of the newest event
applied to them (``last_event_at``); an older event never overwrites newer
state, so deliveries may arrive in any order.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from billing.models.subscription_status import SubscriptionStatus
from billing.services.events import EventKind, ProviderEvent
from billing.services.stripe_gateway import (
    StripeGateway,
    get_customer_id,
    get_invoice_subscription_id,
    get_period_timestamps,
    get_product_id,
    stripe_field,
)
from billing.services.user_directory import find_user_by_email, find_user_for_customer
from billing.utils import from_unix, now_utc

logger = logging.getLogger(__name__)


class ReconciliationError(Exception):
    """Business failure while applying an event; logged, never retried."""


class CustomerEmailMissing(ReconciliationError):
    pass


class UserNotFound(ReconciliationError):
    pass


class SubscriptionNotFound(ReconciliationError):
    pass


class TransitionOutcome(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    STALE = "stale"
    NO_MATCHING_RECORD = "no_matching_record"
    IGNORED = "ignored"


@dataclass
class SubscriptionPatch:
    """Columns to write; None means "leave as is"."""

    stripe_subscription_id: str | None = None
    product_id: str | None = None
    status: str | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool | None = None

    def values(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}

    @classmethod
    def from_subscription(cls, stripe_sub: Any, status: str | None = None) -> "SubscriptionPatch":
        """Create a patch from Stripe subscription data."""
        period_start, period_end = get_period_timestamps(stripe_sub)
        return cls(
            stripe_subscription_id=stripe_field(stripe_sub, "id"),
            product_id=get_product_id(stripe_sub),
            status=status or stripe_field(stripe_sub, "status"),
            current_period_start=from_unix(period_start),
            current_period_end=from_unix(period_end),
            cancel_at_period_end=bool(stripe_field(stripe_sub, "cancel_at_period_end", False)),
        )


@dataclass(frozen=True)
class ReconciliationOutcome:
    kind: EventKind
    outcome: TransitionOutcome
    user_id: int | None = None
    customer_id: str | None = None


def _upsert_statement(dialect_name: str, values: dict[str, Any]):
    """INSERT ... ON CONFLICT (user_id) DO UPDATE, skipped when the row is newer."""
    if dialect_name == "postgresql":
        insert = postgresql.insert
    elif dialect_name == "sqlite":
        insert = sqlite.insert
    else:
        raise RuntimeError(f"Subscription upsert is not supported on {dialect_name}")

    table = SubscriptionStatus.__table__
    stmt = insert(table).values(**values)
    return stmt.on_conflict_do_update(
        index_elements=[table.c.user_id],
        set_={column: stmt.excluded[column] for column in values if column != "user_id"},
        where=or_(
            table.c.last_event_at.is_(None),
            table.c.last_event_at <= stmt.excluded.last_event_at,
        ),
    )


class SubscriptionReconciler:
    """Dispatches a verified event to its handler within one database session.

    The caller owns the transaction: nothing here commits.
    """

    def __init__(self, db: AsyncSession, gateway: StripeGateway):
        self.db = db
        self.gateway = gateway
        self._handlers: dict[EventKind, Callable[[ProviderEvent], Awaitable[ReconciliationOutcome]]] = {
            EventKind.CHECKOUT_COMPLETED: self._checkout_completed,
            EventKind.SUBSCRIPTION_UPDATED: self._subscription_updated,
            EventKind.SUBSCRIPTION_DELETED: self._subscription_deleted,
            EventKind.INVOICE_PAYMENT_SUCCEEDED: self._invoice_payment_succeeded,
            EventKind.INVOICE_PAYMENT_FAILED: self._invoice_payment_failed,
        }

    async def reconcile(self, event: ProviderEvent) -> ReconciliationOutcome:
        handler = self._handlers.get(event.kind)
        if handler is None:
            logger.info("Unhandled event type: %s", event.raw_type)
            return ReconciliationOutcome(kind=event.kind, outcome=TransitionOutcome.IGNORED)
        logger.info("Processing %s (%s)", event.raw_type, event.id)
        return await handler(event)

    async def apply_transition(
        self,
        customer_id: str | None,
        patch: SubscriptionPatch,
        *,
        event_at: datetime | None,
        user_id: int | None = None,
    ) -> tuple[TransitionOutcome, int | None]:
        """Write ``patch`` to the subscription row of ``customer_id``.

        The owning user comes from ``user_id`` when given, otherwise from the
        row already linked to the customer, otherwise from the Stripe
        customer's email. Returns the outcome and the resolved user id.
        """
        if not customer_id:
            return TransitionOutcome.NO_MATCHING_RECORD, None

        if user_id is None:
            user_id = await self.db.scalar(
                select(SubscriptionStatus.user_id)
                .where(SubscriptionStatus.stripe_customer_id == customer_id)
                .limit(1)
            )
        if user_id is None:
            user = await find_user_for_customer(self.db, self.gateway, customer_id)
            if user is None:
                logger.info("No subscription record or user for customer %s", customer_id)
                return TransitionOutcome.NO_MATCHING_RECORD, None
            user_id = user.id

        existing_id = await self.db.scalar(
            select(SubscriptionStatus.id).where(SubscriptionStatus.user_id == user_id)
        )

        values = {
            **patch.values(),
            "user_id": user_id,
            "stripe_customer_id": customer_id,
            "last_event_at": event_at or now_utc(),
            "updated_at": now_utc(),
        }
        result = await self.db.execute(_upsert_statement(self.db.get_bind().dialect.name, values))

        if result.rowcount == 0:
            logger.info(
                "Skipping stale event for user %s (event at %s is older than stored state)",
                user_id, values["last_event_at"],
            )
            return TransitionOutcome.STALE, user_id
        if existing_id is None:
            return TransitionOutcome.CREATED, user_id
        return TransitionOutcome.UPDATED, user_id

    # --- handlers, one per EventKind ---

    async def _checkout_completed(self, event: ProviderEvent) -> ReconciliationOutcome:
        session = event.data
        customer_id = get_customer_id(session)
        subscription_id = stripe_field(session, "subscription")
        if not isinstance(subscription_id, str):
            subscription_id = stripe_field(subscription_id, "id")

        if stripe_field(session, "mode") != "subscription" or not customer_id or not subscription_id:
            logger.info("Checkout %s is not a subscription checkout, skipping", stripe_field(session, "id"))
            return ReconciliationOutcome(kind=event.kind, outcome=TransitionOutcome.IGNORED, customer_id=customer_id)

        stripe_sub = await self.gateway.retrieve_subscription(subscription_id)

        email = stripe_field(stripe_field(session, "customer_details"), "email") or stripe_field(
            session, "customer_email"
        )
        if not email:
            raise CustomerEmailMissing("No customer email found")

        user = await find_user_by_email(self.db, email)
        if user is None:
            raise UserNotFound(f"User not found for email: {email}")

        patch = SubscriptionPatch.from_subscription(stripe_sub, status="active")
        patch.stripe_subscription_id = subscription_id
        outcome, user_id = await self.apply_transition(
            customer_id, patch, event_at=event.created_at, user_id=user.id
        )
        logger.info(
            "Subscription %s for user %s (subscription %s, product %s)",
            outcome, user_id, subscription_id, patch.product_id,
        )
        return ReconciliationOutcome(kind=event.kind, outcome=outcome, user_id=user_id, customer_id=customer_id)

    async def _subscription_updated(self, event: ProviderEvent) -> ReconciliationOutcome:
        stripe_sub = event.data
        customer_id = get_customer_id(stripe_sub)
        patch = SubscriptionPatch.from_subscription(stripe_sub)

        outcome, user_id = await self.apply_transition(customer_id, patch, event_at=event.created_at)
        if outcome is TransitionOutcome.NO_MATCHING_RECORD:
            raise SubscriptionNotFound("Subscription status not found for customer")

        logger.info("Subscription %s for user %s: status=%s product=%s", outcome, user_id, patch.status, patch.product_id)
        return ReconciliationOutcome(kind=event.kind, outcome=outcome, user_id=user_id, customer_id=customer_id)

    async def _subscription_deleted(self, event: ProviderEvent) -> ReconciliationOutcome:
        customer_id = get_customer_id(event.data)
        patch = SubscriptionPatch(status="canceled", cancel_at_period_end=False)

        outcome, user_id = await self.apply_transition(customer_id, patch, event_at=event.created_at)
        logger.info("Subscription canceled for customer %s (%s)", customer_id, outcome)
        return ReconciliationOutcome(kind=event.kind, outcome=outcome, user_id=user_id, customer_id=customer_id)

    async def _invoice_payment_succeeded(self, event: ProviderEvent) -> ReconciliationOutcome:
        invoice = event.data
        customer_id = get_customer_id(invoice)
        subscription_id = get_invoice_subscription_id(invoice)
        if not subscription_id:
            logger.info("Invoice %s is not tied to a subscription, skipping", stripe_field(invoice, "id"))
            return ReconciliationOutcome(kind=event.kind, outcome=TransitionOutcome.IGNORED, customer_id=customer_id)

        stripe_sub = await self.gateway.retrieve_subscription(subscription_id)
        # The first paid invoice can arrive before checkout.session.completed
        patch = SubscriptionPatch.from_subscription(stripe_sub, status="active")
        patch.stripe_subscription_id = patch.stripe_subscription_id or subscription_id

        outcome, user_id = await self.apply_transition(customer_id, patch, event_at=event.created_at)
        logger.info("Payment succeeded, subscription renewed for customer %s (%s)", customer_id, outcome)
        return ReconciliationOutcome(kind=event.kind, outcome=outcome, user_id=user_id, customer_id=customer_id)

    async def _invoice_payment_failed(self, event: ProviderEvent) -> ReconciliationOutcome:
        customer_id = get_customer_id(event.data)
        patch = SubscriptionPatch(status="past_due")

        outcome, user_id = await self.apply_transition(customer_id, patch, event_at=event.created_at)
        logger.warning("Payment failed, subscription marked as past_due for customer %s (%s)", customer_id, outcome)
        return ReconciliationOutcome(kind=event.kind, outcome=outcome, user_id=user_id, customer_id=customer_id)
