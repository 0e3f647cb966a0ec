"""Stripe webhook processing — verify, log, reconcile, finalize.

Response policy:
- rejected before persistence (missing signature, bad signature, missing
  configuration) -> 4xx/5xx from ``WebhookRejected``;
- business failure while reconciling (unknown user, unknown subscription)
  -> logged as "error", answered 200 with ``status: "error"`` so Stripe does
  not redeliver an event that can never succeed;
- infrastructure failure (database, Stripe API) -> logged as "error" when
  possible, then re-raised so the endpoint answers 500 and Stripe redelivers.
"""

import logging
from dataclasses import dataclass
from typing import Any

import stripe
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from billing.config import Settings
from billing.constants import WEBHOOK_STATUS_ERROR, WEBHOOK_STATUS_SUCCESS
from billing.services import webhook_log_service
from billing.services.events import MalformedEvent, ProviderEvent, parse_event
from billing.services.reconciliation import (
    ReconciliationError,
    ReconciliationOutcome,
    SubscriptionReconciler,
)
from billing.services.stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)


class WebhookRejected(Exception):
    """Request refused before anything was persisted."""

    status_code = 400
    message = "Bad request"


class MissingSignature(WebhookRejected):
    status_code = 400
    message = "No signature provided"


class ConfigurationError(WebhookRejected):
    status_code = 500
    message = "Server configuration error"


class AuthenticityError(WebhookRejected):
    status_code = 400
    message = "Invalid signature"


@dataclass(frozen=True)
class WebhookProcessorConfig:
    provider_secret_key: str
    webhook_signing_secret: str
    storage_connection: str
    signature_tolerance: int = 300

    @classmethod
    def from_settings(cls, settings: Settings) -> "WebhookProcessorConfig":
        """Build the config, raising ConfigurationError if a required key is empty."""
        required = {
            "STRIPE_SECRET_KEY": settings.stripe_secret_key,
            "STRIPE_WEBHOOK_SECRET": settings.stripe_webhook_secret,
            "DATABASE_URL": settings.database_url,
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")
        return cls(
            provider_secret_key=settings.stripe_secret_key,
            webhook_signing_secret=settings.stripe_webhook_secret,
            storage_connection=settings.database_url,
            signature_tolerance=settings.stripe_webhook_tolerance,
        )


@dataclass(frozen=True)
class ProcessingResult:
    event_id: str
    event_type: str
    status: str
    error_message: str | None = None
    outcome: ReconciliationOutcome | None = None

    def to_response(self) -> dict[str, Any]:
        return {"received": True, "eventType": self.event_type, "status": self.status}


class WebhookProcessor:
    def __init__(self, config: WebhookProcessorConfig, gateway: StripeGateway | None = None):
        self.config = config
        self.gateway = gateway or StripeGateway(config.provider_secret_key)
        logger.info(
            "Webhook processor ready (storage: %s)",
            make_url(config.storage_connection).render_as_string(hide_password=True),
        )

    def verify(self, payload: bytes, signature: str | None) -> ProviderEvent:
        """Check the signature over the raw body and parse the event."""
        if not signature:
            raise MissingSignature()
        try:
            body = self.gateway.verify_event(
                payload,
                signature,
                self.config.webhook_signing_secret,
                self.config.signature_tolerance,
            )
            event = parse_event(body)
        except (stripe.SignatureVerificationError, MalformedEvent, ValueError) as e:
            logger.warning("Webhook signature verification failed: %s", e)
            raise AuthenticityError(str(e)) from e

        logger.info("Webhook signature verified: %s (%s)", event.raw_type, event.id)
        return event

    async def process(self, db: AsyncSession, payload: bytes, signature: str | None) -> ProcessingResult:
        """Handle one delivery end to end."""
        event = self.verify(payload, signature)
        await self._record_processing(db, event)
        return await self.dispatch(db, event)

    async def replay(self, db: AsyncSession, event_id: str) -> ProcessingResult:
        """Re-run a stored event. The payload was verified when first received."""
        log = await webhook_log_service.get_log(db, event_id)
        if log is None:
            raise LookupError(f"No webhook log for event {event_id}")
        event = parse_event(log.payload)
        logger.info("Replaying webhook event %s (%s)", event.id, event.raw_type)
        await self._record_processing(db, event)
        return await self.dispatch(db, event)

    async def _record_processing(self, db: AsyncSession, event: ProviderEvent) -> None:
        try:
            await webhook_log_service.record_processing(db, event.id, event.raw_type, event.payload)
        except SQLAlchemyError as e:
            await db.rollback()
            logger.warning("Failed to log webhook event %s: %s", event.id, e)

    async def dispatch(self, db: AsyncSession, event: ProviderEvent) -> ProcessingResult:
        """Reconcile the event and write the final log status."""
        reconciler = SubscriptionReconciler(db, self.gateway)
        try:
            outcome = await reconciler.reconcile(event)
            await db.commit()
        except ReconciliationError as e:
            await db.rollback()
            logger.error("Error processing event %s (%s): %s", event.id, event.raw_type, e)
            await webhook_log_service.finalize(db, event.id, str(e))
            return ProcessingResult(
                event_id=event.id,
                event_type=event.raw_type,
                status=WEBHOOK_STATUS_ERROR,
                error_message=str(e),
            )
        except Exception as e:
            await db.rollback()
            logger.exception("Failed to process event %s (%s)", event.id, event.raw_type)
            await self._finalize_after_failure(db, event, str(e) or e.__class__.__name__)
            raise

        await webhook_log_service.finalize(db, event.id, None)
        logger.info("Event %s processed: %s", event.id, outcome.outcome)
        return ProcessingResult(
            event_id=event.id,
            event_type=event.raw_type,
            status=WEBHOOK_STATUS_SUCCESS,
            outcome=outcome,
        )

    async def _finalize_after_failure(self, db: AsyncSession, event: ProviderEvent, message: str) -> None:
        try:
            await webhook_log_service.finalize(db, event.id, message)
        except SQLAlchemyError:
            await db.rollback()
            logger.exception("Failed to record error status for webhook event %s", event.id)
