"""Stripe event classification — the closed set of events billing reacts to."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from billing.utils import from_unix


class EventKind(StrEnum):
    CHECKOUT_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
    UNHANDLED = "unhandled"


_KINDS_BY_TYPE = {kind.value: kind for kind in EventKind if kind is not EventKind.UNHANDLED}


class MalformedEvent(ValueError):
    """The verified body is not a usable Stripe event envelope."""


@dataclass(frozen=True)
class ProviderEvent:
    """A verified Stripe event, classified by type.

    ``raw_type`` keeps the provider's event name so UNHANDLED events can
    still be logged and reported verbatim.
    """

    id: str
    raw_type: str
    kind: EventKind
    created_at: datetime | None
    data: dict[str, Any]
    payload: dict[str, Any] = field(repr=False)

    @property
    def is_handled(self) -> bool:
        return self.kind is not EventKind.UNHANDLED


def classify_event_type(event_type: str) -> EventKind:
    return _KINDS_BY_TYPE.get(event_type, EventKind.UNHANDLED)


def parse_event(payload: Any) -> ProviderEvent:
    """Build a ProviderEvent from a decoded event body.

    Raises MalformedEvent when the envelope lacks an id, a type or a
    ``data.object`` mapping.
    """
    if not isinstance(payload, dict):
        raise MalformedEvent("Event body is not an object")

    event_id = payload.get("id")
    event_type = payload.get("type")
    if not event_id or not isinstance(event_id, str):
        raise MalformedEvent("Event id missing")
    if not event_type or not isinstance(event_type, str):
        raise MalformedEvent("Event type missing")

    envelope = payload.get("data")
    data = envelope.get("object") if isinstance(envelope, dict) else None
    if not isinstance(data, dict):
        raise MalformedEvent("Event data.object missing")

    return ProviderEvent(
        id=event_id,
        raw_type=event_type,
        kind=classify_event_type(event_type),
        created_at=from_unix(payload.get("created")),
        data=data,
        payload=payload,
    )
