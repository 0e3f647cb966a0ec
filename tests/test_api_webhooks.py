"""
Tests for billing/routers/webhooks.py — HTTP contract of POST/OPTIONS /webhooks/stripe.
"""
from unittest.mock import AsyncMock

import pytest
import stripe

from billing.config import Settings
from billing.app import build_webhook_processor
from billing.services.webhook_processor import ConfigurationError
from helpers import (
    count_webhook_rows,
    get_subscription_row,
    get_webhook_row,
    make_checkout_session,
    make_event,
    make_invoice,
    seed_subscription,
    signed_event,
)

URL = "/webhooks/stripe"


def _assert_cors(response):
    assert response.headers["access-control-allow-origin"] == "*"
    assert "stripe-signature" in response.headers["access-control-allow-headers"]


@pytest.mark.asyncio
class TestStripeWebhookEndpoint:
    async def test_preflight(self, client):
        response = await client.options(URL)
        assert response.status_code == 200
        assert response.content == b""
        _assert_cors(response)

    async def test_missing_signature(self, client, db):
        body, _ = signed_event(make_event("invoice.payment_failed", make_invoice()))
        response = await client.post(URL, content=body)
        assert response.status_code == 400
        assert response.json() == {"error": "No signature provided"}
        _assert_cors(response)
        assert await count_webhook_rows(db) == 0

    async def test_processor_not_configured(self, client, app):
        app.state.webhook_processor = None
        body, header = signed_event(make_event("invoice.payment_failed", make_invoice()))
        response = await client.post(URL, content=body, headers={"stripe-signature": header})
        assert response.status_code == 500
        assert response.json() == {"error": "Server configuration error"}

    async def test_invalid_signature(self, client, db):
        body, header = signed_event(make_event("invoice.payment_failed", make_invoice()), secret="whsec_wrong")
        response = await client.post(URL, content=body, headers={"stripe-signature": header})
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid signature"}
        _assert_cors(response)
        assert await count_webhook_rows(db) == 0

    async def test_success(self, client, db, user):
        user_id = user.id
        await seed_subscription(db, user_id, customer="cus_123")
        body, header = signed_event(make_event("invoice.payment_failed", make_invoice()))

        response = await client.post(URL, content=body, headers={"stripe-signature": header})

        assert response.status_code == 200
        assert response.json() == {
            "received": True, "eventType": "invoice.payment_failed", "status": "success",
        }
        _assert_cors(response)
        assert (await get_subscription_row(db, user_id)).status == "past_due"

    async def test_business_error_answers_200(self, client, db, user):
        body, header = signed_event(make_event(
            "checkout.session.completed", make_checkout_session(email="nobody@example.com"),
        ))
        response = await client.post(URL, content=body, headers={"stripe-signature": header})

        assert response.status_code == 200
        assert response.json()["status"] == "error"
        log = await get_webhook_row(db, "evt_test_1")
        assert log.status == "error"
        assert log.error_message == "User not found for email: nobody@example.com"

    async def test_infrastructure_error_answers_500(self, client, db, gateway, user):
        gateway.retrieve_subscription = AsyncMock(side_effect=stripe.APIConnectionError("Stripe unavailable"))
        body, header = signed_event(make_event("checkout.session.completed", make_checkout_session()))

        response = await client.post(URL, content=body, headers={"stripe-signature": header})

        assert response.status_code == 500
        assert "Stripe unavailable" in response.json()["error"]
        _assert_cors(response)
        assert (await get_webhook_row(db, "evt_test_1")).status == "error"


class TestBuildWebhookProcessor:
    def test_fails_fast_outside_debug(self):
        settings = Settings(debug=False, jwt_secret="a-real-secret", stripe_secret_key="")
        with pytest.raises(ConfigurationError):
            build_webhook_processor(settings)

    def test_debug_starts_without_processor(self):
        settings = Settings(debug=True, stripe_webhook_secret="")
        assert build_webhook_processor(settings) is None

    def test_builds_processor(self):
        settings = Settings(debug=True)
        processor = build_webhook_processor(settings)
        assert processor.config.webhook_signing_secret == "whsec_test_secret"
