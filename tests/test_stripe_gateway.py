"""
Tests for billing/services/stripe_gateway.py — field helpers and signature verification.
"""
import time
from unittest.mock import patch

import pytest
import stripe

from billing.services.stripe_gateway import (
    StripeGateway,
    get_customer_id,
    get_invoice_subscription_id,
    get_period_timestamps,
    get_product_id,
    stripe_field,
)
from helpers import WEBHOOK_SECRET, encode_event, make_event, make_subscription, sign_payload


class TestFieldHelpers:
    def test_stripe_field_defaults(self):
        assert stripe_field(None, "id", "x") == "x"
        assert stripe_field({"id": None}, "id", "x") == "x"
        assert stripe_field({}, "id") is None
        assert stripe_field("a string", "id") is None

    def test_period_from_items(self):
        sub = make_subscription(period_start=100, period_end=200)
        assert get_period_timestamps(sub) == (100, 200)

    def test_period_top_level_wins(self):
        sub = make_subscription(period_start=100, period_end=200)
        sub["current_period_start"] = 10
        sub["current_period_end"] = 20
        assert get_period_timestamps(sub) == (10, 20)

    def test_period_missing(self):
        assert get_period_timestamps({"id": "sub_1"}) == (None, None)

    def test_product_id_plain_and_expanded(self):
        assert get_product_id(make_subscription(product="prod_a")) == "prod_a"
        sub = make_subscription()
        sub["items"]["data"][0]["price"]["product"] = {"id": "prod_b", "name": "Plano"}
        assert get_product_id(sub) == "prod_b"
        assert get_product_id({"items": {"data": []}}) is None

    def test_invoice_subscription_legacy_and_parent(self):
        assert get_invoice_subscription_id({"subscription": "sub_1"}) == "sub_1"
        invoice = {"parent": {"subscription_details": {"subscription": "sub_2"}}}
        assert get_invoice_subscription_id(invoice) == "sub_2"
        assert get_invoice_subscription_id({"subscription": None}) is None

    def test_customer_id_expanded(self):
        assert get_customer_id({"customer": "cus_1"}) == "cus_1"
        assert get_customer_id({"customer": {"id": "cus_2"}}) == "cus_2"


class TestVerifyEvent:
    def test_valid_signature_returns_body(self):
        body = encode_event(make_event("invoice.payment_failed", {"id": "in_1"}))
        result = StripeGateway.verify_event(body, sign_payload(body), WEBHOOK_SECRET, 300)
        assert result["id"] == "evt_test_1"

    def test_wrong_secret(self):
        body = encode_event(make_event("invoice.payment_failed", {"id": "in_1"}))
        with pytest.raises(stripe.SignatureVerificationError):
            StripeGateway.verify_event(body, sign_payload(body, "whsec_other"), WEBHOOK_SECRET, 300)

    def test_tampered_body(self):
        body = encode_event(make_event("invoice.payment_failed", {"id": "in_1"}))
        header = sign_payload(body)
        with pytest.raises(stripe.SignatureVerificationError):
            StripeGateway.verify_event(body.replace(b"in_1", b"in_2"), header, WEBHOOK_SECRET, 300)

    def test_expired_timestamp(self):
        body = encode_event(make_event("invoice.payment_failed", {"id": "in_1"}))
        header = sign_payload(body, timestamp=int(time.time()) - 3600)
        with pytest.raises(stripe.SignatureVerificationError):
            StripeGateway.verify_event(body, header, WEBHOOK_SECRET, 300)

    def test_signed_but_not_json(self):
        body = b"not json"
        with pytest.raises(ValueError):
            StripeGateway.verify_event(body, sign_payload(body), WEBHOOK_SECRET, 300)


@pytest.mark.asyncio
class TestGatewayCalls:
    async def test_customer_email_for_deleted_customer(self):
        gw = StripeGateway("sk_test_123")
        with patch("stripe.Customer.retrieve", return_value={"id": "cus_1", "deleted": True}):
            assert await gw.retrieve_customer_email("cus_1") is None

    async def test_customer_email_unknown_customer(self):
        gw = StripeGateway("sk_test_123")
        error = stripe.InvalidRequestError("No such customer", "id")
        with patch("stripe.Customer.retrieve", side_effect=error):
            assert await gw.retrieve_customer_email("cus_missing") is None

    async def test_customer_email_passes_api_key(self):
        gw = StripeGateway("sk_test_123")
        with patch("stripe.Customer.retrieve", return_value={"id": "cus_1", "email": "a@b.com"}) as mock:
            assert await gw.retrieve_customer_email("cus_1") == "a@b.com"
        mock.assert_called_once_with("cus_1", api_key="sk_test_123")

    async def test_create_product_sets_default_price(self):
        gw = StripeGateway("sk_test_123")
        with patch("stripe.Product.create", return_value={"id": "prod_1", "name": "Plano Mensal"}) as create, \
             patch("stripe.Price.create", return_value={"id": "price_1", "unit_amount": 49000}) as price, \
             patch("stripe.Product.modify", return_value={"id": "prod_1", "default_price": "price_1"}) as modify:
            product, created_price = await gw.create_product_with_price(
                "Plano Mensal", None, 49000, "brl", interval="month",
            )

        create.assert_called_once_with(api_key="sk_test_123", name="Plano Mensal", active=True)
        price.assert_called_once_with(
            api_key="sk_test_123", product="prod_1", unit_amount=49000, currency="brl",
            active=True, recurring={"interval": "month"},
        )
        modify.assert_called_once_with("prod_1", default_price="price_1", api_key="sk_test_123")
        assert product["default_price"] == "price_1"
        assert created_price["id"] == "price_1"

    async def test_create_one_time_product(self):
        gw = StripeGateway("sk_test_123")
        with patch("stripe.Product.create", return_value={"id": "prod_2"}) as create, \
             patch("stripe.Price.create", return_value={"id": "price_2"}) as price, \
             patch("stripe.Product.modify", return_value={"id": "prod_2"}):
            await gw.create_product_with_price("Setup", "Implantação", 150000, "brl")

        assert create.call_args.kwargs["description"] == "Implantação"
        assert "recurring" not in price.call_args.kwargs
