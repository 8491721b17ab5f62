"""Tests for the Stripe gateway: checkout creation and webhook verification."""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from types import SimpleNamespace
from unittest.mock import patch

import pytest
import stripe

from src.billing.stripe_gateway import StripeGateway
from src.core.exceptions import (
    ConfigurationError,
    PaymentSessionCreationFailed,
    SignatureVerificationError,
)
from tests.fakes import make_settings

WEBHOOK_SECRET = "whsec_test"


def _sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.{payload.decode()}".encode()
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def _event(event_type: str = "checkout.session.completed") -> bytes:
    return json.dumps({"id": "evt_1", "type": event_type, "data": {"object": {}}}).encode()


class TestConstructEvent:
    def test_valid_signature(self) -> None:
        payload = _event()
        event = StripeGateway(make_settings()).construct_event(payload, _sign(payload))
        assert event["type"] == "checkout.session.completed"

    def test_tampered_body_rejected(self) -> None:
        payload = _event()
        signature = _sign(payload)
        tampered = payload.replace(b"evt_1", b"evt_2")
        with pytest.raises(SignatureVerificationError):
            StripeGateway(make_settings()).construct_event(tampered, signature)

    def test_wrong_secret_rejected(self) -> None:
        payload = _event()
        with pytest.raises(SignatureVerificationError):
            StripeGateway(make_settings()).construct_event(payload, _sign(payload, secret="whsec_other"))

    def test_stale_timestamp_rejected(self) -> None:
        payload = _event()
        old = int(time.time()) - 3600
        with pytest.raises(SignatureVerificationError):
            StripeGateway(make_settings()).construct_event(payload, _sign(payload, timestamp=old))

    def test_missing_header(self) -> None:
        with pytest.raises(SignatureVerificationError):
            StripeGateway(make_settings()).construct_event(_event(), None)

    def test_unconfigured_secret(self) -> None:
        with pytest.raises(ConfigurationError):
            StripeGateway(make_settings(stripe_webhook_secret="")).construct_event(_event(), "t=1,v1=x")

    def test_signed_non_event_rejected(self) -> None:
        payload = b'["not", "an", "event"]'
        with pytest.raises(SignatureVerificationError):
            StripeGateway(make_settings()).construct_event(payload, _sign(payload))


class TestCreateCheckoutSession:
    def _create(self, gateway: StripeGateway) -> object:
        return gateway.create_checkout_session(
            plan_id="price_basic",
            customer_email="a@b.se",
            success_url="https://app.test/ok",
            cancel_url="https://app.test/cancel",
            client_reference_id="u1",
            metadata={"identity_id": "u1", "signup_flow": "true"},
        )

    def test_creates_subscription_session(self) -> None:
        session = SimpleNamespace(id="cs_1", url="https://checkout.stripe.com/c/cs_1")
        with patch("stripe.checkout.Session.create", return_value=session) as create:
            result = self._create(StripeGateway(make_settings()))

        assert result.session_id == "cs_1"  # type: ignore[attr-defined]
        assert result.url == "https://checkout.stripe.com/c/cs_1"  # type: ignore[attr-defined]
        kwargs = create.call_args.kwargs
        assert kwargs["mode"] == "subscription"
        assert kwargs["line_items"] == [{"price": "price_basic", "quantity": 1}]
        assert kwargs["client_reference_id"] == "u1"
        assert kwargs["subscription_data"] == {"metadata": kwargs["metadata"]}
        assert stripe.max_network_retries == 0

    def test_stripe_error_wrapped(self) -> None:
        with patch("stripe.checkout.Session.create", side_effect=stripe.StripeError("card declined")):
            with pytest.raises(PaymentSessionCreationFailed):
                self._create(StripeGateway(make_settings()))

    def test_missing_key(self) -> None:
        with pytest.raises(ConfigurationError):
            self._create(StripeGateway(make_settings(stripe_secret_key="")))
