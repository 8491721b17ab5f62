"""Stripe integration — checkout sessions and webhook verification."""

from __future__ import annotations

import json
from typing import Any

import stripe

from config.settings import Settings
from src.core.exceptions import (
    ConfigurationError,
    PaymentSessionCreationFailed,
    SignatureVerificationError,
)
from src.core.interfaces import BasePaymentGateway, CheckoutSession
from src.core.logging import get_logger

log = get_logger(__name__)


class StripeGateway(BasePaymentGateway):
    """Stripe operations used by the signup saga.

    Parameters
    ----------
    settings:
        Settings holding the Stripe secret key and webhook signing secret.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def _get_stripe(self) -> Any:
        """Configure the Stripe library for a single, non-retrying call."""
        secret = self._settings.stripe_secret_key.get_secret_value()
        if not secret:
            raise ConfigurationError("STRIPE_SECRET_KEY is not configured")
        stripe.api_key = secret
        # Redelivery is owned by the caller, never retried in-process.
        stripe.max_network_retries = 0
        return stripe

    def create_checkout_session(
        self,
        *,
        plan_id: str,
        customer_email: str,
        success_url: str,
        cancel_url: str,
        client_reference_id: str,
        metadata: dict[str, str],
    ) -> CheckoutSession:
        """Create a subscription checkout for ``plan_id``.

        ``metadata`` is copied onto the session and onto the subscription so
        later subscription events can be traced back to the signup.
        """
        client = self._get_stripe()
        try:
            session = client.checkout.Session.create(
                mode="subscription",
                payment_method_types=["card"],
                line_items=[{"price": plan_id, "quantity": 1}],
                customer_email=customer_email,
                client_reference_id=client_reference_id,
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
                subscription_data={"metadata": metadata},
            )
        except stripe.StripeError as exc:
            log.error(
                "checkout_session_failed",
                identity_id=client_reference_id,
                error=type(exc).__name__,
            )
            raise PaymentSessionCreationFailed(
                "Stripe checkout session could not be created",
                context={"identity_id": client_reference_id},
            ) from exc

        log.info("checkout_session_created", session_id=session.id, identity_id=client_reference_id)
        return CheckoutSession(session_id=session.id, url=session.url)

    def construct_event(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        """Verify ``Stripe-Signature`` over the raw body and parse the event."""
        secret = self._settings.stripe_webhook_secret.get_secret_value()
        if not secret:
            raise ConfigurationError("STRIPE_WEBHOOK_SECRET is not configured")
        if not signature:
            raise SignatureVerificationError("Missing Stripe-Signature header")

        body = payload.decode("utf-8", errors="replace")
        try:
            stripe.WebhookSignature.verify_header(
                body,
                signature,
                secret,
                self._settings.stripe_webhook_tolerance_seconds,
            )
        except stripe.SignatureVerificationError as exc:
            raise SignatureVerificationError("Webhook signature mismatch") from exc

        try:
            event = json.loads(body)
        except json.JSONDecodeError as exc:
            raise SignatureVerificationError("Webhook payload is not valid JSON") from exc
        if not isinstance(event, dict) or "type" not in event:
            raise SignatureVerificationError("Webhook payload is not a Stripe event")
        return event
