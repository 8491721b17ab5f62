"""Stripe webhook handling — finalize or roll back signups, reconcile status.

The handler keeps no session state of its own: each event carries everything
needed to move a checkout from issued to completed or expired. Delivery is
at-least-once and unordered, so every transition is written to be replayed.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from src.core.constants import (
    EVENT_CHECKOUT_COMPLETED,
    EVENT_CHECKOUT_EXPIRED,
    EVENT_SUBSCRIPTION_DELETED,
    EVENT_SUBSCRIPTION_UPDATED,
    META_EMAIL,
    META_IDENTITY_ID,
    META_ORGANIZATION_NAME,
    META_ORGANIZATION_NUMBER,
    META_SIGNUP_FLOW,
    SIGNUP_FLOW_MARKER,
)
from src.core.exceptions import ConflictError, NotFoundError, SignatureVerificationError
from src.core.interfaces import BaseIdentityStore, BasePaymentGateway, BaseTenantStore
from src.core.logging import get_logger
from src.core.types import SubscriptionStatus, Tenant

log = get_logger(__name__)


class WebhookOutcome(str, Enum):
    PROCESSED = "processed"
    ALREADY_PROCESSED = "already_processed"
    IGNORED = "ignored"
    UNRESOLVABLE = "unresolvable"


class PaymentWebhookHandler:
    """Verify and apply Stripe events.

    Store failures (ExternalServiceError) propagate so the HTTP layer answers
    with a retryable status. Outcomes that redelivery cannot change are logged
    and acknowledged.
    """

    def __init__(
        self,
        gateway: BasePaymentGateway,
        identities: BaseIdentityStore,
        tenants: BaseTenantStore,
    ) -> None:
        self._gateway = gateway
        self._identities = identities
        self._tenants = tenants

    async def handle(self, payload: bytes, signature: str | None) -> WebhookOutcome:
        """Entry point for one webhook delivery."""
        try:
            event = self._gateway.construct_event(payload, signature)
        except SignatureVerificationError as exc:
            log.warning(
                "webhook_signature_rejected",
                reason=exc.message,
                has_signature=bool(signature),
                body_bytes=len(payload),
            )
            raise

        return await self.dispatch(event)

    async def dispatch(self, event: dict[str, Any]) -> WebhookOutcome:
        event_type = event.get("type", "")
        data_object = event.get("data", {}).get("object", {}) or {}
        log.info("webhook_received", event_id=event.get("id"), event_type=event_type)

        if event_type == EVENT_CHECKOUT_COMPLETED:
            return await self._handle_checkout_completed(data_object)
        if event_type == EVENT_CHECKOUT_EXPIRED:
            return await self._handle_checkout_expired(data_object)
        if event_type == EVENT_SUBSCRIPTION_UPDATED:
            status = SubscriptionStatus.from_stripe(data_object.get("status"))
            return await self._update_subscription(data_object, status)
        if event_type == EVENT_SUBSCRIPTION_DELETED:
            return await self._update_subscription(data_object, SubscriptionStatus.CANCELED)

        log.debug("webhook_event_ignored", event_type=event_type)
        return WebhookOutcome.IGNORED

    async def _handle_checkout_completed(self, session: dict[str, Any]) -> WebhookOutcome:
        metadata = _signup_metadata(session)
        if metadata is None:
            return WebhookOutcome.IGNORED

        identity_id = metadata[META_IDENTITY_ID]
        try:
            await self._identities.confirm(identity_id)
        except NotFoundError:
            # Paid, but the identity is gone; needs an operator.
            log.error(
                "signup_identity_missing",
                identity_id=identity_id,
                session_id=session.get("id"),
                customer=session.get("customer"),
            )
            return WebhookOutcome.UNRESOLVABLE

        tenant = Tenant(
            tenant_id=identity_id,
            name=metadata.get(META_ORGANIZATION_NAME, ""),
            organization_number=metadata.get(META_ORGANIZATION_NUMBER, ""),
            email=metadata.get(META_EMAIL) or session.get("customer_email") or "",
            subscription_status=SubscriptionStatus.ACTIVE,
            stripe_customer_id=_ref(session.get("customer")),
            stripe_subscription_id=_ref(session.get("subscription")),
        )
        try:
            _, created = await self._tenants.insert_if_absent(tenant)
        except ConflictError as exc:
            # Paid, but another tenant holds the org number or email; needs an
            # operator. The identity is removed so it cannot linger confirmed
            # without a tenant.
            log.error(
                "signup_tenant_conflict",
                identity_id=identity_id,
                field=exc.context.get("field"),
                session_id=session.get("id"),
                customer=session.get("customer"),
            )
            await self._identities.delete(identity_id)
            return WebhookOutcome.UNRESOLVABLE

        if not created:
            log.info("signup_already_finalized", identity_id=identity_id)
            return WebhookOutcome.ALREADY_PROCESSED

        log.info("signup_finalized", identity_id=identity_id, session_id=session.get("id"))
        return WebhookOutcome.PROCESSED

    async def _handle_checkout_expired(self, session: dict[str, Any]) -> WebhookOutcome:
        metadata = _signup_metadata(session)
        if metadata is None:
            return WebhookOutcome.IGNORED

        identity_id = metadata[META_IDENTITY_ID]
        if await self._tenants.find_by_id(identity_id) is not None:
            # Provisioned directly before the checkout expired; the identity
            # belongs to a tenant now and is kept.
            log.warning("signup_expired_tenant_exists", identity_id=identity_id)
            try:
                await self._identities.confirm(identity_id)
            except NotFoundError:
                log.error("signup_identity_missing", identity_id=identity_id, session_id=session.get("id"))
            return WebhookOutcome.ALREADY_PROCESSED

        deleted = await self._identities.delete(identity_id)
        log.info("signup_rolled_back", identity_id=identity_id, deleted=deleted)
        return WebhookOutcome.PROCESSED if deleted else WebhookOutcome.ALREADY_PROCESSED

    async def _update_subscription(
        self,
        subscription: dict[str, Any],
        status: SubscriptionStatus,
    ) -> WebhookOutcome:
        customer_id = _ref(subscription.get("customer"))
        if not customer_id:
            return WebhookOutcome.IGNORED

        touched = await self._tenants.update_status_by_customer(customer_id, status)
        if touched == 0:
            # May arrive before checkout.session.completed created the tenant.
            log.info("subscription_event_unmatched", customer=customer_id, status=status.value)
            return WebhookOutcome.IGNORED

        log.info("subscription_status_updated", customer=customer_id, status=status.value)
        return WebhookOutcome.PROCESSED


def _signup_metadata(session: dict[str, Any]) -> dict[str, str] | None:
    """Return the session metadata when it belongs to the signup flow."""
    metadata = session.get("metadata") or {}
    if metadata.get(META_SIGNUP_FLOW) != SIGNUP_FLOW_MARKER:
        return None
    if not metadata.get(META_IDENTITY_ID):
        log.warning("signup_metadata_incomplete", session_id=session.get("id"))
        return None
    return metadata


def _ref(value: Any) -> str | None:
    """Stripe references arrive either as ids or as expanded objects."""
    if isinstance(value, dict):
        return value.get("id")
    return value or None
