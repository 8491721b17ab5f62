"""Tests for the payment webhook handler."""

from __future__ import annotations

import json
from typing import Any

import pytest

from src.core.exceptions import ExternalServiceError, SignatureVerificationError
from src.core.types import PendingIdentity, SubscriptionStatus
from src.provisioning.provisioner import TenantProvisioner
from src.provisioning.webhook import PaymentWebhookHandler, WebhookOutcome
from tests.fakes import FakeGateway, FakeIdentityStore, FakeTenantStore, make_tenant


def _payload(event_type: str, obj: dict[str, Any]) -> bytes:
    return json.dumps({"id": "evt_1", "type": event_type, "data": {"object": obj}}).encode()


def _session(identity_id: str = "u1", **extra: Any) -> dict[str, Any]:
    session: dict[str, Any] = {
        "id": "cs_1",
        "customer": "cus_1",
        "subscription": "sub_1",
        "customer_email": "a@b.se",
        "metadata": {
            "identity_id": identity_id,
            "organization_name": "Acme AB",
            "organization_number": "556677-8899",
            "email": "a@b.se",
            "signup_flow": "true",
        },
    }
    session.update(extra)
    return session


@pytest.fixture
def handler(
    gateway: FakeGateway,
    identities: FakeIdentityStore,
    tenants: FakeTenantStore,
) -> PaymentWebhookHandler:
    return PaymentWebhookHandler(gateway, identities, tenants)


def _pending(identities: FakeIdentityStore, identity_id: str = "u1") -> PendingIdentity:
    return identities.add(PendingIdentity(identity_id, "a@b.se", metadata={"pending_payment": True}))


class TestSignature:
    @pytest.mark.asyncio
    async def test_bad_signature_writes_nothing(
        self,
        handler: PaymentWebhookHandler,
        identities: FakeIdentityStore,
        tenants: FakeTenantStore,
    ) -> None:
        _pending(identities)
        with pytest.raises(SignatureVerificationError):
            await handler.handle(_payload("checkout.session.completed", _session()), "forged")
        assert tenants.writes == 0
        assert identities.identities["u1"].confirmed is False
        assert identities.identities["u1"].pending_payment is True
        assert identities.deleted == []

    @pytest.mark.asyncio
    async def test_bad_signature_on_expiry_keeps_identity(
        self,
        handler: PaymentWebhookHandler,
        identities: FakeIdentityStore,
    ) -> None:
        _pending(identities)
        with pytest.raises(SignatureVerificationError):
            await handler.handle(_payload("checkout.session.expired", _session()), None)
        assert "u1" in identities.identities
        assert identities.deleted == []


class TestCheckoutCompleted:
    @pytest.mark.asyncio
    async def test_creates_active_tenant(
        self,
        handler: PaymentWebhookHandler,
        identities: FakeIdentityStore,
        tenants: FakeTenantStore,
    ) -> None:
        _pending(identities)
        outcome = await handler.handle(_payload("checkout.session.completed", _session()), "valid")

        assert outcome is WebhookOutcome.PROCESSED
        tenant = tenants.tenants["u1"]
        assert tenant.subscription_status is SubscriptionStatus.ACTIVE
        assert tenant.stripe_customer_id == "cus_1"
        assert tenant.stripe_subscription_id == "sub_1"
        assert tenant.organization_number == "556677-8899"
        assert identities.identities["u1"].confirmed is True
        assert identities.identities["u1"].pending_payment is False

    @pytest.mark.asyncio
    async def test_duplicate_delivery_creates_one_tenant(
        self,
        handler: PaymentWebhookHandler,
        identities: FakeIdentityStore,
        tenants: FakeTenantStore,
    ) -> None:
        _pending(identities)
        payload = _payload("checkout.session.completed", _session())

        first = await handler.handle(payload, "valid")
        second = await handler.handle(payload, "valid")

        assert first is WebhookOutcome.PROCESSED
        assert second is WebhookOutcome.ALREADY_PROCESSED
        assert len(tenants.tenants) == 1

    @pytest.mark.asyncio
    async def test_expanded_customer_object(
        self,
        handler: PaymentWebhookHandler,
        identities: FakeIdentityStore,
        tenants: FakeTenantStore,
    ) -> None:
        _pending(identities)
        session = _session(customer={"id": "cus_9", "object": "customer"})
        await handler.handle(_payload("checkout.session.completed", session), "valid")
        assert tenants.tenants["u1"].stripe_customer_id == "cus_9"

    @pytest.mark.asyncio
    async def test_missing_identity_is_acknowledged(
        self,
        handler: PaymentWebhookHandler,
        tenants: FakeTenantStore,
    ) -> None:
        outcome = await handler.handle(_payload("checkout.session.completed", _session("ghost")), "valid")
        assert outcome is WebhookOutcome.UNRESOLVABLE
        assert tenants.tenants == {}

    @pytest.mark.asyncio
    async def test_lost_uniqueness_race_is_acknowledged(
        self,
        handler: PaymentWebhookHandler,
        identities: FakeIdentityStore,
        tenants: FakeTenantStore,
    ) -> None:
        _pending(identities)
        tenants.tenants["other"] = make_tenant("other", organization_number="556677-8899")

        outcome = await handler.handle(_payload("checkout.session.completed", _session()), "valid")
        assert outcome is WebhookOutcome.UNRESOLVABLE
        assert "u1" not in tenants.tenants
        # No confirmed identity is left behind without a tenant.
        assert "u1" not in identities.identities
        assert identities.deleted == ["u1"]

        redelivered = await handler.handle(_payload("checkout.session.completed", _session()), "valid")
        assert redelivered is WebhookOutcome.UNRESOLVABLE
        assert "u1" not in tenants.tenants

    @pytest.mark.asyncio
    async def test_non_signup_session_ignored(
        self,
        handler: PaymentWebhookHandler,
        tenants: FakeTenantStore,
    ) -> None:
        session = _session(metadata={"some": "other flow"})
        outcome = await handler.handle(_payload("checkout.session.completed", session), "valid")
        assert outcome is WebhookOutcome.IGNORED
        assert tenants.writes == 0

    @pytest.mark.asyncio
    async def test_store_failure_propagates(
        self,
        handler: PaymentWebhookHandler,
        identities: FakeIdentityStore,
        tenants: FakeTenantStore,
    ) -> None:
        _pending(identities)
        tenants.fail_on["insert_if_absent"] = ExternalServiceError("db down")

        with pytest.raises(ExternalServiceError):
            await handler.handle(_payload("checkout.session.completed", _session()), "valid")

        # Redelivery after recovery completes the signup.
        del tenants.fail_on["insert_if_absent"]
        outcome = await handler.handle(_payload("checkout.session.completed", _session()), "valid")
        assert outcome is WebhookOutcome.PROCESSED


class TestCheckoutExpired:
    @pytest.mark.asyncio
    async def test_deletes_pending_identity(
        self,
        handler: PaymentWebhookHandler,
        identities: FakeIdentityStore,
        tenants: FakeTenantStore,
    ) -> None:
        _pending(identities)
        outcome = await handler.handle(_payload("checkout.session.expired", _session()), "valid")
        assert outcome is WebhookOutcome.PROCESSED
        assert "u1" not in identities.identities
        assert tenants.tenants == {}

    @pytest.mark.asyncio
    async def test_repeated_expiry_is_noop(
        self,
        handler: PaymentWebhookHandler,
        identities: FakeIdentityStore,
    ) -> None:
        _pending(identities)
        payload = _payload("checkout.session.expired", _session())

        await handler.handle(payload, "valid")
        outcome = await handler.handle(payload, "valid")

        assert outcome is WebhookOutcome.ALREADY_PROCESSED
        assert identities.deleted == ["u1"]

    @pytest.mark.asyncio
    async def test_keeps_identity_already_provisioned(
        self,
        handler: PaymentWebhookHandler,
        identities: FakeIdentityStore,
        tenants: FakeTenantStore,
    ) -> None:
        _pending(identities)
        provisioner = TenantProvisioner(identities, tenants)
        await provisioner.provision("u1", "Acme AB", "556677-8899", "a@b.se")

        outcome = await handler.handle(_payload("checkout.session.expired", _session()), "valid")

        assert outcome is WebhookOutcome.ALREADY_PROCESSED
        assert "u1" in tenants.tenants
        assert identities.identities["u1"].confirmed is True
        assert identities.deleted == []

    @pytest.mark.asyncio
    async def test_completed_then_expired_keeps_tenant(
        self,
        handler: PaymentWebhookHandler,
        identities: FakeIdentityStore,
        tenants: FakeTenantStore,
    ) -> None:
        _pending(identities)
        await handler.handle(_payload("checkout.session.completed", _session()), "valid")

        outcome = await handler.handle(_payload("checkout.session.expired", _session()), "valid")

        assert outcome is WebhookOutcome.ALREADY_PROCESSED
        assert identities.identities["u1"].confirmed is True
        assert identities.deleted == []


class TestSubscriptionEvents:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("stripe_status", "expected"),
        [
            ("active", SubscriptionStatus.ACTIVE),
            ("trialing", SubscriptionStatus.TRIALING),
            ("past_due", SubscriptionStatus.PAST_DUE),
            ("unpaid", SubscriptionStatus.INACTIVE),
        ],
    )
    async def test_updated(
        self,
        handler: PaymentWebhookHandler,
        tenants: FakeTenantStore,
        stripe_status: str,
        expected: SubscriptionStatus,
    ) -> None:
        tenants.tenants["t1"] = make_tenant("t1", stripe_customer_id="cus_1")
        subscription = {"id": "sub_1", "customer": "cus_1", "status": stripe_status}

        outcome = await handler.handle(_payload("customer.subscription.updated", subscription), "valid")
        assert outcome is WebhookOutcome.PROCESSED
        assert tenants.tenants["t1"].subscription_status is expected

    @pytest.mark.asyncio
    async def test_deleted_cancels(self, handler: PaymentWebhookHandler, tenants: FakeTenantStore) -> None:
        tenants.tenants["t1"] = make_tenant("t1", stripe_customer_id="cus_1")
        subscription = {"id": "sub_1", "customer": "cus_1", "status": "canceled"}

        await handler.handle(_payload("customer.subscription.deleted", subscription), "valid")
        assert tenants.tenants["t1"].subscription_status is SubscriptionStatus.CANCELED

    @pytest.mark.asyncio
    async def test_unknown_customer_is_noop(self, handler: PaymentWebhookHandler, tenants: FakeTenantStore) -> None:
        tenants.tenants["t1"] = make_tenant("t1", stripe_customer_id="cus_1")
        subscription = {"id": "sub_9", "customer": "cus_unknown", "status": "active"}

        outcome = await handler.handle(_payload("customer.subscription.updated", subscription), "valid")
        assert outcome is WebhookOutcome.IGNORED
        assert tenants.tenants["t1"].subscription_status is SubscriptionStatus.TRIALING


@pytest.mark.asyncio
async def test_unrelated_event_ignored(handler: PaymentWebhookHandler, tenants: FakeTenantStore) -> None:
    outcome = await handler.handle(_payload("invoice.paid", {"id": "in_1"}), "valid")
    assert outcome is WebhookOutcome.IGNORED
    assert tenants.writes == 0
