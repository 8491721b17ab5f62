"""FastAPI dependency injection — shared instances for routes."""

from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncEngine

from config.settings import Settings, get_settings
from src.accounting.connector import OAuthConnector
from src.accounting.oauth import AccountingTokenClient
from src.api.db.tenants import TenantRepository
from src.billing.stripe_gateway import StripeGateway
from src.core.interfaces import BaseIdentityStore, BasePaymentGateway, BaseTenantStore
from src.data.db import get_engine
from src.identity.client import IdentityStoreClient
from src.provisioning.provisioner import TenantProvisioner
from src.provisioning.signup import SignupInitiator, SignupValidator
from src.provisioning.webhook import PaymentWebhookHandler

# ── Settings & database engine ────────────────────────────────────


def get_app_settings() -> Settings:
    return get_settings()


async def get_db_engine() -> AsyncEngine:
    """Provide the async database engine."""
    return await get_engine()


# ── Stores & gateways ─────────────────────────────────────────────


async def get_tenant_repo(
    engine: AsyncEngine = Depends(get_db_engine),
) -> BaseTenantStore:
    """Provide a TenantRepository instance."""
    return TenantRepository(engine)


def get_identity_store(
    settings: Settings = Depends(get_app_settings),
) -> BaseIdentityStore:
    return IdentityStoreClient(settings)


def get_payment_gateway(
    settings: Settings = Depends(get_app_settings),
) -> BasePaymentGateway:
    return StripeGateway(settings)


def get_token_client(
    settings: Settings = Depends(get_app_settings),
) -> AccountingTokenClient:
    return AccountingTokenClient(settings)


# ── Services ──────────────────────────────────────────────────────


def get_signup_validator(
    tenants: BaseTenantStore = Depends(get_tenant_repo),
    identities: BaseIdentityStore = Depends(get_identity_store),
) -> SignupValidator:
    return SignupValidator(tenants, identities)


def get_signup_initiator(
    tenants: BaseTenantStore = Depends(get_tenant_repo),
    identities: BaseIdentityStore = Depends(get_identity_store),
    gateway: BasePaymentGateway = Depends(get_payment_gateway),
) -> SignupInitiator:
    return SignupInitiator(tenants, identities, gateway)


def get_webhook_handler(
    gateway: BasePaymentGateway = Depends(get_payment_gateway),
    identities: BaseIdentityStore = Depends(get_identity_store),
    tenants: BaseTenantStore = Depends(get_tenant_repo),
) -> PaymentWebhookHandler:
    return PaymentWebhookHandler(gateway, identities, tenants)


def get_provisioner(
    identities: BaseIdentityStore = Depends(get_identity_store),
    tenants: BaseTenantStore = Depends(get_tenant_repo),
) -> TenantProvisioner:
    return TenantProvisioner(identities, tenants)


def get_oauth_connector(
    settings: Settings = Depends(get_app_settings),
    tenants: BaseTenantStore = Depends(get_tenant_repo),
    token_client: AccountingTokenClient = Depends(get_token_client),
) -> OAuthConnector:
    return OAuthConnector(settings, tenants, token_client)
