"""Tenant provisioning — signup saga, payment webhook, direct provisioning and cleanup."""

from src.provisioning.provisioner import TenantProvisioner
from src.provisioning.reaper import PendingIdentityReaper
from src.provisioning.signup import SignupInitiator, SignupValidator, build_checkout_metadata
from src.provisioning.webhook import PaymentWebhookHandler, WebhookOutcome

__all__ = [
    "TenantProvisioner",
    "PendingIdentityReaper",
    "SignupInitiator",
    "SignupValidator",
    "build_checkout_metadata",
    "PaymentWebhookHandler",
    "WebhookOutcome",
]
