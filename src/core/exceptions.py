"""Custom exception hierarchy for PROVISIO.

Every error carries the HTTP status it maps to and a stable machine code so
the API layer can render ``{"error": ...}`` without inspecting types.
"""

from __future__ import annotations

from typing import Any


class ProvisioningError(Exception):
    """Base exception for all PROVISIO errors."""

    status_code: int = 500
    code: str = "internal_error"
    # Message shown to clients; None means the exception message itself is safe.
    public_message: str | None = None

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context or {}

    @property
    def client_message(self) -> str:
        return self.public_message or self.message


# ── User-correctable ─────────────────────────────────────────────

class ValidationError(ProvisioningError):
    """Missing or malformed input."""

    status_code = 400
    code = "validation_error"


class ConflictError(ProvisioningError):
    """Uniqueness violation — organization number or email already taken."""

    status_code = 400
    code = "conflict"


class NotFoundError(ProvisioningError):
    """Referenced identity, tenant or provider does not exist."""

    status_code = 404
    code = "not_found"


# ── Authenticity ─────────────────────────────────────────────────

class SignatureVerificationError(ProvisioningError):
    """Webhook payload failed signature verification."""

    status_code = 400
    code = "invalid_signature"
    public_message = "Invalid signature"


class StateError(ProvisioningError):
    """OAuth correlation state is malformed, tampered or expired."""

    status_code = 400
    code = "invalid_state"
    public_message = "Invalid or expired state"


class ReconnectRequiredError(ProvisioningError):
    """Stored accounting credentials are gone or were revoked by the provider."""

    status_code = 409
    code = "reconnect_required"
    public_message = "Accounting connection expired, please reconnect"


# ── Operator-visible ─────────────────────────────────────────────

class ExternalServiceError(ProvisioningError):
    """A downstream store or provider failed or timed out. Safe to retry."""

    status_code = 500
    code = "external_service_error"
    public_message = "An unexpected error occurred"


class IdentityCreationFailed(ExternalServiceError):
    """The identity store refused or failed to create the pending identity."""

    code = "identity_creation_failed"
    public_message = "Could not create account, please try again"


class PaymentSessionCreationFailed(ExternalServiceError):
    """Stripe could not open a checkout session."""

    code = "payment_session_failed"
    public_message = "Payment could not be started, please try again"


class ConfigurationError(ProvisioningError):
    """A required secret or client id is not configured."""

    status_code = 500
    code = "configuration_error"
    public_message = "Service is not configured"
