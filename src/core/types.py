"""System-wide shared types — the single source of truth for all data structures."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from src.core.constants import MIN_PASSWORD_LENGTH, META_PENDING_PAYMENT
from src.core.exceptions import ValidationError

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


# ── Enums ────────────────────────────────────────────────────────

class SubscriptionStatus(str, Enum):
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INACTIVE = "inactive"

    @classmethod
    def from_stripe(cls, status: str | None) -> SubscriptionStatus:
        """Collapse Stripe's subscription statuses onto the tenant statuses."""
        mapping = {
            "active": cls.ACTIVE,
            "trialing": cls.TRIALING,
            "past_due": cls.PAST_DUE,
        }
        return mapping.get(status or "", cls.INACTIVE)


# ── Helpers ──────────────────────────────────────────────────────

def _require(fields: dict[str, str | None]) -> dict[str, str]:
    """Strip every field and fail on the first one that is missing or blank."""
    missing = [name for name, value in fields.items() if not (value or "").strip()]
    if missing:
        msg = f"All fields are required: missing {', '.join(missing)}"
        raise ValidationError(msg, context={"missing": missing})
    return {name: (value or "").strip() for name, value in fields.items()}


def normalize_email(email: str) -> str:
    email = email.strip().lower()
    if not _EMAIL_RE.match(email):
        raise ValidationError("Invalid email address", context={"field": "email"})
    return email


# ── Signup ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class SignupRequest:
    """Everything a prospective tenant submits before paying."""

    organization_name: str
    organization_number: str
    email: str
    password: str
    plan_id: str
    success_url: str
    cancel_url: str

    @classmethod
    def build(
        cls,
        *,
        organization_name: str | None,
        organization_number: str | None,
        email: str | None,
        password: str | None,
        plan_id: str | None,
        success_url: str | None,
        cancel_url: str | None,
    ) -> SignupRequest:
        """Validate raw input and return a normalized request."""
        values = _require(
            {
                "organization_name": organization_name,
                "organization_number": organization_number,
                "email": email,
                "password": password,
                "plan_id": plan_id,
                "success_url": success_url,
                "cancel_url": cancel_url,
            }
        )
        # Passwords are taken verbatim; only emptiness is checked above.
        values["password"] = password or ""
        values["email"] = normalize_email(values["email"])
        if len(values["password"]) < MIN_PASSWORD_LENGTH:
            msg = f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
            raise ValidationError(msg, context={"field": "password"})
        return cls(**values)

    def __repr__(self) -> str:
        return (
            f"SignupRequest(organization_number={self.organization_number!r}, "
            f"email={self.email!r}, plan_id={self.plan_id!r})"
        )


@dataclass
class PendingIdentity:
    """An identity created before payment is confirmed."""

    identity_id: str
    email: str
    confirmed: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def pending_payment(self) -> bool:
        return bool(self.metadata.get(META_PENDING_PAYMENT, False))


# ── Tenant ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class AccountingCredentialBundle:
    """OAuth token pair for one tenant's accounting provider."""

    provider: str
    access_token: str
    refresh_token: str
    expires_at: datetime

    @classmethod
    def from_token_response(
        cls,
        provider: str,
        payload: dict[str, Any],
        *,
        now: datetime | None = None,
        previous_refresh_token: str | None = None,
    ) -> AccountingCredentialBundle:
        """Build a bundle from an RFC 6749 token response.

        Providers may omit ``refresh_token`` on a refresh grant; the previous
        one then stays valid.
        """
        now = now or datetime.now(timezone.utc)
        access_token = payload.get("access_token")
        refresh_token = payload.get("refresh_token") or previous_refresh_token
        if not access_token or not refresh_token:
            msg = "Token response is missing access_token or refresh_token"
            raise ValueError(msg)
        expires_in = int(payload.get("expires_in") or 0)
        return cls(
            provider=provider,
            access_token=str(access_token),
            refresh_token=str(refresh_token),
            expires_at=now + timedelta(seconds=expires_in),
        )

    def needs_refresh(self, margin_seconds: int, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now + timedelta(seconds=margin_seconds) >= self.expires_at

    def __repr__(self) -> str:
        return (
            f"AccountingCredentialBundle(provider={self.provider!r}, "
            f"expires_at={self.expires_at.isoformat()!r})"
        )


@dataclass
class Tenant:
    """One paying customer; ``tenant_id`` equals the originating identity id."""

    tenant_id: str
    name: str
    organization_number: str
    email: str
    subscription_status: SubscriptionStatus = SubscriptionStatus.TRIALING
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    accounting_credential: AccountingCredentialBundle | None = None
    settings: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime | None = None

    @property
    def accounting_connected(self) -> bool:
        cred = self.accounting_credential
        return bool(cred and cred.access_token and cred.refresh_token)

    def to_public_dict(self) -> dict[str, Any]:
        """Serializable view without any credential material."""
        return {
            "id": self.tenant_id,
            "name": self.name,
            "organization_number": self.organization_number,
            "email": self.email,
            "subscription_status": self.subscription_status.value,
            "stripe_customer_id": self.stripe_customer_id,
            "stripe_subscription_id": self.stripe_subscription_id,
            "accounting_connected": self.accounting_connected,
            "settings": self.settings,
            "created_at": self.created_at.isoformat(),
        }
