"""System-wide constants. All magic numbers and strings live here."""

from __future__ import annotations

# ── Stripe Event Types ───────────────────────────────────────────
EVENT_CHECKOUT_COMPLETED = "checkout.session.completed"
EVENT_CHECKOUT_EXPIRED = "checkout.session.expired"
EVENT_SUBSCRIPTION_UPDATED = "customer.subscription.updated"
EVENT_SUBSCRIPTION_DELETED = "customer.subscription.deleted"

# ── Checkout Metadata Keys ───────────────────────────────────────
META_IDENTITY_ID = "identity_id"
META_ORGANIZATION_NAME = "organization_name"
META_ORGANIZATION_NUMBER = "organization_number"
META_EMAIL = "email"
META_SIGNUP_FLOW = "signup_flow"
SIGNUP_FLOW_MARKER = "true"

# ── Identity Metadata Keys ───────────────────────────────────────
META_PENDING_PAYMENT = "pending_payment"

# ── Signup Validation ────────────────────────────────────────────
MIN_PASSWORD_LENGTH = 6

# ── OAuth ────────────────────────────────────────────────────────
OAUTH_STATE_SALT = "accounting-oauth-state"

# Callback error codes carried to the frontend error page
OAUTH_ERROR_MISSING_PARAMS = "missing_params"
OAUTH_ERROR_TOKEN_EXCHANGE = "token_exchange_failed"
OAUTH_ERROR_SAVE_FAILED = "save_failed"

# ── Conflict Messages ────────────────────────────────────────────
ORG_CONFLICT_MESSAGE = "organization already registered"
EMAIL_CONFLICT_MESSAGE = "email already registered"

# ── Service ──────────────────────────────────────────────────────
APP_VERSION = "0.1.0"
