"""Pydantic V2 request/response schemas for the PROVISIO API.

Request fields are optional at the schema level; the domain layer owns the
"all fields are required" rule so every missing-field case renders the same
``{"error": ...}`` body.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ── Signup ────────────────────────────────────────────────────────

class SignupValidateRequest(BaseModel):
    organization_number: str | None = None
    email: str | None = None


class SignupCheckoutRequest(BaseModel):
    """Signup form plus the chosen plan and the checkout return URLs."""

    model_config = ConfigDict(hide_input_in_errors=True)

    organization_name: str | None = None
    organization_number: str | None = None
    email: str | None = None
    password: str | None = Field(default=None, repr=False)
    plan_id: str | None = None
    success_url: str | None = None
    cancel_url: str | None = None


class ValidResponse(BaseModel):
    valid: bool = True


class CheckoutResponse(BaseModel):
    checkout_url: str


# ── Tenants ──────────────────────────────────────────────────────

class ProvisionRequest(BaseModel):
    user_id: str | None = None
    organization_name: str | None = None
    organization_number: str | None = None
    email: str | None = None


class ProvisionResponse(BaseModel):
    success: bool = True
    tenant: dict[str, Any]


# ── Accounting ───────────────────────────────────────────────────

class ConnectedResponse(BaseModel):
    connected: bool


class AuthUrlResponse(BaseModel):
    auth_url: str


class RefreshResponse(BaseModel):
    connected: bool = True
    expires_at: datetime


# ── Generic ───────────────────────────────────────────────────────

class SuccessResponse(BaseModel):
    success: bool = True


class WebhookAck(BaseModel):
    received: bool = True


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
    environment: str = "dev"


class ErrorResponse(BaseModel):
    error: str
