"""Payment-provider webhook receiver."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Request

from src.api.deps import get_webhook_handler
from src.api.models.schemas import WebhookAck
from src.provisioning.webhook import PaymentWebhookHandler

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/stripe", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    handler: PaymentWebhookHandler = Depends(get_webhook_handler),
) -> WebhookAck:
    """Verify and apply one delivery.

    Store failures surface as 500 so the provider redelivers; everything the
    handler resolves (including unresolvable events) is acknowledged.
    """
    payload = await request.body()
    await handler.handle(payload, stripe_signature)
    return WebhookAck()
