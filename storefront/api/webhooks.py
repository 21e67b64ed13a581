from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from storefront.api.deps import get_payment_gateway
from storefront.application.reconciliation import ReconciliationService
from storefront.application.schemas import WebhookAck
from storefront.infrastructure.db import get_db
from storefront.infrastructure.payment_gateway import PaymentGateway

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

@router.post("/stripe", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Verify and reconcile one processor event.

    Signature failures answer 400 before anything is read from the event.
    Database errors answer 500 so the processor retries the delivery.
    """
    # Signature is computed over the exact bytes received
    payload = await request.body()
    event = gateway.verify_event(payload, stripe_signature)
    result = await run_in_threadpool(ReconciliationService(db).handle_event, event)
    return WebhookAck(
        outcome=result.outcome.value,
        order_id=result.order_id,
        order_number=result.order_number,
        reason=result.reason,
    )
