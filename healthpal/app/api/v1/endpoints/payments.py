"""
Payment gateway webhook.

Unauthenticated; trust comes from the Stripe-Signature HMAC. Without a
configured secret, events that would change the ledger are refused.
"""

import json
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from healthpal.app.db.session import get_db
from healthpal.app.core.dependencies import get_settings
from healthpal.app.domain.ledger.ledger_service import LEDGER_WEBHOOK_EVENTS, LedgerService
from healthpal.app.schemas.donation import WebhookAck
from healthpal.app.services.payment_gateway import verify_webhook_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/webhook", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    db: AsyncSession = Depends(get_db),
    settings=Depends(get_settings)
):
    payload = await request.body()

    verified = bool(settings.stripe_webhook_secret)
    if verified:
        if not verify_webhook_signature(
            payload,
            stripe_signature,
            settings.stripe_webhook_secret,
            settings.stripe_signature_tolerance_seconds,
        ):
            logger.warning("Rejected webhook with invalid signature")
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid webhook signature"
            )
    else:
        logger.warning("Webhook secret not configured, skipping signature verification")

    try:
        event = json.loads(payload)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Webhook body is not valid JSON"
        )
    if not isinstance(event, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Webhook body must be an event object"
        )
    if not verified and event.get("type") in LEDGER_WEBHOOK_EVENTS:
        logger.warning("Refused unsigned %s webhook", event.get("type"))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Unsigned webhooks cannot change the ledger"
        )

    return await LedgerService.handle_webhook_event(db, event)
