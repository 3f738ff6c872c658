"""
Clerk webhook endpoint.

Clerk delivers user lifecycle events through Svix. The raw request body is
verified against CLERK_WEBHOOK_SECRET before anything is parsed.
"""
import asyncio
import logging
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session
from svix.webhooks import Webhook, WebhookVerificationError

from api.dependencies import get_db
from core.audit_logger import audit_logger
from core.config import settings
from services.identity_sync import IdentitySyncService, InvalidIdentityEvent

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/clerk", status_code=status.HTTP_200_OK)
async def clerk_webhook(request: Request, db: Session = Depends(get_db)):
    """
    Receive a signed Clerk lifecycle event.

    Handles ``user.created``, ``user.updated`` and ``user.deleted``; other
    event types are acknowledged and ignored.

    Returns:
        dict: ``{"success": true, "message": "Webhook processed", "result": ...}``

    Raises:
        HTTPException: 400 Bad Request if the Svix signature does not verify
        HTTPException: 400 Bad Request if the payload misses the user id/e-mail
        HTTPException: 500 if the secret is not configured or processing fails
    """
    if not settings.clerk_webhook_secret:
        logger.error("CLERK_WEBHOOK_SECRET is not configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook secret not configured"
        )

    payload = (await request.body()).decode("utf-8")
    client_ip = request.client.host if request.client else None

    try:
        event = Webhook(settings.clerk_webhook_secret).verify(payload, dict(request.headers))
    except WebhookVerificationError as e:
        audit_logger.log_webhook_signature_invalid(client_ip, str(e))
        logger.warning(f"Webhook verification failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature"
        )

    event_type = event.get("type")
    logger.info(f"Clerk webhook received: {event_type}")

    try:
        result = await asyncio.to_thread(IdentitySyncService(db).handle_event, event)
    except InvalidIdentityEvent as e:
        logger.warning(f"Rejected Clerk {event_type} event: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception:
        await asyncio.to_thread(db.rollback)
        logger.exception(f"Failed to process Clerk {event_type} event")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed"
        )

    return {"success": True, "message": "Webhook processed", "result": result}
