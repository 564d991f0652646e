from fastapi import APIRouter, Depends, HTTPException, Request

import conf
from clients.stripe import NotificationSignatureError
from models.operations.payments import payment_notification_handle
from utils import log

from .dependencies import payment_client_get

logger = log.get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def route_stripe_webhook(request: Request, payment_client=Depends(payment_client_get)):
    """Consume Stripe checkout notifications.

    Unverifiable payloads get a 400. Once verified, the event is always
    acknowledged; processing failures are logged, and the buyer-initiated
    lookup settles any session the webhook could not.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    try:
        notification = payment_client.verify_notification(payload, sig_header)
    except NotificationSignatureError as e:
        logger.warning(f"Rejected Stripe webhook: {e}")
        raise HTTPException(status_code=400, detail="Invalid webhook payload")

    if notification is None:
        return {"received": True}

    logger.info(f"Stripe event {notification.event_id}: session {notification.session_id} {notification.outcome}")
    try:
        await payment_notification_handle(notification, conf.get_fee_policy())
    except Exception as e:
        logger.error(f"Failed to process Stripe event {notification.event_id}: {e}", exc_info=True)

    return {"received": True}
