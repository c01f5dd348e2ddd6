"""
Stripe webhook: the asynchronous payment confirmation entry point.
"""
import logging
import stripe
from fastapi import APIRouter, Depends, Header, HTTPException, Request

from directory_billing.api.deps import get_lifecycle
from directory_billing.services.lifecycle import SubscriptionLifecycle
from directory_billing.services.payment_events import handle_stripe_event, verify_stripe_payload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments Webhook"])


async def raw_body(request: Request) -> bytes:
    """Unparsed request body; signature checks need the exact bytes."""
    return await request.body()


@router.post("/webhook")
def stripe_webhook(
    payload: bytes = Depends(raw_body),
    stripe_signature: str = Header(None),
    lifecycle: SubscriptionLifecycle = Depends(get_lifecycle),
):
    # Sync handler: FastAPI runs it in the threadpool, off the event loop
    try:
        event = verify_stripe_payload(payload, stripe_signature)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning(f"Webhook verification failed: {e}")
        raise HTTPException(status_code=400, detail="Webhook verification failed")

    outcome = handle_stripe_event(lifecycle, event)
    logger.info(f"Stripe webhook processed: event_id={event.get('id')}, outcome={outcome}")
    return {"status": "success", "result": outcome}
