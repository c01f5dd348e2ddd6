"""
Inbound payment events.

Maps provider callbacks onto the lifecycle: a confirmed payment activates the
pending subscription, a failed one moves it to FAILED, anything else is left
for a later event.
"""
import json
import logging
from typing import Any, Dict, Optional

import stripe

from directory_billing.core.config import STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET
from directory_billing.core.exceptions import InvalidState
from directory_billing.db.models.subscription import BusinessSubscription
from directory_billing.services.lifecycle import SubscriptionLifecycle

logger = logging.getLogger(__name__)

# Initialize Stripe
if STRIPE_SECRET_KEY:
    stripe.api_key = STRIPE_SECRET_KEY

COMPLETED = "COMPLETED"
FAILED = "FAILED"
PENDING = "PENDING"

_COMPLETED_CODES = {"A", "S", "PAID", "SUCCEEDED", "SUCCESS", "COMPLETED", "COMPLETE", "APPROVED"}
_FAILED_CODES = {"D", "E", "V", "C", "FAILED", "DECLINED", "CANCELLED", "CANCELED", "EXPIRED", "ERROR", "VOIDED"}

# Stripe event type -> normalized status
STRIPE_EVENT_STATUS = {
    "checkout.session.completed": COMPLETED,
    "checkout.session.async_payment_succeeded": COMPLETED,
    "checkout.session.async_payment_failed": FAILED,
    "checkout.session.expired": FAILED,
}


def parse_provider_status(provider_status: Optional[str]) -> str:
    """
    Normalize a provider's payment status into COMPLETED, FAILED or PENDING.

    Accepts single-letter gateway response codes (A, S, D, E, V, C, H, P)
    as well as word statuses.
    """
    code = (provider_status or "").strip().upper()
    if code in _COMPLETED_CODES:
        return COMPLETED
    if code in _FAILED_CODES:
        return FAILED
    return PENDING


def confirm_payment(
    lifecycle: SubscriptionLifecycle,
    subscription_id: int,
    payment_reference: Optional[str],
    provider_status: Optional[str],
) -> Optional[BusinessSubscription]:
    """
    Apply a payment confirmation event.

    Returns:
        The transitioned subscription, or None when the status is still pending
        or the event is a redelivery for an already-settled subscription
    """
    status = parse_provider_status(provider_status)
    logger.info(
        f"Payment event: subscription_id={subscription_id}, reference={payment_reference}, "
        f"provider_status={provider_status}, normalized={status}"
    )

    try:
        if status == COMPLETED:
            return lifecycle.activate(subscription_id, payment_reference=payment_reference)
        if status == FAILED:
            return lifecycle.fail(
                subscription_id,
                reason=f"provider_status={provider_status}",
                payment_reference=payment_reference,
            )
    except InvalidState as e:
        # Providers redeliver events; a settled subscription ignores repeats
        logger.warning(f"Payment event ignored: subscription_id={subscription_id}, reason={e.message}")
        return None

    return None


def verify_stripe_payload(payload: bytes, signature: Optional[str], secret: Optional[str] = None) -> Dict[str, Any]:
    """
    Verify a Stripe webhook signature and decode the event.

    Raises:
        ValueError: Missing secret/signature or malformed payload
        stripe.SignatureVerificationError: Signature does not match
    """
    secret = secret or STRIPE_WEBHOOK_SECRET
    if not secret:
        raise ValueError("STRIPE_WEBHOOK_SECRET is not configured")
    if not signature:
        raise ValueError("Missing Stripe-Signature header")

    body = payload.decode("utf-8")
    stripe.WebhookSignature.verify_header(body, signature, secret, stripe.Webhook.DEFAULT_TOLERANCE)
    return json.loads(body)


def _subscription_id_from(obj: Dict[str, Any]) -> Optional[int]:
    metadata = obj.get("metadata") or {}
    raw = metadata.get("subscription_id") or obj.get("client_reference_id")
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        logger.warning(f"Stripe event carries a non-numeric subscription id: {raw!r}")
        return None


def handle_stripe_event(lifecycle: SubscriptionLifecycle, event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Route a verified Stripe event to confirm_payment.

    Returns:
        Summary of what was done, for the webhook response
    """
    event_type = event.get("type")
    status = STRIPE_EVENT_STATUS.get(event_type)
    if status is None:
        logger.info(f"Stripe event ignored: type={event_type}")
        return {"handled": False, "type": event_type}

    obj = (event.get("data") or {}).get("object") or {}
    subscription_id = _subscription_id_from(obj)
    if subscription_id is None:
        logger.warning(f"Stripe event without subscription id: type={event_type}, id={event.get('id')}")
        return {"handled": False, "type": event_type}

    # checkout.session.completed fires before delayed payment methods settle
    if event_type == "checkout.session.completed" and obj.get("payment_status") not in ("paid", "no_payment_required"):
        status = PENDING

    reference = obj.get("payment_intent") or obj.get("id")
    subscription = confirm_payment(lifecycle, subscription_id, reference, status)

    return {
        "handled": subscription is not None,
        "type": event_type,
        "subscription_id": subscription_id,
        "status": subscription.status if subscription is not None else None,
    }
