"""
Subscription ledger endpoints.
"""
import logging
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query, status

from directory_billing.api.deps import get_lifecycle, get_notification_sink
from directory_billing.core.auth_dependency import get_current_actor, require_admin
from directory_billing.core.security import Actor
from directory_billing.core.timeutil import utcnow, as_naive_utc
from directory_billing.schemas.subscription import (
    CreateSubscriptionRequest,
    SponsorSubscriptionRequest,
    SubscriptionResponse,
    SubscriptionListResponse,
)
from directory_billing.services.lifecycle import SubscriptionLifecycle
from directory_billing.services.notifications import NotificationSink
from directory_billing.services.reconciliation import notify_expiring_soon, run_expiry_sweep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])


@router.get("", response_model=SubscriptionListResponse)
def list_subscriptions(
    business_id: Optional[int] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    lifecycle: SubscriptionLifecycle = Depends(get_lifecycle),
):
    return lifecycle.list(actor, business_id=business_id, status=status_filter, page=page, limit=limit)


@router.get("/sync/expired")
def sync_expired_subscriptions(
    now: Optional[datetime] = Query(None, description="Reconcile as of this time; defaults to now"),
    actor: Actor = Depends(require_admin),
    lifecycle: SubscriptionLifecycle = Depends(get_lifecycle),
):
    """Run the expiry sweep on demand."""
    moment = as_naive_utc(now) or utcnow()
    logger.info(f"Manual expiry sweep: by={actor.user_id}, now={moment.isoformat()}")
    return run_expiry_sweep(lifecycle, moment).to_dict()


@router.get("/check/expiring")
def check_expiring_subscriptions(
    now: Optional[datetime] = Query(None, description="Check as of this time; defaults to now"),
    actor: Actor = Depends(require_admin),
    lifecycle: SubscriptionLifecycle = Depends(get_lifecycle),
    sink: NotificationSink = Depends(get_notification_sink),
):
    """Run the expiring-soon notifier on demand."""
    moment = as_naive_utc(now) or utcnow()
    logger.info(f"Manual expiring-soon check: by={actor.user_id}, now={moment.isoformat()}")
    return notify_expiring_soon(lifecycle.db, sink, moment).to_dict()


@router.get("/{subscription_id}", response_model=SubscriptionResponse)
def get_subscription(
    subscription_id: int,
    actor: Actor = Depends(get_current_actor),
    lifecycle: SubscriptionLifecycle = Depends(get_lifecycle),
):
    return lifecycle.get(subscription_id, actor)


@router.post("", response_model=SubscriptionResponse, status_code=status.HTTP_201_CREATED)
def create_subscription(
    body: CreateSubscriptionRequest,
    actor: Actor = Depends(get_current_actor),
    lifecycle: SubscriptionLifecycle = Depends(get_lifecycle),
):
    """Create a pending subscription; it activates when the payment webhook confirms it."""
    return lifecycle.create(
        body.business_id,
        body.plan_id,
        actor,
        start_date=body.start_date,
        coupon_code=body.coupon_code,
        notes=body.notes,
        payment_provider=body.payment_provider,
        metadata=body.metadata,
    )


@router.post("/sponsor", response_model=SubscriptionResponse, status_code=status.HTTP_201_CREATED)
def assign_sponsor_subscription(
    body: SponsorSubscriptionRequest,
    actor: Actor = Depends(get_current_actor),
    lifecycle: SubscriptionLifecycle = Depends(get_lifecycle),
):
    return lifecycle.assign_sponsor(
        body.business_id,
        actor,
        plan_id=body.plan_id,
        start_date=body.start_date,
        notes=body.notes,
        metadata=body.metadata,
    )


@router.patch("/{subscription_id}/cancel", response_model=SubscriptionResponse)
def cancel_subscription(
    subscription_id: int,
    actor: Actor = Depends(get_current_actor),
    lifecycle: SubscriptionLifecycle = Depends(get_lifecycle),
):
    return lifecycle.cancel(subscription_id, actor)
