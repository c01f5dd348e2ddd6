"""
Feature propagation.

The only place that decides which plan features a business currently has.
Every transition that changes the current subscription goes through
propagate(); each call is a single conditional UPDATE so readers never see a
half-written feature set.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from sqlalchemy import update
from sqlalchemy.orm import Session

from directory_billing.core.exceptions import ConcurrentUpdate
from directory_billing.db.models.business import Business
from directory_billing.db.models.subscription import BusinessSubscription
from directory_billing.db.models.subscription_plan import SubscriptionPlan

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Grant:
    """Make `subscription` the business's current subscription with `plan`'s features."""
    plan: SubscriptionPlan
    subscription: BusinessSubscription


@dataclass(frozen=True)
class Retract:
    """Drop all features if `subscription` is still the business's current one."""
    subscription: BusinessSubscription


Change = Union[Grant, Retract]

# Feature values of a business with no current subscription
NO_PLAN_FEATURES: Dict[str, Any] = {
    "current_subscription_id": None,
    "can_create_advertisements": False,
    "promoted_until": None,
    "is_verified": False,
}


def granted_features(plan: SubscriptionPlan, subscription: BusinessSubscription) -> Dict[str, Any]:
    """Business column values implied by a plan and its subscription window."""
    return {
        "current_subscription_id": subscription.id,
        "subscription_started_at": subscription.started_at,
        "subscription_expires_at": subscription.ends_at,
        "can_create_advertisements": bool(plan.allow_advertisements),
        "promoted_until": subscription.ends_at if plan.top_placement else None,
        "is_verified": bool(plan.verified_badge),
    }


def propagate(db: Session, business: Business, change: Change) -> bool:
    """
    Apply a grant or retraction to the business in the caller's transaction.

    A Grant is a compare-and-set against the pointer value held by `business`
    (as read by the caller); losing that race raises ConcurrentUpdate so the
    caller rolls back. A Retract only applies while the pointer still names
    the retracted subscription.

    Args:
        db: Session whose transaction also carries the status change
        business: Business as read at the start of the transition
        change: Grant or Retract

    Returns:
        True if the business row was written
    """
    expected = business.current_subscription_id
    if isinstance(change, Grant):
        if expected is None:
            pointer_matches = Business.current_subscription_id.is_(None)
        else:
            pointer_matches = Business.current_subscription_id == expected
        values = granted_features(change.plan, change.subscription)
    elif isinstance(change, Retract):
        pointer_matches = Business.current_subscription_id == change.subscription.id
        values = NO_PLAN_FEATURES
    else:
        raise TypeError(f"Unsupported propagation change: {change!r}")

    result = db.execute(
        update(Business)
        .where(Business.id == business.id, pointer_matches)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    applied = result.rowcount == 1
    db.expire(business)

    if isinstance(change, Grant):
        if not applied:
            logger.warning(
                f"Current subscription changed concurrently: business_id={business.id}, "
                f"expected={expected}, subscription_id={change.subscription.id}"
            )
            raise ConcurrentUpdate(
                "The business's current subscription changed concurrently",
                detail={"business_id": business.id},
            )
        logger.info(
            f"Features granted: business_id={business.id}, subscription_id={change.subscription.id}, "
            f"plan_id={change.plan.id}"
        )
    elif applied:
        logger.info(f"Features retracted: business_id={business.id}, subscription_id={change.subscription.id}")

    return applied


def current_subscription(db: Session, business: Business) -> Optional[BusinessSubscription]:
    """Resolve the weak current-subscription pointer."""
    if business.current_subscription_id is None:
        return None
    return db.query(BusinessSubscription).filter(
        BusinessSubscription.id == business.current_subscription_id
    ).first()
