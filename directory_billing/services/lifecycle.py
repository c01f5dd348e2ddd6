"""
Subscription ledger and lifecycle state machine.

Transitions:
    create          -> PENDING (payment required)
    assign_sponsor  -> ACTIVE  (administrator grant, features applied inline)
    activate        PENDING -> ACTIVE     (payment confirmed)
    fail            PENDING -> FAILED     (payment failed)
    cancel          ACTIVE  -> CANCELLED  (owner or administrator)
    expire_due      ACTIVE  -> EXPIRED    (scheduled sweep)

Each transition commits its status change together with its feature
propagation, or rolls both back. Notifications go out after the commit.
"""
import logging
import math
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from directory_billing.core import config
from directory_billing.core.exceptions import (
    BusinessNotApproved,
    InvalidPlanWindow,
    InvalidState,
    NotFound,
    PlanNotActive,
    SubscriptionEngineError,
    TransitionFailed,
    Unauthorized,
)
from directory_billing.core.security import Actor
from directory_billing.core.timeutil import utcnow, as_naive_utc
from directory_billing.db.capabilities import StoreCapabilities, resolve_capabilities
from directory_billing.db.models.business import Business, BusinessStatus
from directory_billing.db.models.subscription import (
    BusinessSubscription,
    SubscriptionStatus,
    SPONSOR_PROVIDER,
)
from directory_billing.db.models.subscription_plan import SubscriptionPlan, PlanStatus
from directory_billing.services import notifications
from directory_billing.services.billing_period import compute_end_date
from directory_billing.services.notifications import NotificationSink, safe_emit
from directory_billing.services.plan_catalog import (
    get_or_create_sponsor_plan,
    quote,
    redeem_coupon,
)
from directory_billing.services.propagation import Grant, Retract, propagate

logger = logging.getLogger(__name__)


@dataclass
class SweepFailure:
    subscription_id: int
    error: str


@dataclass
class SweepResult:
    """Outcome of one expiry sweep run."""
    selected: int = 0
    succeeded: int = 0
    skipped: int = 0
    retracted: int = 0
    failures: List[SweepFailure] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selected": self.selected,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "retracted": self.retracted,
            "failed": self.failed,
            "failures": [{"subscription_id": f.subscription_id, "error": f.error} for f in self.failures],
        }


def sponsor_reference(now: datetime) -> str:
    """Synthetic payment reference for sponsor grants: SPONSOR-<epoch millis>."""
    millis = int(now.replace(tzinfo=timezone.utc).timestamp() * 1000)
    return f"SPONSOR-{millis}"


def subscription_link(subscription_id: int) -> str:
    return f"{config.FRONTEND_URL}/dashboard/subscriptions/{subscription_id}"


class SubscriptionLifecycle:
    """
    Lifecycle operations bound to one database session.

    Args:
        db: Session used for every read and write
        sink: Where lifecycle notifications go (optional)
        capabilities: Locking features of the store; resolved from the session bind when omitted
    """

    def __init__(
        self,
        db: Session,
        sink: Optional[NotificationSink] = None,
        capabilities: Optional[StoreCapabilities] = None,
    ):
        self.db = db
        self.sink = sink
        self.capabilities = capabilities or resolve_capabilities(db.get_bind())

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _transaction(self, action: str, **ids):
        """Commit on success; roll back on any error, reporting storage errors as retryable."""
        try:
            yield
            self.db.commit()
        except SubscriptionEngineError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Transition failed and was rolled back: action={action}, ids={ids}, error={e}")
            raise TransitionFailed(f"Could not {action}; no changes were saved", detail=ids) from e
        except Exception:
            self.db.rollback()
            logger.exception(f"Unexpected error during transition, rolled back: action={action}, ids={ids}")
            raise

    def _get_business(self, business_id: int, lock: bool = False) -> Business:
        query = self.db.query(Business).filter(Business.id == business_id)
        if lock:
            query = self.capabilities.lock(query)
        business = query.first()
        if not business:
            raise NotFound("Business not found")
        return business

    def _get_plan(self, plan_id: int) -> SubscriptionPlan:
        plan = self.db.query(SubscriptionPlan).filter(SubscriptionPlan.id == plan_id).first()
        if not plan:
            raise NotFound("Subscription plan not found")
        return plan

    def _get_subscription(self, subscription_id: int, lock: bool = False) -> BusinessSubscription:
        query = self.db.query(BusinessSubscription).filter(BusinessSubscription.id == subscription_id)
        if lock:
            query = self.capabilities.lock(query)
        subscription = query.first()
        if not subscription:
            raise NotFound("Subscription not found")
        return subscription

    @staticmethod
    def _check_owner(actor: Actor, business: Business) -> None:
        if actor.is_privileged:
            return
        if actor.user_id is None or business.owner_id != actor.user_id:
            raise Unauthorized("You do not have access to this business")

    @staticmethod
    def _check_purchasable(business: Business, plan: SubscriptionPlan) -> None:
        if business.status != BusinessStatus.APPROVED.value:
            raise BusinessNotApproved("Business must be approved before subscribing")
        if plan.status != PlanStatus.ACTIVE.value:
            raise PlanNotActive("Subscription plan is not active")

    @staticmethod
    def _window(plan: SubscriptionPlan, start_date: Optional[datetime], now: datetime):
        started_at = as_naive_utc(start_date) or now
        ends_at = compute_end_date(started_at, plan.billing_interval, plan.interval_count, plan.custom_interval_days)
        if ends_at <= started_at:
            raise InvalidPlanWindow("Plan duration must be at least one day")
        return started_at, ends_at

    def _move(self, subscription: BusinessSubscription, from_status: SubscriptionStatus, **values) -> bool:
        """Conditional status update; False when the row already left `from_status`."""
        result = self.db.execute(
            update(BusinessSubscription)
            .where(
                BusinessSubscription.id == subscription.id,
                BusinessSubscription.status == from_status.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.expire(subscription)
        return result.rowcount == 1

    def _notify(self, user_id, type, title, message, subscription: BusinessSubscription, now: datetime) -> None:
        safe_emit(
            self.sink, user_id, type, title, message,
            link=subscription_link(subscription.id),
            business_id=subscription.business_id,
            plan_id=subscription.plan_id,
            occurred_at=now,
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def create(
        self,
        business_id: int,
        plan_id: int,
        actor: Actor,
        start_date: Optional[datetime] = None,
        coupon_code: Optional[str] = None,
        notes: Optional[str] = None,
        payment_provider: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> BusinessSubscription:
        """
        Record a purchase awaiting payment.

        The subscription starts PENDING; features are only granted once the
        payment is confirmed through activate(). Price terms are frozen here.
        """
        now = as_naive_utc(now) or utcnow()
        business = self._get_business(business_id)
        plan = self._get_plan(plan_id)
        self._check_owner(actor, business)

        if plan.is_sponsor_plan:
            if not actor.is_privileged:
                raise NotFound("Subscription plan not found")
            return self.assign_sponsor(
                business_id, actor, plan_id=plan_id, start_date=start_date,
                notes=notes, metadata=metadata, now=now,
            )

        self._check_purchasable(business, plan)
        started_at, ends_at = self._window(plan, start_date, now)
        price_quote = quote(plan, coupon_code, now)

        subscription = BusinessSubscription(
            business_id=business.id,
            plan_id=plan.id,
            status=SubscriptionStatus.PENDING.value,
            started_at=started_at,
            ends_at=ends_at,
            price=price_quote.price,
            discount_amount=price_quote.discount_amount,
            total_amount=price_quote.total_amount,
            coupon_code=price_quote.coupon_code,
            payment_provider=payment_provider,
            notes=notes,
            extra_metadata=metadata,
            created_by_id=actor.user_id,
        )

        with self._transaction("create subscription", business_id=business.id, plan_id=plan.id):
            if coupon_code:
                redeem_coupon(self.db, plan)
            self.db.add(subscription)

        self.db.refresh(subscription)
        logger.info(
            f"Subscription created: subscription_id={subscription.id}, business_id={business.id}, "
            f"plan_id={plan.id}, status={subscription.status}, total={subscription.total_amount}"
        )
        return subscription

    def assign_sponsor(
        self,
        business_id: int,
        actor: Actor,
        plan_id: Optional[int] = None,
        start_date: Optional[datetime] = None,
        notes: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> BusinessSubscription:
        """
        Grant a payment-free subscription, active immediately.

        Without plan_id the sponsor plan is reused or created. The new row
        becomes the business's current subscription in the same transaction.
        """
        if not actor.is_privileged:
            raise Unauthorized("Only administrators may assign sponsor subscriptions")

        now = as_naive_utc(now) or utcnow()

        with self._transaction("assign sponsor subscription", business_id=business_id, plan_id=plan_id):
            business = self._get_business(business_id, lock=True)
            if plan_id is not None:
                plan = self._get_plan(plan_id)
            else:
                plan = get_or_create_sponsor_plan(self.db, created_by_id=actor.user_id)
            self._check_purchasable(business, plan)
            started_at, ends_at = self._window(plan, start_date, now)

            subscription = BusinessSubscription(
                business_id=business.id,
                plan_id=plan.id,
                status=SubscriptionStatus.ACTIVE.value,
                started_at=started_at,
                ends_at=ends_at,
                price=plan.price,
                discount_amount=plan.price,
                total_amount=0,
                payment_reference=sponsor_reference(now),
                payment_provider=SPONSOR_PROVIDER,
                notes=notes,
                extra_metadata={**(metadata or {}), "sponsor": True, "assigned_by": actor.user_id},
                created_by_id=actor.user_id,
            )
            self.db.add(subscription)
            self.db.flush()
            propagate(self.db, business, Grant(plan, subscription))

        self.db.refresh(subscription)
        logger.info(
            f"Sponsor subscription assigned: subscription_id={subscription.id}, business_id={business_id}, "
            f"plan_id={subscription.plan_id}, by={actor.user_id}"
        )
        self._notify(
            business.owner_id, notifications.SUBSCRIPTION_SPONSORED,
            "Sponsored subscription activated",
            f"Your business has been granted the {plan.name} plan until {subscription.ends_at:%Y-%m-%d}.",
            subscription, now,
        )
        return subscription

    def activate(
        self,
        subscription_id: int,
        payment_reference: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> BusinessSubscription:
        """
        PENDING -> ACTIVE once payment is confirmed, granting the plan's features.

        Raises:
            InvalidState: The subscription is not PENDING (including a second activation)
        """
        now = as_naive_utc(now) or utcnow()

        with self._transaction("activate subscription", subscription_id=subscription_id):
            subscription = self._get_subscription(subscription_id, lock=True)
            if subscription.status != SubscriptionStatus.PENDING.value:
                raise InvalidState(
                    f"Only pending subscriptions can be activated (status={subscription.status})"
                )

            values = {"status": SubscriptionStatus.ACTIVE.value}
            if payment_reference:
                values["payment_reference"] = payment_reference
            if not self._move(subscription, SubscriptionStatus.PENDING, **values):
                raise InvalidState("Subscription was activated concurrently")

            business = self._get_business(subscription.business_id, lock=True)
            plan = self._get_plan(subscription.plan_id)
            propagate(self.db, business, Grant(plan, subscription))

        self.db.refresh(subscription)
        logger.info(
            f"Subscription activated: subscription_id={subscription.id}, business_id={subscription.business_id}, "
            f"payment_reference={subscription.payment_reference}"
        )
        self._notify(
            business.owner_id, notifications.SUBSCRIPTION_ACTIVATED,
            "Subscription activated",
            f"Your {plan.name} subscription is active until {subscription.ends_at:%Y-%m-%d}.",
            subscription, now,
        )
        return subscription

    def fail(
        self,
        subscription_id: int,
        reason: Optional[str] = None,
        payment_reference: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> BusinessSubscription:
        """PENDING -> FAILED when the payment did not go through. Features are untouched."""
        now = as_naive_utc(now) or utcnow()

        with self._transaction("fail subscription", subscription_id=subscription_id):
            subscription = self._get_subscription(subscription_id, lock=True)
            if subscription.status != SubscriptionStatus.PENDING.value:
                raise InvalidState(
                    f"Only pending subscriptions can fail (status={subscription.status})"
                )

            values = {"status": SubscriptionStatus.FAILED.value, "failed_at": now}
            if payment_reference:
                values["payment_reference"] = payment_reference
            if reason:
                values["extra_metadata"] = {**(subscription.extra_metadata or {}), "failure_reason": reason}
            if not self._move(subscription, SubscriptionStatus.PENDING, **values):
                raise InvalidState("Subscription changed state concurrently")

            business = self._get_business(subscription.business_id)

        self.db.refresh(subscription)
        logger.warning(f"Subscription payment failed: subscription_id={subscription.id}, reason={reason}")
        self._notify(
            business.owner_id, notifications.PAYMENT_FAILED,
            "Payment failed",
            "We could not confirm the payment for your subscription. Please try again.",
            subscription, now,
        )
        return subscription

    def cancel(self, subscription_id: int, actor: Actor, now: Optional[datetime] = None) -> BusinessSubscription:
        """
        ACTIVE -> CANCELLED. Features are retracted only if this was the
        business's current subscription.
        """
        now = as_naive_utc(now) or utcnow()

        with self._transaction("cancel subscription", subscription_id=subscription_id):
            subscription = self._get_subscription(subscription_id, lock=True)
            business = self._get_business(subscription.business_id, lock=True)
            self._check_owner(actor, business)

            if subscription.status != SubscriptionStatus.ACTIVE.value:
                raise InvalidState("Only active subscriptions can be cancelled")

            if not self._move(
                subscription, SubscriptionStatus.ACTIVE,
                status=SubscriptionStatus.CANCELLED.value, cancelled_at=now,
            ):
                raise InvalidState("Subscription changed state concurrently")

            retracted = propagate(self.db, business, Retract(subscription))

        self.db.refresh(subscription)
        logger.info(
            f"Subscription cancelled: subscription_id={subscription.id}, business_id={subscription.business_id}, "
            f"by={actor.user_id}, features_retracted={retracted}"
        )
        self._notify(
            business.owner_id, notifications.SUBSCRIPTION_CANCELLED,
            "Subscription cancelled",
            "Your subscription has been cancelled.",
            subscription, now,
        )
        return subscription

    def expire_due(self, now: datetime) -> SweepResult:
        """
        Expire every ACTIVE subscription whose window ended before `now`.

        Rows are handled one transaction at a time; a failing row is recorded
        and the sweep moves on. Re-running with no data changes does nothing,
        since expired rows no longer match the selection.
        """
        now = as_naive_utc(now)
        result = SweepResult()

        due_ids = [
            row.id for row in self.db.query(BusinessSubscription.id).filter(
                BusinessSubscription.status == SubscriptionStatus.ACTIVE.value,
                BusinessSubscription.ends_at < now,
            ).order_by(BusinessSubscription.ends_at, BusinessSubscription.id).all()
        ]
        self.db.commit()
        result.selected = len(due_ids)

        for subscription_id in due_ids:
            try:
                expired = self._expire_one(subscription_id, now)
            except Exception as e:
                self.db.rollback()
                logger.error(f"Expiry failed: subscription_id={subscription_id}, error={e}", exc_info=True)
                result.failures.append(SweepFailure(subscription_id=subscription_id, error=str(e)))
                continue

            if expired is None:
                result.skipped += 1
                continue

            subscription, business, retracted = expired
            result.succeeded += 1
            if retracted:
                result.retracted += 1
                self._notify(
                    business.owner_id, notifications.SUBSCRIPTION_EXPIRED,
                    "Subscription expired",
                    "Your subscription has expired. Renew to restore your plan features.",
                    subscription, now,
                )

        logger.info(
            f"Expiry sweep finished: now={now.isoformat()}, selected={result.selected}, "
            f"succeeded={result.succeeded}, skipped={result.skipped}, failed={result.failed}"
        )
        return result

    def _expire_one(self, subscription_id: int, now: datetime):
        with self._transaction("expire subscription", subscription_id=subscription_id):
            query = self.db.query(BusinessSubscription).filter(
                BusinessSubscription.id == subscription_id,
                BusinessSubscription.status == SubscriptionStatus.ACTIVE.value,
                BusinessSubscription.ends_at < now,
            )
            subscription = self.capabilities.lock(query, skip_locked=True).first()
            if subscription is None or not self._move(
                subscription, SubscriptionStatus.ACTIVE, status=SubscriptionStatus.EXPIRED.value
            ):
                # Handled by a concurrent run
                return None

            business = self._get_business(subscription.business_id, lock=True)
            retracted = propagate(self.db, business, Retract(subscription))

        logger.info(
            f"Subscription expired: subscription_id={subscription_id}, business_id={subscription.business_id}, "
            f"features_retracted={retracted}"
        )
        return subscription, business, retracted

    # ------------------------------------------------------------------
    # Ledger queries
    # ------------------------------------------------------------------

    def get(self, subscription_id: int, actor: Actor) -> BusinessSubscription:
        subscription = self._get_subscription(subscription_id)
        self._check_owner(actor, self._get_business(subscription.business_id))
        return subscription

    def list(
        self,
        actor: Actor,
        business_id: Optional[int] = None,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        """Paginated ledger listing; regular callers only see their own businesses."""
        page = max(1, page)
        limit = max(1, limit)

        query = self.db.query(BusinessSubscription)
        if business_id is not None:
            query = query.filter(BusinessSubscription.business_id == business_id)
        if status:
            query = query.filter(BusinessSubscription.status == status.upper())
        if not actor.is_privileged:
            query = query.join(Business, Business.id == BusinessSubscription.business_id).filter(
                Business.owner_id == actor.user_id
            )

        total = query.count()
        subscriptions = (
            query.order_by(BusinessSubscription.created_at.desc(), BusinessSubscription.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

        return {
            "subscriptions": subscriptions,
            "pagination": {
                "total": total,
                "page": page,
                "limit": limit,
                "total_pages": math.ceil(total / limit),
            },
        }
