"""
Plan catalog service.

Handles plan CRUD, price and coupon math, sponsor-plan provisioning and the
sponsor visibility rule.
"""
import logging
import math
from dataclasses import dataclass, asdict
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

from sqlalchemy import update, or_
from sqlalchemy.orm import Session

from directory_billing.core import config
from directory_billing.core.exceptions import (
    DuplicateSlug,
    InvalidCoupon,
    MissingPrice,
    NotFound,
    Unauthorized,
)
from directory_billing.core.security import Actor
from directory_billing.core.timeutil import utcnow
from directory_billing.db.models.subscription_plan import (
    SubscriptionPlan,
    PlanStatus,
    BillingInterval,
    CouponType,
)

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")

# Columns a caller may set through create/update
PLAN_FIELDS = (
    "name", "slug", "description", "price", "sale_price", "currency", "status",
    "billing_interval", "interval_count", "custom_interval_days",
    "verified_badge", "top_placement", "allow_advertisements", "max_advertisements",
    "coupon_code", "coupon_type", "coupon_value", "coupon_max_discount",
    "coupon_starts_at", "coupon_ends_at", "coupon_usage_limit",
    "is_sponsor_plan", "notes", "extra_metadata",
)
DECIMAL_FIELDS = ("price", "sale_price", "coupon_value", "coupon_max_discount")
# Columns that cannot be cleared; a None value leaves them unchanged
REQUIRED_FIELDS = (
    "name", "slug", "currency", "status", "billing_interval", "interval_count",
    "verified_badge", "top_placement", "allow_advertisements", "is_sponsor_plan",
)


@dataclass
class PriceQuote:
    currency: str
    price: Decimal
    effective_price: Decimal
    discount_amount: Decimal
    coupon_discount: Decimal
    total_amount: Decimal
    coupon_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def _require_privileged(actor: Actor, action: str) -> None:
    if not actor.is_privileged:
        raise Unauthorized(f"Only administrators may {action}")


def effective_price(plan: SubscriptionPlan) -> Decimal:
    """Sale price when present, list price otherwise."""
    if plan.sale_price is not None:
        return _to_decimal(plan.sale_price)
    return _to_decimal(plan.price) or ZERO


def plan_discount(plan: SubscriptionPlan) -> Decimal:
    """List price minus effective price."""
    return (_to_decimal(plan.price) or ZERO) - effective_price(plan)


def coupon_discount(plan: SubscriptionPlan, code: Optional[str], now: Optional[datetime] = None) -> Decimal:
    """
    Discount granted by a plan's coupon on top of the effective price.

    Args:
        plan: Plan carrying the coupon definition
        code: Code supplied by the buyer; empty means no coupon
        now: Evaluation time for the coupon window

    Returns:
        Discount amount, never more than the effective price

    Raises:
        InvalidCoupon: Unknown code, outside its window, or usage limit reached
    """
    if not code:
        return ZERO

    now = now or utcnow()

    if not plan.coupon_code or plan.coupon_code.strip().lower() != code.strip().lower():
        raise InvalidCoupon("Coupon code is not valid for this plan")
    if plan.coupon_starts_at and now < plan.coupon_starts_at:
        raise InvalidCoupon("Coupon is not active yet")
    if plan.coupon_ends_at and now > plan.coupon_ends_at:
        raise InvalidCoupon("Coupon has expired")
    if plan.coupon_usage_limit is not None and (plan.coupon_usage_count or 0) >= plan.coupon_usage_limit:
        raise InvalidCoupon("Coupon usage limit reached")

    base = effective_price(plan)
    value = _to_decimal(plan.coupon_value) or ZERO

    if (plan.coupon_type or "").upper() == CouponType.PERCENTAGE.value:
        discount = base * value / Decimal(100)
        cap = _to_decimal(plan.coupon_max_discount)
        if cap is not None:
            discount = min(discount, cap)
    else:
        discount = value

    discount = max(ZERO, min(discount, base))
    return discount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def quote(plan: SubscriptionPlan, code: Optional[str] = None, now: Optional[datetime] = None) -> PriceQuote:
    """Price breakdown for buying a plan, optionally with a coupon."""
    price = _to_decimal(plan.price) or ZERO
    effective = effective_price(plan)
    extra = coupon_discount(plan, code, now)
    return PriceQuote(
        currency=plan.currency,
        price=price,
        effective_price=effective,
        discount_amount=(price - effective) + extra,
        coupon_discount=extra,
        total_amount=effective - extra,
        coupon_code=plan.coupon_code if code else None,
    )


def redeem_coupon(db: Session, plan: SubscriptionPlan) -> None:
    """
    Count one coupon use inside the caller's transaction.

    The increment is conditional on the limit so two concurrent buyers cannot
    both take the last use.
    """
    result = db.execute(
        update(SubscriptionPlan)
        .where(
            SubscriptionPlan.id == plan.id,
            or_(
                SubscriptionPlan.coupon_usage_limit.is_(None),
                SubscriptionPlan.coupon_usage_count < SubscriptionPlan.coupon_usage_limit,
            ),
        )
        .values(coupon_usage_count=SubscriptionPlan.coupon_usage_count + 1)
        .execution_options(synchronize_session=False)
    )
    db.expire(plan)
    if result.rowcount == 0:
        raise InvalidCoupon("Coupon usage limit reached")


def is_visible(plan: SubscriptionPlan, actor: Actor, include_sponsor: Optional[bool] = None) -> bool:
    """
    Sponsor plans are hidden from regular callers and shown to privileged
    callers unless they explicitly exclude them.
    """
    if not plan.is_sponsor_plan:
        return True
    if not actor.is_privileged:
        return False
    return include_sponsor is not False


def _slug_taken(db: Session, slug: str, exclude_id: Optional[int] = None) -> bool:
    query = db.query(SubscriptionPlan.id).filter(SubscriptionPlan.slug == slug)
    if exclude_id is not None:
        query = query.filter(SubscriptionPlan.id != exclude_id)
    return query.first() is not None


def _apply_fields(plan: SubscriptionPlan, data: Dict[str, Any]) -> None:
    for field in PLAN_FIELDS:
        if field not in data:
            continue
        value = data[field]
        if value is None and field in REQUIRED_FIELDS:
            continue
        if field in DECIMAL_FIELDS:
            value = _to_decimal(value)
        elif field in ("status", "billing_interval", "coupon_type", "currency") and value:
            value = str(getattr(value, "value", value)).upper()
        setattr(plan, field, value)


def create_plan(db: Session, data: Dict[str, Any], actor: Actor) -> SubscriptionPlan:
    """
    Create a plan.

    Raises:
        Unauthorized: Caller is not an administrator
        DuplicateSlug: Slug already used by another plan
        MissingPrice: Non-sponsor plan without a price
    """
    _require_privileged(actor, "create plans")

    slug = data.get("slug")
    if _slug_taken(db, slug):
        raise DuplicateSlug(f"A plan with slug '{slug}' already exists")

    is_sponsor = bool(data.get("is_sponsor_plan", False))
    if _to_decimal(data.get("price")) is None:
        if not is_sponsor:
            raise MissingPrice("Price is required")
        data = {**data, "price": ZERO}

    plan = SubscriptionPlan(
        currency=config.DEFAULT_CURRENCY,
        status=PlanStatus.ACTIVE.value,
        billing_interval=BillingInterval.MONTH.value,
        interval_count=1,
        coupon_usage_count=0,
        created_by_id=actor.user_id,
    )
    _apply_fields(plan, data)
    plan.is_sponsor_plan = is_sponsor
    plan.interval_count = max(1, plan.interval_count or 1)

    db.add(plan)
    db.commit()
    db.refresh(plan)

    logger.info(f"Plan created: plan_id={plan.id}, slug={plan.slug}, sponsor={plan.is_sponsor_plan}")
    return plan


def update_plan(db: Session, plan_id: int, changes: Dict[str, Any], actor: Actor) -> SubscriptionPlan:
    """Partially update a plan. Existing subscriptions keep their frozen terms."""
    _require_privileged(actor, "update plans")

    plan = db.query(SubscriptionPlan).filter(SubscriptionPlan.id == plan_id).first()
    if not plan:
        raise NotFound("Subscription plan not found")

    if "slug" in changes and changes["slug"] != plan.slug and _slug_taken(db, changes["slug"], plan.id):
        raise DuplicateSlug(f"A plan with slug '{changes['slug']}' already exists")

    sponsor_after = bool(changes.get("is_sponsor_plan", plan.is_sponsor_plan))
    if "price" in changes and _to_decimal(changes["price"]) is None:
        if not sponsor_after:
            raise MissingPrice("Price is required")
        changes = {**changes, "price": ZERO}

    _apply_fields(plan, changes)
    if plan.interval_count is not None:
        plan.interval_count = max(1, plan.interval_count)

    db.commit()
    db.refresh(plan)

    logger.info(f"Plan updated: plan_id={plan.id}, fields={sorted(changes)}")
    return plan


def get_plan(db: Session, plan_id: int, actor: Actor) -> SubscriptionPlan:
    """Fetch a plan; sponsor plans look missing to regular callers."""
    plan = db.query(SubscriptionPlan).filter(SubscriptionPlan.id == plan_id).first()
    if not plan or not is_visible(plan, actor):
        raise NotFound("Subscription plan not found")
    return plan


def list_plans(
    db: Session,
    actor: Actor,
    status: Optional[str] = None,
    include_sponsor: Optional[bool] = None,
    page: int = 1,
    limit: int = 20,
) -> Dict[str, Any]:
    """Paginated plan listing honoring the sponsor visibility rule."""
    page = max(1, page)
    limit = max(1, limit)

    query = db.query(SubscriptionPlan)
    if status:
        query = query.filter(SubscriptionPlan.status == status.upper())
    if not actor.is_privileged or include_sponsor is False:
        query = query.filter(SubscriptionPlan.is_sponsor_plan.is_(False))

    total = query.count()
    plans = (
        query.order_by(SubscriptionPlan.created_at.desc(), SubscriptionPlan.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    return {
        "plans": plans,
        "pagination": {
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit),
        },
    }


def archive_plan(db: Session, plan_id: int, actor: Actor) -> SubscriptionPlan:
    """Archive a plan. Already-created subscriptions are not touched."""
    _require_privileged(actor, "archive plans")

    plan = db.query(SubscriptionPlan).filter(SubscriptionPlan.id == plan_id).first()
    if not plan:
        raise NotFound("Subscription plan not found")

    plan.status = PlanStatus.ARCHIVED.value
    db.commit()
    db.refresh(plan)

    logger.info(f"Plan archived: plan_id={plan.id}, slug={plan.slug}")
    return plan


def get_or_create_sponsor_plan(db: Session, created_by_id: Optional[int] = None) -> SubscriptionPlan:
    """
    Reuse the configured sponsor plan or create it.

    An archived sponsor plan is reactivated, so sponsor grants keep working
    after an administrator archives it. Flushes but does not commit; the
    caller's transaction owns the write.
    """
    slug = config.SPONSOR_PLAN_SLUG
    plan = db.query(SubscriptionPlan).filter(SubscriptionPlan.slug == slug).first()
    if plan:
        if not plan.is_sponsor_plan:
            raise DuplicateSlug(f"Slug '{slug}' is used by a non-sponsor plan")
        if plan.status != PlanStatus.ACTIVE.value:
            logger.warning(f"Reactivating sponsor plan: plan_id={plan.id}, previous_status={plan.status}")
            plan.status = PlanStatus.ACTIVE.value
            db.flush()
        return plan

    plan = SubscriptionPlan(
        name="Sponsor Plan",
        slug=slug,
        description="Complimentary plan assigned by administrators",
        price=ZERO,
        currency=config.DEFAULT_CURRENCY,
        status=PlanStatus.ACTIVE.value,
        billing_interval=BillingInterval.YEAR.value,
        interval_count=1,
        verified_badge=True,
        top_placement=True,
        allow_advertisements=True,
        coupon_usage_count=0,
        is_sponsor_plan=True,
        created_by_id=created_by_id,
    )
    db.add(plan)
    db.flush()

    logger.info(f"Sponsor plan created: plan_id={plan.id}, slug={slug}")
    return plan
