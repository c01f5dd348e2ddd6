"""
SubscriptionPlan model: purchasable plan definitions.
"""
import enum
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, Numeric, JSON
from sqlalchemy.sql import func
from directory_billing.db.base import Base


class PlanStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


class BillingInterval(str, enum.Enum):
    DAY = "DAY"
    WEEK = "WEEK"
    MONTH = "MONTH"
    YEAR = "YEAR"
    CUSTOM = "CUSTOM"


class CouponType(str, enum.Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"


class SubscriptionPlan(Base):
    """
    Plan definition with pricing, duration rule, feature flags and an optional coupon.

    Sponsor plans are regular plans with is_sponsor_plan set; they are
    assigned by administrators and never paid for.
    """
    __tablename__ = "subscription_plans"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    slug = Column(String, nullable=False, unique=True, index=True)
    description = Column(Text, nullable=True)

    # Pricing
    price = Column(Numeric(10, 2), nullable=False, default=0)
    sale_price = Column(Numeric(10, 2), nullable=True)
    currency = Column(String(3), nullable=False, default="SAR")
    status = Column(String, nullable=False, default=PlanStatus.ACTIVE.value, index=True)

    # Duration rule
    billing_interval = Column(String, nullable=False, default=BillingInterval.MONTH.value)
    interval_count = Column(Integer, nullable=False, default=1)
    custom_interval_days = Column(Integer, nullable=True)  # CUSTOM only

    # Feature flags mirrored onto the business
    verified_badge = Column(Boolean, nullable=False, default=False)
    top_placement = Column(Boolean, nullable=False, default=False)
    allow_advertisements = Column(Boolean, nullable=False, default=False)
    max_advertisements = Column(Integer, nullable=True)

    # Coupon
    coupon_code = Column(String, nullable=True)
    coupon_type = Column(String, nullable=True)  # PERCENTAGE | FIXED
    coupon_value = Column(Numeric(10, 2), nullable=True)
    coupon_max_discount = Column(Numeric(10, 2), nullable=True)
    coupon_starts_at = Column(DateTime, nullable=True)
    coupon_ends_at = Column(DateTime, nullable=True)
    coupon_usage_limit = Column(Integer, nullable=True)
    coupon_usage_count = Column(Integer, nullable=False, default=0)

    is_sponsor_plan = Column(Boolean, nullable=False, default=False, index=True)

    notes = Column(Text, nullable=True)
    extra_metadata = Column("metadata", JSON, nullable=True)
    created_by_id = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<SubscriptionPlan(id={self.id}, slug='{self.slug}', status='{self.status}')>"
