"""
BusinessSubscription model: the subscription ledger.

One row per purchase or sponsor assignment. Price terms are frozen at
creation; rows outside PENDING/ACTIVE are never modified again.
"""
import enum
from sqlalchemy import Column, Integer, String, Text, DateTime, Numeric, JSON, ForeignKey, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from directory_billing.db.base import Base


class SubscriptionStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    FAILED = "FAILED"


SPONSOR_PROVIDER = "SPONSOR"


class BusinessSubscription(Base):
    __tablename__ = "business_subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("subscription_plans.id"), nullable=False, index=True)
    status = Column(String, nullable=False, default=SubscriptionStatus.PENDING.value)

    started_at = Column(DateTime, nullable=False)
    ends_at = Column(DateTime, nullable=False)

    # Frozen price terms
    price = Column(Numeric(10, 2), nullable=False)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    total_amount = Column(Numeric(10, 2), nullable=False)
    coupon_code = Column(String, nullable=True)

    payment_reference = Column(String, nullable=True, index=True)
    payment_provider = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    extra_metadata = Column("metadata", JSON, nullable=True)

    cancelled_at = Column(DateTime, nullable=True)
    failed_at = Column(DateTime, nullable=True)
    created_by_id = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    plan = relationship("SubscriptionPlan")
    business = relationship("Business", foreign_keys=[business_id])

    # Sweeps scan by status and end date
    __table_args__ = (
        Index("idx_subscription_status_ends_at", "status", "ends_at"),
    )

    @property
    def is_sponsor(self) -> bool:
        return bool((self.extra_metadata or {}).get("sponsor"))

    def __repr__(self):
        return f"<BusinessSubscription(id={self.id}, business_id={self.business_id}, status='{self.status}')>"
