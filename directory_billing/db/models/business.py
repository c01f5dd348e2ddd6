"""
Business model (the subset of the directory listing the billing engine reads and mirrors).
"""
import enum
from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.sql import func
from directory_billing.db.base import Base


class BusinessStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SUSPENDED = "SUSPENDED"


class Business(Base):
    """
    Business listing.

    The subscription fields below are a mirror of the current subscription's
    plan and are only written by feature propagation.
    """
    __tablename__ = "businesses"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    owner_id = Column(Integer, nullable=False, index=True)  # user that receives notifications
    status = Column(String, nullable=False, default=BusinessStatus.PENDING.value, index=True)

    # Weak reference: lookup only, no FK ownership
    current_subscription_id = Column(Integer, nullable=True, index=True)
    subscription_started_at = Column(DateTime, nullable=True)
    subscription_expires_at = Column(DateTime, nullable=True)
    can_create_advertisements = Column(Boolean, nullable=False, default=False)
    promoted_until = Column(DateTime, nullable=True)
    is_verified = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Business(id={self.id}, status='{self.status}', current_subscription_id={self.current_subscription_id})>"
