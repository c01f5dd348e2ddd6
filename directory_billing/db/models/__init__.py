"""
Database models module.

This module imports all database models to ensure they are registered with SQLAlchemy's Base.metadata
before table creation.

All models must be imported here to be included in database migrations and table creation.
"""
from directory_billing.db.models.business import Business, BusinessStatus
from directory_billing.db.models.subscription_plan import (
    SubscriptionPlan,
    PlanStatus,
    BillingInterval,
    CouponType,
)
from directory_billing.db.models.subscription import (
    BusinessSubscription,
    SubscriptionStatus,
    SPONSOR_PROVIDER,
)
from directory_billing.db.models.notification import Notification

# Explicitly export all models for clarity
__all__ = [
    "Business",
    "BusinessStatus",
    "SubscriptionPlan",
    "PlanStatus",
    "BillingInterval",
    "CouponType",
    "BusinessSubscription",
    "SubscriptionStatus",
    "SPONSOR_PROVIDER",
    "Notification",
]
