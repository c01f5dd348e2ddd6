"""
Pydantic schemas for subscription endpoints.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field

from directory_billing.schemas.plan import Pagination


class CreateSubscriptionRequest(BaseModel):
    """Request schema for buying a plan (starts PENDING until payment is confirmed)."""
    business_id: int = Field(..., description="Business that receives the plan")
    plan_id: int = Field(..., description="Plan to buy")
    start_date: Optional[datetime] = Field(None, description="Window start; defaults to now")
    coupon_code: Optional[str] = None
    payment_provider: Optional[str] = Field(None, description="Gateway that will collect the payment")
    notes: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    class Config:
        json_schema_extra = {
            "example": {
                "business_id": 42,
                "plan_id": 3,
                "coupon_code": "LAUNCH20",
                "payment_provider": "STRIPE"
            }
        }


class SponsorSubscriptionRequest(BaseModel):
    """Request schema for an administrator-granted subscription."""
    business_id: int
    plan_id: Optional[int] = Field(None, description="Omit to use the default sponsor plan")
    start_date: Optional[datetime] = None
    notes: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class SubscriptionResponse(BaseModel):
    id: int
    business_id: int
    plan_id: int
    status: str
    started_at: datetime
    ends_at: datetime
    price: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    coupon_code: Optional[str] = None
    payment_reference: Optional[str] = None
    payment_provider: Optional[str] = None
    notes: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="extra_metadata")
    cancelled_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    created_by_id: Optional[int] = None

    class Config:
        from_attributes = True


class SubscriptionListResponse(BaseModel):
    subscriptions: List[SubscriptionResponse]
    pagination: Pagination
