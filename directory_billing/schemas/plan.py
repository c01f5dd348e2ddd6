"""
Pydantic schemas for plan catalog endpoints.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field

from directory_billing.db.models.subscription_plan import PlanStatus, BillingInterval, CouponType


class PlanBase(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    slug: Optional[str] = Field(None, min_length=1, pattern="^[a-z0-9][a-z0-9-]*$")
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0)
    sale_price: Optional[Decimal] = Field(None, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    status: Optional[PlanStatus] = None
    billing_interval: Optional[BillingInterval] = None
    interval_count: Optional[int] = Field(None, ge=1)
    custom_interval_days: Optional[int] = Field(None, ge=1)
    verified_badge: Optional[bool] = None
    top_placement: Optional[bool] = None
    allow_advertisements: Optional[bool] = None
    max_advertisements: Optional[int] = Field(None, ge=0)
    coupon_code: Optional[str] = None
    coupon_type: Optional[CouponType] = None
    coupon_value: Optional[Decimal] = Field(None, ge=0)
    coupon_max_discount: Optional[Decimal] = Field(None, ge=0)
    coupon_starts_at: Optional[datetime] = None
    coupon_ends_at: Optional[datetime] = None
    coupon_usage_limit: Optional[int] = Field(None, ge=0)
    is_sponsor_plan: Optional[bool] = None
    notes: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    def to_fields(self, exclude_unset: bool) -> Dict[str, Any]:
        """Service-layer field dict (metadata is stored as extra_metadata)."""
        data = self.model_dump(exclude_unset=exclude_unset, exclude_none=not exclude_unset)
        if "metadata" in data:
            data["extra_metadata"] = data.pop("metadata")
        return data


class PlanCreate(PlanBase):
    """Request schema for creating a plan."""
    name: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1, pattern="^[a-z0-9][a-z0-9-]*$")

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Gold",
                "slug": "gold",
                "price": "199.00",
                "sale_price": "149.00",
                "billing_interval": "MONTH",
                "interval_count": 1,
                "verified_badge": True,
                "top_placement": True,
                "allow_advertisements": True,
                "max_advertisements": 5
            }
        }


class PlanUpdate(PlanBase):
    """Request schema for a partial plan update."""


class PlanResponse(BaseModel):
    id: int
    name: str
    slug: str
    description: Optional[str] = None
    price: Decimal
    sale_price: Optional[Decimal] = None
    currency: str
    status: str
    billing_interval: str
    interval_count: int
    custom_interval_days: Optional[int] = None
    verified_badge: bool
    top_placement: bool
    allow_advertisements: bool
    max_advertisements: Optional[int] = None
    coupon_code: Optional[str] = None
    coupon_type: Optional[str] = None
    coupon_value: Optional[Decimal] = None
    coupon_max_discount: Optional[Decimal] = None
    coupon_starts_at: Optional[datetime] = None
    coupon_ends_at: Optional[datetime] = None
    coupon_usage_limit: Optional[int] = None
    coupon_usage_count: int = 0
    is_sponsor_plan: bool
    notes: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="extra_metadata")

    class Config:
        from_attributes = True


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int


class PlanListResponse(BaseModel):
    plans: List[PlanResponse]
    pagination: Pagination


class QuoteResponse(BaseModel):
    currency: str
    price: Decimal
    effective_price: Decimal
    discount_amount: Decimal
    coupon_discount: Decimal
    total_amount: Decimal
    coupon_code: Optional[str] = None
