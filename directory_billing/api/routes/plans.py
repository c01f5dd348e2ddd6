"""
Plan catalog endpoints.

Listing and reading are public (sponsor plans hidden); writes are admin only.
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from directory_billing.core.auth_dependency import get_db, get_current_actor, get_optional_actor
from directory_billing.core.security import Actor
from directory_billing.schemas.plan import (
    PlanCreate,
    PlanUpdate,
    PlanResponse,
    PlanListResponse,
    QuoteResponse,
)
from directory_billing.services import plan_catalog

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/plans", tags=["Plans"])


@router.get("", response_model=PlanListResponse)
def list_plans(
    status_filter: Optional[str] = Query(None, alias="status"),
    include_sponsor: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_optional_actor),
    db: Session = Depends(get_db),
):
    return plan_catalog.list_plans(
        db, actor, status=status_filter, include_sponsor=include_sponsor, page=page, limit=limit
    )


@router.get("/{plan_id}", response_model=PlanResponse)
def get_plan(
    plan_id: int,
    actor: Actor = Depends(get_optional_actor),
    db: Session = Depends(get_db),
):
    return plan_catalog.get_plan(db, plan_id, actor)


@router.get("/{plan_id}/quote", response_model=QuoteResponse)
def quote_plan(
    plan_id: int,
    coupon_code: Optional[str] = Query(None),
    actor: Actor = Depends(get_optional_actor),
    db: Session = Depends(get_db),
):
    """Price breakdown for a plan, with an optional coupon applied."""
    plan = plan_catalog.get_plan(db, plan_id, actor)
    return plan_catalog.quote(plan, coupon_code).to_dict()


@router.post("", response_model=PlanResponse, status_code=status.HTTP_201_CREATED)
def create_plan(
    body: PlanCreate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    return plan_catalog.create_plan(db, body.to_fields(exclude_unset=False), actor)


@router.patch("/{plan_id}", response_model=PlanResponse)
def update_plan(
    plan_id: int,
    body: PlanUpdate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    return plan_catalog.update_plan(db, plan_id, body.to_fields(exclude_unset=True), actor)


@router.delete("/{plan_id}", response_model=PlanResponse)
def archive_plan(
    plan_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    return plan_catalog.archive_plan(db, plan_id, actor)
