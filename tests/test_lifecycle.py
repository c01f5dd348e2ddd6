"""
Tests for the subscription lifecycle: creation, payment confirmation,
cancellation, sponsor grants and the expiry sweep.
"""
import pytest
from types import SimpleNamespace
from datetime import datetime
from decimal import Decimal
from sqlalchemy.exc import OperationalError

from directory_billing.core.exceptions import (
    BusinessNotApproved,
    ConcurrentUpdate,
    InvalidCoupon,
    InvalidPlanWindow,
    InvalidState,
    NotFound,
    PlanNotActive,
    TransitionFailed,
    Unauthorized,
)
from directory_billing.db.capabilities import resolve_capabilities
from directory_billing.db.models import Business, BusinessSubscription, SubscriptionPlan
from directory_billing.services import lifecycle as lifecycle_module
from directory_billing.services import notifications, plan_catalog
from directory_billing.services.lifecycle import SubscriptionLifecycle, sponsor_reference


JAN_1 = datetime(2024, 1, 1)


def _business(db, business_id):
    db.expire_all()
    return db.query(Business).filter(Business.id == business_id).one()


def test_create_starts_pending_without_features(db, lifecycle, business, plan, owner):
    sub = lifecycle.create(business.id, plan.id, owner, start_date=JAN_1, payment_provider="STRIPE")

    assert sub.status == "PENDING"
    assert sub.started_at == JAN_1
    assert sub.ends_at == datetime(2024, 2, 1)
    assert sub.total_amount == Decimal("100.00")
    assert sub.discount_amount == Decimal("0.00")
    assert sub.created_by_id == owner.user_id

    fresh = _business(db, business.id)
    assert fresh.current_subscription_id is None
    assert fresh.is_verified is False


def test_create_freezes_sale_price(db, lifecycle, business, make_plan, owner, admin):
    plan = make_plan(price=Decimal("100.00"), sale_price=Decimal("80.00"))
    sub = lifecycle.create(business.id, plan.id, owner, start_date=JAN_1)

    assert sub.price == Decimal("100.00")
    assert sub.discount_amount == Decimal("20.00")
    assert sub.total_amount == Decimal("80.00")

    plan_catalog.update_plan(db, plan.id, {"sale_price": "50.00"}, admin)
    db.refresh(sub)
    assert sub.total_amount == Decimal("80.00")


def test_create_with_coupon_counts_usage(db, lifecycle, business, make_plan, owner):
    plan = make_plan(
        price=Decimal("200.00"), sale_price=Decimal("150.00"),
        coupon_code="LAUNCH20", coupon_type="PERCENTAGE", coupon_value=Decimal("20"),
        coupon_max_discount=Decimal("25.00"), coupon_usage_limit=1,
    )
    sub = lifecycle.create(business.id, plan.id, owner, start_date=JAN_1, coupon_code="LAUNCH20", now=JAN_1)

    assert sub.coupon_code == "LAUNCH20"
    assert sub.discount_amount == Decimal("75.00")
    assert sub.total_amount == Decimal("125.00")
    assert db.get(SubscriptionPlan, plan.id).coupon_usage_count == 1

    with pytest.raises(InvalidCoupon):
        lifecycle.create(business.id, plan.id, owner, start_date=JAN_1, coupon_code="LAUNCH20", now=JAN_1)
    assert db.query(BusinessSubscription).count() == 1


def test_create_rejections(db, lifecycle, make_business, make_plan, owner, stranger):
    approved = make_business()
    pending = make_business(status="PENDING")
    plan = make_plan()
    archived = make_plan(slug="old", status="ARCHIVED")

    with pytest.raises(NotFound):
        lifecycle.create(999, plan.id, owner)
    with pytest.raises(NotFound):
        lifecycle.create(approved.id, 999, owner)
    with pytest.raises(BusinessNotApproved):
        lifecycle.create(pending.id, plan.id, owner)
    with pytest.raises(PlanNotActive):
        lifecycle.create(approved.id, archived.id, owner)
    with pytest.raises(Unauthorized):
        lifecycle.create(approved.id, plan.id, stranger)


def test_create_rejects_zero_length_custom_window(lifecycle, business, make_plan, owner):
    plan = make_plan(billing_interval="CUSTOM", custom_interval_days=None)
    with pytest.raises(InvalidPlanWindow):
        lifecycle.create(business.id, plan.id, owner)


def test_create_with_sponsor_plan(db, lifecycle, business, make_plan, owner, admin):
    sponsor = make_plan(slug="sponsor", price=Decimal("0"), is_sponsor_plan=True)

    with pytest.raises(NotFound):
        lifecycle.create(business.id, sponsor.id, owner)

    sub = lifecycle.create(business.id, sponsor.id, admin, start_date=JAN_1, now=JAN_1)
    assert sub.status == "ACTIVE"
    assert sub.payment_provider == "SPONSOR"


def test_purchase_activate_expire_scenario(db, lifecycle, sink, business, plan, owner):
    sub = lifecycle.create(business.id, plan.id, owner, start_date=JAN_1)
    lifecycle.activate(sub.id, payment_reference="pi_123", now=JAN_1)

    assert sub.status == "ACTIVE"
    assert sub.payment_reference == "pi_123"
    fresh = _business(db, business.id)
    assert fresh.current_subscription_id == sub.id
    assert fresh.is_verified is True
    assert fresh.can_create_advertisements is True
    assert fresh.promoted_until == datetime(2024, 2, 1)
    assert fresh.subscription_started_at == JAN_1
    assert fresh.subscription_expires_at == datetime(2024, 2, 1)

    result = lifecycle.expire_due(datetime(2024, 2, 2))

    assert result.selected == 1
    assert result.succeeded == 1
    assert result.retracted == 1
    assert result.failed == 0
    db.refresh(sub)
    assert sub.status == "EXPIRED"
    fresh = _business(db, business.id)
    assert fresh.current_subscription_id is None
    assert fresh.is_verified is False
    assert fresh.can_create_advertisements is False
    assert fresh.promoted_until is None
    # Window fields stay as history
    assert fresh.subscription_expires_at == datetime(2024, 2, 1)

    assert sink.types() == [notifications.SUBSCRIPTION_ACTIVATED, notifications.SUBSCRIPTION_EXPIRED]
    assert sink.events[0]["user_id"] == business.owner_id
    assert sink.events[0]["link"].endswith(f"/dashboard/subscriptions/{sub.id}")


def test_activate_twice_fails_and_leaves_flags(db, lifecycle, business, make_plan, owner):
    plan = make_plan(verified_badge=False, top_placement=False)
    sub = lifecycle.create(business.id, plan.id, owner, start_date=JAN_1)
    lifecycle.activate(sub.id, now=JAN_1)
    before = _business(db, business.id)
    snapshot = (before.current_subscription_id, before.is_verified, before.promoted_until, before.can_create_advertisements)

    with pytest.raises(InvalidState):
        lifecycle.activate(sub.id, now=JAN_1)

    after = _business(db, business.id)
    assert (after.current_subscription_id, after.is_verified, after.promoted_until, after.can_create_advertisements) == snapshot
    assert snapshot == (sub.id, False, None, True)


def test_activate_missing_subscription(lifecycle):
    with pytest.raises(NotFound):
        lifecycle.activate(12345)


def test_fail_pending_subscription(db, lifecycle, sink, business, plan, owner):
    sub = lifecycle.create(business.id, plan.id, owner, start_date=JAN_1)
    lifecycle.fail(sub.id, reason="card_declined", payment_reference="pi_9", now=JAN_1)

    assert sub.status == "FAILED"
    assert sub.failed_at == JAN_1
    assert sub.extra_metadata["failure_reason"] == "card_declined"
    assert _business(db, business.id).current_subscription_id is None
    assert sink.types() == [notifications.PAYMENT_FAILED]

    with pytest.raises(InvalidState):
        lifecycle.activate(sub.id)


def test_newer_subscription_supersedes_and_cancel_of_old_keeps_flags(db, lifecycle, business, make_plan, owner):
    basic = make_plan(slug="basic", verified_badge=False, top_placement=False, allow_advertisements=False)
    gold = make_plan(slug="gold")

    first = lifecycle.create(business.id, basic.id, owner, start_date=JAN_1)
    lifecycle.activate(first.id, now=JAN_1)
    second = lifecycle.create(business.id, gold.id, owner, start_date=JAN_1)
    lifecycle.activate(second.id, now=JAN_1)

    db.refresh(first)
    assert first.status == "ACTIVE"
    assert _business(db, business.id).current_subscription_id == second.id

    lifecycle.cancel(first.id, owner, now=datetime(2024, 1, 5))

    assert first.status == "CANCELLED"
    assert first.cancelled_at == datetime(2024, 1, 5)
    fresh = _business(db, business.id)
    assert fresh.current_subscription_id == second.id
    assert fresh.is_verified is True
    assert fresh.promoted_until == datetime(2024, 2, 1)


def test_cancel_current_retracts(db, lifecycle, sink, business, plan, owner, stranger):
    sub = lifecycle.create(business.id, plan.id, owner, start_date=JAN_1)
    lifecycle.activate(sub.id, now=JAN_1)

    with pytest.raises(Unauthorized):
        lifecycle.cancel(sub.id, stranger)

    lifecycle.cancel(sub.id, owner)

    fresh = _business(db, business.id)
    assert fresh.current_subscription_id is None
    assert fresh.is_verified is False
    assert notifications.SUBSCRIPTION_CANCELLED in sink.types()

    with pytest.raises(InvalidState):
        lifecycle.cancel(sub.id, owner)


def test_cancel_pending_is_invalid(lifecycle, business, plan, owner):
    sub = lifecycle.create(business.id, plan.id, owner, start_date=JAN_1)
    with pytest.raises(InvalidState):
        lifecycle.cancel(sub.id, owner)


def test_sponsor_without_plan_creates_and_reuses_sponsor_plan(db, lifecycle, sink, make_business, admin):
    first_business = make_business()
    second_business = make_business(name="Jeddah Bakery")

    sub = lifecycle.assign_sponsor(first_business.id, admin, start_date=JAN_1, notes="launch partner", now=JAN_1)

    assert sub.status == "ACTIVE"
    assert sub.payment_reference.startswith("SPONSOR-")
    assert sub.payment_reference == sponsor_reference(JAN_1)
    assert sub.payment_provider == "SPONSOR"
    assert sub.total_amount == Decimal("0")
    assert sub.discount_amount == sub.price
    assert sub.extra_metadata["sponsor"] is True
    assert sub.extra_metadata["assigned_by"] == admin.user_id
    assert sub.is_sponsor
    assert sub.ends_at == datetime(2025, 1, 1)

    fresh = _business(db, first_business.id)
    assert fresh.current_subscription_id == sub.id
    assert fresh.is_verified is True
    assert sink.types() == [notifications.SUBSCRIPTION_SPONSORED]

    other = lifecycle.assign_sponsor(second_business.id, admin, start_date=JAN_1, now=JAN_1)
    assert other.plan_id == sub.plan_id
    assert db.query(SubscriptionPlan).filter(SubscriptionPlan.is_sponsor_plan.is_(True)).count() == 1


def test_sponsor_with_explicit_plan(db, lifecycle, business, make_plan, admin):
    plan = make_plan(price=Decimal("300.00"))
    sub = lifecycle.assign_sponsor(business.id, admin, plan_id=plan.id, start_date=JAN_1, now=JAN_1)

    assert sub.plan_id == plan.id
    assert sub.price == Decimal("300.00")
    assert sub.discount_amount == Decimal("300.00")
    assert sub.total_amount == Decimal("0")


def test_sponsor_requires_admin(lifecycle, business, owner):
    with pytest.raises(Unauthorized):
        lifecycle.assign_sponsor(business.id, owner)


def test_sponsor_requires_approved_business(lifecycle, make_business, admin):
    suspended = make_business(status="SUSPENDED")
    with pytest.raises(BusinessNotApproved):
        lifecycle.assign_sponsor(suspended.id, admin)


def test_sponsor_after_sponsor_plan_archived(db, lifecycle, make_business, admin):
    first_business = make_business()
    second_business = make_business(name="Dammam Florist")
    first = lifecycle.assign_sponsor(first_business.id, admin, start_date=JAN_1, now=JAN_1)
    plan_catalog.archive_plan(db, first.plan_id, admin)

    second = lifecycle.assign_sponsor(second_business.id, admin, start_date=JAN_1, now=JAN_1)

    assert second.status == "ACTIVE"
    assert second.plan_id == first.plan_id
    assert db.get(SubscriptionPlan, first.plan_id).status == "ACTIVE"
    assert _business(db, second_business.id).current_subscription_id == second.id


def test_expire_due_is_idempotent(db, lifecycle, business, plan, owner):
    sub = lifecycle.create(business.id, plan.id, owner, start_date=JAN_1)
    lifecycle.activate(sub.id, now=JAN_1)

    first = lifecycle.expire_due(datetime(2024, 3, 1))
    second = lifecycle.expire_due(datetime(2024, 3, 1))

    assert first.succeeded == 1
    assert second.selected == 0
    assert second.succeeded == 0


def test_expire_due_leaves_unexpired_and_pending(db, lifecycle, business, plan, owner):
    pending = lifecycle.create(business.id, plan.id, owner, start_date=JAN_1)
    active = lifecycle.create(business.id, plan.id, owner, start_date=datetime(2024, 1, 20))
    lifecycle.activate(active.id, now=datetime(2024, 1, 20))

    result = lifecycle.expire_due(datetime(2024, 2, 2))

    assert result.selected == 0
    db.refresh(pending)
    db.refresh(active)
    assert pending.status == "PENDING"
    assert active.status == "ACTIVE"


def test_expire_due_of_superseded_row_keeps_flags(db, lifecycle, sink, business, make_plan, owner):
    short = make_plan(slug="short", billing_interval="DAY", interval_count=5)
    yearly = make_plan(slug="yearly", billing_interval="YEAR")

    old = lifecycle.create(business.id, short.id, owner, start_date=JAN_1)
    lifecycle.activate(old.id, now=JAN_1)
    new = lifecycle.create(business.id, yearly.id, owner, start_date=JAN_1)
    lifecycle.activate(new.id, now=JAN_1)

    result = lifecycle.expire_due(datetime(2024, 1, 10))

    assert result.succeeded == 1
    assert result.retracted == 0
    db.refresh(old)
    assert old.status == "EXPIRED"
    assert _business(db, business.id).current_subscription_id == new.id
    assert notifications.SUBSCRIPTION_EXPIRED not in sink.types()


def test_expire_due_isolates_row_failures(db, lifecycle, make_business, plan, owner, monkeypatch):
    first = make_business()
    second = make_business(name="Dammam Books")
    bad = lifecycle.create(first.id, plan.id, owner, start_date=JAN_1)
    good = lifecycle.create(second.id, plan.id, owner, start_date=JAN_1)
    lifecycle.activate(bad.id, now=JAN_1)
    lifecycle.activate(good.id, now=JAN_1)

    original = lifecycle._expire_one

    def flaky(subscription_id, now):
        if subscription_id == bad.id:
            raise RuntimeError("row locked elsewhere")
        return original(subscription_id, now)

    monkeypatch.setattr(lifecycle, "_expire_one", flaky)
    result = lifecycle.expire_due(datetime(2024, 2, 2))

    assert result.selected == 2
    assert result.succeeded == 1
    assert result.failed == 1
    assert result.failures[0].subscription_id == bad.id
    assert "row locked elsewhere" in result.to_dict()["failures"][0]["error"]
    db.refresh(bad)
    db.refresh(good)
    assert bad.status == "ACTIVE"
    assert good.status == "EXPIRED"


def test_activation_rolls_back_when_propagation_loses_race(db, lifecycle, business, plan, owner, monkeypatch):
    sub = lifecycle.create(business.id, plan.id, owner, start_date=JAN_1)

    def lost_race(db, business, change):
        raise ConcurrentUpdate("pointer moved")

    monkeypatch.setattr(lifecycle_module, "propagate", lost_race)

    with pytest.raises(ConcurrentUpdate) as exc:
        lifecycle.activate(sub.id, now=JAN_1)

    assert exc.value.retryable is True
    db.refresh(sub)
    assert sub.status == "PENDING"


def test_storage_error_becomes_transition_failed(db, lifecycle, business, plan, owner, monkeypatch):
    sub = lifecycle.create(business.id, plan.id, owner, start_date=JAN_1)

    def broken(db, business, change):
        raise OperationalError("UPDATE businesses", {}, Exception("disk I/O error"))

    monkeypatch.setattr(lifecycle_module, "propagate", broken)

    with pytest.raises(TransitionFailed) as exc:
        lifecycle.activate(sub.id, now=JAN_1)

    assert exc.value.status_code == 503
    assert exc.value.detail == {"subscription_id": sub.id}
    db.refresh(sub)
    assert sub.status == "PENDING"


def test_unexpected_error_rolls_back_before_session_reuse(db, lifecycle, business, plan, owner, monkeypatch):
    sub = lifecycle.create(business.id, plan.id, owner, start_date=JAN_1)

    def buggy(db, business, change):
        raise TypeError("unexpected change type")

    monkeypatch.setattr(lifecycle_module, "propagate", buggy)

    with pytest.raises(TypeError):
        lifecycle.activate(sub.id, payment_reference="pi_lost", now=JAN_1)

    # A later commit on the same session must not persist the half-done activation
    db.commit()
    db.refresh(sub)
    assert sub.status == "PENDING"
    assert sub.payment_reference is None
    assert _business(db, business.id).current_subscription_id is None


def test_capabilities_default_to_session_bind(db):
    lifecycle = SubscriptionLifecycle(db)

    assert lifecycle.capabilities == resolve_capabilities(db.get_bind())
    assert lifecycle.capabilities.dialect == "sqlite"


def test_resolve_capabilities_for_postgres():
    engine = SimpleNamespace(dialect=SimpleNamespace(name="postgresql"))

    caps = resolve_capabilities(engine)

    assert caps.supports_row_locks is True
    assert caps.supports_skip_locked is True


def test_notification_failure_does_not_undo_transition(db, business, plan, owner, broken_sink):
    lifecycle = SubscriptionLifecycle(db, sink=broken_sink)
    sub = lifecycle.create(business.id, plan.id, owner, start_date=JAN_1)

    lifecycle.activate(sub.id, now=JAN_1)

    assert sub.status == "ACTIVE"
    assert _business(db, business.id).current_subscription_id == sub.id


def test_get_and_list_respect_ownership(db, lifecycle, make_business, plan, owner, stranger, admin):
    mine = make_business()
    theirs = make_business(owner_id=stranger.user_id, name="Other Shop")
    my_sub = lifecycle.create(mine.id, plan.id, owner, start_date=JAN_1)
    lifecycle.create(theirs.id, plan.id, stranger, start_date=JAN_1)

    assert lifecycle.get(my_sub.id, owner).id == my_sub.id
    with pytest.raises(Unauthorized):
        lifecycle.get(my_sub.id, stranger)

    own_listing = lifecycle.list(owner)
    assert [s.id for s in own_listing["subscriptions"]] == [my_sub.id]
    assert own_listing["pagination"]["total"] == 1

    assert lifecycle.list(admin)["pagination"]["total"] == 2
    assert lifecycle.list(admin, business_id=theirs.id)["pagination"]["total"] == 1
    assert lifecycle.list(admin, status="active")["pagination"]["total"] == 0
