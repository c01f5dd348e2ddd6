"""
Shared fixtures: in-memory SQLite database, actors and row factories.
"""
import os

# Set before any directory_billing import reads the config
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")

from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from directory_billing.core.security import Actor
from directory_billing.db.base import Base
from directory_billing.db.capabilities import StoreCapabilities
from directory_billing.db.models import Business, BusinessStatus, SubscriptionPlan
from directory_billing.services.lifecycle import SubscriptionLifecycle
from directory_billing.services.notifications import NotificationSink


# Setup in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

OWNER_ID = 10
OTHER_USER_ID = 20
ADMIN_ID = 1


class RecordingSink(NotificationSink):
    """Keeps emitted notifications in memory."""

    def __init__(self):
        self.events = []

    def emit(self, user_id, type, title, message, link=None, business_id=None, plan_id=None, occurred_at=None):
        self.events.append({
            "user_id": user_id,
            "type": type,
            "title": title,
            "message": message,
            "link": link,
            "business_id": business_id,
            "plan_id": plan_id,
            "occurred_at": occurred_at,
        })

    def has_recent(self, type, business_id, plan_id, since):
        return any(
            e["type"] == type and e["business_id"] == business_id and e["plan_id"] == plan_id
            and e["occurred_at"] is not None and e["occurred_at"] >= since
            for e in self.events
        )

    def types(self):
        return [e["type"] for e in self.events]


class BrokenSink(NotificationSink):
    def emit(self, *args, **kwargs):
        raise RuntimeError("sink unavailable")

    def has_recent(self, *args, **kwargs):
        return False


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=test_engine)
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def lifecycle(db, sink):
    return SubscriptionLifecycle(db, sink=sink, capabilities=StoreCapabilities(dialect="sqlite"))


@pytest.fixture
def admin():
    return Actor(user_id=ADMIN_ID, role="ADMIN")


@pytest.fixture
def owner():
    return Actor(user_id=OWNER_ID)


@pytest.fixture
def stranger():
    return Actor(user_id=OTHER_USER_ID)


@pytest.fixture
def make_business(db):
    def _make(status=BusinessStatus.APPROVED.value, owner_id=OWNER_ID, name="Riyadh Coffee House"):
        business = Business(name=name, owner_id=owner_id, status=status)
        db.add(business)
        db.commit()
        db.refresh(business)
        return business
    return _make


@pytest.fixture
def make_plan(db):
    def _make(**overrides):
        fields = {
            "name": "Gold",
            "slug": "gold",
            "price": Decimal("100.00"),
            "currency": "SAR",
            "status": "ACTIVE",
            "billing_interval": "MONTH",
            "interval_count": 1,
            "verified_badge": True,
            "top_placement": True,
            "allow_advertisements": True,
            "coupon_usage_count": 0,
            "is_sponsor_plan": False,
        }
        fields.update(overrides)
        plan = SubscriptionPlan(**fields)
        db.add(plan)
        db.commit()
        db.refresh(plan)
        return plan
    return _make


@pytest.fixture
def business(make_business):
    return make_business()


@pytest.fixture
def plan(make_plan):
    return make_plan()


@pytest.fixture
def broken_sink():
    return BrokenSink()


@pytest.fixture
def session_factory(db):
    """Session factory bound to the test database, for code that opens its own sessions."""
    return TestSessionLocal
