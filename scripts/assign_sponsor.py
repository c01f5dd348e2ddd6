"""
Grant a business a sponsor (payment-free) subscription.
Run: python -m scripts.assign_sponsor <business_id> [--plan-id N] [--notes "..."]
"""
import argparse
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from directory_billing.core.exceptions import SubscriptionEngineError
from directory_billing.core.security import Actor
from directory_billing.db import session as db_session
from directory_billing.services.lifecycle import SubscriptionLifecycle
from directory_billing.services.notifications import DatabaseNotificationSink
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def assign_sponsor(business_id: int, admin_id: int = None, plan_id: int = None, notes: str = None):
    """Assign a sponsor subscription; returns the new subscription or None on failure."""
    db = db_session.SessionLocal()
    try:
        lifecycle = SubscriptionLifecycle(
            db,
            sink=DatabaseNotificationSink(db_session.SessionLocal),
            capabilities=db_session.capabilities,
        )
        subscription = lifecycle.assign_sponsor(
            business_id,
            Actor(user_id=admin_id, role="ADMIN"),
            plan_id=plan_id,
            notes=notes,
        )
        logger.info(
            f"Business {business_id} sponsored: subscription_id={subscription.id}, "
            f"ends_at={subscription.ends_at.isoformat()}"
        )
        return subscription
    except SubscriptionEngineError as e:
        logger.error(f"Could not sponsor business {business_id}: {e.code}: {e.message}")
        return None
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Assign a sponsor subscription to a business")
    parser.add_argument("business_id", type=int)
    parser.add_argument("--plan-id", type=int, default=None, help="Plan to grant; defaults to the sponsor plan")
    parser.add_argument("--admin-id", type=int, default=None, help="Administrator recorded as assigner")
    parser.add_argument("--notes", default=None)
    args = parser.parse_args()

    result = assign_sponsor(args.business_id, admin_id=args.admin_id, plan_id=args.plan_id, notes=args.notes)

    if result is not None:
        print(f"\n[SUCCESS] Business {args.business_id} sponsored until {result.ends_at:%Y-%m-%d}")
    else:
        print(f"\n[ERROR] Failed to sponsor business {args.business_id}")
        sys.exit(1)
