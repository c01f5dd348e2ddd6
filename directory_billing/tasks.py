"""
Scheduled reconciliation tasks.

Both take an optional ISO-8601 `now` so a run can be replayed by hand.
"""
import logging
from typing import Any, Dict, Optional

from directory_billing.celery_app import celery_app
from directory_billing.core.timeutil import parse_iso, utcnow
from directory_billing.db import session as db_session
from directory_billing.services.lifecycle import SubscriptionLifecycle
from directory_billing.services.notifications import DatabaseNotificationSink
from directory_billing.services.reconciliation import notify_expiring_soon, run_expiry_sweep

logger = logging.getLogger(__name__)


@celery_app.task(name="subscriptions.expire_due")
def expire_due_subscriptions_task(now: Optional[str] = None) -> Dict[str, Any]:
    """Periodic task: mark lapsed subscriptions EXPIRED."""
    moment = parse_iso(now) or utcnow()
    db = db_session.SessionLocal()
    try:
        lifecycle = SubscriptionLifecycle(
            db,
            sink=DatabaseNotificationSink(db_session.SessionLocal),
            capabilities=db_session.capabilities,
        )
        result = run_expiry_sweep(lifecycle, moment)
    finally:
        db.close()

    summary = result.to_dict()
    summary["status"] = "ok" if not result.failures else "partial"
    return summary


@celery_app.task(name="subscriptions.notify_expiring")
def notify_expiring_subscriptions_task(now: Optional[str] = None) -> Dict[str, Any]:
    """Periodic task: remind owners of subscriptions ending soon."""
    moment = parse_iso(now) or utcnow()
    db = db_session.SessionLocal()
    try:
        result = notify_expiring_soon(db, DatabaseNotificationSink(db_session.SessionLocal), moment)
    finally:
        db.close()

    summary = result.to_dict()
    summary["status"] = "ok"
    return summary


__all__ = [
    "expire_due_subscriptions_task",
    "notify_expiring_subscriptions_task",
]
