"""
Shared FastAPI dependencies for the billing routes.
"""
from fastapi import Depends
from sqlalchemy.orm import Session

from directory_billing.core.auth_dependency import get_db
from directory_billing.db import session as db_session
from directory_billing.services.lifecycle import SubscriptionLifecycle
from directory_billing.services.notifications import DatabaseNotificationSink, NotificationSink


def get_notification_sink() -> NotificationSink:
    return DatabaseNotificationSink(db_session.SessionLocal)


def get_lifecycle(
    db: Session = Depends(get_db),
    sink: NotificationSink = Depends(get_notification_sink),
) -> SubscriptionLifecycle:
    return SubscriptionLifecycle(db, sink=sink, capabilities=db_session.capabilities)
