"""
Notification sink for lifecycle events.

Emission is fire-and-forget: a failing sink is logged and never surfaces as
a lifecycle error.
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from directory_billing.core.timeutil import utcnow
from directory_billing.db.models.notification import Notification

logger = logging.getLogger(__name__)

# Notification types
SUBSCRIPTION_ACTIVATED = "SUBSCRIPTION_ACTIVATED"
SUBSCRIPTION_SPONSORED = "SUBSCRIPTION_SPONSORED"
SUBSCRIPTION_CANCELLED = "SUBSCRIPTION_CANCELLED"
SUBSCRIPTION_EXPIRED = "SUBSCRIPTION_EXPIRED"
SUBSCRIPTION_EXPIRING = "SUBSCRIPTION_EXPIRING"
PAYMENT_FAILED = "PAYMENT_FAILED"


class NotificationSink:
    """Interface for delivering lifecycle notifications."""

    def emit(
        self,
        user_id: int,
        type: str,
        title: str,
        message: str,
        link: Optional[str] = None,
        business_id: Optional[int] = None,
        plan_id: Optional[int] = None,
        occurred_at: Optional[datetime] = None,
    ) -> None:
        raise NotImplementedError

    def has_recent(self, type: str, business_id: int, plan_id: int, since: datetime) -> bool:
        """Whether a notification of this type for the business/plan pair exists since `since`."""
        raise NotImplementedError


class DatabaseNotificationSink(NotificationSink):
    """Stores notifications as rows, each write in its own short session."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def emit(self, user_id, type, title, message, link=None, business_id=None, plan_id=None, occurred_at=None):
        db = self.session_factory()
        try:
            db.add(Notification(
                user_id=user_id,
                type=type,
                title=title,
                message=message,
                link=link,
                business_id=business_id,
                plan_id=plan_id,
                created_at=occurred_at or utcnow(),
            ))
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

    def has_recent(self, type, business_id, plan_id, since):
        db = self.session_factory()
        try:
            return db.query(Notification.id).filter(
                Notification.type == type,
                Notification.business_id == business_id,
                Notification.plan_id == plan_id,
                Notification.created_at >= since,
            ).first() is not None
        finally:
            db.close()


def safe_emit(sink: Optional[NotificationSink], user_id: Optional[int], type: str, title: str, message: str, **kwargs) -> bool:
    """
    Emit without letting delivery problems reach the caller.

    Returns:
        True if the sink accepted the notification
    """
    if sink is None or user_id is None:
        return False
    try:
        sink.emit(user_id, type, title, message, **kwargs)
        return True
    except Exception as e:
        logger.warning(f"Notification delivery failed: type={type}, user_id={user_id}, error={e}")
        return False
