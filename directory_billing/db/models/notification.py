"""
Notification model: in-app notifications written by the default notification sink.
"""
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, Index
from directory_billing.db.base import Base
from directory_billing.core.timeutil import utcnow


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    type = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    link = Column(String, nullable=True)

    # Used to deduplicate reminders per business/plan pair
    business_id = Column(Integer, nullable=True)
    plan_id = Column(Integer, nullable=True)

    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    __table_args__ = (
        Index("idx_notification_dedupe", "type", "business_id", "plan_id", "created_at"),
    )

    def __repr__(self):
        return f"<Notification(id={self.id}, user_id={self.user_id}, type='{self.type}')>"
