"""
Reconciliation sweeps run by the scheduler (or by hand).

Both sweeps take `now` explicitly and never read the wall clock, so they can
be replayed for any point in time.
"""
import logging
import math
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from directory_billing.core import config
from directory_billing.core.timeutil import as_naive_utc
from directory_billing.db.models.business import Business
from directory_billing.db.models.subscription import (
    BusinessSubscription,
    SubscriptionStatus,
    SPONSOR_PROVIDER,
)
from directory_billing.services import notifications
from directory_billing.services.lifecycle import SubscriptionLifecycle, SweepResult, subscription_link
from directory_billing.services.notifications import NotificationSink, safe_emit

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


@dataclass
class ReminderResult:
    """Outcome of one expiring-soon notifier run."""
    checked: int = 0
    notified: int = 0
    duplicates: int = 0
    off_threshold: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def days_until_expiry(ends_at: datetime, now: datetime) -> int:
    """Whole days left, rounded up: 2 days and 1 hour counts as 3."""
    return math.ceil((ends_at - now).total_seconds() / SECONDS_PER_DAY)


def run_expiry_sweep(lifecycle: SubscriptionLifecycle, now: datetime) -> SweepResult:
    """Expire lapsed subscriptions and retract their features."""
    return lifecycle.expire_due(now)


def notify_expiring_soon(
    db: Session,
    sink: NotificationSink,
    now: datetime,
    lookahead_days: int = config.EXPIRY_LOOKAHEAD_DAYS,
    thresholds: Iterable[int] = config.EXPIRY_REMINDER_DAYS,
    dedupe_hours: int = config.NOTIFICATION_DEDUPE_HOURS,
) -> ReminderResult:
    """
    Remind owners of paid subscriptions that end within `lookahead_days`.

    A reminder goes out when the days left hit one of `thresholds`, at most
    once per business/plan pair per `dedupe_hours`, so overlapping or
    repeated runs on the same day send nothing extra.
    """
    now = as_naive_utc(now)
    thresholds = set(thresholds)
    since = now - timedelta(hours=dedupe_hours)
    result = ReminderResult()

    rows = (
        db.query(BusinessSubscription, Business)
        .join(Business, Business.id == BusinessSubscription.business_id)
        .filter(
            BusinessSubscription.status == SubscriptionStatus.ACTIVE.value,
            BusinessSubscription.payment_reference.isnot(None),
            or_(
                BusinessSubscription.payment_provider.is_(None),
                BusinessSubscription.payment_provider != SPONSOR_PROVIDER,
            ),
            BusinessSubscription.ends_at > now,
            BusinessSubscription.ends_at <= now + timedelta(days=lookahead_days),
        )
        .order_by(BusinessSubscription.ends_at)
        .all()
    )

    for subscription, business in rows:
        result.checked += 1
        days_left = days_until_expiry(subscription.ends_at, now)
        if days_left not in thresholds:
            result.off_threshold += 1
            continue

        try:
            already_sent = sink.has_recent(
                notifications.SUBSCRIPTION_EXPIRING, subscription.business_id, subscription.plan_id, since
            )
        except Exception as e:
            logger.warning(f"Reminder dedupe check failed: subscription_id={subscription.id}, error={e}")
            result.failed += 1
            continue

        if already_sent:
            result.duplicates += 1
            continue

        day_word = "day" if days_left == 1 else "days"
        sent = safe_emit(
            sink, business.owner_id, notifications.SUBSCRIPTION_EXPIRING,
            "Subscription expiring soon",
            f"Your subscription for {business.name} expires in {days_left} {day_word} "
            f"on {subscription.ends_at:%Y-%m-%d}.",
            link=subscription_link(subscription.id),
            business_id=subscription.business_id,
            plan_id=subscription.plan_id,
            occurred_at=now,
        )
        if sent:
            result.notified += 1
        else:
            result.failed += 1

    db.commit()
    logger.info(
        f"Expiring-soon check finished: now={now.isoformat()}, checked={result.checked}, "
        f"notified={result.notified}, duplicates={result.duplicates}, failed={result.failed}"
    )
    return result


def run_reconciliation(
    lifecycle: SubscriptionLifecycle,
    sink: NotificationSink,
    now: datetime,
    include_reminders: Optional[bool] = True,
) -> Dict[str, Any]:
    """Run the expiry sweep and, optionally, the expiring-soon notifier."""
    summary = {"now": as_naive_utc(now).isoformat(), "expiry": run_expiry_sweep(lifecycle, now).to_dict()}
    if include_reminders:
        summary["reminders"] = notify_expiring_soon(lifecycle.db, sink, now).to_dict()
    return summary
