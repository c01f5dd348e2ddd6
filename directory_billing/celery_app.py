"""
Celery application and beat schedule for the reconciliation sweeps.
"""
import logging
from typing import Any

from celery import Celery
from celery.schedules import crontab

from directory_billing.core import config

logger = logging.getLogger(__name__)

celery_app = Celery(
    "directory_billing",
    broker=config.CELERY_BROKER_URL,
    backend=config.CELERY_RESULT_BACKEND,
    include=["directory_billing.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=config.SCHEDULER_TIMEZONE,
    enable_utc=True,
    result_expires=3600,  # 1 hour
    task_time_limit=300,  # 5 minutes
    task_soft_time_limit=240,  # 4 minutes
    # Sweeps are idempotent; redelivery after a worker crash is harmless
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)


@celery_app.on_after_finalize.connect
def setup_periodic_tasks(sender: Any, **kwargs: Any) -> None:
    """Register the expiry sweep and the expiring-soon notifier."""
    from directory_billing.tasks import expire_due_subscriptions_task, notify_expiring_subscriptions_task

    # Expire lapsed subscriptions every hour
    sender.add_periodic_task(
        float(config.EXPIRY_SWEEP_INTERVAL_SECONDS),
        expire_due_subscriptions_task.s(),
        name="subscriptions-expire-due",
    )

    # Expiring-soon reminders once a day
    sender.add_periodic_task(
        crontab(hour=config.EXPIRING_SOON_HOUR, minute=0),
        notify_expiring_subscriptions_task.s(),
        name="subscriptions-notify-expiring",
    )

    logger.info(
        f"Periodic tasks registered: expiry every {config.EXPIRY_SWEEP_INTERVAL_SECONDS}s, "
        f"reminders daily at {config.EXPIRING_SOON_HOUR:02d}:00 {config.SCHEDULER_TIMEZONE}"
    )
