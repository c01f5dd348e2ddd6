"""
Run the reconciliation sweeps once, outside the scheduler.
Run: python -m scripts.run_reconciliation [--now 2024-02-02T00:00:00Z] [--skip-reminders]
"""
import argparse
import json
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from directory_billing.core.timeutil import parse_iso, utcnow
from directory_billing.db import session as db_session
from directory_billing.services.lifecycle import SubscriptionLifecycle
from directory_billing.services.notifications import DatabaseNotificationSink
from directory_billing.services.reconciliation import run_reconciliation
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Expire lapsed subscriptions and send expiry reminders")
    parser.add_argument("--now", default=None, help="ISO-8601 time to reconcile as of (default: current time)")
    parser.add_argument("--skip-reminders", action="store_true", help="Only run the expiry sweep")
    args = parser.parse_args(argv)

    now = parse_iso(args.now) or utcnow()
    sink = DatabaseNotificationSink(db_session.SessionLocal)

    db = db_session.SessionLocal()
    try:
        lifecycle = SubscriptionLifecycle(db, sink=sink, capabilities=db_session.capabilities)
        summary = run_reconciliation(lifecycle, sink, now, include_reminders=not args.skip_reminders)
    finally:
        db.close()

    print(json.dumps(summary, indent=2))
    return 1 if summary["expiry"]["failed"] else 0


if __name__ == "__main__":
    sys.exit(main())
