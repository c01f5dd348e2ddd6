"""
Billing period arithmetic.

Pure functions: no clock, no database.
"""
from datetime import datetime, timedelta
from typing import Optional
from dateutil.relativedelta import relativedelta

from directory_billing.db.models.subscription_plan import BillingInterval


def compute_end_date(
    start: datetime,
    interval: Optional[str],
    count: Optional[int],
    custom_days: Optional[int] = None,
) -> datetime:
    """
    Compute the end of a subscription window.

    Args:
        start: Window start
        interval: DAY, WEEK, MONTH, YEAR or CUSTOM; anything else behaves as MONTH
        count: Number of intervals, clamped to at least 1
        custom_days: Length in days for CUSTOM plans (0 if unset)

    Returns:
        The window end. Month and year steps use calendar arithmetic, so
        Jan 31 + 1 month is the last day of February.
    """
    multiplier = count if count and count > 0 else 1
    interval = (interval or "").upper()

    if interval == BillingInterval.DAY.value:
        return start + timedelta(days=multiplier)
    if interval == BillingInterval.WEEK.value:
        return start + timedelta(days=multiplier * 7)
    if interval == BillingInterval.YEAR.value:
        return start + relativedelta(years=multiplier)
    if interval == BillingInterval.CUSTOM.value:
        return start + timedelta(days=custom_days or 0)
    return start + relativedelta(months=multiplier)
