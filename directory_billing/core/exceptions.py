"""
Typed errors raised by the subscription lifecycle engine.

Each error carries the HTTP status the API layer should answer with and a
stable machine-readable code.
"""
from typing import Optional


class SubscriptionEngineError(Exception):
    """Base class for every lifecycle engine error."""
    status_code = 400
    code = "subscription_error"
    retryable = False

    def __init__(self, message: str, detail: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> dict:
        payload = {"error": self.code, "message": self.message, "retryable": self.retryable}
        if self.detail:
            payload["detail"] = self.detail
        return payload


class NotFound(SubscriptionEngineError):
    status_code = 404
    code = "not_found"


class InvalidState(SubscriptionEngineError):
    status_code = 409
    code = "invalid_state"


class BusinessNotApproved(SubscriptionEngineError):
    code = "business_not_approved"


class PlanNotActive(SubscriptionEngineError):
    code = "plan_not_active"


class Unauthorized(SubscriptionEngineError):
    status_code = 403
    code = "unauthorized"


class DuplicateSlug(SubscriptionEngineError):
    status_code = 409
    code = "duplicate_slug"


class MissingPrice(SubscriptionEngineError):
    code = "missing_price"


class InvalidCoupon(SubscriptionEngineError):
    code = "invalid_coupon"


class InvalidPlanWindow(SubscriptionEngineError):
    code = "invalid_plan_window"


class TransitionFailed(SubscriptionEngineError):
    """A transition could not be persisted and was rolled back; safe to retry."""
    status_code = 503
    code = "transition_failed"
    retryable = True


class ConcurrentUpdate(TransitionFailed):
    """The business's current-subscription pointer changed underneath us."""
    status_code = 409
    code = "concurrent_update"
