from __future__ import annotations

from typing import Any


class FulfillmentError(Exception):
    code = "internal_error"
    status_code = 500
    retryable = False

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "detail": str(self),
            "error": self.code,
            "retryable": self.retryable,
        }
        if self.context:
            body["context"] = self.context
        return body


class InvalidTransitionError(FulfillmentError):
    code = "invalid_transition"
    status_code = 409


class OrderLockedError(InvalidTransitionError):
    code = "order_locked"


class LoadClosedError(InvalidTransitionError):
    code = "load_closed"


class NotDispatchedError(FulfillmentError):
    code = "not_dispatched"
    status_code = 409


class OrderAlreadyDispatchedError(FulfillmentError):
    code = "order_already_dispatched"
    status_code = 409


class IncompleteOrdersError(FulfillmentError):
    code = "incomplete_orders"
    status_code = 409


class NegativeStockError(FulfillmentError):
    code = "negative_stock"
    status_code = 409


class DuplicateRuleError(FulfillmentError):
    code = "duplicate_rule"
    status_code = 409


class ConcurrentModificationError(FulfillmentError):
    code = "concurrent_modification"
    status_code = 409
    retryable = True


class NotFoundError(FulfillmentError):
    code = "not_found"
    status_code = 404


class ForbiddenError(FulfillmentError):
    code = "forbidden"
    status_code = 403
