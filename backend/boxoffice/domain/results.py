"""Typed results for business operations.

Expected business conditions (sold out, already used, lost race) are values,
not exceptions: every ticket-lifecycle operation returns either Success or a
Failure carrying an ErrorCode. Only infrastructure faults raise.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


class ErrorCategory(str, Enum):
    """How the caller should treat a failure."""

    CAPACITY = "capacity"
    STATE_CONFLICT = "state_conflict"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    EXTERNAL = "external"


class ErrorCode(str, Enum):
    """Domain error codes."""

    # Capacity
    OUT_OF_STOCK = "OUT_OF_STOCK"
    ORDER_LIMIT_EXCEEDED = "ORDER_LIMIT_EXCEEDED"
    SALES_WINDOW_CLOSED = "SALES_WINDOW_CLOSED"
    TICKET_TYPE_INACTIVE = "TICKET_TYPE_INACTIVE"
    EVENT_NOT_ON_SALE = "EVENT_NOT_ON_SALE"

    # State conflicts
    ALREADY_USED = "ALREADY_USED"
    TRANSFER_PENDING = "TRANSFER_PENDING"
    TRANSFER_ALREADY_PENDING = "TRANSFER_ALREADY_PENDING"
    TRANSFER_ALREADY_RESOLVED = "TRANSFER_ALREADY_RESOLVED"
    TRANSFER_OF_RECEIVED_TICKET = "TRANSFER_OF_RECEIVED_TICKET"
    TRANSFER_WINDOW_CLOSED = "TRANSFER_WINDOW_CLOSED"
    ORDER_ALREADY_PAID = "ORDER_ALREADY_PAID"
    ORDER_NOT_PENDING = "ORDER_NOT_PENDING"
    EVENT_HAS_SALES = "EVENT_HAS_SALES"

    # Validation
    INVALID_LINE_ITEMS = "INVALID_LINE_ITEMS"
    INVALID_QUANTITY = "INVALID_QUANTITY"
    INVALID_CAPACITY = "INVALID_CAPACITY"
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"
    INVALID_EVENT_DATES = "INVALID_EVENT_DATES"
    COUPON_INACTIVE = "COUPON_INACTIVE"
    COUPON_EXPIRED = "COUPON_EXPIRED"
    COUPON_NOT_YET_VALID = "COUPON_NOT_YET_VALID"
    COUPON_USAGE_CAP_REACHED = "COUPON_USAGE_CAP_REACHED"
    COUPON_BELOW_MINIMUM_PURCHASE = "COUPON_BELOW_MINIMUM_PURCHASE"
    COUPON_WRONG_EVENT_SCOPE = "COUPON_WRONG_EVENT_SCOPE"
    COUPON_CODE_TAKEN = "COUPON_CODE_TAKEN"
    SELF_TRANSFER = "SELF_TRANSFER"

    # Not found
    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"
    TICKET_TYPE_NOT_FOUND = "TICKET_TYPE_NOT_FOUND"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    TICKET_NOT_FOUND = "TICKET_NOT_FOUND"
    TRANSFER_NOT_FOUND = "TRANSFER_NOT_FOUND"
    COUPON_NOT_FOUND = "COUPON_NOT_FOUND"
    STAFF_NOT_FOUND = "STAFF_NOT_FOUND"

    # Forbidden
    NOT_EVENT_ORGANIZER = "NOT_EVENT_ORGANIZER"
    NOT_ORDER_OWNER = "NOT_ORDER_OWNER"
    NOT_TICKET_HOLDER = "NOT_TICKET_HOLDER"
    RECIPIENT_MISMATCH = "RECIPIENT_MISMATCH"
    NOT_TRANSFER_SENDER = "NOT_TRANSFER_SENDER"
    NOT_CHECKIN_STAFF = "NOT_CHECKIN_STAFF"

    # External
    PAYMENT_PROVIDER_UNAVAILABLE = "PAYMENT_PROVIDER_UNAVAILABLE"
    TICKET_CODE_EXHAUSTED = "TICKET_CODE_EXHAUSTED"
    TRANSFER_CODE_EXHAUSTED = "TRANSFER_CODE_EXHAUSTED"

    @property
    def category(self) -> ErrorCategory:
        return _CATEGORIES[self]


_CATEGORIES = {
    ErrorCode.OUT_OF_STOCK: ErrorCategory.CAPACITY,
    ErrorCode.ORDER_LIMIT_EXCEEDED: ErrorCategory.CAPACITY,
    ErrorCode.SALES_WINDOW_CLOSED: ErrorCategory.CAPACITY,
    ErrorCode.TICKET_TYPE_INACTIVE: ErrorCategory.CAPACITY,
    ErrorCode.EVENT_NOT_ON_SALE: ErrorCategory.CAPACITY,
    ErrorCode.ALREADY_USED: ErrorCategory.STATE_CONFLICT,
    ErrorCode.TRANSFER_PENDING: ErrorCategory.STATE_CONFLICT,
    ErrorCode.TRANSFER_ALREADY_PENDING: ErrorCategory.STATE_CONFLICT,
    ErrorCode.TRANSFER_ALREADY_RESOLVED: ErrorCategory.STATE_CONFLICT,
    ErrorCode.TRANSFER_OF_RECEIVED_TICKET: ErrorCategory.STATE_CONFLICT,
    ErrorCode.TRANSFER_WINDOW_CLOSED: ErrorCategory.STATE_CONFLICT,
    ErrorCode.ORDER_ALREADY_PAID: ErrorCategory.STATE_CONFLICT,
    ErrorCode.ORDER_NOT_PENDING: ErrorCategory.STATE_CONFLICT,
    ErrorCode.EVENT_HAS_SALES: ErrorCategory.STATE_CONFLICT,
    ErrorCode.INVALID_LINE_ITEMS: ErrorCategory.VALIDATION,
    ErrorCode.INVALID_QUANTITY: ErrorCategory.VALIDATION,
    ErrorCode.INVALID_CAPACITY: ErrorCategory.VALIDATION,
    ErrorCode.INVALID_STATUS_TRANSITION: ErrorCategory.VALIDATION,
    ErrorCode.INVALID_EVENT_DATES: ErrorCategory.VALIDATION,
    ErrorCode.COUPON_INACTIVE: ErrorCategory.VALIDATION,
    ErrorCode.COUPON_EXPIRED: ErrorCategory.VALIDATION,
    ErrorCode.COUPON_NOT_YET_VALID: ErrorCategory.VALIDATION,
    ErrorCode.COUPON_USAGE_CAP_REACHED: ErrorCategory.VALIDATION,
    ErrorCode.COUPON_BELOW_MINIMUM_PURCHASE: ErrorCategory.VALIDATION,
    ErrorCode.COUPON_WRONG_EVENT_SCOPE: ErrorCategory.VALIDATION,
    ErrorCode.COUPON_CODE_TAKEN: ErrorCategory.VALIDATION,
    ErrorCode.SELF_TRANSFER: ErrorCategory.VALIDATION,
    ErrorCode.EVENT_NOT_FOUND: ErrorCategory.NOT_FOUND,
    ErrorCode.TICKET_TYPE_NOT_FOUND: ErrorCategory.NOT_FOUND,
    ErrorCode.ORDER_NOT_FOUND: ErrorCategory.NOT_FOUND,
    ErrorCode.TICKET_NOT_FOUND: ErrorCategory.NOT_FOUND,
    ErrorCode.TRANSFER_NOT_FOUND: ErrorCategory.NOT_FOUND,
    ErrorCode.COUPON_NOT_FOUND: ErrorCategory.NOT_FOUND,
    ErrorCode.STAFF_NOT_FOUND: ErrorCategory.NOT_FOUND,
    ErrorCode.NOT_EVENT_ORGANIZER: ErrorCategory.FORBIDDEN,
    ErrorCode.NOT_ORDER_OWNER: ErrorCategory.FORBIDDEN,
    ErrorCode.NOT_TICKET_HOLDER: ErrorCategory.FORBIDDEN,
    ErrorCode.RECIPIENT_MISMATCH: ErrorCategory.FORBIDDEN,
    ErrorCode.NOT_TRANSFER_SENDER: ErrorCategory.FORBIDDEN,
    ErrorCode.NOT_CHECKIN_STAFF: ErrorCategory.FORBIDDEN,
    ErrorCode.PAYMENT_PROVIDER_UNAVAILABLE: ErrorCategory.EXTERNAL,
    ErrorCode.TICKET_CODE_EXHAUSTED: ErrorCategory.EXTERNAL,
    ErrorCode.TRANSFER_CODE_EXHAUSTED: ErrorCategory.EXTERNAL,
}


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T

    ok = True


@dataclass(frozen=True)
class Failure:
    """Business failure with a code and a user-safe message."""

    code: ErrorCode
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    ok = False

    @property
    def category(self) -> ErrorCategory:
        return self.code.category

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


Result = Union[Success[T], Failure]
