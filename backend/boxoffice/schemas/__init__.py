from boxoffice.schemas.event import (
    EventCreate,
    EventListResponse,
    EventResponse,
    TicketTypeCreate,
    TicketTypeResponse,
)
from boxoffice.schemas.order import CheckoutResponse, OrderCreate, OrderResponse, PaymentWebhook
from boxoffice.schemas.ticket import TicketResponse, TransferCreate, TransferResponse
from boxoffice.schemas.coupon import CouponCreate, CouponResponse

__all__ = [
    "EventCreate", "EventResponse", "EventListResponse", "TicketTypeCreate", "TicketTypeResponse",
    "OrderCreate", "OrderResponse", "CheckoutResponse", "PaymentWebhook",
    "TicketResponse", "TransferCreate", "TransferResponse",
    "CouponCreate", "CouponResponse",
]
