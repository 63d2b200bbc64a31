from boxoffice.models.coupon import Coupon
from boxoffice.models.event import CheckinStaff, EventListing, TicketType
from boxoffice.models.order import Order, OrderLine, Reservation
from boxoffice.models.ticket import Ticket, TicketTransfer

__all__ = [
    "Coupon",
    "CheckinStaff",
    "EventListing",
    "TicketType",
    "Order",
    "OrderLine",
    "Reservation",
    "Ticket",
    "TicketTransfer",
]
