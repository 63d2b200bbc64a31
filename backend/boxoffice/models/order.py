"""
Order aggregate and persisted inventory reservations.

Key design decisions:
- Line unit prices are snapshots taken at order time, never re-read live
- total_amount is computed once at creation and never recomputed
- A Reservation row is the soft-hold token; it survives process restarts and
  carries its own expiry so abandoned checkouts can be swept
"""

from sqlalchemy import CheckConstraint, Column, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import relationship

from boxoffice.db.base import Base, TimestampMixin, UTCDateTime, new_id

ORDER_PENDING = "pending"
ORDER_PAID = "paid"
ORDER_CANCELLED = "cancelled"
ORDER_REFUNDED = "refunded"

RESERVATION_HELD = "held"
RESERVATION_COMMITTED = "committed"
RESERVATION_RELEASED = "released"


class Order(Base, TimestampMixin):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=new_id)
    buyer_id = Column(String(64), nullable=True, index=True)
    buyer_email = Column(String(255), nullable=True)
    buyer_name = Column(String(255), nullable=True)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False, index=True)
    coupon_id = Column(String(36), ForeignKey("coupons.id"), nullable=True)
    subtotal = Column(Numeric(12, 2), nullable=False)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    fee_amount = Column(Numeric(12, 2), nullable=False, default=0)
    total_amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String(20), nullable=False, default=ORDER_PENDING)
    payment_provider = Column(String(40), nullable=True)
    payment_reference = Column(String(255), nullable=True)
    expires_at = Column(UTCDateTime(), nullable=False)
    paid_at = Column(UTCDateTime(), nullable=True)
    cancelled_at = Column(UTCDateTime(), nullable=True)
    cancel_reason = Column(String(40), nullable=True)

    lines = relationship(
        "OrderLine",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderLine.id",
    )
    reservations = relationship("Reservation", back_populates="order", lazy="selectin")

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'paid', 'cancelled', 'refunded')",
            name="check_order_status",
        ),
        CheckConstraint("total_amount >= 0", name="check_order_total_non_negative"),
        CheckConstraint("discount_amount <= subtotal", name="check_order_discount_lte_subtotal"),
        # Expiry sweep: pending orders ordered by deadline
        Index("ix_orders_status_expires_at", "status", "expires_at"),
    )

    @property
    def ticket_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    def __repr__(self) -> str:
        return f"<Order(id={self.id}, buyer={self.buyer_id}, status={self.status}, total={self.total_amount})>"


class OrderLine(Base, TimestampMixin):
    __tablename__ = "order_lines"

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    ticket_type_id = Column(String(36), ForeignKey("ticket_types.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)

    order = relationship("Order", back_populates="lines")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="check_order_line_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="check_order_line_price_non_negative"),
    )

    @property
    def line_total(self):
        return self.unit_price * self.quantity


class Reservation(Base, TimestampMixin):
    __tablename__ = "reservations"

    id = Column(String(36), primary_key=True, default=new_id)
    ticket_type_id = Column(String(36), ForeignKey("ticket_types.id"), nullable=False, index=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=True, index=True)
    quantity = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=RESERVATION_HELD)
    expires_at = Column(UTCDateTime(), nullable=False)

    order = relationship("Order", back_populates="reservations")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="check_reservation_quantity_positive"),
        CheckConstraint(
            "status IN ('held', 'committed', 'released')",
            name="check_reservation_status",
        ),
        Index("ix_reservations_status_expires_at", "status", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<Reservation(id={self.id}, type={self.ticket_type_id}, qty={self.quantity}, status={self.status})>"
