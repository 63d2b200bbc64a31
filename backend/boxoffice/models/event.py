"""
Event listing and ticket type models with inventory tracking.

Key design decisions:
- `quantity_sold` and `quantity_held` are denormalized counters on the ticket
  type, written only by the inventory ledger through conditional UPDATEs
- CHECK constraints are the final safety net against overselling
- Money is NUMERIC, never float
- Door staff are scoped to a single event through checkin_staff rows
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from boxoffice.db.base import Base, TimestampMixin, UTCDateTime, new_id

EVENT_DRAFT = "draft"
EVENT_PUBLISHED = "published"
EVENT_CANCELLED = "cancelled"
EVENT_COMPLETED = "completed"
EVENT_STATUSES = (EVENT_DRAFT, EVENT_PUBLISHED, EVENT_CANCELLED, EVENT_COMPLETED)


class EventListing(Base, TimestampMixin):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=new_id)
    organizer_id = Column(String(64), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    venue_name = Column(String(255), nullable=True)
    city = Column(String(120), nullable=True)
    starts_at = Column(UTCDateTime(), nullable=False)
    ends_at = Column(UTCDateTime(), nullable=True)
    status = Column(String(20), nullable=False, default=EVENT_DRAFT)

    ticket_types = relationship(
        "TicketType",
        back_populates="event",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="TicketType.price",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'published', 'cancelled', 'completed')",
            name="check_event_status",
        ),
        Index("ix_events_status_starts_at", "status", "starts_at"),
    )

    def __repr__(self) -> str:
        return f"<EventListing(id={self.id}, title={self.title}, status={self.status})>"


class TicketType(Base, TimestampMixin):
    __tablename__ = "ticket_types"

    id = Column(String(36), primary_key=True, default=new_id)
    event_id = Column(String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(120), nullable=False)
    description = Column(String(500), nullable=True)
    price = Column(Numeric(12, 2), nullable=False)
    quantity_available = Column(Integer, nullable=False)
    quantity_sold = Column(Integer, nullable=False, default=0)
    quantity_held = Column(Integer, nullable=False, default=0)
    max_per_order = Column(Integer, nullable=False, default=10)
    is_active = Column(Boolean, nullable=False, default=True)
    sales_start = Column(UTCDateTime(), nullable=True)
    sales_end = Column(UTCDateTime(), nullable=True)

    event = relationship("EventListing", back_populates="ticket_types")

    __table_args__ = (
        CheckConstraint("price >= 0", name="check_ticket_type_price_non_negative"),
        CheckConstraint("quantity_available >= 0", name="check_quantity_available_non_negative"),
        CheckConstraint("quantity_sold >= 0", name="check_quantity_sold_non_negative"),
        CheckConstraint("quantity_held >= 0", name="check_quantity_held_non_negative"),
        CheckConstraint(
            "quantity_sold + quantity_held <= quantity_available",
            name="check_ticket_type_not_oversold",
        ),
        CheckConstraint("max_per_order > 0", name="check_max_per_order_positive"),
    )

    @property
    def available_remaining(self) -> int:
        return self.quantity_available - self.quantity_sold - self.quantity_held

    def sales_open(self, now) -> bool:
        if self.sales_start is not None and now < self.sales_start:
            return False
        if self.sales_end is not None and now > self.sales_end:
            return False
        return True

    def __repr__(self) -> str:
        return (
            f"<TicketType(id={self.id}, name={self.name}, "
            f"sold={self.quantity_sold}, held={self.quantity_held}/{self.quantity_available})>"
        )


class CheckinStaff(Base, TimestampMixin):
    """Door staff assigned by the organizer to scan tickets for one event."""

    __tablename__ = "checkin_staff"

    id = Column(String(36), primary_key=True, default=new_id)
    event_id = Column(String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String(255), nullable=False)
    name = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("event_id", "email", name="uq_checkin_staff_event_email"),
    )

    def __repr__(self) -> str:
        return f"<CheckinStaff(event={self.event_id}, email={self.email}, active={self.is_active})>"
