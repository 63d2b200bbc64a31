"""
Issued tickets and peer-to-peer transfers.

Key design decisions:
- Unique (order_line_id, sequence_index) makes issuance idempotent per unit
- is_used flips false -> true through one conditional UPDATE, never back
- A partial unique index allows at most one pending transfer per ticket
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship

from boxoffice.db.base import Base, TimestampMixin, UTCDateTime, new_id

TRANSFER_STATUS_NONE = "none"
TRANSFER_STATUS_PENDING = "pending"
TRANSFER_STATUS_COMPLETED = "completed"

TRANSFER_PENDING = "pending"
TRANSFER_ACCEPTED = "accepted"
TRANSFER_REJECTED = "rejected"
TRANSFER_CANCELLED = "cancelled"


class Ticket(Base, TimestampMixin):
    __tablename__ = "tickets"

    id = Column(String(36), primary_key=True, default=new_id)
    order_line_id = Column(String(36), ForeignKey("order_lines.id"), nullable=True, index=True)
    sequence_index = Column(Integer, nullable=False, default=0)
    ticket_type_id = Column(String(36), ForeignKey("ticket_types.id"), nullable=False)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False, index=True)
    ticket_code = Column(String(32), nullable=False, unique=True)
    holder_id = Column(String(64), nullable=True, index=True)
    attendee_name = Column(String(255), nullable=True)
    attendee_email = Column(String(255), nullable=True)
    is_used = Column(Boolean, nullable=False, default=False)
    used_at = Column(UTCDateTime(), nullable=True)
    checked_in_by = Column(String(64), nullable=True)
    transfer_status = Column(String(20), nullable=False, default=TRANSFER_STATUS_NONE)
    is_complimentary = Column(Boolean, nullable=False, default=False)

    ticket_type = relationship("TicketType", lazy="selectin")

    __table_args__ = (
        UniqueConstraint("order_line_id", "sequence_index", name="uq_ticket_order_line_unit"),
        CheckConstraint(
            "transfer_status IN ('none', 'pending', 'completed')",
            name="check_ticket_transfer_status",
        ),
        Index("ix_tickets_event_used", "event_id", "is_used"),
    )

    def __repr__(self) -> str:
        return f"<Ticket(id={self.id}, code={self.ticket_code}, used={self.is_used})>"


class TicketTransfer(Base, TimestampMixin):
    __tablename__ = "ticket_transfers"

    id = Column(String(36), primary_key=True, default=new_id)
    ticket_id = Column(String(36), ForeignKey("tickets.id"), nullable=False, index=True)
    from_account_id = Column(String(64), nullable=False, index=True)
    to_email = Column(String(255), nullable=False, index=True)
    to_account_id = Column(String(64), nullable=True)
    transfer_code = Column(String(32), nullable=False, unique=True)
    status = Column(String(20), nullable=False, default=TRANSFER_PENDING)
    completed_at = Column(UTCDateTime(), nullable=True)

    ticket = relationship("Ticket", lazy="selectin")

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected', 'cancelled')",
            name="check_transfer_status",
        ),
        Index(
            "uq_transfer_one_pending_per_ticket",
            "ticket_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    def __repr__(self) -> str:
        return f"<TicketTransfer(id={self.id}, ticket={self.ticket_id}, status={self.status})>"
