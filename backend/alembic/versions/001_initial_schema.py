"""Initial schema: events, ticket types, orders, reservations, tickets, transfers, coupons.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("organizer_id", sa.String(64), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("venue_name", sa.String(255), nullable=True),
        sa.Column("city", sa.String(120), nullable=True),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('draft', 'published', 'cancelled', 'completed')",
            name="check_event_status",
        ),
    )
    op.create_index("ix_events_organizer_id", "events", ["organizer_id"])
    # Catalog query: published events ordered by start
    op.create_index("ix_events_status_starts_at", "events", ["status", "starts_at"])

    op.create_table(
        "ticket_types",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("event_id", sa.String(36), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("description", sa.String(500), nullable=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("quantity_available", sa.Integer(), nullable=False),
        sa.Column("quantity_sold", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("quantity_held", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("max_per_order", sa.Integer(), nullable=False, server_default=sa.text("10")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("sales_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sales_end", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("price >= 0", name="check_ticket_type_price_non_negative"),
        sa.CheckConstraint("quantity_available >= 0", name="check_quantity_available_non_negative"),
        sa.CheckConstraint("quantity_sold >= 0", name="check_quantity_sold_non_negative"),
        sa.CheckConstraint("quantity_held >= 0", name="check_quantity_held_non_negative"),
        # Last line of defence against overselling
        sa.CheckConstraint(
            "quantity_sold + quantity_held <= quantity_available",
            name="check_ticket_type_not_oversold",
        ),
        sa.CheckConstraint("max_per_order > 0", name="check_max_per_order_positive"),
    )
    op.create_index("ix_ticket_types_event_id", "ticket_types", ["event_id"])

    op.create_table(
        "coupons",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("organizer_id", sa.String(64), nullable=False),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("discount_type", sa.String(20), nullable=False),
        sa.Column("discount_value", sa.Numeric(12, 2), nullable=False),
        sa.Column("event_id", sa.String(36), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=True),
        sa.Column("max_uses", sa.Integer(), nullable=True),
        sa.Column("used_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("min_purchase_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=True),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.UniqueConstraint("organizer_id", "code", name="uq_coupon_organizer_code"),
        sa.CheckConstraint("discount_type IN ('percentage', 'fixed')", name="check_coupon_discount_type"),
        sa.CheckConstraint("discount_value >= 0", name="check_coupon_value_non_negative"),
        sa.CheckConstraint("used_count >= 0", name="check_coupon_used_non_negative"),
        sa.CheckConstraint("max_uses IS NULL OR used_count <= max_uses", name="check_coupon_used_lte_max"),
    )
    op.create_index("ix_coupons_organizer_id", "coupons", ["organizer_id"])

    op.create_table(
        "orders",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("buyer_id", sa.String(64), nullable=True),
        sa.Column("buyer_email", sa.String(255), nullable=True),
        sa.Column("buyer_name", sa.String(255), nullable=True),
        sa.Column("event_id", sa.String(36), sa.ForeignKey("events.id"), nullable=False),
        sa.Column("coupon_id", sa.String(36), sa.ForeignKey("coupons.id"), nullable=True),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False),
        sa.Column("discount_amount", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("fee_amount", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("payment_provider", sa.String(40), nullable=True),
        sa.Column("payment_reference", sa.String(255), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_reason", sa.String(40), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('pending', 'paid', 'cancelled', 'refunded')",
            name="check_order_status",
        ),
        sa.CheckConstraint("total_amount >= 0", name="check_order_total_non_negative"),
        sa.CheckConstraint("discount_amount <= subtotal", name="check_order_discount_lte_subtotal"),
    )
    op.create_index("ix_orders_buyer_id", "orders", ["buyer_id"])
    op.create_index("ix_orders_event_id", "orders", ["event_id"])
    # Expiry sweep scans pending orders by deadline
    op.create_index("ix_orders_status_expires_at", "orders", ["status", "expires_at"])

    op.create_table(
        "order_lines",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("order_id", sa.String(36), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("ticket_type_id", sa.String(36), sa.ForeignKey("ticket_types.id"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("quantity > 0", name="check_order_line_quantity_positive"),
        sa.CheckConstraint("unit_price >= 0", name="check_order_line_price_non_negative"),
    )
    op.create_index("ix_order_lines_order_id", "order_lines", ["order_id"])

    op.create_table(
        "reservations",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("ticket_type_id", sa.String(36), sa.ForeignKey("ticket_types.id"), nullable=False),
        sa.Column("order_id", sa.String(36), sa.ForeignKey("orders.id"), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="held"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("quantity > 0", name="check_reservation_quantity_positive"),
        sa.CheckConstraint("status IN ('held', 'committed', 'released')", name="check_reservation_status"),
    )
    op.create_index("ix_reservations_ticket_type_id", "reservations", ["ticket_type_id"])
    op.create_index("ix_reservations_order_id", "reservations", ["order_id"])
    op.create_index("ix_reservations_status_expires_at", "reservations", ["status", "expires_at"])

    op.create_table(
        "tickets",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("order_line_id", sa.String(36), sa.ForeignKey("order_lines.id"), nullable=True),
        sa.Column("sequence_index", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("ticket_type_id", sa.String(36), sa.ForeignKey("ticket_types.id"), nullable=False),
        sa.Column("event_id", sa.String(36), sa.ForeignKey("events.id"), nullable=False),
        sa.Column("ticket_code", sa.String(32), nullable=False),
        sa.Column("holder_id", sa.String(64), nullable=True),
        sa.Column("attendee_name", sa.String(255), nullable=True),
        sa.Column("attendee_email", sa.String(255), nullable=True),
        sa.Column("is_used", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("checked_in_by", sa.String(64), nullable=True),
        sa.Column("transfer_status", sa.String(20), nullable=False, server_default="none"),
        sa.Column("is_complimentary", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
        sa.UniqueConstraint("ticket_code", name="uq_tickets_ticket_code"),
        # One ticket per purchased unit: re-running issuance cannot duplicate
        sa.UniqueConstraint("order_line_id", "sequence_index", name="uq_ticket_order_line_unit"),
        sa.CheckConstraint(
            "transfer_status IN ('none', 'pending', 'completed')",
            name="check_ticket_transfer_status",
        ),
    )
    op.create_index("ix_tickets_order_line_id", "tickets", ["order_line_id"])
    op.create_index("ix_tickets_event_id", "tickets", ["event_id"])
    op.create_index("ix_tickets_holder_id", "tickets", ["holder_id"])
    op.create_index("ix_tickets_event_used", "tickets", ["event_id", "is_used"])

    op.create_table(
        "ticket_transfers",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("ticket_id", sa.String(36), sa.ForeignKey("tickets.id"), nullable=False),
        sa.Column("from_account_id", sa.String(64), nullable=False),
        sa.Column("to_email", sa.String(255), nullable=False),
        sa.Column("to_account_id", sa.String(64), nullable=True),
        sa.Column("transfer_code", sa.String(32), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("transfer_code", name="uq_ticket_transfers_transfer_code"),
        sa.CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected', 'cancelled')",
            name="check_transfer_status",
        ),
    )
    op.create_index("ix_ticket_transfers_ticket_id", "ticket_transfers", ["ticket_id"])
    op.create_index("ix_ticket_transfers_from_account_id", "ticket_transfers", ["from_account_id"])
    op.create_index("ix_ticket_transfers_to_email", "ticket_transfers", ["to_email"])
    # At most one pending transfer per ticket
    op.create_index(
        "uq_transfer_one_pending_per_ticket",
        "ticket_transfers",
        ["ticket_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )


def downgrade() -> None:
    op.drop_table("ticket_transfers")
    op.drop_table("tickets")
    op.drop_table("reservations")
    op.drop_table("order_lines")
    op.drop_table("orders")
    op.drop_table("coupons")
    op.drop_table("ticket_types")
    op.drop_table("events")
