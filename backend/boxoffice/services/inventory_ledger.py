"""
Inventory ledger: the only writer of ticket type sold/held counters.

CONCURRENCY STRATEGY: Conditional UPDATE
========================================

Problem:
  Two buyers race for the last unit of a ticket type.
  Both read remaining=1, both write remaining=0, both succeed.
  Result: Overselling.

Solution:
  The capacity check and the increment are the same statement:

    UPDATE ticket_types
       SET quantity_held = quantity_held + :n
     WHERE id = :id
       AND is_active
       AND quantity_sold + quantity_held + :n <= quantity_available

  If rows_affected == 0 the unit is gone (or the type was deactivated in the
  meantime) and the caller gets OUT_OF_STOCK. No version column, no retry
  loop: the database serializes competing writers on the row and each one
  re-evaluates the WHERE clause against the committed counters.
  The CHECK constraint (sold + held <= available) is the final safety net.

Soft holds:
  A reservation moves capacity into quantity_held while the buyer is away at
  the payment provider. commit() moves it into quantity_sold; release() hands
  it back. Both flip the reservation status with a conditional UPDATE first,
  so a second commit or release of the same token is a no-op.

These functions do not commit; the caller owns the transaction.
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.core.config import get_settings
from boxoffice.core.logging import get_logger
from boxoffice.core.metrics import record_release, record_reservation
from boxoffice.db.base import utcnow
from boxoffice.domain.results import ErrorCode, Failure, Result, Success
from boxoffice.models.event import TicketType
from boxoffice.models.order import (
    ORDER_PENDING,
    RESERVATION_COMMITTED,
    RESERVATION_HELD,
    RESERVATION_RELEASED,
    Order,
    Reservation,
)

logger = get_logger(__name__)


async def get_ticket_type(db: AsyncSession, ticket_type_id: str) -> Optional[TicketType]:
    """Read a ticket type with fresh counters (bypasses the identity map)."""
    result = await db.execute(
        select(TicketType)
        .where(TicketType.id == ticket_type_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def check_sales_rules(ticket_type: TicketType, quantity: int, now: datetime) -> Optional[Failure]:
    """Static purchasability checks that do not depend on concurrent writers."""
    if not ticket_type.is_active:
        return Failure(
            ErrorCode.TICKET_TYPE_INACTIVE,
            f"Ticket type '{ticket_type.name}' is not on sale",
            {"ticket_type_id": ticket_type.id},
        )
    if not ticket_type.sales_open(now):
        return Failure(
            ErrorCode.SALES_WINDOW_CLOSED,
            f"Sales for '{ticket_type.name}' are closed",
            {
                "ticket_type_id": ticket_type.id,
                "sales_start": ticket_type.sales_start.isoformat() if ticket_type.sales_start else None,
                "sales_end": ticket_type.sales_end.isoformat() if ticket_type.sales_end else None,
            },
        )
    if quantity > ticket_type.max_per_order:
        return Failure(
            ErrorCode.ORDER_LIMIT_EXCEEDED,
            f"At most {ticket_type.max_per_order} tickets of '{ticket_type.name}' per order",
            {"ticket_type_id": ticket_type.id, "max_per_order": ticket_type.max_per_order},
        )
    return None


async def reserve(
    db: AsyncSession,
    ticket_type_id: str,
    quantity: int,
    *,
    order_id: Optional[str] = None,
    now: Optional[datetime] = None,
    enforce_sales_rules: bool = True,
) -> Result[Reservation]:
    """
    Place a soft hold of `quantity` units.

    The returned Reservation is the token for commit()/release(). With
    enforce_sales_rules=False (organizer complimentary issuance) the sales
    window and per-order limit are skipped; capacity never is.
    """
    now = now or utcnow()
    if quantity <= 0:
        return Failure(ErrorCode.INVALID_QUANTITY, "Quantity must be positive", {"quantity": quantity})

    ticket_type = await get_ticket_type(db, ticket_type_id)
    if ticket_type is None:
        record_reservation("not_found")
        return Failure(
            ErrorCode.TICKET_TYPE_NOT_FOUND,
            "Ticket type not found",
            {"ticket_type_id": ticket_type_id},
        )

    if enforce_sales_rules:
        failure = check_sales_rules(ticket_type, quantity, now)
        if failure is not None:
            record_reservation(failure.code.value.lower())
            return failure

    update_result = await db.execute(
        update(TicketType)
        .where(
            TicketType.id == ticket_type_id,
            TicketType.is_active.is_(True),
            TicketType.quantity_sold + TicketType.quantity_held + quantity <= TicketType.quantity_available,
        )
        .values(quantity_held=TicketType.quantity_held + quantity)
        .execution_options(synchronize_session=False)
    )

    if update_result.rowcount == 0:
        current = await get_ticket_type(db, ticket_type_id)
        if current is not None and not current.is_active:
            record_reservation("ticket_type_inactive")
            return Failure(
                ErrorCode.TICKET_TYPE_INACTIVE,
                f"Ticket type '{current.name}' is not on sale",
                {"ticket_type_id": ticket_type_id},
            )
        remaining = current.available_remaining if current is not None else 0
        logger.warning(
            "reservation_rejected_out_of_stock",
            ticket_type_id=ticket_type_id,
            requested=quantity,
            remaining=remaining,
        )
        record_reservation("out_of_stock")
        return Failure(
            ErrorCode.OUT_OF_STOCK,
            f"Not enough tickets left. Requested: {quantity}, Available: {max(remaining, 0)}",
            {"ticket_type_id": ticket_type_id, "requested": quantity, "available": max(remaining, 0)},
        )

    ttl = timedelta(minutes=get_settings().RESERVATION_TTL_MINUTES)
    reservation = Reservation(
        ticket_type_id=ticket_type_id,
        order_id=order_id,
        quantity=quantity,
        status=RESERVATION_HELD,
        expires_at=now + ttl,
    )
    db.add(reservation)
    await db.flush()

    record_reservation("reserved")
    logger.info(
        "reservation_held",
        reservation_id=reservation.id,
        ticket_type_id=ticket_type_id,
        quantity=quantity,
        order_id=order_id,
    )
    return Success(reservation)


async def _flip_status(db: AsyncSession, reservation_id: str, new_status: str) -> Optional[Reservation]:
    """held -> new_status; returns the reservation only if this call made the transition."""
    flipped = await db.execute(
        update(Reservation)
        .where(Reservation.id == reservation_id, Reservation.status == RESERVATION_HELD)
        .values(status=new_status, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if flipped.rowcount == 0:
        return None
    result = await db.execute(
        select(Reservation)
        .where(Reservation.id == reservation_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def commit(db: AsyncSession, reservation_id: str) -> bool:
    """
    Convert a soft hold into sold units.
    Returns False without side effects if the token was already committed or released.
    """
    reservation = await _flip_status(db, reservation_id, RESERVATION_COMMITTED)
    if reservation is None:
        logger.info("reservation_commit_noop", reservation_id=reservation_id)
        return False

    await db.execute(
        update(TicketType)
        .where(TicketType.id == reservation.ticket_type_id)
        .values(
            quantity_held=TicketType.quantity_held - reservation.quantity,
            quantity_sold=TicketType.quantity_sold + reservation.quantity,
        )
        .execution_options(synchronize_session=False)
    )
    logger.info(
        "reservation_committed",
        reservation_id=reservation_id,
        ticket_type_id=reservation.ticket_type_id,
        quantity=reservation.quantity,
    )
    return True


async def release(db: AsyncSession, reservation_id: str, reason: str = "cancelled") -> bool:
    """
    Return a soft hold to the pool.
    Safe to call on expired, released or committed tokens (no-op, returns False).
    """
    reservation = await _flip_status(db, reservation_id, RESERVATION_RELEASED)
    if reservation is None:
        return False

    await db.execute(
        update(TicketType)
        .where(TicketType.id == reservation.ticket_type_id)
        .values(quantity_held=TicketType.quantity_held - reservation.quantity)
        .execution_options(synchronize_session=False)
    )
    record_release(reason)
    logger.info(
        "reservation_released",
        reservation_id=reservation_id,
        ticket_type_id=reservation.ticket_type_id,
        quantity=reservation.quantity,
        reason=reason,
    )
    return True


async def release_expired(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """
    Release held reservations past their deadline that are not attached to a
    pending order. Order-bound holds are expired together with their order by
    the checkout service so the order and its holds change state together.
    """
    now = now or utcnow()
    pending_order_ids = select(Order.id).where(Order.status == ORDER_PENDING)
    result = await db.execute(
        select(Reservation.id).where(
            and_(
                Reservation.status == RESERVATION_HELD,
                Reservation.expires_at < now,
            ),
            (Reservation.order_id.is_(None)) | (Reservation.order_id.not_in(pending_order_ids)),
        )
    )
    released = 0
    for reservation_id in result.scalars().all():
        if await release(db, reservation_id, reason="expired"):
            released += 1
    return released
