"""
Ticket issuer: mints uniquely coded tickets.

Issuance is keyed by (order_line_id, sequence_index): one ticket per purchased
unit, enforced by a unique constraint. Re-running issuance for an order only
fills units that are missing, so a retried payment confirmation can never
produce duplicates.
"""

import secrets
import string
from datetime import datetime
from typing import Optional

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.core.config import get_settings
from boxoffice.core.logging import get_logger
from boxoffice.core.metrics import ticket_code_collisions, tickets_issued
from boxoffice.core.security import Account
from boxoffice.db.base import utcnow
from boxoffice.domain.results import ErrorCode, Failure, Result, Success
from boxoffice.models.event import EventListing, TicketType
from boxoffice.models.order import Order
from boxoffice.models.ticket import Ticket
from boxoffice.services import inventory_ledger
from boxoffice.services.interfaces.notification import Notifier
from boxoffice.services.notifiers import notify_safely

logger = get_logger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits


class TicketCodeExhausted(RuntimeError):
    """Could not find an unused ticket code within the configured attempts."""


def generate_ticket_code(length: Optional[int] = None) -> str:
    length = length or get_settings().TICKET_CODE_LENGTH
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


async def code_exists(db: AsyncSession, code: str) -> bool:
    return bool(await db.scalar(select(exists().where(Ticket.ticket_code == code))))


async def _unit_exists(db: AsyncSession, order_line_id: str, sequence_index: int) -> bool:
    return bool(
        await db.scalar(
            select(
                exists().where(
                    Ticket.order_line_id == order_line_id,
                    Ticket.sequence_index == sequence_index,
                )
            )
        )
    )


async def _mint(db: AsyncSession, **fields) -> Optional[Ticket]:
    """
    Insert one ticket with a fresh code inside a savepoint.

    Returns None when the unit was minted concurrently by someone else
    (unique (order_line_id, sequence_index) violation).
    """
    settings = get_settings()
    for attempt in range(1, settings.TICKET_CODE_MAX_ATTEMPTS + 1):
        code = generate_ticket_code()
        if await code_exists(db, code):
            ticket_code_collisions.inc()
            continue

        ticket = Ticket(ticket_code=code, **fields)
        try:
            async with db.begin_nested():
                db.add(ticket)
        except IntegrityError:
            order_line_id = fields.get("order_line_id")
            if order_line_id is not None and await _unit_exists(db, order_line_id, fields["sequence_index"]):
                return None
            # Lost a race on the code itself
            ticket_code_collisions.inc()
            logger.warning("ticket_code_collision", attempt=attempt)
            continue
        return ticket

    raise TicketCodeExhausted(f"No unique ticket code after {settings.TICKET_CODE_MAX_ATTEMPTS} attempts")


async def issue_for_order(db: AsyncSession, order: Order) -> list[Ticket]:
    """
    Mint every missing ticket of a paid order; returns only the newly minted ones.
    The caller owns the transaction.
    """
    minted: list[Ticket] = []
    for line in order.lines:
        existing = await db.execute(
            select(Ticket.sequence_index).where(Ticket.order_line_id == line.id)
        )
        issued_indexes = set(existing.scalars().all())

        for sequence_index in range(line.quantity):
            if sequence_index in issued_indexes:
                continue
            ticket = await _mint(
                db,
                order_line_id=line.id,
                sequence_index=sequence_index,
                ticket_type_id=line.ticket_type_id,
                event_id=order.event_id,
                holder_id=order.buyer_id,
                attendee_name=order.buyer_name,
                attendee_email=order.buyer_email,
            )
            if ticket is not None:
                minted.append(ticket)

    if minted:
        tickets_issued.labels(kind="order").inc(len(minted))
        logger.info("tickets_issued", order_id=order.id, count=len(minted))
    return minted


async def issue_complimentary(
    db: AsyncSession,
    event_id: str,
    ticket_type_id: str,
    *,
    recipient_name: str,
    recipient_email: str,
    recipient_account_id: Optional[str] = None,
    quantity: int = 1,
    issued_by: Account,
    notifier: Notifier,
    now: Optional[datetime] = None,
) -> Result[list[Ticket]]:
    """
    Organizer-issued tickets outside of any order.

    Capacity still goes through the ledger (reserve + commit) so courtesy
    tickets count against the ticket type like sold ones.
    """
    settings = get_settings()
    now = now or utcnow()

    if quantity < 1 or quantity > settings.COMPLIMENTARY_MAX_QUANTITY:
        return Failure(
            ErrorCode.INVALID_QUANTITY,
            f"Complimentary quantity must be between 1 and {settings.COMPLIMENTARY_MAX_QUANTITY}",
            {"quantity": quantity},
        )

    event = await db.get(EventListing, event_id)
    if event is None:
        return Failure(ErrorCode.EVENT_NOT_FOUND, "Event not found", {"event_id": event_id})
    if not issued_by.can_manage(event.organizer_id):
        return Failure(ErrorCode.NOT_EVENT_ORGANIZER, "Only the event organizer can issue courtesy tickets")

    ticket_type = await db.get(TicketType, ticket_type_id)
    if ticket_type is None or ticket_type.event_id != event_id:
        return Failure(
            ErrorCode.TICKET_TYPE_NOT_FOUND,
            "Ticket type not found for this event",
            {"ticket_type_id": ticket_type_id},
        )

    reserved = await inventory_ledger.reserve(
        db, ticket_type_id, quantity, now=now, enforce_sales_rules=False
    )
    if not reserved.ok:
        await db.rollback()
        return reserved

    try:
        await inventory_ledger.commit(db, reserved.value.id)
        tickets = []
        for _ in range(quantity):
            ticket = await _mint(
                db,
                order_line_id=None,
                sequence_index=0,
                ticket_type_id=ticket_type_id,
                event_id=event_id,
                holder_id=recipient_account_id,
                attendee_name=recipient_name,
                attendee_email=recipient_email.lower(),
                is_complimentary=True,
            )
            tickets.append(ticket)
    except TicketCodeExhausted as e:
        await db.rollback()
        logger.error("complimentary_issue_failed", event_id=event_id, error=str(e))
        return Failure(ErrorCode.TICKET_CODE_EXHAUSTED, "Could not allocate ticket codes, try again")

    await db.commit()

    tickets_issued.labels(kind="complimentary").inc(len(tickets))
    logger.info(
        "complimentary_tickets_issued",
        event_id=event_id,
        ticket_type_id=ticket_type_id,
        count=len(tickets),
        issued_by=issued_by.id,
    )
    await notify_safely(
        notifier,
        "complimentary_issued",
        {
            "event_id": event_id,
            "event_title": event.title,
            "recipient_email": recipient_email.lower(),
            "recipient_name": recipient_name,
            "ticket_codes": [t.ticket_code for t in tickets],
        },
    )
    return Success(tickets)


async def tickets_held_by(db: AsyncSession, holder_id: str) -> list[Ticket]:
    result = await db.execute(
        select(Ticket)
        .where(Ticket.holder_id == holder_id)
        .order_by(Ticket.created_at.desc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())
