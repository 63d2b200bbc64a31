"""
Peer-to-peer ticket transfers.

TRANSFER STATE MACHINE
======================

    ticket.transfer_status:  none --initiate--> pending --accept--> completed
                                                pending --reject/cancel--> none

    transfer.status:         pending --> accepted | rejected | cancelled

Rules:
- Only the current holder can transfer, only while the ticket is unused and
  not closer than TRANSFER_CUTOFF_HOURS to the event start.
- A ticket received through a transfer (transfer_status = completed) cannot
  be transferred again; this bounds transfer chains.
- At most one pending transfer per ticket: the ticket flip none -> pending is
  a conditional UPDATE and a partial unique index backs it up.
- accept/reject/cancel are conditional UPDATEs on `status = 'pending'`;
  whichever lands first wins and the other gets TRANSFER_ALREADY_RESOLVED.
- accept changes the transfer row and the ticket holder in the same
  transaction: there is no committed state where only one of them moved.
"""

import secrets
import string
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import exists, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.core.config import get_settings
from boxoffice.core.logging import get_logger
from boxoffice.core.metrics import record_transfer
from boxoffice.core.security import Account
from boxoffice.db.base import utcnow
from boxoffice.domain.results import ErrorCode, Failure, Result, Success
from boxoffice.models.event import EventListing
from boxoffice.models.ticket import (
    TRANSFER_ACCEPTED,
    TRANSFER_CANCELLED,
    TRANSFER_PENDING,
    TRANSFER_REJECTED,
    TRANSFER_STATUS_COMPLETED,
    TRANSFER_STATUS_NONE,
    TRANSFER_STATUS_PENDING,
    Ticket,
    TicketTransfer,
)
from boxoffice.services.interfaces.notification import Notifier
from boxoffice.services.notifiers import notify_safely

logger = get_logger(__name__)

_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_transfer_code() -> str:
    return "".join(secrets.choice(_CODE_ALPHABET) for _ in range(get_settings().TRANSFER_CODE_LENGTH))


class TransferCodeExhausted(RuntimeError):
    pass


async def _code_taken(db: AsyncSession, code: str) -> bool:
    return bool(await db.scalar(select(exists().where(TicketTransfer.transfer_code == code))))


async def _pending_exists(db: AsyncSession, ticket_id: str) -> bool:
    return bool(
        await db.scalar(
            select(
                exists().where(
                    TicketTransfer.ticket_id == ticket_id,
                    TicketTransfer.status == TRANSFER_PENDING,
                )
            )
        )
    )


async def _insert_transfer(db: AsyncSession, **fields) -> Optional[TicketTransfer]:
    """
    Insert a pending transfer with a fresh code inside a savepoint.

    Returns None when the ticket already has a pending transfer (partial
    unique index); a collision on the code itself is retried with a new one.
    """
    attempts = get_settings().TICKET_CODE_MAX_ATTEMPTS
    for attempt in range(1, attempts + 1):
        code = generate_transfer_code()
        if await _code_taken(db, code):
            continue

        transfer = TicketTransfer(transfer_code=code, **fields)
        try:
            async with db.begin_nested():
                db.add(transfer)
        except IntegrityError:
            if await _pending_exists(db, fields["ticket_id"]):
                return None
            logger.warning("transfer_code_collision", attempt=attempt)
            continue
        return transfer

    raise TransferCodeExhausted(f"No unique transfer code after {attempts} attempts")


async def get_transfer(db: AsyncSession, transfer_id: str) -> Optional[TicketTransfer]:
    result = await db.execute(
        select(TicketTransfer)
        .where(TicketTransfer.id == transfer_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_by_code(db: AsyncSession, transfer_code: str) -> Optional[TicketTransfer]:
    result = await db.execute(
        select(TicketTransfer).where(TicketTransfer.transfer_code == transfer_code.strip().upper())
    )
    return result.scalar_one_or_none()


async def _get_ticket(db: AsyncSession, ticket_id: str) -> Optional[Ticket]:
    result = await db.execute(
        select(Ticket).where(Ticket.id == ticket_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def _ticket_blocker(ticket: Ticket, from_account: Account) -> Optional[Failure]:
    if ticket.holder_id != from_account.id:
        return Failure(ErrorCode.NOT_TICKET_HOLDER, "You do not hold this ticket")
    if ticket.is_used:
        return Failure(ErrorCode.ALREADY_USED, "Used tickets cannot be transferred")
    if ticket.transfer_status == TRANSFER_STATUS_PENDING:
        return Failure(ErrorCode.TRANSFER_ALREADY_PENDING, "This ticket already has a pending transfer")
    if ticket.transfer_status == TRANSFER_STATUS_COMPLETED:
        return Failure(
            ErrorCode.TRANSFER_OF_RECEIVED_TICKET,
            "Tickets received through a transfer cannot be transferred again",
        )
    return None


async def initiate(
    db: AsyncSession,
    ticket_id: str,
    from_account: Account,
    to_email: str,
    *,
    notifier: Notifier,
    now: Optional[datetime] = None,
) -> Result[TicketTransfer]:
    settings = get_settings()
    now = now or utcnow()
    to_email = to_email.strip().lower()

    ticket = await _get_ticket(db, ticket_id)
    if ticket is None:
        return Failure(ErrorCode.TICKET_NOT_FOUND, "Ticket not found", {"ticket_id": ticket_id})

    blocker = _ticket_blocker(ticket, from_account)
    if blocker is not None:
        return blocker

    if to_email == from_account.email.lower():
        return Failure(ErrorCode.SELF_TRANSFER, "You cannot transfer a ticket to yourself")

    event = await db.get(EventListing, ticket.event_id)
    cutoff = timedelta(hours=settings.TRANSFER_CUTOFF_HOURS)
    if event is not None and event.starts_at - now < cutoff:
        return Failure(
            ErrorCode.TRANSFER_WINDOW_CLOSED,
            f"Transfers close {settings.TRANSFER_CUTOFF_HOURS} hours before the event",
            {"starts_at": event.starts_at.isoformat()},
        )

    flipped = await db.execute(
        update(Ticket)
        .where(
            Ticket.id == ticket_id,
            Ticket.holder_id == from_account.id,
            Ticket.is_used.is_(False),
            Ticket.transfer_status == TRANSFER_STATUS_NONE,
        )
        .values(transfer_status=TRANSFER_STATUS_PENDING, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if flipped.rowcount == 0:
        # State moved between our read and the update (scan, parallel transfer)
        await db.rollback()
        ticket = await _get_ticket(db, ticket_id)
        blocker = _ticket_blocker(ticket, from_account) if ticket is not None else None
        return blocker or Failure(ErrorCode.TRANSFER_ALREADY_PENDING, "This ticket already has a pending transfer")

    try:
        transfer = await _insert_transfer(
            db,
            ticket_id=ticket_id,
            from_account_id=from_account.id,
            to_email=to_email,
            status=TRANSFER_PENDING,
        )
    except TransferCodeExhausted as e:
        await db.rollback()
        logger.error("transfer_code_exhausted", ticket_id=ticket_id, error=str(e))
        return Failure(ErrorCode.TRANSFER_CODE_EXHAUSTED, "Could not allocate a transfer code, try again")
    if transfer is None:
        await db.rollback()
        logger.warning("transfer_initiate_conflict", ticket_id=ticket_id)
        return Failure(ErrorCode.TRANSFER_ALREADY_PENDING, "This ticket already has a pending transfer")
    await db.commit()

    record_transfer("initiated")
    logger.info(
        "transfer_initiated",
        transfer_id=transfer.id,
        ticket_id=ticket_id,
        from_account_id=from_account.id,
    )
    await notify_safely(
        notifier,
        "transfer_initiated",
        {
            "transfer_id": transfer.id,
            "transfer_code": transfer.transfer_code,
            "to_email": to_email,
            "from_email": from_account.email,
            "event_title": event.title if event is not None else None,
        },
    )
    return Success(transfer)


async def _resolved_failure(db: AsyncSession, transfer_id: str) -> Failure:
    transfer = await get_transfer(db, transfer_id)
    if transfer is None:
        return Failure(ErrorCode.TRANSFER_NOT_FOUND, "Transfer not found", {"transfer_id": transfer_id})
    return Failure(
        ErrorCode.TRANSFER_ALREADY_RESOLVED,
        f"Transfer was already {transfer.status}",
        {"transfer_id": transfer_id, "status": transfer.status},
    )


async def accept(
    db: AsyncSession,
    transfer_id: str,
    account: Account,
    *,
    attendee_name: Optional[str] = None,
    notifier: Notifier,
    now: Optional[datetime] = None,
) -> Result[TicketTransfer]:
    now = now or utcnow()

    transfer = await get_transfer(db, transfer_id)
    if transfer is None:
        return Failure(ErrorCode.TRANSFER_NOT_FOUND, "Transfer not found", {"transfer_id": transfer_id})
    if account.email.lower() != transfer.to_email:
        return Failure(ErrorCode.RECIPIENT_MISMATCH, "This transfer was sent to another account")

    resolved = await db.execute(
        update(TicketTransfer)
        .where(TicketTransfer.id == transfer_id, TicketTransfer.status == TRANSFER_PENDING)
        .values(status=TRANSFER_ACCEPTED, to_account_id=account.id, completed_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if resolved.rowcount == 0:
        await db.rollback()
        return await _resolved_failure(db, transfer_id)

    ticket_id = transfer.ticket_id
    moved = await db.execute(
        update(Ticket)
        .where(Ticket.id == ticket_id, Ticket.transfer_status == TRANSFER_STATUS_PENDING)
        .values(
            holder_id=account.id,
            attendee_email=account.email.lower(),
            attendee_name=attendee_name,
            transfer_status=TRANSFER_STATUS_COMPLETED,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if moved.rowcount == 0:
        await db.rollback()
        logger.error("transfer_ticket_state_mismatch", transfer_id=transfer_id, ticket_id=ticket_id)
        return Failure(
            ErrorCode.TRANSFER_ALREADY_RESOLVED,
            "Ticket is no longer awaiting this transfer",
            {"transfer_id": transfer_id},
        )

    await db.commit()
    transfer = await get_transfer(db, transfer_id)

    record_transfer("accepted")
    logger.info(
        "transfer_accepted",
        transfer_id=transfer_id,
        ticket_id=transfer.ticket_id,
        to_account_id=account.id,
    )
    await notify_safely(
        notifier,
        "transfer_accepted",
        {
            "transfer_id": transfer_id,
            "from_account_id": transfer.from_account_id,
            "to_email": transfer.to_email,
            "ticket_code": transfer.ticket.ticket_code,
        },
    )
    return Success(transfer)


async def _close(
    db: AsyncSession,
    transfer: TicketTransfer,
    new_status: str,
    now: datetime,
) -> Result[TicketTransfer]:
    """pending -> rejected/cancelled; ownership stays with the sender."""
    transfer_id, ticket_id = transfer.id, transfer.ticket_id
    resolved = await db.execute(
        update(TicketTransfer)
        .where(TicketTransfer.id == transfer_id, TicketTransfer.status == TRANSFER_PENDING)
        .values(status=new_status, completed_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if resolved.rowcount == 0:
        await db.rollback()
        return await _resolved_failure(db, transfer_id)

    await db.execute(
        update(Ticket)
        .where(Ticket.id == ticket_id, Ticket.transfer_status == TRANSFER_STATUS_PENDING)
        .values(transfer_status=TRANSFER_STATUS_NONE, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return Success(await get_transfer(db, transfer_id))


async def reject(
    db: AsyncSession,
    transfer_id: str,
    account: Account,
    *,
    notifier: Notifier,
    now: Optional[datetime] = None,
) -> Result[TicketTransfer]:
    now = now or utcnow()
    transfer = await get_transfer(db, transfer_id)
    if transfer is None:
        return Failure(ErrorCode.TRANSFER_NOT_FOUND, "Transfer not found", {"transfer_id": transfer_id})
    if account.email.lower() != transfer.to_email:
        return Failure(ErrorCode.RECIPIENT_MISMATCH, "This transfer was sent to another account")

    result = await _close(db, transfer, TRANSFER_REJECTED, now)
    if result.ok:
        record_transfer("rejected")
        logger.info("transfer_rejected", transfer_id=transfer_id, ticket_id=transfer.ticket_id)
        await notify_safely(
            notifier,
            "transfer_rejected",
            {"transfer_id": transfer_id, "from_account_id": transfer.from_account_id},
        )
    return result


async def cancel(
    db: AsyncSession,
    transfer_id: str,
    account: Account,
    *,
    now: Optional[datetime] = None,
) -> Result[TicketTransfer]:
    """Sender withdraws a transfer that has not been accepted yet."""
    now = now or utcnow()
    transfer = await get_transfer(db, transfer_id)
    if transfer is None:
        return Failure(ErrorCode.TRANSFER_NOT_FOUND, "Transfer not found", {"transfer_id": transfer_id})
    if transfer.from_account_id != account.id:
        return Failure(ErrorCode.NOT_TRANSFER_SENDER, "Only the sender can cancel a transfer")

    result = await _close(db, transfer, TRANSFER_CANCELLED, now)
    if result.ok:
        record_transfer("cancelled")
        logger.info("transfer_cancelled", transfer_id=transfer_id, ticket_id=transfer.ticket_id)
    return result


async def list_incoming(db: AsyncSession, account: Account) -> list[TicketTransfer]:
    result = await db.execute(
        select(TicketTransfer)
        .where(TicketTransfer.to_email == account.email.lower(), TicketTransfer.status == TRANSFER_PENDING)
        .order_by(TicketTransfer.created_at.desc())
    )
    return list(result.scalars().all())


async def list_outgoing(db: AsyncSession, account: Account) -> list[TicketTransfer]:
    result = await db.execute(
        select(TicketTransfer)
        .where(TicketTransfer.from_account_id == account.id)
        .order_by(TicketTransfer.created_at.desc())
    )
    return list(result.scalars().all())
