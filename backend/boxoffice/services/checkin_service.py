"""
Door check-in.

A ticket goes unused -> used exactly once. The flip is a single conditional
UPDATE (`... WHERE is_used = false`), so two scanners reading the same code
at the same moment cannot both admit it: one UPDATE matches the row, the
other matches nothing and is reported as ALREADY_USED with the original
scan time.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.core.logging import get_logger
from boxoffice.core.metrics import record_checkin
from boxoffice.db.base import utcnow
from boxoffice.domain.results import ErrorCode, Failure, Result, Success
from boxoffice.models.ticket import TRANSFER_STATUS_PENDING, Ticket

logger = get_logger(__name__)


@dataclass(frozen=True)
class CheckInReceipt:
    ticket_id: str
    ticket_code: str
    event_id: str
    ticket_type_name: str
    attendee_name: Optional[str]
    attendee_email: Optional[str]
    used_at: datetime
    is_complimentary: bool


@dataclass(frozen=True)
class CheckInStats:
    event_id: str
    issued: int
    checked_in: int

    @property
    def remaining(self) -> int:
        return self.issued - self.checked_in


def normalize_ticket_code(code: str) -> str:
    return code.strip().upper()


async def _find_ticket(db: AsyncSession, code: str, event_id: str) -> Optional[Ticket]:
    result = await db.execute(
        select(Ticket)
        .where(Ticket.ticket_code == code, Ticket.event_id == event_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def check_in(
    db: AsyncSession,
    ticket_code: str,
    event_id: str,
    *,
    staff_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Result[CheckInReceipt]:
    now = now or utcnow()
    code = normalize_ticket_code(ticket_code)

    admitted = await db.execute(
        update(Ticket)
        .where(
            Ticket.ticket_code == code,
            Ticket.event_id == event_id,
            Ticket.is_used.is_(False),
            Ticket.transfer_status != TRANSFER_STATUS_PENDING,
        )
        .values(is_used=True, used_at=now, checked_in_by=staff_id, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    ticket = await _find_ticket(db, code, event_id)

    if admitted.rowcount == 1:
        record_checkin("admitted")
        logger.info("checkin_admitted", ticket_id=ticket.id, event_id=event_id, staff_id=staff_id)
        return Success(
            CheckInReceipt(
                ticket_id=ticket.id,
                ticket_code=ticket.ticket_code,
                event_id=event_id,
                ticket_type_name=ticket.ticket_type.name,
                attendee_name=ticket.attendee_name,
                attendee_email=ticket.attendee_email,
                used_at=ticket.used_at,
                is_complimentary=ticket.is_complimentary,
            )
        )

    if ticket is None:
        record_checkin("not_found")
        logger.warning("checkin_rejected", reason="not_found", event_id=event_id)
        return Failure(ErrorCode.TICKET_NOT_FOUND, "Ticket not found for this event", {"ticket_code": code})

    if ticket.is_used:
        record_checkin("already_used")
        logger.warning(
            "checkin_rejected",
            reason="already_used",
            ticket_id=ticket.id,
            event_id=event_id,
            used_at=ticket.used_at.isoformat() if ticket.used_at else None,
        )
        return Failure(
            ErrorCode.ALREADY_USED,
            "Ticket was already used",
            {
                "ticket_code": code,
                "used_at": ticket.used_at.isoformat() if ticket.used_at else None,
                "attendee_name": ticket.attendee_name,
            },
        )

    record_checkin("transfer_pending")
    logger.warning("checkin_rejected", reason="transfer_pending", ticket_id=ticket.id, event_id=event_id)
    return Failure(
        ErrorCode.TRANSFER_PENDING,
        "Ticket has a pending transfer and cannot be used until it is resolved",
        {"ticket_code": code},
    )


async def list_checked_in(db: AsyncSession, event_id: str, limit: int = 50) -> list[Ticket]:
    """Most recent admissions first."""
    result = await db.execute(
        select(Ticket)
        .where(Ticket.event_id == event_id, Ticket.is_used.is_(True))
        .order_by(Ticket.used_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def checkin_stats(db: AsyncSession, event_id: str) -> CheckInStats:
    issued = await db.scalar(select(func.count()).select_from(Ticket).where(Ticket.event_id == event_id))
    checked_in = await db.scalar(
        select(func.count()).select_from(Ticket).where(Ticket.event_id == event_id, Ticket.is_used.is_(True))
    )
    return CheckInStats(event_id=event_id, issued=issued or 0, checked_in=checked_in or 0)
