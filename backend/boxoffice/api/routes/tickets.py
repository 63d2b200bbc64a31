"""
Ticket endpoints: holder wallet, door check-in and courtesy issuance.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.api.errors import FailureError, unwrap
from boxoffice.core.logging import get_logger
from boxoffice.core.security import Account, get_current_account, get_organizer_account
from boxoffice.db.session import get_db
from boxoffice.domain.results import ErrorCode, Failure
from boxoffice.models.event import EventListing
from boxoffice.schemas.ticket import (
    CheckInRequest,
    CheckInResponse,
    CheckInStatsResponse,
    ComplimentaryCreate,
    TicketResponse,
)
from boxoffice.services import checkin_service, event_service, ticket_issuer
from boxoffice.services.cache_service import invalidate_catalog
from boxoffice.services.collaborators import get_notifier
from boxoffice.services.interfaces.notification import Notifier

logger = get_logger(__name__)
router = APIRouter(prefix="/tickets", tags=["Tickets"])


async def _scannable_event(db: AsyncSession, event_id: str, account: Account) -> EventListing:
    """The organizer and staff assigned to this event may scan; nobody else."""
    event = unwrap(await event_service.get_event(db, event_id))
    assigned = await event_service.is_checkin_staff(db, event.id, account.email)
    if not account.can_scan(event.organizer_id, assigned_staff=assigned):
        logger.warning("scan_refused", event_id=event_id, account_id=account.id, role=account.role)
        raise FailureError(
            Failure(
                ErrorCode.NOT_CHECKIN_STAFF,
                "Not allowed to scan tickets for this event",
                {"event_id": event_id},
            )
        )
    return event


@router.get("/mine", response_model=list[TicketResponse])
async def list_my_tickets(
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    return await ticket_issuer.tickets_held_by(db, account.id)


@router.post("/check-in", response_model=CheckInResponse)
async def check_in_endpoint(
    data: CheckInRequest,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    """
    Admit a ticket at the door. A code is admitted exactly once; any later
    scan gets 409 ALREADY_USED with the original scan time.
    """
    await _scannable_event(db, data.event_id, account)
    receipt = unwrap(
        await checkin_service.check_in(db, data.ticket_code, data.event_id, staff_id=account.id)
    )
    return CheckInResponse.model_validate(receipt)


@router.get("/check-ins", response_model=list[TicketResponse])
async def list_check_ins(
    event_id: str = Query(...),
    limit: int = Query(50, ge=1, le=500),
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    await _scannable_event(db, event_id, account)
    return await checkin_service.list_checked_in(db, event_id, limit)


@router.get("/check-ins/stats", response_model=CheckInStatsResponse)
async def check_in_stats(
    event_id: str = Query(...),
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    await _scannable_event(db, event_id, account)
    return CheckInStatsResponse.model_validate(await checkin_service.checkin_stats(db, event_id))


@router.post("/complimentary", response_model=list[TicketResponse], status_code=status.HTTP_201_CREATED)
async def issue_complimentary_endpoint(
    data: ComplimentaryCreate,
    organizer: Account = Depends(get_organizer_account),
    notifier: Notifier = Depends(get_notifier),
    db: AsyncSession = Depends(get_db),
):
    """Courtesy tickets: no order, no payment, but they use up capacity."""
    tickets = unwrap(
        await ticket_issuer.issue_complimentary(
            db,
            data.event_id,
            data.ticket_type_id,
            recipient_name=data.recipient_name,
            recipient_email=data.recipient_email,
            recipient_account_id=data.recipient_account_id,
            quantity=data.quantity,
            issued_by=organizer,
            notifier=notifier,
        )
    )
    await invalidate_catalog()
    return tickets
