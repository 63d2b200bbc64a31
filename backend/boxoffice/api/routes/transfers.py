"""
Ticket transfer endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.api.errors import FailureError, unwrap
from boxoffice.core.security import Account, get_current_account
from boxoffice.db.session import get_db
from boxoffice.domain.results import ErrorCode, Failure
from boxoffice.schemas.ticket import TransferAccept, TransferCreate, TransferResponse
from boxoffice.services import transfer_service
from boxoffice.services.collaborators import get_notifier
from boxoffice.services.interfaces.notification import Notifier

router = APIRouter(prefix="/transfers", tags=["Transfers"])


@router.post("/", response_model=TransferResponse, status_code=status.HTTP_201_CREATED)
async def initiate_transfer(
    data: TransferCreate,
    account: Account = Depends(get_current_account),
    notifier: Notifier = Depends(get_notifier),
    db: AsyncSession = Depends(get_db),
):
    """Offer a ticket to another person by email. The ticket is frozen until resolved."""
    return unwrap(
        await transfer_service.initiate(db, data.ticket_id, account, data.to_email, notifier=notifier)
    )


@router.get("/incoming", response_model=list[TransferResponse])
async def list_incoming_transfers(
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    return await transfer_service.list_incoming(db, account)


@router.get("/outgoing", response_model=list[TransferResponse])
async def list_outgoing_transfers(
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    return await transfer_service.list_outgoing(db, account)


@router.get("/code/{transfer_code}", response_model=TransferResponse)
async def get_transfer_by_code(
    transfer_code: str,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    """Look up a transfer from the code shared with the recipient."""
    transfer = await transfer_service.get_by_code(db, transfer_code)
    involved = transfer is not None and (
        account.email.lower() == transfer.to_email or account.id == transfer.from_account_id
    )
    if not involved:
        raise FailureError(Failure(ErrorCode.TRANSFER_NOT_FOUND, "Transfer not found"))
    return transfer


@router.post("/{transfer_id}/accept", response_model=TransferResponse)
async def accept_transfer(
    transfer_id: str,
    data: Optional[TransferAccept] = None,
    account: Account = Depends(get_current_account),
    notifier: Notifier = Depends(get_notifier),
    db: AsyncSession = Depends(get_db),
):
    return unwrap(
        await transfer_service.accept(
            db,
            transfer_id,
            account,
            attendee_name=data.attendee_name if data else None,
            notifier=notifier,
        )
    )


@router.post("/{transfer_id}/reject", response_model=TransferResponse)
async def reject_transfer(
    transfer_id: str,
    account: Account = Depends(get_current_account),
    notifier: Notifier = Depends(get_notifier),
    db: AsyncSession = Depends(get_db),
):
    return unwrap(await transfer_service.reject(db, transfer_id, account, notifier=notifier))


@router.post("/{transfer_id}/cancel", response_model=TransferResponse)
async def cancel_transfer(
    transfer_id: str,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    return unwrap(await transfer_service.cancel(db, transfer_id, account))
