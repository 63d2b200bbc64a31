"""
Event catalog and organizer management endpoints.
The public catalog is cached in Redis; single-event reads are not.
Both reads first expire abandoned checkouts so their holds show as available.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.api.errors import FailureError, unwrap
from boxoffice.core.logging import get_logger
from boxoffice.core.security import Account, get_optional_account, get_organizer_account
from boxoffice.db.session import get_db
from boxoffice.domain.results import ErrorCode, Failure
from boxoffice.models.event import EVENT_DRAFT
from boxoffice.schemas.event import (
    ActiveUpdate,
    CapacityUpdate,
    CheckinStaffCreate,
    CheckinStaffResponse,
    EventCreate,
    EventListResponse,
    EventResponse,
    TicketTypeCreate,
    TicketTypeResponse,
)
from boxoffice.services import checkout_service, event_service
from boxoffice.services.cache_service import get_cached_catalog, invalidate_catalog, set_cached_catalog

logger = get_logger(__name__)
router = APIRouter(prefix="/events", tags=["Events"])
ticket_types_router = APIRouter(prefix="/ticket-types", tags=["Events"])


async def _release_abandoned_holds(db: AsyncSession, event_id: Optional[str] = None) -> None:
    expired = await checkout_service.expire_stale_orders(db, event_id=event_id)
    if expired:
        await invalidate_catalog()


@router.get("/", response_model=EventListResponse)
async def list_events_endpoint(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    upcoming_only: bool = Query(True),
    city: Optional[str] = Query(None, max_length=120),
    db: AsyncSession = Depends(get_db),
):
    """Published events with remaining availability. Cached; invalidated on inventory movement."""
    cached = await get_cached_catalog(page, page_size, upcoming_only, city)
    if cached:
        logger.info("catalog_cache_hit", page=page)
        cached["cached"] = True
        return EventListResponse(**cached)

    await _release_abandoned_holds(db)
    events, total = await event_service.list_events(db, page, page_size, upcoming_only, city)
    response = EventListResponse(
        events=[EventResponse.model_validate(e) for e in events],
        total=total,
        page=page,
        page_size=page_size,
    )
    await set_cached_catalog(page, page_size, upcoming_only, city, response.model_dump(mode="json"))
    return response


@router.get("/mine", response_model=list[EventResponse])
async def list_my_events_endpoint(
    organizer: Account = Depends(get_organizer_account),
    db: AsyncSession = Depends(get_db),
):
    """Every event of the calling organizer, drafts included."""
    return await event_service.list_organizer_events(db, organizer)


@router.get("/{event_id}", response_model=EventResponse)
async def get_event_endpoint(
    event_id: str,
    account: Optional[Account] = Depends(get_optional_account),
    db: AsyncSession = Depends(get_db),
):
    await _release_abandoned_holds(db, event_id)
    event = unwrap(await event_service.get_event(db, event_id))
    # Drafts are invisible to everyone but their organizer
    if event.status == EVENT_DRAFT and (account is None or not account.can_manage(event.organizer_id)):
        raise FailureError(Failure(ErrorCode.EVENT_NOT_FOUND, f"Event {event_id} not found", {"event_id": event_id}))
    return event


@router.post("/", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
async def create_event_endpoint(
    event_data: EventCreate,
    organizer: Account = Depends(get_organizer_account),
    db: AsyncSession = Depends(get_db),
):
    """Create a draft event. It enters the catalog once published."""
    return unwrap(await event_service.create_event(db, event_data, organizer))


@router.post("/{event_id}/publish", response_model=EventResponse)
async def publish_event_endpoint(
    event_id: str,
    organizer: Account = Depends(get_organizer_account),
    db: AsyncSession = Depends(get_db),
):
    event = unwrap(await event_service.publish_event(db, event_id, organizer))
    await invalidate_catalog()
    return event


@router.post("/{event_id}/cancel", response_model=EventResponse)
async def cancel_event_endpoint(
    event_id: str,
    organizer: Account = Depends(get_organizer_account),
    db: AsyncSession = Depends(get_db),
):
    event = unwrap(await event_service.cancel_event(db, event_id, organizer))
    await invalidate_catalog()
    return event


@router.delete("/{event_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_event_endpoint(
    event_id: str,
    organizer: Account = Depends(get_organizer_account),
    db: AsyncSession = Depends(get_db),
):
    """Only events that never sold or issued a ticket can be deleted."""
    unwrap(await event_service.delete_event(db, event_id, organizer))
    await invalidate_catalog()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{event_id}/ticket-types",
    response_model=TicketTypeResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_ticket_type_endpoint(
    event_id: str,
    data: TicketTypeCreate,
    organizer: Account = Depends(get_organizer_account),
    db: AsyncSession = Depends(get_db),
):
    ticket_type = unwrap(await event_service.create_ticket_type(db, event_id, data, organizer))
    await invalidate_catalog()
    return ticket_type


@ticket_types_router.patch("/{ticket_type_id}/capacity", response_model=TicketTypeResponse)
async def increase_capacity_endpoint(
    ticket_type_id: str,
    data: CapacityUpdate,
    organizer: Account = Depends(get_organizer_account),
    db: AsyncSession = Depends(get_db),
):
    """Capacity can only grow."""
    ticket_type = unwrap(
        await event_service.increase_capacity(db, ticket_type_id, data.quantity_available, organizer)
    )
    await invalidate_catalog()
    return ticket_type


@ticket_types_router.patch("/{ticket_type_id}/active", response_model=TicketTypeResponse)
async def set_ticket_type_active_endpoint(
    ticket_type_id: str,
    data: ActiveUpdate,
    organizer: Account = Depends(get_organizer_account),
    db: AsyncSession = Depends(get_db),
):
    ticket_type = unwrap(
        await event_service.set_ticket_type_active(db, ticket_type_id, data.is_active, organizer)
    )
    await invalidate_catalog()
    return ticket_type


@router.post(
    "/{event_id}/staff",
    response_model=CheckinStaffResponse,
    status_code=status.HTTP_201_CREATED,
)
async def assign_staff_endpoint(
    event_id: str,
    data: CheckinStaffCreate,
    organizer: Account = Depends(get_organizer_account),
    db: AsyncSession = Depends(get_db),
):
    """Let a staff account scan tickets at this event's door."""
    return unwrap(await event_service.assign_checkin_staff(db, event_id, data.email, organizer, name=data.name))


@router.get("/{event_id}/staff", response_model=list[CheckinStaffResponse])
async def list_staff_endpoint(
    event_id: str,
    organizer: Account = Depends(get_organizer_account),
    db: AsyncSession = Depends(get_db),
):
    return unwrap(await event_service.list_checkin_staff(db, event_id, organizer))


@router.patch("/{event_id}/staff/{staff_id}/active", response_model=CheckinStaffResponse)
async def set_staff_active_endpoint(
    event_id: str,
    staff_id: str,
    data: ActiveUpdate,
    organizer: Account = Depends(get_organizer_account),
    db: AsyncSession = Depends(get_db),
):
    return unwrap(await event_service.set_checkin_staff_active(db, event_id, staff_id, data.is_active, organizer))
