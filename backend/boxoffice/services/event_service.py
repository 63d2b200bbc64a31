"""
Organizer-side event and ticket type management.

Ticket type counters (sold/held) are never touched here; only the inventory
ledger moves them. Capacity changes go through a conditional UPDATE so a
concurrent sale can never leave quantity_available below what is already
sold or held.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import exists, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.core.logging import get_logger
from boxoffice.core.security import Account
from boxoffice.db.base import utcnow
from boxoffice.domain.results import ErrorCode, Failure, Result, Success
from boxoffice.models.event import (
    EVENT_CANCELLED,
    EVENT_DRAFT,
    EVENT_PUBLISHED,
    CheckinStaff,
    EventListing,
    TicketType,
)
from boxoffice.models.order import Order
from boxoffice.models.ticket import Ticket
from boxoffice.schemas.event import EventCreate, TicketTypeCreate
from boxoffice.services import inventory_ledger

logger = get_logger(__name__)

# Allowed organizer-driven status changes
_TRANSITIONS = {
    EVENT_DRAFT: {EVENT_PUBLISHED, EVENT_CANCELLED},
    EVENT_PUBLISHED: {EVENT_CANCELLED},
}


async def get_event(db: AsyncSession, event_id: str) -> Result[EventListing]:
    result = await db.execute(
        select(EventListing)
        .where(EventListing.id == event_id)
        .execution_options(populate_existing=True)
    )
    event = result.scalar_one_or_none()
    if event is None:
        return Failure(ErrorCode.EVENT_NOT_FOUND, f"Event {event_id} not found", {"event_id": event_id})
    return Success(event)


async def _managed_event(db: AsyncSession, event_id: str, organizer: Account) -> Result[EventListing]:
    found = await get_event(db, event_id)
    if found.ok and not organizer.can_manage(found.value.organizer_id):
        return Failure(ErrorCode.NOT_EVENT_ORGANIZER, "Only the event organizer can do this", {"event_id": event_id})
    return found


async def create_event(
    db: AsyncSession,
    data: EventCreate,
    organizer: Account,
    now: Optional[datetime] = None,
) -> Result[EventListing]:
    """Create a draft event, optionally with its initial ticket types."""
    now = now or utcnow()
    if data.starts_at <= now:
        return Failure(ErrorCode.INVALID_EVENT_DATES, "Event start must be in the future")

    event = EventListing(
        organizer_id=organizer.id,
        title=data.title,
        description=data.description,
        venue_name=data.venue_name,
        city=data.city,
        starts_at=data.starts_at,
        ends_at=data.ends_at,
        status=EVENT_DRAFT,
        ticket_types=[_build_ticket_type(tt) for tt in data.ticket_types],
    )
    db.add(event)
    await db.commit()

    created = await get_event(db, event.id)
    logger.info(
        "event_created",
        event_id=event.id,
        title=data.title,
        organizer_id=organizer.id,
        ticket_types=len(data.ticket_types),
    )
    return created


async def list_events(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    upcoming_only: bool = True,
    city: Optional[str] = None,
    now: Optional[datetime] = None,
) -> tuple[list[EventListing], int]:
    """
    Published events, soonest first.
    Uses the ix_events_status_starts_at composite index.
    """
    query = select(EventListing).where(EventListing.status == EVENT_PUBLISHED)
    if upcoming_only:
        query = query.where(EventListing.starts_at >= (now or utcnow()))
    if city:
        query = query.where(func.lower(EventListing.city) == city.lower())

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar()

    result = await db.execute(
        query
        .order_by(EventListing.starts_at.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars().all()), total


async def list_organizer_events(db: AsyncSession, organizer: Account) -> list[EventListing]:
    result = await db.execute(
        select(EventListing)
        .where(EventListing.organizer_id == organizer.id)
        .order_by(EventListing.starts_at.asc())
    )
    return list(result.scalars().all())


async def _change_status(db: AsyncSession, event_id: str, target: str, organizer: Account) -> Result[EventListing]:
    found = await _managed_event(db, event_id, organizer)
    if not found.ok:
        return found
    current = found.value.status

    if target not in _TRANSITIONS.get(current, set()):
        return Failure(
            ErrorCode.INVALID_STATUS_TRANSITION,
            f"Cannot move event from {current} to {target}",
            {"event_id": event_id, "status": current},
        )

    changed = await db.execute(
        update(EventListing)
        .where(EventListing.id == event_id, EventListing.status == current)
        .values(status=target, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if changed.rowcount == 0:
        await db.rollback()
        return Failure(
            ErrorCode.INVALID_STATUS_TRANSITION,
            "Event status changed concurrently, reload and retry",
            {"event_id": event_id},
        )
    await db.commit()

    logger.info("event_status_changed", event_id=event_id, from_status=current, to_status=target)
    return await get_event(db, event_id)


async def publish_event(db: AsyncSession, event_id: str, organizer: Account) -> Result[EventListing]:
    found = await _managed_event(db, event_id, organizer)
    if not found.ok:
        return found
    if found.value.status == EVENT_DRAFT and not any(tt.is_active for tt in found.value.ticket_types):
        return Failure(
            ErrorCode.INVALID_STATUS_TRANSITION,
            "An event needs at least one active ticket type before publishing",
            {"event_id": event_id},
        )
    return await _change_status(db, event_id, EVENT_PUBLISHED, organizer)


async def cancel_event(db: AsyncSession, event_id: str, organizer: Account) -> Result[EventListing]:
    """New orders stop immediately; pending ones run out through the expiry sweep."""
    return await _change_status(db, event_id, EVENT_CANCELLED, organizer)


async def delete_event(db: AsyncSession, event_id: str, organizer: Account) -> Result[str]:
    """Hard delete, only for events that never took an order or issued a ticket."""
    found = await _managed_event(db, event_id, organizer)
    if not found.ok:
        return found

    has_orders = await db.scalar(select(exists().where(Order.event_id == event_id)))
    has_tickets = await db.scalar(select(exists().where(Ticket.event_id == event_id)))
    if has_orders or has_tickets:
        return Failure(
            ErrorCode.EVENT_HAS_SALES,
            "Event has orders or tickets; cancel it instead",
            {"event_id": event_id},
        )

    await db.delete(found.value)
    await db.commit()
    logger.info("event_deleted", event_id=event_id, organizer_id=organizer.id)
    return Success(event_id)


def _build_ticket_type(data: TicketTypeCreate) -> TicketType:
    return TicketType(
        name=data.name,
        description=data.description,
        price=data.price,
        quantity_available=data.quantity_available,
        quantity_sold=0,
        quantity_held=0,
        max_per_order=data.max_per_order,
        is_active=True,
        sales_start=data.sales_start,
        sales_end=data.sales_end,
    )


async def create_ticket_type(
    db: AsyncSession,
    event_id: str,
    data: TicketTypeCreate,
    organizer: Account,
) -> Result[TicketType]:
    found = await _managed_event(db, event_id, organizer)
    if not found.ok:
        return found
    if found.value.status == EVENT_CANCELLED:
        return Failure(
            ErrorCode.INVALID_STATUS_TRANSITION,
            "Cannot add ticket types to a cancelled event",
            {"event_id": event_id},
        )

    ticket_type = _build_ticket_type(data)
    ticket_type.event_id = event_id
    db.add(ticket_type)
    await db.commit()

    logger.info(
        "ticket_type_created",
        event_id=event_id,
        ticket_type_id=ticket_type.id,
        quantity=data.quantity_available,
        price=str(data.price),
    )
    return Success(await inventory_ledger.get_ticket_type(db, ticket_type.id))


async def _managed_ticket_type(db: AsyncSession, ticket_type_id: str, organizer: Account) -> Result[TicketType]:
    ticket_type = await inventory_ledger.get_ticket_type(db, ticket_type_id)
    if ticket_type is None:
        return Failure(ErrorCode.TICKET_TYPE_NOT_FOUND, "Ticket type not found", {"ticket_type_id": ticket_type_id})
    event = await db.get(EventListing, ticket_type.event_id)
    if event is None or not organizer.can_manage(event.organizer_id):
        return Failure(ErrorCode.NOT_EVENT_ORGANIZER, "Only the event organizer can do this")
    return Success(ticket_type)


async def increase_capacity(
    db: AsyncSession,
    ticket_type_id: str,
    quantity_available: int,
    organizer: Account,
) -> Result[TicketType]:
    """
    Raise a ticket type's capacity. Lowering is refused; units already sold
    or held must never end up above capacity.
    """
    found = await _managed_ticket_type(db, ticket_type_id, organizer)
    if not found.ok:
        return found
    current = found.value.quantity_available

    if quantity_available <= current:
        return Failure(
            ErrorCode.INVALID_CAPACITY,
            "Capacity can only be increased",
            {"ticket_type_id": ticket_type_id, "current": current, "requested": quantity_available},
        )

    await db.execute(
        update(TicketType)
        .where(TicketType.id == ticket_type_id, TicketType.quantity_available < quantity_available)
        .values(quantity_available=quantity_available, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    logger.info("ticket_type_capacity_increased", ticket_type_id=ticket_type_id, old=current, new=quantity_available)
    return Success(await inventory_ledger.get_ticket_type(db, ticket_type_id))


async def set_ticket_type_active(
    db: AsyncSession,
    ticket_type_id: str,
    active: bool,
    organizer: Account,
) -> Result[TicketType]:
    """Deactivation stops new reservations; existing holds and sales are kept."""
    found = await _managed_ticket_type(db, ticket_type_id, organizer)
    if not found.ok:
        return found

    await db.execute(
        update(TicketType)
        .where(TicketType.id == ticket_type_id)
        .values(is_active=active, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    logger.info("ticket_type_active_changed", ticket_type_id=ticket_type_id, active=active)
    return Success(await inventory_ledger.get_ticket_type(db, ticket_type_id))


async def assign_checkin_staff(
    db: AsyncSession,
    event_id: str,
    email: str,
    organizer: Account,
    name: Optional[str] = None,
) -> Result[CheckinStaff]:
    """Grant door access for one event. Re-assigning an email reactivates it."""
    found = await _managed_event(db, event_id, organizer)
    if not found.ok:
        return found
    email = email.lower()

    existing = await _find_staff(db, event_id, email)
    if existing is not None:
        await db.execute(
            update(CheckinStaff)
            .where(CheckinStaff.id == existing.id)
            .values(is_active=True, name=name or existing.name, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        staff_id = existing.id
    else:
        staff = CheckinStaff(event_id=event_id, email=email, name=name, is_active=True)
        db.add(staff)
        try:
            await db.commit()
        except IntegrityError:
            # Same email assigned concurrently; the other request created it
            await db.rollback()
            staff = await _find_staff(db, event_id, email)
        staff_id = staff.id

    logger.info("checkin_staff_assigned", event_id=event_id, email=email, organizer_id=organizer.id)
    return Success(await _staff_by_id(db, staff_id))


async def list_checkin_staff(db: AsyncSession, event_id: str, organizer: Account) -> Result[list[CheckinStaff]]:
    found = await _managed_event(db, event_id, organizer)
    if not found.ok:
        return found
    result = await db.execute(
        select(CheckinStaff)
        .where(CheckinStaff.event_id == event_id)
        .order_by(CheckinStaff.email.asc())
    )
    return Success(list(result.scalars().all()))


async def set_checkin_staff_active(
    db: AsyncSession,
    event_id: str,
    staff_id: str,
    active: bool,
    organizer: Account,
) -> Result[CheckinStaff]:
    """Revoking takes effect on the next scan."""
    found = await _managed_event(db, event_id, organizer)
    if not found.ok:
        return found

    changed = await db.execute(
        update(CheckinStaff)
        .where(CheckinStaff.id == staff_id, CheckinStaff.event_id == event_id)
        .values(is_active=active, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if changed.rowcount == 0:
        await db.rollback()
        return Failure(ErrorCode.STAFF_NOT_FOUND, "Staff member not found", {"staff_id": staff_id})
    await db.commit()

    logger.info("checkin_staff_active_changed", event_id=event_id, staff_id=staff_id, active=active)
    return Success(await _staff_by_id(db, staff_id))


async def is_checkin_staff(db: AsyncSession, event_id: str, email: str) -> bool:
    return bool(
        await db.scalar(
            select(
                exists().where(
                    CheckinStaff.event_id == event_id,
                    CheckinStaff.email == email.lower(),
                    CheckinStaff.is_active.is_(True),
                )
            )
        )
    )


async def _find_staff(db: AsyncSession, event_id: str, email: str) -> Optional[CheckinStaff]:
    result = await db.execute(
        select(CheckinStaff).where(CheckinStaff.event_id == event_id, CheckinStaff.email == email)
    )
    return result.scalar_one_or_none()


async def _staff_by_id(db: AsyncSession, staff_id: str) -> CheckinStaff:
    result = await db.execute(
        select(CheckinStaff)
        .where(CheckinStaff.id == staff_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()
