"""
Coupon storage operations: lookup, organizer management and redemption.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.core.logging import get_logger
from boxoffice.core.security import Account
from boxoffice.db.base import utcnow
from boxoffice.domain.results import ErrorCode, Failure, Result, Success
from boxoffice.models.coupon import Coupon
from boxoffice.models.event import EventListing
from boxoffice.schemas.coupon import CouponCreate
from boxoffice.services import coupon_evaluator
from boxoffice.services.pricing import quantize_money

logger = get_logger(__name__)


def normalize_code(code: str) -> str:
    return code.strip().upper()


async def find_coupon(db: AsyncSession, organizer_id: str, code: str) -> Optional[Coupon]:
    """Codes are unique per organizer; lookups are case-insensitive."""
    result = await db.execute(
        select(Coupon)
        .where(Coupon.organizer_id == organizer_id, Coupon.code == normalize_code(code))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def redeem(db: AsyncSession, coupon_id: str) -> bool:
    """
    Atomically count one use of a coupon.

    Single capped UPDATE: used_count only moves while it is below max_uses,
    so concurrent paid orders can never push it past the cap. Returns False
    when the cap was already reached. The caller owns the transaction.
    """
    result = await db.execute(
        update(Coupon)
        .where(
            Coupon.id == coupon_id,
            (Coupon.max_uses.is_(None)) | (Coupon.used_count < Coupon.max_uses),
        )
        .values(used_count=Coupon.used_count + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def create_coupon(db: AsyncSession, data: CouponCreate, organizer: Account) -> Result[Coupon]:
    if data.event_id is not None:
        event = await db.get(EventListing, data.event_id)
        if event is None:
            return Failure(ErrorCode.EVENT_NOT_FOUND, "Event not found", {"event_id": data.event_id})
        if not organizer.can_manage(event.organizer_id):
            return Failure(ErrorCode.NOT_EVENT_ORGANIZER, "Coupons can only target your own events")

    code = normalize_code(data.code)
    coupon = Coupon(
        organizer_id=organizer.id,
        code=code,
        discount_type=data.discount_type,
        discount_value=data.discount_value,
        event_id=data.event_id,
        max_uses=data.max_uses,
        min_purchase_amount=data.min_purchase_amount,
        valid_from=data.valid_from,
        valid_until=data.valid_until,
        is_active=data.is_active,
    )
    db.add(coupon)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        return Failure(ErrorCode.COUPON_CODE_TAKEN, f"Coupon code {code} already exists", {"code": code})

    await db.refresh(coupon)
    logger.info("coupon_created", coupon_id=coupon.id, code=coupon.code, organizer_id=organizer.id)
    return Success(coupon)


async def list_coupons(db: AsyncSession, organizer: Account) -> list[Coupon]:
    result = await db.execute(
        select(Coupon)
        .where(Coupon.organizer_id == organizer.id)
        .order_by(Coupon.created_at.desc())
    )
    return list(result.scalars().all())


async def set_coupon_active(db: AsyncSession, coupon_id: str, active: bool, organizer: Account) -> Result[Coupon]:
    coupon = await db.get(Coupon, coupon_id)
    if coupon is None:
        return Failure(ErrorCode.COUPON_NOT_FOUND, "Coupon not found")
    if not organizer.can_manage(coupon.organizer_id):
        return Failure(ErrorCode.NOT_EVENT_ORGANIZER, "Not your coupon")
    coupon.is_active = active
    await db.commit()
    await db.refresh(coupon)
    return Success(coupon)


async def preview(
    db: AsyncSession,
    event_id: str,
    code: str,
    subtotal: Decimal,
    now: Optional[datetime] = None,
) -> Result[Decimal]:
    """Discount a coupon would give on this event's cart; nothing is redeemed."""
    event = await db.get(EventListing, event_id)
    if event is None:
        return Failure(ErrorCode.EVENT_NOT_FOUND, "Event not found", {"event_id": event_id})
    coupon = await find_coupon(db, event.organizer_id, code)
    if coupon is None:
        return Failure(ErrorCode.COUPON_NOT_FOUND, "Invalid coupon code", {"code": code})
    return coupon_evaluator.evaluate(coupon, quantize_money(subtotal), event_id, now or utcnow())
