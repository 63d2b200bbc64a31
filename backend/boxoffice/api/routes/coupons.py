"""
Coupon endpoints: organizer management and buyer-side preview.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.api.errors import unwrap
from boxoffice.core.security import Account, get_current_account, get_organizer_account
from boxoffice.db.session import get_db
from boxoffice.schemas.coupon import CouponCreate, CouponPreviewRequest, CouponPreviewResponse, CouponResponse
from boxoffice.schemas.event import ActiveUpdate
from boxoffice.services import coupon_service
from boxoffice.services.pricing import quantize_money

router = APIRouter(prefix="/coupons", tags=["Coupons"])


@router.post("/", response_model=CouponResponse, status_code=status.HTTP_201_CREATED)
async def create_coupon_endpoint(
    data: CouponCreate,
    organizer: Account = Depends(get_organizer_account),
    db: AsyncSession = Depends(get_db),
):
    return unwrap(await coupon_service.create_coupon(db, data, organizer))


@router.get("/", response_model=list[CouponResponse])
async def list_coupons_endpoint(
    organizer: Account = Depends(get_organizer_account),
    db: AsyncSession = Depends(get_db),
):
    return await coupon_service.list_coupons(db, organizer)


@router.patch("/{coupon_id}/active", response_model=CouponResponse)
async def set_coupon_active_endpoint(
    coupon_id: str,
    data: ActiveUpdate,
    organizer: Account = Depends(get_organizer_account),
    db: AsyncSession = Depends(get_db),
):
    return unwrap(await coupon_service.set_coupon_active(db, coupon_id, data.is_active, organizer))


@router.post("/preview", response_model=CouponPreviewResponse)
async def preview_coupon_endpoint(
    data: CouponPreviewRequest,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    """
    What a coupon would take off a cart of this subtotal. Informational only:
    the order re-evaluates it against real prices and nothing is redeemed.
    """
    subtotal = quantize_money(data.subtotal)
    discount = unwrap(await coupon_service.preview(db, data.event_id, data.code, subtotal))
    return CouponPreviewResponse(
        code=coupon_service.normalize_code(data.code),
        subtotal=subtotal,
        discount=discount,
        total_after_discount=subtotal - discount,
    )
