"""
Coupon evaluation.

A pure function of the coupon definition, the pre-discount subtotal, the
event being purchased and the current time. It never touches used_count:
redemption is a separate atomic step that runs only once payment is confirmed
(see coupon_service.redeem), so abandoned carts do not burn coupon uses.
"""

from datetime import datetime
from decimal import Decimal

from boxoffice.domain.results import ErrorCode, Failure, Result, Success
from boxoffice.models.coupon import DISCOUNT_FIXED, DISCOUNT_PERCENTAGE, Coupon
from boxoffice.services.pricing import ZERO, quantize_money


def evaluate(coupon: Coupon, subtotal: Decimal, event_id: str, now: datetime) -> Result[Decimal]:
    """Return the discount amount for this cart, or the reason the coupon does not apply."""
    if not coupon.is_active:
        return Failure(ErrorCode.COUPON_INACTIVE, "Coupon is not active")

    if coupon.valid_from is not None and now < coupon.valid_from:
        return Failure(
            ErrorCode.COUPON_NOT_YET_VALID,
            "Coupon is not active yet",
            {"valid_from": coupon.valid_from.isoformat()},
        )

    if coupon.valid_until is not None and now > coupon.valid_until:
        return Failure(
            ErrorCode.COUPON_EXPIRED,
            "Coupon has expired",
            {"valid_until": coupon.valid_until.isoformat()},
        )

    if coupon.max_uses is not None and (coupon.used_count or 0) >= coupon.max_uses:
        return Failure(ErrorCode.COUPON_USAGE_CAP_REACHED, "Coupon has reached its usage limit")

    if coupon.min_purchase_amount is not None and subtotal < coupon.min_purchase_amount:
        return Failure(
            ErrorCode.COUPON_BELOW_MINIMUM_PURCHASE,
            f"Minimum purchase of {quantize_money(coupon.min_purchase_amount)} required",
            {"min_purchase_amount": str(quantize_money(coupon.min_purchase_amount))},
        )

    if coupon.event_id is not None and coupon.event_id != event_id:
        return Failure(ErrorCode.COUPON_WRONG_EVENT_SCOPE, "Coupon is not valid for this event")

    value = Decimal(coupon.discount_value)
    if coupon.discount_type == DISCOUNT_PERCENTAGE:
        discount = subtotal * min(value, Decimal(100)) / Decimal(100)
    elif coupon.discount_type == DISCOUNT_FIXED:
        discount = min(value, subtotal)
    else:
        raise ValueError(f"Unknown discount type: {coupon.discount_type}")

    discount = quantize_money(discount)
    return Success(max(ZERO, min(discount, quantize_money(subtotal))))
