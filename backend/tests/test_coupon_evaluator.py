"""
Tests for coupon evaluation and pricing arithmetic.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from boxoffice.db.base import utcnow
from boxoffice.domain.results import ErrorCode
from boxoffice.models.coupon import DISCOUNT_FIXED, DISCOUNT_PERCENTAGE, Coupon
from boxoffice.services.coupon_evaluator import evaluate
from boxoffice.services.pricing import compute_totals, subtotal_of

EVENT_ID = "event-1"


def make_coupon(**overrides) -> Coupon:
    fields = dict(
        organizer_id="org-1",
        code="SAVE",
        discount_type=DISCOUNT_PERCENTAGE,
        discount_value=Decimal("10"),
        event_id=None,
        max_uses=None,
        used_count=0,
        min_purchase_amount=None,
        valid_from=None,
        valid_until=None,
        is_active=True,
    )
    fields.update(overrides)
    return Coupon(**fields)


def test_fixed_discount_is_capped_at_subtotal():
    coupon = make_coupon(discount_type=DISCOUNT_FIXED, discount_value=Decimal("1000"))

    result = evaluate(coupon, Decimal("50.00"), EVENT_ID, utcnow())

    assert result.ok
    assert result.value == Decimal("50.00")


def test_fixed_discount_below_subtotal():
    coupon = make_coupon(discount_type=DISCOUNT_FIXED, discount_value=Decimal("15"))

    assert evaluate(coupon, Decimal("80.00"), EVENT_ID, utcnow()).value == Decimal("15.00")


def test_percentage_discount_rounds_to_cents():
    coupon = make_coupon(discount_value=Decimal("15"))

    # 15% of 33.33 = 4.9995 -> 5.00
    assert evaluate(coupon, Decimal("33.33"), EVENT_ID, utcnow()).value == Decimal("5.00")


def test_percentage_over_hundred_never_exceeds_subtotal():
    coupon = make_coupon(discount_value=Decimal("150"))

    assert evaluate(coupon, Decimal("40.00"), EVENT_ID, utcnow()).value == Decimal("40.00")


@pytest.mark.parametrize(
    "overrides, code",
    [
        ({"is_active": False}, ErrorCode.COUPON_INACTIVE),
        ({"valid_from": utcnow() + timedelta(days=1)}, ErrorCode.COUPON_NOT_YET_VALID),
        ({"valid_until": utcnow() - timedelta(days=1)}, ErrorCode.COUPON_EXPIRED),
        ({"max_uses": 3, "used_count": 3}, ErrorCode.COUPON_USAGE_CAP_REACHED),
        ({"min_purchase_amount": Decimal("100")}, ErrorCode.COUPON_BELOW_MINIMUM_PURCHASE),
        ({"event_id": "another-event"}, ErrorCode.COUPON_WRONG_EVENT_SCOPE),
    ],
)
def test_coupon_rejections(overrides, code):
    coupon = make_coupon(**overrides)

    result = evaluate(coupon, Decimal("50.00"), EVENT_ID, utcnow())

    assert not result.ok
    assert result.code == code


def test_event_scoped_coupon_applies_to_its_event():
    coupon = make_coupon(event_id=EVENT_ID)

    assert evaluate(coupon, Decimal("50.00"), EVENT_ID, utcnow()).value == Decimal("5.00")


def test_subtotal_of_lines():
    assert subtotal_of([(2, Decimal("50.00")), (1, Decimal("19.99"))]) == Decimal("119.99")


def test_totals_apply_fee_after_discount():
    totals = compute_totals(Decimal("100.00"), Decimal("20.00"), Decimal("10"))

    assert totals.discount == Decimal("20.00")
    assert totals.fee == Decimal("8.00")
    assert totals.total == Decimal("88.00")


def test_totals_never_go_negative():
    totals = compute_totals(Decimal("50.00"), Decimal("80.00"), Decimal("0"))

    assert totals.discount == Decimal("50.00")
    assert totals.total == Decimal("0.00")
