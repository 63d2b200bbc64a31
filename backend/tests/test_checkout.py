"""
Tests for the checkout orchestrator: order creation, payment confirmation
and expiry of abandoned checkouts.
"""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from boxoffice.db.base import utcnow
from boxoffice.domain.results import ErrorCode
from boxoffice.models.coupon import DISCOUNT_PERCENTAGE, Coupon
from boxoffice.models.event import EVENT_DRAFT, TicketType
from boxoffice.models.order import ORDER_CANCELLED, ORDER_PAID, ORDER_PENDING, RESERVATION_COMMITTED
from boxoffice.schemas.coupon import CouponCreate
from boxoffice.services import checkout_service, coupon_service, inventory_ledger
from boxoffice.services.checkout_service import CartLine
from boxoffice.services.interfaces.notification import Notifier
from boxoffice.services.interfaces.payment import PaymentGateway, PaymentGatewayError


class FailingGateway(PaymentGateway):
    name = "failing"

    async def start_capture(self, order):
        raise PaymentGatewayError("provider down")


async def place_order(db, buyer, event, ticket_type, quantity, gateway, **kwargs):
    return await checkout_service.create_order(
        db,
        buyer,
        event.id,
        [CartLine(ticket_type_id=ticket_type.id, quantity=quantity)],
        gateway=gateway,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_create_order_holds_inventory_and_snapshots_prices(db_session, buyer, event_with_tickets, gateway):
    event, ticket_type = event_with_tickets

    result = await place_order(db_session, buyer, event, ticket_type, 2, gateway)

    assert result.ok
    session = result.value
    order = session.order
    assert order.status == ORDER_PENDING
    assert order.subtotal == Decimal("100.00")
    assert order.total_amount == Decimal("100.00")
    assert order.lines[0].unit_price == Decimal("50.00")
    assert order.expires_at > utcnow()
    assert session.provider == "stub"
    assert order.id in session.redirect_url

    current = await inventory_ledger.get_ticket_type(db_session, ticket_type.id)
    assert current.quantity_held == 2
    assert current.quantity_sold == 0


@pytest.mark.asyncio
async def test_happy_path_sells_out_then_rejects(db_session, buyer, second_buyer, scarce_event, gateway, notifier):
    """Two tickets, one buyer takes both and pays; the next order is out of stock."""
    event, ticket_type = scarce_event

    created = await place_order(db_session, buyer, event, ticket_type, 2, gateway)
    confirmed = await checkout_service.confirm_payment(
        db_session, created.value.order.id, "pay-001", notifier=notifier
    )

    assert confirmed.ok
    assert confirmed.value.order.status == ORDER_PAID
    assert len(confirmed.value.tickets) == 2
    assert len({t.ticket_code for t in confirmed.value.tickets}) == 2
    assert all(t.holder_id == buyer.id for t in confirmed.value.tickets)

    current = await inventory_ledger.get_ticket_type(db_session, ticket_type.id)
    assert current.quantity_sold == 2
    assert current.quantity_held == 0

    rejected = await place_order(db_session, second_buyer, event, ticket_type, 1, gateway)
    assert not rejected.ok
    assert rejected.code == ErrorCode.OUT_OF_STOCK


@pytest.mark.asyncio
async def test_confirm_payment_is_idempotent(db_session, buyer, event_with_tickets, gateway, notifier):
    event, ticket_type = event_with_tickets
    order_id = (await place_order(db_session, buyer, event, ticket_type, 3, gateway)).value.order.id

    first = await checkout_service.confirm_payment(db_session, order_id, "pay-123", notifier=notifier)
    second = await checkout_service.confirm_payment(db_session, order_id, "pay-123", notifier=notifier)

    assert first.ok and second.ok
    assert first.value.already_confirmed is False
    assert second.value.already_confirmed is True
    assert sorted(t.ticket_code for t in first.value.tickets) == sorted(t.ticket_code for t in second.value.tickets)
    assert len(second.value.tickets) == 3

    current = await inventory_ledger.get_ticket_type(db_session, ticket_type.id)
    assert current.quantity_sold == 3
    assert len(notifier.of_kind("order_paid")) == 1

    order = await checkout_service.get_order(db_session, order_id)
    assert all(r.status == RESERVATION_COMMITTED for r in order.reservations)


@pytest.mark.asyncio
async def test_confirm_unknown_order(db_session, notifier):
    result = await checkout_service.confirm_payment(db_session, "missing", "pay", notifier=notifier)

    assert result.code == ErrorCode.ORDER_NOT_FOUND


@pytest.mark.asyncio
async def test_abandoned_checkout_releases_inventory(db_session, buyer, scarce_event, gateway):
    event, ticket_type = scarce_event
    long_ago = utcnow() - timedelta(hours=2)
    order_id = (await place_order(db_session, buyer, event, ticket_type, 2, gateway, now=long_ago)).value.order.id

    expired = await checkout_service.expire_stale_orders(db_session)

    assert expired == 1
    order = await checkout_service.get_order(db_session, order_id)
    assert order.status == ORDER_CANCELLED
    assert order.cancel_reason == "expired"
    current = await inventory_ledger.get_ticket_type(db_session, ticket_type.id)
    assert current.quantity_held == 0
    assert current.available_remaining == 2


@pytest.mark.asyncio
async def test_unexpired_orders_survive_the_sweep(db_session, buyer, event_with_tickets, gateway):
    event, ticket_type = event_with_tickets
    await place_order(db_session, buyer, event, ticket_type, 1, gateway)

    assert await checkout_service.expire_stale_orders(db_session) == 0
    current = await inventory_ledger.get_ticket_type(db_session, ticket_type.id)
    assert current.quantity_held == 1


@pytest.mark.asyncio
async def test_sold_out_cart_sweeps_stale_holds_before_giving_up(
    db_session, buyer, second_buyer, scarce_event, gateway
):
    event, ticket_type = scarce_event
    long_ago = utcnow() - timedelta(hours=2)
    stale_id = (await place_order(db_session, buyer, event, ticket_type, 2, gateway, now=long_ago)).value.order.id

    result = await place_order(db_session, second_buyer, event, ticket_type, 1, gateway)

    assert result.ok
    assert (await checkout_service.get_order(db_session, stale_id)).status == ORDER_CANCELLED


@pytest.mark.asyncio
async def test_payment_after_expiry_requires_refund(db_session, buyer, event_with_tickets, gateway, notifier):
    event, ticket_type = event_with_tickets
    long_ago = utcnow() - timedelta(hours=2)
    order_id = (await place_order(db_session, buyer, event, ticket_type, 1, gateway, now=long_ago)).value.order.id
    await checkout_service.expire_stale_orders(db_session)

    result = await checkout_service.confirm_payment(db_session, order_id, "late-pay", notifier=notifier)

    assert result.code == ErrorCode.ORDER_NOT_PENDING
    current = await inventory_ledger.get_ticket_type(db_session, ticket_type.id)
    assert current.quantity_sold == 0
    assert notifier.of_kind("order_paid") == []


@pytest.mark.asyncio
async def test_cart_is_all_or_nothing(db_session, buyer, event_with_tickets, gateway):
    event, general = event_with_tickets
    vip = TicketType(
        event_id=event.id,
        name="VIP",
        price=Decimal("120.00"),
        quantity_available=1,
        quantity_sold=0,
        quantity_held=0,
        max_per_order=10,
        is_active=True,
    )
    db_session.add(vip)
    await db_session.commit()

    result = await checkout_service.create_order(
        db_session,
        buyer,
        event.id,
        [CartLine(general.id, 2), CartLine(vip.id, 2)],
        gateway=gateway,
    )

    assert result.code == ErrorCode.OUT_OF_STOCK
    assert [line["ticket_type_id"] for line in result.details["lines"]] == [vip.id]
    assert (await inventory_ledger.get_ticket_type(db_session, general.id)).quantity_held == 0
    assert (await inventory_ledger.get_ticket_type(db_session, vip.id)).quantity_held == 0


@pytest.mark.asyncio
async def test_repeated_ticket_type_lines_are_merged(db_session, buyer, event_with_tickets, gateway):
    event, ticket_type = event_with_tickets

    result = await checkout_service.create_order(
        db_session,
        buyer,
        event.id,
        [CartLine(ticket_type.id, 1), CartLine(ticket_type.id, 2)],
        gateway=gateway,
    )

    assert result.ok
    assert len(result.value.order.lines) == 1
    assert result.value.order.lines[0].quantity == 3


@pytest.mark.asyncio
async def test_empty_cart_is_rejected(db_session, buyer, event_with_tickets, gateway):
    event, _ = event_with_tickets

    result = await checkout_service.create_order(db_session, buyer, event.id, [], gateway=gateway)

    assert result.code == ErrorCode.INVALID_LINE_ITEMS


@pytest.mark.asyncio
async def test_draft_event_is_not_on_sale(db_session, buyer, event_factory, gateway):
    event, ticket_type = await event_factory(status=EVENT_DRAFT)

    result = await place_order(db_session, buyer, event, ticket_type, 1, gateway)

    assert result.code == ErrorCode.EVENT_NOT_ON_SALE


@pytest.mark.asyncio
async def test_gateway_failure_keeps_order_pending(db_session, buyer, event_with_tickets):
    event, ticket_type = event_with_tickets

    result = await place_order(db_session, buyer, event, ticket_type, 1, FailingGateway())

    assert result.code == ErrorCode.PAYMENT_PROVIDER_UNAVAILABLE
    order = await checkout_service.get_order(db_session, result.details["order_id"])
    assert order.status == ORDER_PENDING


@pytest.mark.asyncio
async def test_coupon_is_redeemed_only_when_paid(db_session, buyer, organizer, event_with_tickets, gateway, notifier):
    event, ticket_type = event_with_tickets
    coupon = Coupon(
        organizer_id=organizer.id,
        code="SAVE10",
        discount_type=DISCOUNT_PERCENTAGE,
        discount_value=Decimal("10"),
        max_uses=5,
        used_count=0,
        is_active=True,
    )
    db_session.add(coupon)
    await db_session.commit()

    created = await place_order(db_session, buyer, event, ticket_type, 2, gateway, coupon_code="save10")
    assert created.ok
    assert created.value.order.discount_amount == Decimal("10.00")
    assert created.value.order.total_amount == Decimal("90.00")

    await db_session.refresh(coupon)
    assert coupon.used_count == 0

    await checkout_service.confirm_payment(db_session, created.value.order.id, "pay-c", notifier=notifier)
    await db_session.refresh(coupon)
    assert coupon.used_count == 1


@pytest.mark.asyncio
async def test_unknown_coupon_code(db_session, buyer, event_with_tickets, gateway):
    event, ticket_type = event_with_tickets

    result = await place_order(db_session, buyer, event, ticket_type, 1, gateway, coupon_code="NOPE")

    assert result.code == ErrorCode.COUPON_NOT_FOUND


@pytest.mark.asyncio
async def test_buyer_cancels_pending_order(db_session, buyer, second_buyer, event_with_tickets, gateway):
    event, ticket_type = event_with_tickets
    order_id = (await place_order(db_session, buyer, event, ticket_type, 4, gateway)).value.order.id

    forbidden = await checkout_service.cancel_order(db_session, order_id, second_buyer)
    assert forbidden.code == ErrorCode.NOT_ORDER_OWNER

    cancelled = await checkout_service.cancel_order(db_session, order_id, buyer)
    assert cancelled.ok
    assert cancelled.value.status == ORDER_CANCELLED
    assert (await inventory_ledger.get_ticket_type(db_session, ticket_type.id)).quantity_held == 0

    again = await checkout_service.cancel_order(db_session, order_id, buyer)
    assert again.code == ErrorCode.ORDER_NOT_PENDING


@pytest.mark.asyncio
async def test_paid_order_cannot_be_cancelled(db_session, buyer, event_with_tickets, gateway, notifier):
    event, ticket_type = event_with_tickets
    order_id = (await place_order(db_session, buyer, event, ticket_type, 1, gateway)).value.order.id
    await checkout_service.confirm_payment(db_session, order_id, "pay", notifier=notifier)

    result = await checkout_service.expire_or_cancel(db_session, order_id)

    assert result.code == ErrorCode.ORDER_ALREADY_PAID


class BrokenNotifier(Notifier):
    async def notify(self, kind, payload):
        raise RuntimeError("mail relay unreachable")


@pytest.mark.asyncio
async def test_notifier_failure_keeps_confirmed_payment(db_session, buyer, event_with_tickets, gateway):
    event, ticket_type = event_with_tickets
    created = await place_order(db_session, buyer, event, ticket_type, 2, gateway)
    order_id = created.value.order.id

    confirmed = await checkout_service.confirm_payment(db_session, order_id, "pay-broken", notifier=BrokenNotifier())

    assert confirmed.ok
    assert len(confirmed.value.tickets) == 2
    order = await checkout_service.get_order(db_session, order_id)
    assert order.status == ORDER_PAID


@pytest.mark.asyncio
async def test_concurrent_redemptions_respect_max_uses(session_factory, db_session, organizer):
    """Ten paid orders race for a coupon capped at three uses."""
    coupon = (
        await coupon_service.create_coupon(
            db_session,
            CouponCreate(code="FIRST3", discount_type=DISCOUNT_PERCENTAGE, discount_value=Decimal("10"), max_uses=3),
            organizer,
        )
    ).value

    async def attempt():
        async with session_factory() as session:
            redeemed = await coupon_service.redeem(session, coupon.id)
            await session.commit()
            return redeemed

    results = await asyncio.gather(*(attempt() for _ in range(10)))

    assert results.count(True) == 3
    assert results.count(False) == 7
    stored = await db_session.get(Coupon, coupon.id, populate_existing=True)
    assert stored.used_count == 3
