"""
Checkout orchestrator: one protocol for every payment provider.

ORDER STATE MACHINE
===================

    pending --confirm_payment--> paid
    pending --expire_or_cancel--> cancelled

Every transition is a conditional UPDATE on `status = 'pending'`, so a
payment confirmation racing an expiry sweep has exactly one winner.

create_order:
  validate cart -> evaluate coupon -> reserve every line (one transaction,
  all-or-nothing) -> persist pending order with price snapshots -> open a
  capture session with the configured gateway.

confirm_payment (provider success callback, may be duplicated or late):
  pending -> paid, commit reservations, redeem coupon, mint tickets, all in
  one transaction; then notify. A repeated call on a paid order only fills in
  tickets that are missing, which is normally nothing.

Abandoned checkouts are cancelled by expire_stale_orders, run periodically
by the expiry worker and lazily when a cart hits a sold-out line.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.core.config import get_settings
from boxoffice.core.logging import get_logger
from boxoffice.core.metrics import (
    order_creation_latency,
    orders_created,
    payment_confirmations,
    pending_orders_expired,
)
from boxoffice.core.security import Account
from boxoffice.db.base import new_id, utcnow
from boxoffice.domain.results import ErrorCode, Failure, Result, Success
from boxoffice.models.event import EVENT_PUBLISHED, EventListing, TicketType
from boxoffice.models.order import (
    ORDER_CANCELLED,
    ORDER_PAID,
    ORDER_PENDING,
    RESERVATION_HELD,
    Order,
    OrderLine,
    Reservation,
)
from boxoffice.models.ticket import Ticket
from boxoffice.services import coupon_evaluator, coupon_service, inventory_ledger, ticket_issuer
from boxoffice.services.interfaces.notification import Notifier
from boxoffice.services.interfaces.payment import PaymentGateway, PaymentGatewayError
from boxoffice.services.notifiers import notify_safely
from boxoffice.services.pricing import ZERO, compute_totals, subtotal_of

logger = get_logger(__name__)


@dataclass(frozen=True)
class CartLine:
    ticket_type_id: str
    quantity: int


@dataclass
class CheckoutSession:
    order: Order
    redirect_url: str
    provider: str


@dataclass
class PaymentConfirmation:
    order: Order
    tickets: list[Ticket] = field(default_factory=list)
    already_confirmed: bool = False


def merge_lines(lines: list[CartLine]) -> list[CartLine]:
    """Collapse repeated ticket types into one line, keeping first-seen order."""
    merged: dict[str, int] = {}
    for line in lines:
        merged[line.ticket_type_id] = merged.get(line.ticket_type_id, 0) + line.quantity
    return [CartLine(ticket_type_id=tt, quantity=qty) for tt, qty in merged.items()]


async def get_order(db: AsyncSession, order_id: str) -> Optional[Order]:
    result = await db.execute(
        select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _load_ticket_types(db: AsyncSession, ids: list[str]) -> dict[str, TicketType]:
    result = await db.execute(
        select(TicketType)
        .where(TicketType.id.in_(ids))
        .execution_options(populate_existing=True)
    )
    return {tt.id: tt for tt in result.scalars().all()}


def _validate_lines(
    event_id: str,
    lines: list[CartLine],
    ticket_types: dict[str, TicketType],
    now: datetime,
) -> list[Failure]:
    """Check every line independently so the buyer sees all problems at once."""
    problems = []
    for line in lines:
        ticket_type = ticket_types.get(line.ticket_type_id)
        if ticket_type is None or ticket_type.event_id != event_id:
            problems.append(
                Failure(
                    ErrorCode.TICKET_TYPE_NOT_FOUND,
                    "Ticket type not found for this event",
                    {"ticket_type_id": line.ticket_type_id},
                )
            )
            continue
        failure = inventory_ledger.check_sales_rules(ticket_type, line.quantity, now)
        if failure is None and ticket_type.available_remaining < line.quantity:
            failure = Failure(
                ErrorCode.OUT_OF_STOCK,
                f"Not enough tickets left for '{ticket_type.name}'",
                {
                    "ticket_type_id": ticket_type.id,
                    "requested": line.quantity,
                    "available": max(ticket_type.available_remaining, 0),
                },
            )
        if failure is not None:
            problems.append(failure)
    return problems


def _cart_failure(problems: list[Failure]) -> Failure:
    first = problems[0]
    details = {
        "lines": [
            {"code": p.code.value, "message": p.message, **p.details} for p in problems
        ]
    }
    if len(problems) == 1:
        return Failure(first.code, first.message, details)
    return Failure(first.code, f"{len(problems)} cart lines cannot be purchased", details)


async def create_order(
    db: AsyncSession,
    buyer: Account,
    event_id: str,
    lines: list[CartLine],
    coupon_code: Optional[str] = None,
    *,
    gateway: PaymentGateway,
    buyer_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Result[CheckoutSession]:
    """
    Validate, reserve and persist a pending order, then open a capture session.

    Prices and availability are always re-read here; whatever the client
    cart claims is ignored.
    """
    started = time.perf_counter()
    settings = get_settings()
    now = now or utcnow()

    if not lines:
        return Failure(ErrorCode.INVALID_LINE_ITEMS, "Order must contain at least one ticket")
    if any(line.quantity <= 0 for line in lines):
        return Failure(ErrorCode.INVALID_QUANTITY, "Quantities must be positive")
    lines = merge_lines(lines)

    event = await db.get(EventListing, event_id)
    if event is None:
        return Failure(ErrorCode.EVENT_NOT_FOUND, "Event not found", {"event_id": event_id})
    if event.status != EVENT_PUBLISHED:
        return Failure(
            ErrorCode.EVENT_NOT_ON_SALE,
            "Event is not on sale",
            {"event_id": event_id, "status": event.status},
        )

    type_ids = [line.ticket_type_id for line in lines]
    ticket_types = await _load_ticket_types(db, type_ids)
    problems = _validate_lines(event_id, lines, ticket_types, now)

    if any(p.code == ErrorCode.OUT_OF_STOCK for p in problems):
        # Units may be locked by abandoned carts whose deadline already passed
        await expire_stale_orders(db, now=now, event_id=event_id)
        event = await db.get(EventListing, event_id)
        ticket_types = await _load_ticket_types(db, type_ids)
        problems = _validate_lines(event_id, lines, ticket_types, now)

    if problems:
        logger.info(
            "order_rejected",
            event_id=event_id,
            buyer_id=buyer.id,
            codes=[p.code.value for p in problems],
        )
        return _cart_failure(problems)

    subtotal = subtotal_of((line.quantity, ticket_types[line.ticket_type_id].price) for line in lines)

    coupon = None
    discount = ZERO
    if coupon_code:
        coupon = await coupon_service.find_coupon(db, event.organizer_id, coupon_code)
        if coupon is None:
            return Failure(ErrorCode.COUPON_NOT_FOUND, "Invalid coupon code", {"code": coupon_code})
        evaluated = coupon_evaluator.evaluate(coupon, subtotal, event_id, now)
        if not evaluated.ok:
            logger.info("order_coupon_rejected", event_id=event_id, code=coupon.code, reason=evaluated.code.value)
            return evaluated
        discount = evaluated.value

    totals = compute_totals(subtotal, discount, settings.SERVICE_FEE_PERCENT)

    order = Order(
        id=new_id(),
        buyer_id=buyer.id,
        buyer_email=buyer.email,
        buyer_name=buyer_name,
        event_id=event_id,
        coupon_id=coupon.id if coupon is not None else None,
        subtotal=totals.subtotal,
        discount_amount=totals.discount,
        fee_amount=totals.fee,
        total_amount=totals.total,
        status=ORDER_PENDING,
        expires_at=now + timedelta(minutes=settings.RESERVATION_TTL_MINUTES),
        lines=[
            OrderLine(
                ticket_type_id=line.ticket_type_id,
                quantity=line.quantity,
                unit_price=ticket_types[line.ticket_type_id].price,
            )
            for line in lines
        ],
    )
    db.add(order)
    await db.flush()

    # All-or-nothing: any failed line rolls back every hold taken above
    for line in lines:
        reserved = await inventory_ledger.reserve(
            db, line.ticket_type_id, line.quantity, order_id=order.id, now=now
        )
        if not reserved.ok:
            await db.rollback()
            logger.info(
                "order_reservation_failed",
                event_id=event_id,
                buyer_id=buyer.id,
                ticket_type_id=line.ticket_type_id,
                reason=reserved.code.value,
            )
            return _cart_failure([reserved])

    await db.commit()
    orders_created.inc()
    logger.info(
        "order_created",
        order_id=order.id,
        event_id=event_id,
        buyer_id=buyer.id,
        tickets=order.ticket_count,
        total=str(order.total_amount),
    )

    try:
        capture = await gateway.start_capture(order)
    except PaymentGatewayError as e:
        # Order stays pending and expires with its holds; never guess success
        logger.error("order_capture_unavailable", order_id=order.id, error=str(e))
        return Failure(
            ErrorCode.PAYMENT_PROVIDER_UNAVAILABLE,
            "Payment provider is unavailable, please try again",
            {"order_id": order.id},
        )

    order.payment_provider = capture.provider
    await db.commit()

    order_creation_latency.observe(time.perf_counter() - started)
    return Success(CheckoutSession(order=order, redirect_url=capture.redirect_url, provider=capture.provider))


async def tickets_for_order(db: AsyncSession, order: Order) -> list[Ticket]:
    line_ids = [line.id for line in order.lines]
    if not line_ids:
        return []
    result = await db.execute(
        select(Ticket)
        .where(Ticket.order_line_id.in_(line_ids))
        .order_by(Ticket.order_line_id, Ticket.sequence_index)
    )
    return list(result.scalars().all())


async def _already_paid(db: AsyncSession, order: Order) -> Result[PaymentConfirmation]:
    """Duplicate or late success callback for a paid order: only repair missing tickets."""
    try:
        recovered = await ticket_issuer.issue_for_order(db, order)
    except ticket_issuer.TicketCodeExhausted:
        await db.rollback()
        return Failure(ErrorCode.TICKET_CODE_EXHAUSTED, "Could not allocate ticket codes, retry later")
    if recovered:
        await db.commit()
        logger.warning("order_tickets_recovered", order_id=order.id, count=len(recovered))
    payment_confirmations.labels(result="duplicate").inc()
    logger.info("payment_confirmation_duplicate", order_id=order.id)
    tickets = await tickets_for_order(db, order)
    return Success(PaymentConfirmation(order=order, tickets=tickets, already_confirmed=True))


async def confirm_payment(
    db: AsyncSession,
    order_id: str,
    provider_reference: str,
    *,
    notifier: Notifier,
    now: Optional[datetime] = None,
) -> Result[PaymentConfirmation]:
    """
    Payment success callback. Idempotent by order id.

    Tickets are only ever minted here (or for complimentary issuance); no
    other signal than an explicit confirmation turns an order into tickets.
    """
    now = now or utcnow()

    order = await get_order(db, order_id)
    if order is None:
        return Failure(ErrorCode.ORDER_NOT_FOUND, "Order not found", {"order_id": order_id})

    if order.status == ORDER_PAID:
        return await _already_paid(db, order)

    if order.status != ORDER_PENDING:
        payment_confirmations.labels(result="rejected").inc()
        logger.warning(
            "payment_for_inactive_order",
            order_id=order_id,
            status=order.status,
            provider_reference=provider_reference,
        )
        return Failure(
            ErrorCode.ORDER_NOT_PENDING,
            f"Order is {order.status}; the payment must be refunded",
            {"order_id": order_id, "status": order.status},
        )

    transitioned = await db.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == ORDER_PENDING)
        .values(status=ORDER_PAID, payment_reference=provider_reference, paid_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if transitioned.rowcount == 0:
        # Lost the race against another callback or the expiry sweep
        await db.rollback()
        order = await get_order(db, order_id)
        if order is not None and order.status == ORDER_PAID:
            return await _already_paid(db, order)
        payment_confirmations.labels(result="rejected").inc()
        return Failure(
            ErrorCode.ORDER_NOT_PENDING,
            "Order is no longer pending; the payment must be refunded",
            {"order_id": order_id, "status": order.status if order else None},
        )

    holds = await db.execute(
        select(Reservation.id).where(Reservation.order_id == order_id, Reservation.status == RESERVATION_HELD)
    )
    for reservation_id in holds.scalars().all():
        await inventory_ledger.commit(db, reservation_id)

    if order.coupon_id is not None and not await coupon_service.redeem(db, order.coupon_id):
        # The buyer already paid the discounted price; keep it and flag it
        logger.warning("coupon_cap_reached_after_payment", order_id=order_id, coupon_id=order.coupon_id)

    try:
        minted = await ticket_issuer.issue_for_order(db, order)
    except ticket_issuer.TicketCodeExhausted as e:
        await db.rollback()
        logger.error("payment_confirmation_issue_failed", order_id=order_id, error=str(e))
        return Failure(ErrorCode.TICKET_CODE_EXHAUSTED, "Could not allocate ticket codes, retry later")

    await db.commit()
    order = await get_order(db, order_id)

    payment_confirmations.labels(result="confirmed").inc()
    logger.info(
        "payment_confirmed",
        order_id=order_id,
        provider_reference=provider_reference,
        tickets=len(minted),
    )

    await notify_safely(
        notifier,
        "order_paid",
        {
            "order_id": order.id,
            "event_id": order.event_id,
            "buyer_email": order.buyer_email,
            "total": str(order.total_amount),
            "ticket_codes": [t.ticket_code for t in minted],
        },
    )
    tickets = await tickets_for_order(db, order)
    return Success(PaymentConfirmation(order=order, tickets=tickets))


async def expire_or_cancel(
    db: AsyncSession,
    order_id: str,
    *,
    reason: str = "cancelled",
    now: Optional[datetime] = None,
) -> Result[Order]:
    """pending -> cancelled, releasing every hold of the order."""
    now = now or utcnow()

    transitioned = await db.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == ORDER_PENDING)
        .values(status=ORDER_CANCELLED, cancelled_at=now, cancel_reason=reason, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if transitioned.rowcount == 0:
        await db.rollback()
        order = await get_order(db, order_id)
        if order is None:
            return Failure(ErrorCode.ORDER_NOT_FOUND, "Order not found", {"order_id": order_id})
        if order.status == ORDER_PAID:
            return Failure(ErrorCode.ORDER_ALREADY_PAID, "Order is already paid", {"order_id": order_id})
        return Failure(
            ErrorCode.ORDER_NOT_PENDING,
            f"Order is already {order.status}",
            {"order_id": order_id, "status": order.status},
        )

    holds = await db.execute(
        select(Reservation.id).where(Reservation.order_id == order_id, Reservation.status == RESERVATION_HELD)
    )
    release_reason = "expired" if reason == "expired" else "cancelled"
    for reservation_id in holds.scalars().all():
        await inventory_ledger.release(db, reservation_id, reason=release_reason)

    await db.commit()
    order = await get_order(db, order_id)
    logger.info("order_cancelled", order_id=order_id, reason=reason)
    return Success(order)


async def cancel_order(db: AsyncSession, order_id: str, account: Account) -> Result[Order]:
    """Buyer-initiated cancellation of an unpaid order."""
    order = await get_order(db, order_id)
    if order is None:
        return Failure(ErrorCode.ORDER_NOT_FOUND, "Order not found", {"order_id": order_id})
    if order.buyer_id != account.id and not account.is_admin:
        return Failure(ErrorCode.NOT_ORDER_OWNER, "Not your order")
    return await expire_or_cancel(db, order_id, reason="buyer_cancelled")


async def expire_stale_orders(
    db: AsyncSession,
    now: Optional[datetime] = None,
    event_id: Optional[str] = None,
) -> int:
    """
    Cancel pending orders past their deadline and release stray holds.
    Returns the number of orders expired.
    """
    now = now or utcnow()
    query = select(Order.id).where(Order.status == ORDER_PENDING, Order.expires_at < now)
    if event_id is not None:
        query = query.where(Order.event_id == event_id)
    stale_ids = list((await db.execute(query)).scalars().all())

    expired = 0
    for order_id in stale_ids:
        result = await expire_or_cancel(db, order_id, reason="expired", now=now)
        if result.ok:
            expired += 1

    stray = await inventory_ledger.release_expired(db, now)
    await db.commit()

    if expired or stray:
        pending_orders_expired.inc(expired)
        logger.info("stale_orders_expired", orders=expired, stray_holds=stray, event_id=event_id)
    return expired


async def get_order_for(db: AsyncSession, order_id: str, account: Account) -> Result[Order]:
    order = await get_order(db, order_id)
    if order is None:
        return Failure(ErrorCode.ORDER_NOT_FOUND, "Order not found", {"order_id": order_id})
    if order.buyer_id != account.id and not account.is_admin:
        event = await db.get(EventListing, order.event_id)
        if event is None or not account.can_manage(event.organizer_id):
            return Failure(ErrorCode.NOT_ORDER_OWNER, "Not your order")
    return Success(order)


async def list_orders_for_buyer(db: AsyncSession, buyer_id: str) -> list[Order]:
    result = await db.execute(
        select(Order)
        .where(Order.buyer_id == buyer_id)
        .order_by(Order.created_at.desc())
    )
    return list(result.scalars().all())
