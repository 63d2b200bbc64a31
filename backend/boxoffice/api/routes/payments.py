"""
Payment provider callbacks.

The webhook is the only production path that turns a pending order into a
paid one. Providers retry on non-2xx responses, so every business outcome
that a retry cannot change (duplicate, already cancelled) is acknowledged
with 200 and an `action` describing what happened.
"""

import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.api.errors import FailureError, unwrap
from boxoffice.core.config import get_settings
from boxoffice.core.logging import get_logger
from boxoffice.core.security import Account, get_current_account
from boxoffice.db.session import get_db
from boxoffice.domain.results import ErrorCode, Failure
from boxoffice.schemas.order import (
    PAYMENT_APPROVED,
    PAYMENT_CANCELLED,
    PAYMENT_REJECTED,
    DevPaymentConfirm,
    OrderResponse,
    PaymentConfirmationResponse,
    PaymentWebhook,
    WebhookAck,
)
from boxoffice.schemas.ticket import TicketResponse
from boxoffice.services import checkout_service
from boxoffice.services.cache_service import invalidate_catalog
from boxoffice.services.collaborators import get_notifier
from boxoffice.services.interfaces.notification import Notifier

logger = get_logger(__name__)
router = APIRouter(prefix="/payments", tags=["Payments"])


def _check_webhook_secret(provided: Optional[str]) -> None:
    expected = get_settings().PAYMENT_WEBHOOK_SECRET
    if provided is None or not secrets.compare_digest(provided, expected):
        logger.warning("payment_webhook_unauthorized")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret")


def _confirmation_response(confirmation: checkout_service.PaymentConfirmation) -> PaymentConfirmationResponse:
    return PaymentConfirmationResponse(
        order=OrderResponse.model_validate(confirmation.order),
        tickets=[TicketResponse.model_validate(t) for t in confirmation.tickets],
        already_confirmed=confirmation.already_confirmed,
    )


@router.post("/webhook", response_model=WebhookAck)
async def payment_webhook(
    payload: PaymentWebhook,
    x_webhook_secret: Optional[str] = Header(None),
    notifier: Notifier = Depends(get_notifier),
    db: AsyncSession = Depends(get_db),
):
    """
    approved            -> confirm payment, issue tickets
    rejected/cancelled  -> cancel the order, release its holds
    pending/in_process  -> nothing yet
    """
    _check_webhook_secret(x_webhook_secret)
    logger.info(
        "payment_webhook_received",
        order_id=payload.order_id,
        payment_status=payload.status,
        provider_reference=payload.provider_reference,
    )

    if payload.status == PAYMENT_APPROVED:
        result = await checkout_service.confirm_payment(
            db, payload.order_id, payload.provider_reference, notifier=notifier
        )
        if not result.ok and result.code == ErrorCode.ORDER_NOT_PENDING:
            # Money arrived for an order that already gave its tickets back
            logger.error(
                "payment_refund_required",
                order_id=payload.order_id,
                provider_reference=payload.provider_reference,
            )
            return WebhookAck(order_id=payload.order_id, status=payload.status, action="refund_required")
        confirmation = unwrap(result)
        await invalidate_catalog()
        action = "already_confirmed" if confirmation.already_confirmed else "confirmed"
        return WebhookAck(order_id=payload.order_id, status=payload.status, action=action)

    if payload.status in (PAYMENT_REJECTED, PAYMENT_CANCELLED):
        result = await checkout_service.expire_or_cancel(db, payload.order_id, reason="payment_rejected")
        if not result.ok and result.code == ErrorCode.ORDER_NOT_FOUND:
            raise FailureError(result)
        if result.ok:
            await invalidate_catalog()
        action = "cancelled" if result.ok else "ignored"
        return WebhookAck(order_id=payload.order_id, status=payload.status, action=action)

    return WebhookAck(order_id=payload.order_id, status=payload.status, action="ignored")


@router.post("/orders/{order_id}/confirm", response_model=PaymentConfirmationResponse)
async def dev_confirm_payment(
    order_id: str,
    data: Optional[DevPaymentConfirm] = None,
    account: Account = Depends(get_current_account),
    notifier: Notifier = Depends(get_notifier),
    db: AsyncSession = Depends(get_db),
):
    """
    Development stand-in for the provider's success callback. Only available
    with the stub gateway; the buyer confirms their own order.
    """
    if get_settings().PAYMENT_PROVIDER != "stub":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    unwrap(await checkout_service.get_order_for(db, order_id, account))
    reference = (data.provider_reference if data else None) or f"stub-{order_id}"
    confirmation = unwrap(
        await checkout_service.confirm_payment(db, order_id, reference, notifier=notifier)
    )
    await invalidate_catalog()
    return _confirmation_response(confirmation)


@router.get("/return", response_model=OrderResponse)
async def payment_return(
    order_id: str = Query(...),
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    """Where the buyer lands after the provider; reports the order state as of now."""
    order = await checkout_service.get_order(db, order_id)
    if order is None or order.buyer_id != account.id:
        raise FailureError(Failure(ErrorCode.ORDER_NOT_FOUND, "Order not found", {"order_id": order_id}))
    return order
