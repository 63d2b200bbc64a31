"""
Order endpoints: checkout, order lookup and buyer cancellation.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.api.errors import unwrap
from boxoffice.core.logging import get_logger
from boxoffice.core.security import Account, get_current_account
from boxoffice.db.session import get_db
from boxoffice.schemas.order import CheckoutResponse, OrderCreate, OrderResponse
from boxoffice.services import checkout_service
from boxoffice.services.cache_service import invalidate_catalog
from boxoffice.services.collaborators import get_payment_gateway
from boxoffice.services.interfaces.payment import PaymentGateway

logger = get_logger(__name__)
router = APIRouter(prefix="/orders", tags=["Orders"])


@router.post("/", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
async def create_order_endpoint(
    order_data: OrderCreate,
    account: Account = Depends(get_current_account),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    db: AsyncSession = Depends(get_db),
):
    """
    Reserve the cart and open a payment session.

    Every line is reserved or none is. The order stays pending (holding its
    tickets) until the payment provider confirms or the hold expires.
    """
    lines = [
        checkout_service.CartLine(ticket_type_id=line.ticket_type_id, quantity=line.quantity)
        for line in order_data.lines
    ]
    session = unwrap(
        await checkout_service.create_order(
            db,
            account,
            order_data.event_id,
            lines,
            order_data.coupon_code,
            gateway=gateway,
            buyer_name=order_data.buyer_name,
        )
    )
    await invalidate_catalog()
    return CheckoutResponse(
        order=OrderResponse.model_validate(session.order),
        redirect_url=session.redirect_url,
        provider=session.provider,
    )


@router.get("/", response_model=list[OrderResponse])
async def list_my_orders(
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    return await checkout_service.list_orders_for_buyer(db, account.id)


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order_endpoint(
    order_id: str,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    return unwrap(await checkout_service.get_order_for(db, order_id, account))


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order_endpoint(
    order_id: str,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    """Abandon an unpaid order and release its tickets."""
    order = unwrap(await checkout_service.cancel_order(db, order_id, account))
    await invalidate_catalog()
    return order
