"""
Pydantic schemas for orders and payment callbacks.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from boxoffice.schemas.ticket import TicketResponse


class CartLineRequest(BaseModel):
    ticket_type_id: str
    quantity: int = Field(..., gt=0, le=100)


class OrderCreate(BaseModel):
    event_id: str
    lines: list[CartLineRequest] = Field(..., min_length=1, max_length=20)
    coupon_code: Optional[str] = Field(None, max_length=50)
    buyer_name: Optional[str] = Field(None, max_length=255)


class OrderLineResponse(BaseModel):
    id: str
    ticket_type_id: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal

    model_config = {"from_attributes": True}


class OrderResponse(BaseModel):
    id: str
    event_id: str
    buyer_id: Optional[str]
    buyer_email: Optional[str]
    status: str
    subtotal: Decimal
    discount_amount: Decimal
    fee_amount: Decimal
    total_amount: Decimal
    coupon_id: Optional[str]
    payment_provider: Optional[str]
    expires_at: datetime
    paid_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    cancel_reason: Optional[str]
    lines: list[OrderLineResponse]
    created_at: datetime

    model_config = {"from_attributes": True}


class CheckoutResponse(BaseModel):
    order: OrderResponse
    redirect_url: str
    provider: str


# Provider callback statuses
PAYMENT_APPROVED = "approved"
PAYMENT_REJECTED = "rejected"
PAYMENT_CANCELLED = "cancelled"
PAYMENT_PENDING = "pending"
PAYMENT_IN_PROCESS = "in_process"


class PaymentWebhook(BaseModel):
    order_id: str
    status: str = Field(..., pattern="^(approved|rejected|cancelled|pending|in_process)$")
    provider_reference: str = Field(..., min_length=1, max_length=255)


class DevPaymentConfirm(BaseModel):
    provider_reference: Optional[str] = Field(None, max_length=255)


class PaymentConfirmationResponse(BaseModel):
    order: OrderResponse
    tickets: list[TicketResponse]
    already_confirmed: bool


class WebhookAck(BaseModel):
    order_id: str
    status: str
    action: str
