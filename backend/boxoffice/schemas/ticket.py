"""
Pydantic schemas for tickets, check-in and transfers.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class TicketResponse(BaseModel):
    id: str
    ticket_code: str
    event_id: str
    ticket_type_id: str
    order_line_id: Optional[str]
    holder_id: Optional[str]
    attendee_name: Optional[str]
    attendee_email: Optional[str]
    is_used: bool
    used_at: Optional[datetime]
    transfer_status: str
    is_complimentary: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class CheckInRequest(BaseModel):
    event_id: str
    ticket_code: str = Field(..., min_length=1, max_length=64)


class CheckInResponse(BaseModel):
    ticket_id: str
    ticket_code: str
    event_id: str
    ticket_type_name: str
    attendee_name: Optional[str]
    attendee_email: Optional[str]
    used_at: datetime
    is_complimentary: bool

    model_config = {"from_attributes": True}


class CheckInStatsResponse(BaseModel):
    event_id: str
    issued: int
    checked_in: int
    remaining: int

    model_config = {"from_attributes": True}


class ComplimentaryCreate(BaseModel):
    event_id: str
    ticket_type_id: str
    recipient_name: str = Field(..., min_length=1, max_length=255)
    recipient_email: EmailStr
    recipient_account_id: Optional[str] = None
    quantity: int = Field(default=1, gt=0)


class TransferCreate(BaseModel):
    ticket_id: str
    to_email: EmailStr


class TransferAccept(BaseModel):
    attendee_name: Optional[str] = Field(None, max_length=255)


class TransferResponse(BaseModel):
    id: str
    ticket_id: str
    from_account_id: str
    to_email: str
    to_account_id: Optional[str]
    transfer_code: str
    status: str
    created_at: datetime
    completed_at: Optional[datetime]

    model_config = {"from_attributes": True}
