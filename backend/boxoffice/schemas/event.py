"""
Pydantic schemas for event and ticket type request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import AwareDatetime, BaseModel, EmailStr, Field, model_validator


class TicketTypeCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = Field(None, max_length=500)
    price: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    quantity_available: int = Field(..., gt=0, le=100000)
    max_per_order: int = Field(default=10, gt=0, le=100)
    sales_start: Optional[AwareDatetime] = None
    sales_end: Optional[AwareDatetime] = None

    @model_validator(mode="after")
    def check_sales_window(self):
        if self.sales_start and self.sales_end and self.sales_end <= self.sales_start:
            raise ValueError("sales_end must be after sales_start")
        return self


class TicketTypeResponse(BaseModel):
    id: str
    event_id: str
    name: str
    description: Optional[str]
    price: Decimal
    quantity_available: int
    quantity_sold: int
    quantity_held: int
    available_remaining: int
    max_per_order: int
    is_active: bool
    sales_start: Optional[datetime]
    sales_end: Optional[datetime]

    model_config = {"from_attributes": True}


class CapacityUpdate(BaseModel):
    quantity_available: int = Field(..., gt=0, le=100000)


class ActiveUpdate(BaseModel):
    is_active: bool


class EventCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    venue_name: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, max_length=120)
    starts_at: AwareDatetime
    ends_at: Optional[AwareDatetime] = None
    ticket_types: list[TicketTypeCreate] = Field(default_factory=list, max_length=50)

    @model_validator(mode="after")
    def check_dates(self):
        if self.ends_at and self.ends_at <= self.starts_at:
            raise ValueError("ends_at must be after starts_at")
        return self


class EventResponse(BaseModel):
    id: str
    organizer_id: str
    title: str
    description: Optional[str]
    venue_name: Optional[str]
    city: Optional[str]
    starts_at: datetime
    ends_at: Optional[datetime]
    status: str
    ticket_types: list[TicketTypeResponse] = []
    created_at: datetime

    model_config = {"from_attributes": True}


class EventListResponse(BaseModel):
    events: list[EventResponse]
    total: int
    page: int
    page_size: int
    cached: bool = False


class CheckinStaffCreate(BaseModel):
    email: EmailStr
    name: Optional[str] = Field(None, max_length=255)


class CheckinStaffResponse(BaseModel):
    id: str
    event_id: str
    email: str
    name: Optional[str]
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}
