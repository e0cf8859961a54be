from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from app.events import parse_wall_clock
from app.models import BookingKind, PaymentStatus


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python; either accepted on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LineItem(WireModel):
    id: int | str | None = None
    name: str = Field(min_length=1, max_length=255)
    quantity: int = Field(ge=0)
    price: Decimal = Field(ge=0)


class _BookingCreate(WireModel):
    start_date: date
    start_time: str
    end_time: str
    subtotal: Decimal
    estimated_total: Decimal
    customer_name: str = Field(min_length=1, max_length=255)
    customer_email: EmailStr
    customer_phone: str = Field(min_length=1, max_length=32)

    @field_validator("start_time", "end_time", mode="after")
    @classmethod
    def require_wall_clock(cls, v: str) -> str:
        parse_wall_clock(v)
        return v.strip().upper()

    @model_validator(mode="after")
    def validate_time_range(self):
        if parse_wall_clock(self.end_time) <= parse_wall_clock(self.start_time):
            raise ValueError("endTime must be after startTime")
        return self


class BookingCreate(_BookingCreate):
    studio: str = Field(min_length=1, max_length=255)
    items: list[LineItem]

    @property
    def lines(self) -> list[LineItem]:
        return self.items


class ServiceBookingCreate(_BookingCreate):
    services: list[LineItem]

    @property
    def lines(self) -> list[LineItem]:
        return self.services


class _BookingResponse(WireModel):
    id: UUID
    start_date: date
    start_time: str
    end_time: str
    subtotal: Decimal
    estimated_total: Decimal
    payment_status: PaymentStatus
    customer_name: str
    customer_email: str
    customer_phone: str
    calendar_event_id: str | None = None
    created_at: datetime

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class BookingResponse(_BookingResponse):
    studio: str
    items: list[LineItem]


class ServiceBookingResponse(_BookingResponse):
    services: list[LineItem]
    booking_type: Literal["service"] = "service"


class PaymentVerification(WireModel):
    message: str
    booking: BookingResponse | ServiceBookingResponse
    booking_type: Literal["studio", "service"]


class SessionType(WireModel):
    type: str
    session_id: str


class WebhookAck(WireModel):
    received: bool = True
    handled: bool


class DateFixSample(WireModel):
    name: str
    before: str
    after: str
    status: str


class DateFixReport(WireModel):
    success: bool = True
    message: str = "Bulk date fix completed"
    total_bookings: int
    fixed: int
    errors: int
    results: list[DateFixSample] = Field(default_factory=list)


class CleanupResult(WireModel):
    deleted: int


class WatchInfo(WireModel):
    calendar_id: str
    channel_id: str
    resource_id: str | None
    webhook_url: str
    registered_at: datetime
    expiration: datetime
    hours_remaining: int
    is_valid: bool


class WatchStatus(WireModel):
    status: Literal["no_watch", "active", "expired"]
    message: str
    has_watch: bool
    watch_info: WatchInfo | None = None


class CalendarWatchRecord(WireModel):
    kind: BookingKind
    calendar_id: str
    channel_id: str
    resource_id: str | None = None
    webhook_url: str
    expiration: datetime
    registered_at: datetime

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )

    @field_validator("expiration", "registered_at", mode="after")
    @classmethod
    def as_utc(cls, v: datetime) -> datetime:
        """Some backends hand back naive UTC datetimes."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)
