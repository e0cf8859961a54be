"""
Google Calendar event payloads for paid bookings.

Bookings store a civil date plus wall-clock strings ("11:00 AM"). They only
become absolute instants here, interpreted in the studio's IANA time zone so
daylight-saving transitions are handled by zoneinfo rather than fixed offsets.
"""

from __future__ import annotations

from datetime import date, datetime, time
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo

from app import settings
from app.models import BookingKind

if TYPE_CHECKING:
    from app.schemas import BookingResponse, ServiceBookingResponse

WALL_CLOCK_FORMAT = "%I:%M %p"


def parse_wall_clock(value: str) -> time:
    """Parse "11:00 AM" / "1:30 pm" into a naive time. Raises ValueError."""
    try:
        return datetime.strptime(value.strip().upper(), WALL_CLOCK_FORMAT).time()
    except (AttributeError, ValueError):
        raise ValueError(f"time must look like '11:00 AM', got {value!r}") from None


def to_instant(day: date, wall_clock: str, tz_name: str | None = None) -> datetime:
    """Combine a civil date and wall-clock string into an aware datetime."""
    zone = ZoneInfo(tz_name or settings.STUDIO_TIMEZONE)
    return datetime.combine(day, parse_wall_clock(wall_clock), tzinfo=zone)


def _selected_lines(lines: list) -> list:
    return [line for line in lines if line.quantity > 0]


def _event_time(day: date, wall_clock: str, tz_name: str) -> dict[str, str]:
    return {
        "dateTime": to_instant(day, wall_clock, tz_name).isoformat(),
        "timeZone": tz_name,
    }


def build_studio_event(booking: BookingResponse) -> dict[str, Any]:
    tz_name = settings.STUDIO_TIMEZONE
    day = booking.start_date.isoformat()

    description = [
        f"Customer Name: {booking.customer_name}",
        f"Customer Email: {booking.customer_email}",
        f"Customer Phone: {booking.customer_phone}",
        f"Date: {day}",
        f"Start Time: {booking.start_time}",
        f"End Time: {booking.end_time}",
    ]
    addons = _selected_lines(booking.items)
    if addons:
        description.append("Add-ons:")
        description.extend(f"- {i.name} ({i.quantity})" for i in addons)
    description.append(f"Subtotal: ${booking.subtotal}")
    description.append(f"Estimated Total: ${booking.estimated_total}")

    return {
        "summary": f"Booking for {booking.studio}",
        "location": settings.STUDIO_LOCATION,
        "description": "\n".join(description),
        "start": _event_time(booking.start_date, booking.start_time, tz_name),
        "end": _event_time(booking.start_date, booking.end_time, tz_name),
    }


def build_service_event(booking: ServiceBookingResponse) -> dict[str, Any]:
    tz_name = settings.STUDIO_TIMEZONE
    day = booking.start_date.isoformat()

    description = [
        f"Customer Name: {booking.customer_name}",
        f"Customer Email: {booking.customer_email}",
        f"Customer Phone: {booking.customer_phone}",
        f"Date: {day}",
        f"Start Time: {booking.start_time}",
        f"End Time: {booking.end_time}",
        "Services Booked:",
    ]
    description.extend(
        f"- {s.name} (Qty: {s.quantity})" for s in _selected_lines(booking.services)
    )
    description.append(f"Subtotal: ${booking.subtotal}")
    description.append(f"Total: ${booking.estimated_total}")

    return {
        "summary": f"Service Booking - {booking.customer_name}",
        "location": settings.SERVICE_LOCATION,
        "description": "\n".join(description),
        "start": _event_time(booking.start_date, booking.start_time, tz_name),
        "end": _event_time(booking.start_date, booking.end_time, tz_name),
    }


def calendar_id_for(kind: BookingKind) -> str:
    if kind == BookingKind.SERVICE:
        return settings.GOOGLE_CALENDAR_ID_WEBSITE_SERVICE
    return settings.GOOGLE_CALENDAR_ID_WEBSITE
