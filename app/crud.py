from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Generic, TypeVar
from uuid import UUID

from loguru import logger
from tortoise.exceptions import BaseORMException

from app.exceptions import ValidationError
from app.models import (
    Booking,
    BookingBase,
    BookingKind,
    CalendarWatch,
    PaymentStatus,
    ServiceBooking,
)
from app.schemas import (
    BookingCreate,
    BookingResponse,
    CalendarWatchRecord,
    DateFixReport,
    DateFixSample,
    LineItem,
    ServiceBookingCreate,
    ServiceBookingResponse,
)

DATE_FIX_SAMPLE_SIZE = 10

ModelT = TypeVar("ModelT", bound=BookingBase)
SchemaT = TypeVar("SchemaT", BookingResponse, ServiceBookingResponse)


def recalculate_subtotal(lines: list[LineItem]) -> Decimal:
    return sum((line.quantity * line.price for line in lines), Decimal("0"))


def check_totals(payload: BookingCreate | ServiceBookingCreate) -> Decimal:
    """
    Recompute the total from the line items and return it.
    Raises ValidationError if either client-supplied amount disagrees; there is
    no rounding tolerance.
    """
    recalculated = recalculate_subtotal(payload.lines)
    if payload.subtotal != recalculated:
        raise ValidationError("Invalid subtotal")
    if payload.estimated_total != recalculated:
        raise ValidationError("Total mismatch")
    return recalculated


class BookingCRUD(Generic[ModelT, SchemaT]):
    def __init__(self, model: type[ModelT], schema: type[SchemaT]) -> None:
        self.model = model
        self.schema = schema

    def _to_schema(self, inst: ModelT) -> SchemaT:
        return self.schema.model_validate(inst, from_attributes=True)

    def _kind_fields(self, payload: Any) -> dict[str, Any]:
        raise NotImplementedError

    async def create_booking(self, payload: Any, total: Decimal) -> SchemaT:
        """Persist a pending booking whose totals were already checked."""
        inst = await self.model.create(
            start_date=payload.start_date,
            start_time=payload.start_time,
            end_time=payload.end_time,
            subtotal=total,
            estimated_total=total,
            payment_status=PaymentStatus.PENDING,
            customer_name=payload.customer_name,
            customer_email=payload.customer_email,
            customer_phone=payload.customer_phone,
            **self._kind_fields(payload),
        )
        return self._to_schema(inst)

    async def get_booking(self, booking_id: UUID) -> SchemaT | None:
        inst = await self.model.get_or_none(id=booking_id)
        if not inst:
            return None
        return self._to_schema(inst)

    async def list_bookings(self) -> list[SchemaT]:
        bookings = await self.model.all()
        return [self._to_schema(b) for b in bookings]

    async def delete_booking(self, booking_id: UUID) -> bool:
        deleted = await self.model.filter(id=booking_id).delete()
        return deleted > 0

    async def mark_paid(self, booking_id: UUID) -> SchemaT | None:
        """
        Flip payment_status to success in a single UPDATE. A booking already
        marked failed is left alone and None is returned, as for a missing one.
        """
        updated = await self.model.filter(
            id=booking_id,
            payment_status__in=[PaymentStatus.PENDING, PaymentStatus.SUCCESS],
        ).update(
            payment_status=PaymentStatus.SUCCESS,
            updated_at=datetime.now(timezone.utc),
        )
        if not updated:
            return None
        return await self.get_booking(booking_id)

    async def attach_calendar_event(self, booking_id: UUID, event_id: str) -> bool:
        """
        Store the calendar event id unless one is already set.
        Returns False when another request won the race.
        """
        updated = await self.model.filter(
            id=booking_id, calendar_event_id__isnull=True
        ).update(calendar_event_id=event_id, updated_at=datetime.now(timezone.utc))
        return updated > 0

    async def shift_calendar_synced_dates(self, days: int = 1) -> DateFixReport:
        """
        Add `days` to start_date of every booking that has a calendar event.
        Unconditional and not idempotent: each run shifts again.
        """
        bookings = await self.model.filter(calendar_event_id__isnull=False).exclude(
            calendar_event_id=""
        )
        logger.info("Found {} calendar-synced {} rows", len(bookings), self.model.__name__)

        fixed = 0
        errors = 0
        results: list[DateFixSample] = []
        for booking in bookings:
            name = booking.customer_name or "No Name"
            before = booking.start_date
            after = before + timedelta(days=days)
            try:
                await self.model.filter(id=booking.id).update(start_date=after)
            except BaseORMException as exc:
                errors += 1
                results.append(
                    DateFixSample(
                        name=name,
                        before=before.isoformat(),
                        after="Error",
                        status=f"Error: {exc}",
                    )
                )
                logger.error("Failed to shift date for booking {}: {}", booking.id, exc)
                continue

            fixed += 1
            results.append(
                DateFixSample(
                    name=name,
                    before=before.isoformat(),
                    after=after.isoformat(),
                    status="Fixed",
                )
            )
            logger.debug("Shifted booking {}: {} -> {}", booking.id, before, after)

        return DateFixReport(
            total_bookings=len(bookings),
            fixed=fixed,
            errors=errors,
            results=results[:DATE_FIX_SAMPLE_SIZE],
        )

    async def purge_abandoned(self, older_than: timedelta) -> int:
        """Delete stale unpaid bookings. Calendar-synced rows are never touched."""
        cutoff = datetime.now(timezone.utc) - older_than
        return await self.model.filter(
            payment_status=PaymentStatus.PENDING,
            created_at__lt=cutoff,
            calendar_event_id__isnull=True,
        ).delete()


class StudioBookingCRUD(BookingCRUD[Booking, BookingResponse]):
    def _kind_fields(self, payload: BookingCreate) -> dict[str, Any]:
        return {
            "studio": payload.studio,
            "items": [i.model_dump(mode="json", exclude_none=True) for i in payload.items],
        }


class ServiceBookingCRUD(BookingCRUD[ServiceBooking, ServiceBookingResponse]):
    def _kind_fields(self, payload: ServiceBookingCreate) -> dict[str, Any]:
        return {
            "services": [
                s.model_dump(mode="json", exclude_none=True) for s in payload.services
            ],
        }


booking_crud = StudioBookingCRUD(Booking, BookingResponse)
service_booking_crud = ServiceBookingCRUD(ServiceBooking, ServiceBookingResponse)


class CalendarWatchCRUD:
    async def get_watch(self, kind: BookingKind) -> CalendarWatchRecord | None:
        inst = await CalendarWatch.get_or_none(kind=kind)
        if not inst:
            return None
        return CalendarWatchRecord.model_validate(inst, from_attributes=True)

    async def get_watch_by_channel(self, channel_id: str) -> CalendarWatchRecord | None:
        inst = await CalendarWatch.filter(channel_id=channel_id).first()
        if not inst:
            return None
        return CalendarWatchRecord.model_validate(inst, from_attributes=True)

    async def save_watch(
        self,
        kind: BookingKind,
        calendar_id: str,
        channel_id: str,
        resource_id: str | None,
        webhook_url: str,
        expiration: datetime,
    ) -> CalendarWatchRecord:
        """Replace the registered channel for a kind; one row per kind."""
        inst, _ = await CalendarWatch.update_or_create(
            kind=kind,
            defaults={
                "calendar_id": calendar_id,
                "channel_id": channel_id,
                "resource_id": resource_id,
                "webhook_url": webhook_url,
                "expiration": expiration,
            },
        )
        return CalendarWatchRecord.model_validate(inst, from_attributes=True)


watch_crud = CalendarWatchCRUD()
