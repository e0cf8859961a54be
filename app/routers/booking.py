from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from loguru import logger

from app.crud import BookingCRUD, booking_crud, check_totals, service_booking_crud
from app.deps import (
    CalendarClient,
    can_delete_booking,
    can_read_bookings,
    get_calendar_client,
)
from app.events import calendar_id_for
from app.exceptions import CalendarSyncError, NotFound, ValidationError
from app.models import BookingKind
from app.schemas import (
    BookingCreate,
    BookingResponse,
    ServiceBookingCreate,
    ServiceBookingResponse,
)

router = APIRouter(prefix="/booking", tags=["bookings"])
service_router = APIRouter(prefix="/service-bookings", tags=["service-bookings"])

NO_CACHE = "no-cache, no-store, must-revalidate"


# ---------------------------------------------------------------------------
# Shared handlers, identical for both booking kinds
# ---------------------------------------------------------------------------


async def _create(crud: BookingCRUD, kind: BookingKind, payload):
    total = check_totals(payload)
    booking = await crud.create_booking(payload, total)
    logger.info(
        "Created pending {} booking {} for {} total={}",
        kind,
        booking.id,
        booking.start_date,
        total,
    )
    return booking


async def _cancel(
    crud: BookingCRUD,
    kind: BookingKind,
    booking_id: UUID | None,
    calendar_client: CalendarClient,
):
    """
    Delete a booking and, best-effort, its calendar event.
    A calendar failure never blocks the booking deletion.
    """
    if booking_id is None:
        raise ValidationError("Missing booking id")

    booking = await crud.get_booking(booking_id)
    if not booking:
        raise NotFound()

    if booking.calendar_event_id:
        try:
            await calendar_client.delete_event(
                calendar_id_for(kind), booking.calendar_event_id
            )
            logger.info("Deleted calendar event {}", booking.calendar_event_id)
        except CalendarSyncError as exc:
            logger.warning(
                "Calendar event {} not deleted, removing booking {} anyway: {}",
                booking.calendar_event_id,
                booking_id,
                exc,
            )

    # Booking can vanish between get and delete if two cancellations race
    if not await crud.delete_booking(booking_id):
        raise NotFound()

    logger.info("Cancelled booking {} ({})", booking_id, booking.customer_name)
    return booking


# ---------------------------------------------------------------------------
# Studio bookings
# ---------------------------------------------------------------------------


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(payload: BookingCreate) -> BookingResponse:
    return await _create(booking_crud, BookingKind.STUDIO, payload)


@router.get(
    "",
    response_model=list[BookingResponse],
    dependencies=[Depends(can_read_bookings)],
)
async def list_bookings(response: Response) -> list[BookingResponse]:
    response.headers["Cache-Control"] = NO_CACHE
    return await booking_crud.list_bookings()


@router.delete(
    "",
    response_model=BookingResponse,
    dependencies=[Depends(can_delete_booking)],
)
async def delete_booking(
    booking_id: UUID | None = Query(default=None, alias="id"),
    calendar_client: CalendarClient = Depends(get_calendar_client),
) -> BookingResponse:
    return await _cancel(booking_crud, BookingKind.STUDIO, booking_id, calendar_client)


# ---------------------------------------------------------------------------
# Service bookings
# ---------------------------------------------------------------------------


@service_router.post(
    "", response_model=ServiceBookingResponse, status_code=status.HTTP_201_CREATED
)
async def create_service_booking(
    payload: ServiceBookingCreate,
) -> ServiceBookingResponse:
    return await _create(service_booking_crud, BookingKind.SERVICE, payload)


@service_router.get(
    "",
    response_model=list[ServiceBookingResponse],
    dependencies=[Depends(can_read_bookings)],
)
async def list_service_bookings(response: Response) -> list[ServiceBookingResponse]:
    response.headers["Cache-Control"] = NO_CACHE
    return await service_booking_crud.list_bookings()


@service_router.delete(
    "",
    response_model=ServiceBookingResponse,
    dependencies=[Depends(can_delete_booking)],
)
async def delete_service_booking(
    booking_id: UUID | None = Query(default=None, alias="id"),
    calendar_client: CalendarClient = Depends(get_calendar_client),
) -> ServiceBookingResponse:
    return await _cancel(
        service_booking_crud, BookingKind.SERVICE, booking_id, calendar_client
    )
