from uuid import UUID

from fastapi import APIRouter, Depends, Header, Request
from loguru import logger

from app.cache import acquire_calendar_sync_lock, release_calendar_sync_lock
from app.crud import BookingCRUD, booking_crud, service_booking_crud
from app.deps import (
    CalendarClient,
    PaymentSession,
    StripeClient,
    get_calendar_client,
    get_stripe_client,
)
from app.events import build_service_event, build_studio_event, calendar_id_for
from app.exceptions import (
    BookingNotPayable,
    CalendarSyncError,
    MissingMetadata,
    NotFound,
    PaymentNotCompleted,
    ValidationError,
)
from app.models import BookingKind
from app.schemas import PaymentVerification, SessionType, WebhookAck

router = APIRouter(tags=["payments"])

# Checkout session metadata key holding the booking id, per booking kind
METADATA_KEYS: dict[BookingKind, str] = {
    BookingKind.STUDIO: "bookingId",
    BookingKind.SERVICE: "serviceBookingId",
}

_EVENT_BUILDERS = {
    BookingKind.STUDIO: build_studio_event,
    BookingKind.SERVICE: build_service_event,
}


def _crud_for(kind: BookingKind) -> BookingCRUD:
    return service_booking_crud if kind == BookingKind.SERVICE else booking_crud


def _require_session_id(session_id: str | None) -> str:
    if not session_id:
        raise ValidationError("Missing session ID")
    return session_id


async def _sync_calendar(
    crud: BookingCRUD,
    kind: BookingKind,
    booking,
    calendar_client: CalendarClient,
) -> str | None:
    """
    Create the calendar event for a paid booking unless it already has one.
    Returns the new event id, or None when skipped or failed. Never raises
    for calendar-side faults: the payment stays confirmed regardless.
    """
    if booking.calendar_event_id:
        logger.info(
            "Booking {} already synced to calendar event {}, skipping",
            booking.id,
            booking.calendar_event_id,
        )
        return None

    if not await acquire_calendar_sync_lock(booking.id):
        logger.info("Calendar sync for booking {} already in progress", booking.id)
        return None

    calendar_id = calendar_id_for(kind)
    try:
        event = _EVENT_BUILDERS[kind](booking)
        event_id = await calendar_client.create_event(calendar_id, event)
    except (CalendarSyncError, ValueError) as exc:
        logger.error("Failed to create calendar event for booking {}: {}", booking.id, exc)
        return None
    else:
        if not await crud.attach_calendar_event(booking.id, event_id):
            logger.warning(
                "Booking {} was synced concurrently, removing duplicate event {}",
                booking.id,
                event_id,
            )
            await _discard_event(calendar_client, calendar_id, event_id)
            return None
    finally:
        await release_calendar_sync_lock(booking.id)

    logger.info("Calendar event {} created for booking {}", event_id, booking.id)
    return event_id


async def _discard_event(
    calendar_client: CalendarClient, calendar_id: str, event_id: str
) -> None:
    try:
        await calendar_client.delete_event(calendar_id, event_id)
    except CalendarSyncError as exc:
        logger.error("Duplicate calendar event {} left behind: {}", event_id, exc)


async def _confirm(
    kind: BookingKind,
    session: PaymentSession,
    calendar_client: CalendarClient,
) -> PaymentVerification:
    """Mark the booking a paid session points at as paid and sync it."""
    key = METADATA_KEYS[kind]
    raw_id = session.metadata.get(key)
    if not raw_id:
        raise MissingMetadata(f"Missing {key} in metadata")
    try:
        booking_id = UUID(raw_id)
    except ValueError:
        raise NotFound() from None

    crud = _crud_for(kind)
    booking = await crud.mark_paid(booking_id)
    if not booking:
        if await crud.get_booking(booking_id):
            logger.warning(
                "Paid session {} references booking {} that is not pending",
                session.id,
                booking_id,
            )
            raise BookingNotPayable()
        logger.error("Paid session {} references missing booking {}", session.id, booking_id)
        raise NotFound()

    event_id = await _sync_calendar(crud, kind, booking, calendar_client)
    if event_id:
        booking = booking.model_copy(update={"calendar_event_id": event_id})

    label = "Service payment" if kind == BookingKind.SERVICE else "Payment"
    return PaymentVerification(
        message=f"{label} verified and booking updated",
        booking=booking,
        booking_type=kind.value,
    )


async def _verify(
    kind: BookingKind,
    session_id: str | None,
    stripe_client: StripeClient,
    calendar_client: CalendarClient,
) -> PaymentVerification:
    session_id = _require_session_id(session_id)
    logger.info("Verifying {} checkout session {}", kind, session_id)

    session = await stripe_client.retrieve_session(session_id)
    if not session.is_paid:
        raise PaymentNotCompleted()
    return await _confirm(kind, session, calendar_client)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/verify-payment", response_model=PaymentVerification)
async def verify_payment(
    session_id: str | None = None,
    stripe_client: StripeClient = Depends(get_stripe_client),
    calendar_client: CalendarClient = Depends(get_calendar_client),
) -> PaymentVerification:
    return await _verify(BookingKind.STUDIO, session_id, stripe_client, calendar_client)


@router.get("/verify-service-payment", response_model=PaymentVerification)
async def verify_service_payment(
    session_id: str | None = None,
    stripe_client: StripeClient = Depends(get_stripe_client),
    calendar_client: CalendarClient = Depends(get_calendar_client),
) -> PaymentVerification:
    return await _verify(BookingKind.SERVICE, session_id, stripe_client, calendar_client)


@router.get("/get-session-type", response_model=SessionType)
async def get_session_type(
    session_id: str | None = None,
    stripe_client: StripeClient = Depends(get_stripe_client),
) -> SessionType:
    session = await stripe_client.retrieve_session(_require_session_id(session_id))
    return SessionType(
        type=session.metadata.get("type") or BookingKind.STUDIO.value,
        session_id=session.id,
    )


@router.post("/webhook-stripe", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None),
    stripe_client: StripeClient = Depends(get_stripe_client),
    calendar_client: CalendarClient = Depends(get_calendar_client),
) -> WebhookAck:
    """
    Server-side counterpart of the verify endpoints: Stripe calls it when a
    Checkout session completes, so a customer who never returns to the success
    page still ends up paid and on the calendar.
    """
    if not stripe_signature:
        raise ValidationError("Missing Stripe signature")

    event = stripe_client.construct_event(await request.body(), stripe_signature)
    session = event.session
    if event.type != "checkout.session.completed" or session is None:
        logger.debug("Ignoring Stripe event {}", event.type)
        return WebhookAck(handled=False)
    if not session.is_paid:
        logger.info("Checkout session {} completed without payment yet", session.id)
        return WebhookAck(handled=False)

    kind = (
        BookingKind.SERVICE
        if session.metadata.get("type") == BookingKind.SERVICE.value
        else BookingKind.STUDIO
    )
    logger.info("Stripe webhook confirming {} checkout session {}", kind, session.id)
    await _confirm(kind, session, calendar_client)
    return WebhookAck(handled=True)
