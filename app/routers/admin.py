from datetime import datetime, timedelta, timezone
from uuid import uuid4

from fastapi import APIRouter, Depends, Header, Query, status
from loguru import logger

from app import settings
from app.crud import BookingCRUD, booking_crud, service_booking_crud, watch_crud
from app.deps import (
    CalendarClient,
    can_delete_booking,
    can_manage_calendar,
    can_repair_bookings,
    get_calendar_client,
)
from app.events import calendar_id_for
from app.exceptions import CalendarSyncError, NotFound, UpstreamFailure
from app.models import BookingKind
from app.schemas import (
    CalendarWatchRecord,
    CleanupResult,
    DateFixReport,
    WatchInfo,
    WatchStatus,
    WebhookAck,
)

router = APIRouter(tags=["admin"])

# A watch counts as usable only while more than this much lifetime is left
WATCH_VALIDITY_MARGIN = timedelta(hours=1)


def _crud_for(kind: BookingKind) -> BookingCRUD:
    return service_booking_crud if kind == BookingKind.SERVICE else booking_crud


def _watch_status(watch: CalendarWatchRecord | None, now: datetime) -> WatchStatus:
    if watch is None:
        return WatchStatus(
            status="no_watch",
            message="No calendar watch is currently registered",
            has_watch=False,
        )

    remaining = watch.expiration - now
    is_valid = remaining > WATCH_VALIDITY_MARGIN
    return WatchStatus(
        status="active" if is_valid else "expired",
        message=(
            "Calendar watch is active and valid"
            if is_valid
            else "Calendar watch is expired or expiring soon"
        ),
        has_watch=True,
        watch_info=WatchInfo(
            calendar_id=watch.calendar_id,
            channel_id=watch.channel_id,
            resource_id=watch.resource_id,
            webhook_url=watch.webhook_url,
            registered_at=watch.registered_at,
            expiration=watch.expiration,
            hours_remaining=round(remaining / timedelta(hours=1)),
            is_valid=is_valid,
        ),
    )


# ---------------------------------------------------------------------------
# Data repair
# ---------------------------------------------------------------------------


@router.post(
    "/fix-booking-dates",
    response_model=DateFixReport,
    dependencies=[Depends(can_repair_bookings)],
)
async def fix_booking_dates(kind: BookingKind = BookingKind.STUDIO) -> DateFixReport:
    """
    Shift every calendar-synced booking forward by one day.
    NOT idempotent: every call shifts the same rows again.
    """
    logger.warning("Starting bulk date fix for {} bookings", kind)
    report = await _crud_for(kind).shift_calendar_synced_dates(days=1)
    logger.info(
        "Bulk date fix complete: {} fixed, {} errors", report.fixed, report.errors
    )
    return report


@router.post(
    "/cleanup-pending-bookings",
    response_model=CleanupResult,
    dependencies=[Depends(can_delete_booking)],
)
async def cleanup_pending_bookings(
    kind: BookingKind = BookingKind.STUDIO,
    older_than_minutes: int = Query(default=30, ge=1),
) -> CleanupResult:
    deleted = await _crud_for(kind).purge_abandoned(
        timedelta(minutes=older_than_minutes)
    )
    if deleted:
        logger.info("Cleaned up {} abandoned {} bookings", deleted, kind)
    return CleanupResult(deleted=deleted)


# ---------------------------------------------------------------------------
# Calendar watch channels
# ---------------------------------------------------------------------------


@router.get(
    "/calendar-watch",
    response_model=WatchStatus,
    dependencies=[Depends(can_manage_calendar)],
)
async def check_calendar_watch(
    kind: BookingKind = BookingKind.STUDIO,
) -> WatchStatus:
    watch = await watch_crud.get_watch(kind)
    return _watch_status(watch, datetime.now(timezone.utc))


@router.post(
    "/calendar-watch",
    response_model=WatchStatus,
    dependencies=[Depends(can_manage_calendar)],
)
async def register_calendar_watch(
    kind: BookingKind = BookingKind.STUDIO,
    calendar_client: CalendarClient = Depends(get_calendar_client),
) -> WatchStatus:
    calendar_id = calendar_id_for(kind)
    channel_id = str(uuid4())
    try:
        channel = await calendar_client.watch_events(
            calendar_id, channel_id, settings.CALENDAR_WEBHOOK_URL
        )
    except CalendarSyncError as exc:
        logger.error("Registering calendar watch for {} failed: {}", kind, exc)
        raise UpstreamFailure(
            "Error registering calendar watch",
            status_code=status.HTTP_502_BAD_GATEWAY,
        ) from None

    # Google reports expiration as epoch milliseconds in a string
    if not channel.get("expiration"):
        logger.error("Calendar watch response for {} has no expiration: {}", kind, channel)
        raise UpstreamFailure(
            "Error registering calendar watch",
            status_code=status.HTTP_502_BAD_GATEWAY,
        )
    expiration = datetime.fromtimestamp(
        int(channel["expiration"]) / 1000, tz=timezone.utc
    )
    watch = await watch_crud.save_watch(
        kind=kind,
        calendar_id=calendar_id,
        channel_id=channel.get("id", channel_id),
        resource_id=channel.get("resourceId"),
        webhook_url=settings.CALENDAR_WEBHOOK_URL,
        expiration=expiration,
    )
    logger.info("Calendar watch {} registered for {} until {}", watch.channel_id, kind, expiration)
    return _watch_status(watch, datetime.now(timezone.utc))


@router.post("/google-calendar-webhook", response_model=WebhookAck)
async def google_calendar_webhook(
    x_goog_channel_id: str = Header(...),
    x_goog_resource_state: str = Header(default=""),
    x_goog_resource_id: str | None = Header(default=None),
) -> WebhookAck:
    """
    Push notification receiver for the channel opened by POST /calendar-watch.
    Google sends no body, only X-Goog-* headers; anything not matching a
    registered channel is refused. Notifications are acknowledged and logged,
    nothing is imported from the calendar.
    """
    watch = await watch_crud.get_watch_by_channel(x_goog_channel_id)
    if watch is None or (
        x_goog_resource_id
        and watch.resource_id
        and x_goog_resource_id != watch.resource_id
    ):
        logger.warning("Calendar notification for unknown channel {}", x_goog_channel_id)
        raise NotFound("Unknown calendar channel")

    logger.info(
        "Calendar notification on {} channel {}: {}",
        watch.kind,
        watch.channel_id,
        x_goog_resource_state or "unknown",
    )
    return WebhookAck(handled=False)
