"""
Endpoint test suite for the payment verification routes and the Stripe webhook.

The Stripe and calendar clients are injected as mocks via client_factory();
the CRUD singletons are patched where payments.py looks them up.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

from app.deps import StripeClient
from app.exceptions import CalendarSyncError, NotFound

from .factories import (
    BOOKING_ID,
    EVENT_ID,
    SERVICE_BOOKING_ID,
    SESSION_ID,
    WEBHOOK_SECRET,
    booking_model,
    paid_session,
    service_booking_model,
    signed_webhook,
    stripe_event,
)

CRUD_PATH = "app.routers.payments.booking_crud"
SERVICE_CRUD_PATH = "app.routers.payments.service_booking_crud"


def _stripe(session=None, side_effect=None) -> MagicMock:
    mock = MagicMock()
    mock.retrieve_session = AsyncMock(
        return_value=session or paid_session(), side_effect=side_effect
    )
    return mock


def _calendar(event_id: str = EVENT_ID, side_effect=None) -> MagicMock:
    mock = MagicMock()
    mock.create_event = AsyncMock(return_value=event_id, side_effect=side_effect)
    mock.delete_event = AsyncMock(return_value=None)
    return mock


# ---------------------------------------------------------------------------
# GET /verify-payment
# ---------------------------------------------------------------------------


class TestVerifyPayment:
    def test_paid_session_marks_booking_and_creates_event(self, client_factory):
        calendar = _calendar()
        client = client_factory(stripe_client=_stripe(), calendar_client=calendar)
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.mark_paid = AsyncMock(
                return_value=booking_model(payment_status="success")
            )
            mock_crud.attach_calendar_event = AsyncMock(return_value=True)
            resp = client.get("/verify-payment", params={"session_id": SESSION_ID})

        assert resp.status_code == 200
        data = resp.json()
        assert data["message"] == "Payment verified and booking updated"
        assert data["bookingType"] == "studio"
        assert data["booking"]["paymentStatus"] == "success"
        assert data["booking"]["calendarEventId"] == EVENT_ID
        mock_crud.mark_paid.assert_awaited_once_with(BOOKING_ID)
        mock_crud.attach_calendar_event.assert_awaited_once_with(BOOKING_ID, EVENT_ID)
        calendar.create_event.assert_awaited_once()

    def test_event_payload_uses_studio_calendar(self, client_factory):
        calendar = _calendar()
        client = client_factory(calendar_client=calendar)
        with (
            patch(CRUD_PATH) as mock_crud,
            patch("app.settings.GOOGLE_CALENDAR_ID_WEBSITE", "website-cal"),
        ):
            mock_crud.mark_paid = AsyncMock(
                return_value=booking_model(payment_status="success")
            )
            mock_crud.attach_calendar_event = AsyncMock(return_value=True)
            client.get("/verify-payment", params={"session_id": SESSION_ID})

        calendar_id, event = calendar.create_event.call_args[0]
        assert calendar_id == "website-cal"
        assert event["summary"] == "Booking for Studio A"

    def test_already_synced_booking_creates_no_event(self, client_factory, sync_lock):
        calendar = _calendar()
        client = client_factory(calendar_client=calendar)
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.mark_paid = AsyncMock(
                return_value=booking_model(
                    payment_status="success", calendar_event_id="evt_existing"
                )
            )
            mock_crud.attach_calendar_event = AsyncMock()
            resp = client.get("/verify-payment", params={"session_id": SESSION_ID})

        assert resp.status_code == 200
        assert resp.json()["booking"]["calendarEventId"] == "evt_existing"
        calendar.create_event.assert_not_awaited()
        mock_crud.attach_calendar_event.assert_not_awaited()
        sync_lock.assert_not_awaited()

    def test_sync_in_progress_elsewhere_skips_calendar(self, client_factory, sync_lock):
        sync_lock.return_value = False
        calendar = _calendar()
        client = client_factory(calendar_client=calendar)
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.mark_paid = AsyncMock(
                return_value=booking_model(payment_status="success")
            )
            resp = client.get("/verify-payment", params={"session_id": SESSION_ID})

        assert resp.status_code == 200
        assert resp.json()["booking"]["calendarEventId"] is None
        calendar.create_event.assert_not_awaited()

    def test_losing_the_attach_race_discards_duplicate_event(self, client_factory):
        calendar = _calendar()
        client = client_factory(calendar_client=calendar)
        with (
            patch(CRUD_PATH) as mock_crud,
            patch("app.settings.GOOGLE_CALENDAR_ID_WEBSITE", "website-cal"),
        ):
            mock_crud.mark_paid = AsyncMock(
                return_value=booking_model(payment_status="success")
            )
            mock_crud.attach_calendar_event = AsyncMock(return_value=False)
            resp = client.get("/verify-payment", params={"session_id": SESSION_ID})

        assert resp.status_code == 200
        assert resp.json()["booking"]["calendarEventId"] is None
        calendar.delete_event.assert_awaited_once_with("website-cal", EVENT_ID)

    def test_calendar_failure_still_confirms_payment(self, client_factory):
        calendar = _calendar(side_effect=CalendarSyncError("quota exceeded"))
        client = client_factory(calendar_client=calendar)
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.mark_paid = AsyncMock(
                return_value=booking_model(payment_status="success")
            )
            mock_crud.attach_calendar_event = AsyncMock()
            resp = client.get("/verify-payment", params={"session_id": SESSION_ID})

        assert resp.status_code == 200
        assert resp.json()["booking"]["paymentStatus"] == "success"
        assert resp.json()["booking"]["calendarEventId"] is None
        mock_crud.attach_calendar_event.assert_not_awaited()

    def test_unpaid_session_returns_400_and_leaves_booking(self, client_factory):
        client = client_factory(stripe_client=_stripe(paid_session("unpaid")))
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.mark_paid = AsyncMock()
            resp = client.get("/verify-payment", params={"session_id": SESSION_ID})

        assert resp.status_code == 400
        assert resp.json()["detail"] == "Payment not completed"
        mock_crud.mark_paid.assert_not_awaited()

    def test_missing_booking_id_in_metadata_returns_400(self, client_factory):
        client = client_factory(stripe_client=_stripe(paid_session(metadata={})))
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.mark_paid = AsyncMock()
            resp = client.get("/verify-payment", params={"session_id": SESSION_ID})

        assert resp.status_code == 400
        assert resp.json()["detail"] == "Missing bookingId in metadata"
        mock_crud.mark_paid.assert_not_awaited()

    def test_booking_gone_returns_404(self, client_factory):
        client = client_factory()
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.mark_paid = AsyncMock(return_value=None)
            mock_crud.get_booking = AsyncMock(return_value=None)
            resp = client.get("/verify-payment", params={"session_id": SESSION_ID})
        assert resp.status_code == 404

    def test_failed_booking_is_not_flipped_to_paid(self, client_factory):
        calendar = _calendar()
        client = client_factory(calendar_client=calendar)
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.mark_paid = AsyncMock(return_value=None)
            mock_crud.get_booking = AsyncMock(
                return_value=booking_model(payment_status="failed")
            )
            resp = client.get("/verify-payment", params={"session_id": SESSION_ID})

        assert resp.status_code == 409
        assert resp.json()["detail"] == "Booking is no longer awaiting payment"
        calendar.create_event.assert_not_awaited()

    def test_malformed_booking_id_returns_404(self, client_factory):
        session = paid_session(metadata={"bookingId": "not-a-uuid"})
        client = client_factory(stripe_client=_stripe(session))
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.mark_paid = AsyncMock()
            resp = client.get("/verify-payment", params={"session_id": SESSION_ID})
        assert resp.status_code == 404
        mock_crud.mark_paid.assert_not_awaited()

    def test_missing_session_id_returns_400(self, client_factory):
        stripe_client = _stripe()
        client = client_factory(stripe_client=stripe_client)
        resp = client.get("/verify-payment")
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Missing session ID"
        stripe_client.retrieve_session.assert_not_awaited()

    def test_unknown_session_returns_404(self, client_factory):
        stripe_client = _stripe(side_effect=NotFound("Payment session not found"))
        client = client_factory(stripe_client=stripe_client)
        resp = client.get("/verify-payment", params={"session_id": "cs_missing"})
        assert resp.status_code == 404


# ---------------------------------------------------------------------------
# GET /verify-service-payment
# ---------------------------------------------------------------------------


class TestVerifyServicePayment:
    def test_paid_session_returns_service_booking(self, client_factory):
        session = paid_session(metadata={"serviceBookingId": str(SERVICE_BOOKING_ID)})
        calendar = _calendar()
        client = client_factory(stripe_client=_stripe(session), calendar_client=calendar)
        with (
            patch(SERVICE_CRUD_PATH) as mock_crud,
            patch("app.settings.GOOGLE_CALENDAR_ID_WEBSITE_SERVICE", "service-cal"),
        ):
            mock_crud.mark_paid = AsyncMock(
                return_value=service_booking_model(payment_status="success")
            )
            mock_crud.attach_calendar_event = AsyncMock(return_value=True)
            resp = client.get(
                "/verify-service-payment", params={"session_id": SESSION_ID}
            )

        assert resp.status_code == 200
        data = resp.json()
        assert data["message"] == "Service payment verified and booking updated"
        assert data["bookingType"] == "service"
        assert data["booking"]["bookingType"] == "service"
        assert data["booking"]["calendarEventId"] == EVENT_ID
        mock_crud.mark_paid.assert_awaited_once_with(SERVICE_BOOKING_ID)

        calendar_id, event = calendar.create_event.call_args[0]
        assert calendar_id == "service-cal"
        assert event["summary"] == "Service Booking - Tatiana Reyes"

    def test_studio_metadata_key_is_not_accepted(self, client_factory):
        client = client_factory(stripe_client=_stripe(paid_session()))
        with patch(SERVICE_CRUD_PATH) as mock_crud:
            mock_crud.mark_paid = AsyncMock()
            resp = client.get(
                "/verify-service-payment", params={"session_id": SESSION_ID}
            )
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Missing serviceBookingId in metadata"
        mock_crud.mark_paid.assert_not_awaited()


# ---------------------------------------------------------------------------
# GET /get-session-type
# ---------------------------------------------------------------------------


class TestGetSessionType:
    def test_defaults_to_studio(self, client_factory):
        client = client_factory(stripe_client=_stripe(paid_session(metadata={})))
        resp = client.get("/get-session-type", params={"session_id": SESSION_ID})
        assert resp.status_code == 200
        assert resp.json() == {"type": "studio", "sessionId": SESSION_ID}

    def test_reports_service_sessions(self, client_factory):
        session = paid_session(metadata={"type": "service"})
        client = client_factory(stripe_client=_stripe(session))
        resp = client.get("/get-session-type", params={"session_id": SESSION_ID})
        assert resp.json()["type"] == "service"

    def test_unpaid_sessions_still_report_type(self, client_factory):
        session = paid_session("unpaid", metadata={"type": "service"})
        client = client_factory(stripe_client=_stripe(session))
        resp = client.get("/get-session-type", params={"session_id": SESSION_ID})
        assert resp.status_code == 200

    def test_missing_session_id_returns_400(self, client_factory):
        resp = client_factory().get("/get-session-type")
        assert resp.status_code == 400


# ---------------------------------------------------------------------------
# POST /webhook-stripe
# ---------------------------------------------------------------------------


def _webhook_client(client_factory, calendar=None):
    """Real StripeClient so signatures are actually checked."""
    stripe_client = StripeClient(api_key="sk_test_x", webhook_secret=WEBHOOK_SECRET)
    return client_factory(stripe_client=stripe_client, calendar_client=calendar)


def _post_event(client, event: dict, secret: str = WEBHOOK_SECRET):
    body, signature = signed_webhook(event, secret)
    return client.post(
        "/webhook-stripe",
        content=body,
        headers={"Stripe-Signature": signature, "Content-Type": "application/json"},
    )


class TestStripeWebhook:
    def test_completed_checkout_marks_booking_paid_and_syncs(self, client_factory):
        calendar = _calendar()
        client = _webhook_client(client_factory, calendar)
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.mark_paid = AsyncMock(
                return_value=booking_model(payment_status="success")
            )
            mock_crud.attach_calendar_event = AsyncMock(return_value=True)
            resp = _post_event(client, stripe_event())

        assert resp.status_code == 200
        assert resp.json() == {"received": True, "handled": True}
        mock_crud.mark_paid.assert_awaited_once_with(BOOKING_ID)
        mock_crud.attach_calendar_event.assert_awaited_once_with(BOOKING_ID, EVENT_ID)
        calendar.create_event.assert_awaited_once()

    def test_service_session_routes_to_service_bookings(self, client_factory):
        event = stripe_event(
            metadata={"type": "service", "serviceBookingId": str(SERVICE_BOOKING_ID)}
        )
        client = _webhook_client(client_factory, _calendar())
        with patch(SERVICE_CRUD_PATH) as mock_crud:
            mock_crud.mark_paid = AsyncMock(
                return_value=service_booking_model(payment_status="success")
            )
            mock_crud.attach_calendar_event = AsyncMock(return_value=True)
            resp = _post_event(client, event)

        assert resp.status_code == 200
        mock_crud.mark_paid.assert_awaited_once_with(SERVICE_BOOKING_ID)

    def test_already_synced_booking_creates_no_event(self, client_factory, sync_lock):
        calendar = _calendar()
        client = _webhook_client(client_factory, calendar)
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.mark_paid = AsyncMock(
                return_value=booking_model(
                    payment_status="success", calendar_event_id="evt_existing"
                )
            )
            mock_crud.attach_calendar_event = AsyncMock()
            resp = _post_event(client, stripe_event())

        assert resp.status_code == 200
        assert resp.json()["handled"] is True
        calendar.create_event.assert_not_awaited()
        mock_crud.attach_calendar_event.assert_not_awaited()
        sync_lock.assert_not_awaited()

    def test_bad_signature_returns_400(self, client_factory):
        client = _webhook_client(client_factory)
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.mark_paid = AsyncMock()
            resp = _post_event(client, stripe_event(), secret="whsec_someone_else")

        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid webhook signature"
        mock_crud.mark_paid.assert_not_awaited()

    def test_missing_signature_returns_400(self, client_factory):
        client = _webhook_client(client_factory)
        resp = client.post("/webhook-stripe", content=b"{}")
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Missing Stripe signature"

    def test_other_event_types_are_acknowledged_unhandled(self, client_factory):
        client = _webhook_client(client_factory)
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.mark_paid = AsyncMock()
            resp = _post_event(client, stripe_event("payment_intent.succeeded"))

        assert resp.status_code == 200
        assert resp.json() == {"received": True, "handled": False}
        mock_crud.mark_paid.assert_not_awaited()

    def test_unpaid_completed_session_is_not_confirmed(self, client_factory):
        client = _webhook_client(client_factory)
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.mark_paid = AsyncMock()
            resp = _post_event(client, stripe_event(payment_status="unpaid"))

        assert resp.status_code == 200
        assert resp.json()["handled"] is False
        mock_crud.mark_paid.assert_not_awaited()

    def test_missing_booking_reference_returns_400(self, client_factory):
        client = _webhook_client(client_factory)
        resp = _post_event(client, stripe_event(metadata={}))
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Missing bookingId in metadata"

    def test_unknown_booking_returns_404(self, client_factory):
        client = _webhook_client(client_factory)
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.mark_paid = AsyncMock(return_value=None)
            mock_crud.get_booking = AsyncMock(return_value=None)
            resp = _post_event(client, stripe_event())
        assert resp.status_code == 404
