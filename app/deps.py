import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from urllib.parse import quote, unquote
from uuid import UUID

import httpx
import stripe
from fastapi import Depends, Header, HTTPException, status
from loguru import logger

from app import settings
from app.exceptions import CalendarSyncError, NotFound, UpstreamFailure, ValidationError
from app.scopes import BookingScope


@dataclass
class CurrentUser:
    id: UUID
    username: str
    scopes: list[str] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return BookingScope.ADMIN in self.scopes


def get_current_user(
    x_user_id: str = Header(...),
    x_username: str = Header(...),
    x_user_scopes: str = Header(default=""),
) -> CurrentUser:
    """
    Reads the headers injected by Traefik after forwardAuth validation.
    The JWT has already been verified; we just trust these headers.
    NOTE: This only works behind Traefik. Run with that assumption.
    """
    try:
        user_id = UUID(x_user_id)
    except (ValueError, TypeError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user identity from gateway",
        ) from None

    scopes = x_user_scopes.split(" ") if x_user_scopes else []

    return CurrentUser(id=user_id, username=unquote(x_username), scopes=scopes)


def require_scopes(*required: str):
    """
    Factory that returns a dependency enforcing one or more scopes.

    Usage:
        @router.get("/protected")
        async def route(user = Depends(require_scopes("admin:calendar"))):
            ...
    """

    async def _dep(
        current_user: CurrentUser = Depends(get_current_user),
    ) -> CurrentUser:
        missing = [s for s in required if s not in current_user.scopes]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing required scopes: {', '.join(missing)}",
            )
        return current_user

    return _dep


def require_admin_scope(scope: BookingScope):
    """Like require_scopes, but the umbrella admin:bookings scope also passes."""

    async def _dep(
        current_user: CurrentUser = Depends(get_current_user),
    ) -> CurrentUser:
        if current_user.is_admin or scope in current_user.scopes:
            return current_user
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Requires '{scope}' or '{BookingScope.ADMIN}'.",
        )

    return _dep


# ---------------------------------------------------------------------------
# Pre-built scope dependencies
# ---------------------------------------------------------------------------

can_read_bookings = require_admin_scope(BookingScope.ADMIN_READ)
can_delete_booking = require_admin_scope(BookingScope.ADMIN_DELETE)
can_repair_bookings = require_admin_scope(BookingScope.ADMIN_REPAIR)
can_manage_calendar = require_scopes(BookingScope.CALENDAR)


# ---------------------------------------------------------------------------
# StripeClient: Checkout session lookups and webhook verification
# ---------------------------------------------------------------------------


@dataclass
class PaymentSession:
    id: str
    payment_status: str
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == "paid"


@dataclass
class WebhookEvent:
    type: str
    session: PaymentSession | None = None  # set for checkout.session.* events


def _payment_session(session) -> PaymentSession:
    metadata = session.metadata.to_dict() if session.metadata else {}
    return PaymentSession(
        id=session.id,
        payment_status=session.payment_status,
        metadata=metadata,
    )


class StripeClient:
    """
    Read-only wrapper around Stripe Checkout sessions and signed webhooks.
    The SDK is synchronous, so network calls run in a worker thread.
    """

    def __init__(
        self, api_key: str | None = None, webhook_secret: str | None = None
    ) -> None:
        self._api_key = api_key or settings.STRIPE_SECRET_KEY
        self._webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET

    def construct_event(self, payload: bytes, signature: str) -> WebhookEvent:
        """Verify a webhook delivery against the endpoint secret and parse it."""
        try:
            event = stripe.Webhook.construct_event(
                payload, signature, self._webhook_secret, api_key=self._api_key
            )
        except stripe.SignatureVerificationError as exc:
            logger.warning("Rejected Stripe webhook: {}", exc)
            raise ValidationError("Invalid webhook signature") from None
        except ValueError:
            raise ValidationError("Invalid webhook payload") from None

        session = None
        if event.type.startswith("checkout.session."):
            session = _payment_session(event.data.object)
        return WebhookEvent(type=event.type, session=session)

    async def retrieve_session(self, session_id: str) -> PaymentSession:
        """Raises NotFound for unknown sessions, UpstreamFailure otherwise."""
        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.retrieve, session_id, api_key=self._api_key
            )
        except stripe.InvalidRequestError as exc:
            if exc.http_status == 404:
                raise NotFound("Payment session not found") from None
            logger.error("Stripe rejected session lookup {}: {}", session_id, exc)
            raise UpstreamFailure(
                "Payment processor error", status_code=status.HTTP_502_BAD_GATEWAY
            ) from None
        except stripe.StripeError as exc:
            logger.error("Stripe session lookup {} failed: {}", session_id, exc)
            raise UpstreamFailure(
                "Payment processor error", status_code=status.HTTP_502_BAD_GATEWAY
            ) from None

        return _payment_session(session)


_stripe_client = StripeClient()


def get_stripe_client() -> StripeClient:
    return _stripe_client


# ---------------------------------------------------------------------------
# CalendarClient: thin async wrapper around the Google Calendar v3 API
# ---------------------------------------------------------------------------

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"
TOKEN_REFRESH_MARGIN = timedelta(minutes=5)


@lru_cache(maxsize=1)
def _get_calendar_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=GOOGLE_CALENDAR_API,
        timeout=httpx.Timeout(10.0),
    )


class CalendarClient:
    """
    Thin async wrapper around the Google Calendar REST API.
    Access tokens come from the OAuth refresh-token grant and are cached until
    shortly before they expire. Every call is a single attempt; failures raise
    CalendarSyncError and callers decide whether to swallow them.
    """

    def __init__(self) -> None:
        self._access_token: str | None = None
        self._expires_at = datetime.min.replace(tzinfo=timezone.utc)

    @property
    def _client(self) -> httpx.AsyncClient:
        return _get_calendar_http_client()

    async def _token(self) -> str:
        if (
            self._access_token
            and self._expires_at > datetime.now(timezone.utc) + TOKEN_REFRESH_MARGIN
        ):
            return self._access_token

        logger.info("Refreshing Google Calendar access token")
        try:
            resp = await self._client.post(
                GOOGLE_TOKEN_URL,
                data={
                    "client_id": settings.GOOGLE_CLIENT_ID,
                    "client_secret": settings.GOOGLE_CLIENT_SECRET,
                    "refresh_token": settings.GOOGLE_REFRESH_TOKEN,
                    "grant_type": "refresh_token",
                },
            )
        except httpx.RequestError as exc:
            raise CalendarSyncError(f"token refresh failed: {exc}") from exc

        if resp.status_code != 200:
            raise CalendarSyncError(f"token refresh returned {resp.status_code}")

        tokens = self._json(resp, "token refresh")
        access_token = tokens.get("access_token")
        if not access_token:
            raise CalendarSyncError("no access token in refresh response")
        try:
            lifetime = timedelta(seconds=int(tokens.get("expires_in", 3600)))
        except (TypeError, ValueError):
            raise CalendarSyncError("bad expires_in in refresh response") from None

        self._access_token = access_token
        self._expires_at = datetime.now(timezone.utc) + lifetime
        return access_token

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        token = await self._token()
        try:
            return await self._client.request(
                method,
                path,
                headers={"Authorization": f"Bearer {token}"},
                **kwargs,
            )
        except httpx.RequestError as exc:
            raise CalendarSyncError(f"Google Calendar unreachable: {exc}") from exc

    @staticmethod
    def _json(resp: httpx.Response, what: str) -> dict:
        try:
            body = resp.json()
        except ValueError:
            raise CalendarSyncError(f"{what} response is not JSON") from None
        if not isinstance(body, dict):
            raise CalendarSyncError(f"{what} response is not a JSON object")
        return body

    @staticmethod
    def _events_path(calendar_id: str) -> str:
        return f"/calendars/{quote(calendar_id, safe='')}/events"

    async def create_event(self, calendar_id: str, event: dict) -> str:
        """Insert an event and return its id."""
        resp = await self._request("POST", self._events_path(calendar_id), json=event)
        if resp.status_code not in (200, 201):
            raise CalendarSyncError(
                f"event insert returned {resp.status_code}: {resp.text}"
            )
        event_id = self._json(resp, "event insert").get("id")
        if not event_id:
            raise CalendarSyncError("event insert response has no id")
        return event_id

    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        """Delete an event. An event Google no longer knows counts as deleted."""
        resp = await self._request(
            "DELETE",
            f"{self._events_path(calendar_id)}/{quote(event_id, safe='')}",
        )
        if resp.status_code in (404, 410):
            logger.info("Calendar event {} already gone", event_id)
            return
        if resp.status_code >= 400:
            raise CalendarSyncError(
                f"event delete returned {resp.status_code}: {resp.text}"
            )

    async def watch_events(
        self, calendar_id: str, channel_id: str, address: str
    ) -> dict:
        """Open a web_hook push channel for the calendar's events."""
        resp = await self._request(
            "POST",
            f"{self._events_path(calendar_id)}/watch",
            json={"id": channel_id, "type": "web_hook", "address": address},
        )
        if resp.status_code >= 400:
            raise CalendarSyncError(
                f"events watch returned {resp.status_code}: {resp.text}"
            )
        return self._json(resp, "events watch")


_calendar_client = CalendarClient()


def get_calendar_client() -> CalendarClient:
    return _calendar_client
