"""
Shared pytest fixtures available to every test file automatically.
No imports needed in test files; pytest discovers this by convention.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from tortoise.exceptions import BaseORMException

from app.deps import (
    can_delete_booking,
    can_manage_calendar,
    can_read_bookings,
    can_repair_bookings,
    get_calendar_client,
    get_current_user,
    get_stripe_client,
)
from app.exceptions import store_error_handler
from app.routers import admin, booking, payments

from .factories import make_admin, paid_session

# ---------------------------------------------------------------------------
# Default no-op client mocks so tests never reach Stripe or Google
# ---------------------------------------------------------------------------


def _noop_stripe_client():
    mock = MagicMock()
    mock.retrieve_session = AsyncMock(return_value=paid_session())
    return mock


def _noop_calendar_client():
    mock = MagicMock()
    mock.create_event = AsyncMock(return_value="evt_noop")
    mock.delete_event = AsyncMock(return_value=None)
    mock.watch_events = AsyncMock(return_value={})
    return mock


def bare_app() -> FastAPI:
    app = FastAPI()
    app.add_exception_handler(BaseORMException, store_error_handler)
    app.include_router(booking.router)
    app.include_router(booking.service_router)
    app.include_router(payments.router)
    app.include_router(admin.router)
    return app


# ---------------------------------------------------------------------------
# App builder used by all client fixtures
# ---------------------------------------------------------------------------


def build_app(current_user, stripe_client=None, calendar_client=None) -> FastAPI:
    """
    Fresh FastAPI app with auth/scope dependencies overridden to return
    `current_user` unconditionally.

    Pass `stripe_client` / `calendar_client` to inject custom mocks.
    Defaults to no-op mocks: every session is paid, every calendar call succeeds.
    """
    app = bare_app()

    async def _user():
        return current_user

    for dep in (
        can_read_bookings,
        can_delete_booking,
        can_repair_bookings,
        can_manage_calendar,
        get_current_user,
    ):
        app.dependency_overrides[dep] = _user

    sc = stripe_client if stripe_client is not None else _noop_stripe_client()
    cc = calendar_client if calendar_client is not None else _noop_calendar_client()
    app.dependency_overrides[get_stripe_client] = lambda: sc
    app.dependency_overrides[get_calendar_client] = lambda: cc

    return app


# ---------------------------------------------------------------------------
# Redis is never reachable from tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def sync_lock():
    with (
        patch(
            "app.routers.payments.acquire_calendar_sync_lock",
            AsyncMock(return_value=True),
        ) as acquire,
        patch(
            "app.routers.payments.release_calendar_sync_lock",
            AsyncMock(return_value=None),
        ),
    ):
        yield acquire


# ---------------------------------------------------------------------------
# Reusable client fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def admin_client():
    return TestClient(build_app(make_admin()), raise_server_exceptions=True)


@pytest.fixture()
def anon_app():
    """
    Bare app with NO dependency overrides.
    Use this when you want real scope/auth deps to run so you can assert 401/403/422.
    """
    return bare_app()


@pytest.fixture()
def client_factory():
    def _make(
        current_user=None,
        stripe_client=None,
        calendar_client=None,
    ) -> TestClient:
        return TestClient(
            build_app(
                current_user or make_admin(),
                stripe_client=stripe_client,
                calendar_client=calendar_client,
            ),
            raise_server_exceptions=True,
        )

    return _make
